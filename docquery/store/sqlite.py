"""
SQLite document store for DocQuery.

Stores every registered entity's documents as JSON text in one SQLite
database and answers MongoDB-style queries over them (see filters.py).
Useful for local development, tests, and small read-only deployments
where running MongoDB is not worth it.

Invariants:
    - One connection per store, opened once in connect() and shared
    - Documents of all entities live in one table keyed by (collection, doc_id)
    - doc_id always equals str(document["_id"])
    - Expression indexes exist for every `indexed` field of a registered entity

How to change safely:
    - Keep the table layout backward compatible; files outlive processes
    - Route every query through filters.py so both backends share a grammar
    - Test with large datasets before relying on it in production

Table schema:
    documents:
        - collection TEXT
        - doc_id TEXT
        - body_json TEXT (the whole document, including _id)
        - PRIMARY KEY (collection, doc_id)
"""

from __future__ import annotations

import json
import logging
import re
import sqlite3
import uuid
from pathlib import Path
from typing import Any

from ..schema.types import EntityDef
from .base import BaseDocumentStore, DocumentQuery, Expansion
from .errors import StoreConnectionError, StoreError, StoreQueryError
from .filters import compile_filter, compile_sort, json_path, project_document, regex_match

logger = logging.getLogger(__name__)


def _translate_error(error: sqlite3.Error) -> StoreError:
    if isinstance(error, sqlite3.ProgrammingError):
        return StoreConnectionError(str(error))
    return StoreQueryError(str(error))


class SqliteDocumentQuery(DocumentQuery):
    """DocumentQuery executed with SQL over the shared connection."""

    store: SqliteDocumentStore

    async def fetch(self) -> list[dict[str, Any]]:
        expansions = self.resolve_expansions()
        conn = self.store.connection

        where, params = compile_filter(self.filter, "d.body_json")
        order_terms = compile_sort(self.sort, "d.body_json")
        order_by = f"{order_terms}, d.rowid" if order_terms else "d.rowid"

        sql = (
            "SELECT d.body_json FROM documents AS d "
            f"WHERE d.collection = ? AND {where} "
            f"ORDER BY {order_by} LIMIT ? OFFSET ?"
        )
        limit = self.limit if self.limit is not None else -1

        try:
            cursor = conn.execute(sql, [self.entity.collection, *params, limit, self.skip])
            rows = cursor.fetchall()
        except sqlite3.Error as e:
            raise _translate_error(e) from e

        documents = [project_document(json.loads(row["body_json"]), self.projection) for row in rows]

        for expansion in expansions:
            if not self.projection_hides(expansion.field.name):
                self._expand(documents, expansion)

        return documents

    def _expand(self, documents: list[dict[str, Any]], expansion: Expansion) -> None:
        """Replace reference ids under one field with the referenced documents."""
        name = expansion.field.name
        wanted: set[str] = set()
        for doc in documents:
            value = doc.get(name)
            if expansion.many and isinstance(value, list):
                wanted.update(str(v) for v in value if v is not None)
            elif value is not None and not isinstance(value, (dict, list)):
                wanted.add(str(value))

        targets = self.store.fetch_by_ids(expansion.target.collection, wanted)

        for doc in documents:
            if name not in doc:
                continue
            value = doc[name]
            if expansion.many and isinstance(value, list):
                doc[name] = [targets[str(v)] for v in value if str(v) in targets]
            elif value is not None and not isinstance(value, (dict, list)):
                doc[name] = targets.get(str(value))


class SqliteDocumentStore(BaseDocumentStore):
    """Document store backed by a single SQLite database file.

    Thread safety:
        The connection is shared by every query. Calls run on the event
        loop thread, so SQLite sees one statement at a time.

    Example:
        >>> store = SqliteDocumentStore(SqliteConfig(path="/var/lib/docquery/docs.db"))
        >>> await store.connect()
        >>> await store.register_schema(User)
        >>> users = await store.query("User").apply_filter({"role": "host"}).fetch()
    """

    def __init__(self, config: Any) -> None:
        """Initialize the store.

        Args:
            config: SqliteConfig with path and pragma settings
        """
        super().__init__()
        self.config = config
        self._conn: sqlite3.Connection | None = None

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise StoreConnectionError("SQLite document store is not connected")
        return self._conn

    async def connect(self) -> None:
        """Open the database and create the table layout.

        Raises:
            StoreConnectionError: If the database cannot be opened
        """
        if self._conn is not None:
            return

        path = self.config.path
        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(
                path,
                timeout=self.config.busy_timeout_ms / 1000.0,
                isolation_level=None,  # Autocommit by default, explicit transactions
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout = {self.config.busy_timeout_ms}")
            conn.execute(f"PRAGMA cache_size = {self.config.cache_size_pages}")
            if self.config.wal_mode and path != ":memory:":
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")
            conn.create_function("docquery_regex", 3, regex_match, deterministic=True)
            self._create_schema(conn)
        except sqlite3.Error as e:
            raise StoreConnectionError(f"Failed to open SQLite database {path}: {e}") from e

        self._conn = conn
        logger.info(f"Connected to SQLite document store: {path}")

    async def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            logger.info("SQLite document store closed")

    async def ping(self) -> bool:
        if self._conn is None:
            return False
        try:
            self._conn.execute("SELECT 1").fetchone()
            return True
        except sqlite3.Error:
            return False

    def _create_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                doc_id TEXT NOT NULL,
                body_json TEXT NOT NULL DEFAULT '{}',
                PRIMARY KEY (collection, doc_id)
            );
        """)

    async def _prepare_collection(self, entity: EntityDef) -> None:
        conn = self.connection
        for field_def in entity.get_indexed_fields():
            index_name = re.sub(r"\W", "_", f"idx_{entity.collection}_{field_def.name}")
            try:
                conn.execute(
                    f"CREATE INDEX IF NOT EXISTS {index_name} "
                    f"ON documents(collection, json_extract(body_json, {json_path(field_def.name)}))"
                )
            except sqlite3.Error as e:
                raise _translate_error(e) from e

    def _new_query(self, entity: EntityDef) -> DocumentQuery:
        self._require_connection()
        return SqliteDocumentQuery(self, entity)

    async def count(self, name: str, filter: dict[str, Any]) -> int:
        entity = self._require_schema(name)
        where, params = compile_filter(filter, "d.body_json")
        try:
            cursor = self.connection.execute(
                f"SELECT COUNT(*) FROM documents AS d WHERE d.collection = ? AND {where}",
                [entity.collection, *params],
            )
            return cursor.fetchone()[0]
        except sqlite3.Error as e:
            raise _translate_error(e) from e

    def fetch_by_ids(self, collection: str, ids: set[str]) -> dict[str, dict[str, Any]]:
        """Load documents of one collection by id, keyed by doc_id."""
        if not ids:
            return {}
        ordered = sorted(ids)
        placeholders = ", ".join("?" for _ in ordered)
        try:
            cursor = self.connection.execute(
                f"SELECT doc_id, body_json FROM documents "
                f"WHERE collection = ? AND doc_id IN ({placeholders})",
                [collection, *ordered],
            )
            return {row["doc_id"]: json.loads(row["body_json"]) for row in cursor.fetchall()}
        except sqlite3.Error as e:
            raise _translate_error(e) from e

    async def insert_documents(self, name: str, documents: list[dict[str, Any]]) -> list[str]:
        """Load documents into a registered entity's collection.

        Used to seed fixtures and local databases; the query surfaces never
        call it. Documents without `_id` get a generated one. Existing
        documents with the same `_id` are replaced.

        Returns:
            The `_id` of every document, in input order
        """
        entity = self._require_schema(name)
        conn = self.connection
        ids = []

        conn.execute("BEGIN IMMEDIATE")
        try:
            for doc in documents:
                body = dict(doc)
                body.setdefault("_id", uuid.uuid4().hex)
                doc_id = str(body["_id"])
                conn.execute(
                    "INSERT OR REPLACE INTO documents (collection, doc_id, body_json) "
                    "VALUES (?, ?, ?)",
                    (entity.collection, doc_id, json.dumps(body)),
                )
                ids.append(doc_id)
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

        logger.debug(
            "Inserted documents",
            extra={"schema": name, "count": len(ids)},
        )
        return ids
