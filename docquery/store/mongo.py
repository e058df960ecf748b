"""
MongoDB document store for DocQuery.

This is the production backend: filters, projections and sorts are handed
to MongoDB as-is, so callers get the full native query language. Only two
things are done on top of the driver:
- Casting of 24-hex id strings to ObjectId for `_id` and declared
  reference/objectid fields, the way ODMs cast against a schema
- Relationship expansion via one batched `$in` lookup per expanded field

Invariants:
    - One MongoClient per store, created in connect() and shared
    - connect() returns only after a successful `ping`
    - Blocking driver calls run in a worker thread (asyncio.to_thread)
    - Index creation is opt-in; the gateway normally runs with read-only users

How to change safely:
    - Test against a real MongoDB before deploying driver upgrades
    - Keep ObjectId casting limited to fields the schema declares as ids
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any

from bson import ObjectId
from pymongo import MongoClient
from pymongo.collection import Collection
from pymongo.errors import ConnectionFailure, OperationFailure, PyMongoError

from ..schema.types import EntityDef, FieldKind
from .base import BaseDocumentStore, DocumentQuery, Expansion
from .errors import StoreConnectionError, StoreError, StoreQueryError

logger = logging.getLogger(__name__)

_OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
_ID_KINDS = (FieldKind.REFERENCE, FieldKind.LIST_REF, FieldKind.OBJECT_ID)
_CASTABLE_OPERATORS = ("$eq", "$ne", "$in", "$nin", "$all")


def _translate_error(error: PyMongoError) -> StoreError:
    if isinstance(error, ConnectionFailure):
        return StoreConnectionError(str(error))
    if isinstance(error, OperationFailure):
        message = (error.details or {}).get("errmsg") or str(error)
        return StoreQueryError(message)
    return StoreQueryError(str(error))


def _cast_id(value: Any) -> Any:
    if isinstance(value, str) and _OBJECT_ID_RE.match(value):
        return ObjectId(value)
    if isinstance(value, list):
        return [_cast_id(v) for v in value]
    return value


def cast_filter(entity: EntityDef, filter: dict[str, Any]) -> dict[str, Any]:
    """Cast id strings in a filter to ObjectId where the schema says ids live.

    Only `_id` and fields of kind ref / list_ref / objectid are touched;
    everything else passes through verbatim.

    Example:
        >>> cast_filter(Booking, {"host": "64b7f0c2a1e4d3b2c1a09f87"})
        {'host': ObjectId('64b7f0c2a1e4d3b2c1a09f87')}
    """
    id_fields = {"_id"} | {f.name for f in entity.fields if f.kind in _ID_KINDS}
    result: dict[str, Any] = {}
    for key, condition in filter.items():
        if key in ("$and", "$or", "$nor") and isinstance(condition, list):
            result[key] = [
                cast_filter(entity, c) if isinstance(c, dict) else c for c in condition
            ]
        elif key in id_fields:
            result[key] = _cast_condition(condition)
        else:
            result[key] = condition
    return result


def _cast_condition(condition: Any) -> Any:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        return {
            op: _cast_id(operand) if op in _CASTABLE_OPERATORS else operand
            for op, operand in condition.items()
        }
    return _cast_id(condition)


class MongoDocumentQuery(DocumentQuery):
    """DocumentQuery executed with a pymongo cursor."""

    store: MongoDocumentStore

    async def fetch(self) -> list[dict[str, Any]]:
        expansions = self.resolve_expansions()
        collection = self.store.collection(self.entity)
        filter = cast_filter(self.entity, self.filter)

        def run() -> list[dict[str, Any]]:
            cursor = collection.find(filter, self.projection)
            if self.sort:
                cursor = cursor.sort(self.sort)
            cursor = cursor.skip(self.skip)
            if self.limit is not None:
                cursor = cursor.limit(self.limit)
            documents = [dict(doc) for doc in cursor]
            for expansion in expansions:
                if not self.projection_hides(expansion.field.name):
                    self._expand(documents, expansion)
            return documents

        try:
            return await asyncio.to_thread(run)
        except PyMongoError as e:
            raise _translate_error(e) from e

    def _expand(self, documents: list[dict[str, Any]], expansion: Expansion) -> None:
        """Replace reference ids under one field with the referenced documents."""
        name = expansion.field.name
        wanted: list[Any] = []
        for doc in documents:
            value = doc.get(name)
            if expansion.many and isinstance(value, list):
                wanted.extend(v for v in value if v is not None)
            elif value is not None and not isinstance(value, (dict, list)):
                wanted.append(value)

        targets: dict[str, dict[str, Any]] = {}
        if wanted:
            target_collection = self.store.collection(expansion.target)
            for target in target_collection.find({"_id": {"$in": _cast_id(wanted)}}):
                targets[str(target["_id"])] = dict(target)

        for doc in documents:
            if name not in doc:
                continue
            value = doc[name]
            if expansion.many and isinstance(value, list):
                doc[name] = [targets[str(v)] for v in value if str(v) in targets]
            elif value is not None and not isinstance(value, (dict, list)):
                doc[name] = targets.get(str(value))


class MongoDocumentStore(BaseDocumentStore):
    """Document store backed by MongoDB through pymongo.

    Attributes:
        config: MongoConfig with connection settings

    Example:
        >>> store = MongoDocumentStore(MongoConfig(uri="mongodb://localhost:27017/drivio"))
        >>> await store.connect()
        >>> await store.register_schema(Booking)
        >>> docs = await store.query("Booking").apply_filter({"status": "confirmed"}).fetch()
    """

    def __init__(self, config: Any, client: MongoClient | None = None) -> None:
        """Initialize the store.

        Args:
            config: MongoConfig instance
            client: Pre-built client (tests); created from config.uri otherwise
        """
        super().__init__()
        self.config = config
        self._client = client
        self._db: Any = None

    @property
    def is_connected(self) -> bool:
        return self._db is not None

    async def connect(self) -> None:
        """Connect to MongoDB and verify the server answers.

        Raises:
            StoreConnectionError: If the server cannot be reached
        """
        if self._db is not None:
            return

        if self._client is None:
            self._client = MongoClient(
                self.config.uri,
                serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
                socketTimeoutMS=self.config.socket_timeout_ms,
            )

        try:
            await asyncio.to_thread(self._client.admin.command, "ping")
        except PyMongoError as e:
            raise StoreConnectionError(f"MongoDB connection error: {e}") from e

        self._db = self._client.get_default_database(default=self.config.database)
        logger.info(
            "Connected to MongoDB",
            extra={"database": getattr(self._db, "name", self.config.database)},
        )

    async def close(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._db = None

    async def ping(self) -> bool:
        if self._client is None or self._db is None:
            return False
        try:
            await asyncio.to_thread(self._client.admin.command, "ping")
            return True
        except PyMongoError:
            return False

    def collection(self, entity: EntityDef) -> Collection:
        self._require_connection()
        return self._db[entity.collection]

    async def _prepare_collection(self, entity: EntityDef) -> None:
        if not self.config.auto_index:
            return
        collection = self.collection(entity)
        for field_def in entity.get_indexed_fields():
            try:
                await asyncio.to_thread(collection.create_index, field_def.name)
            except PyMongoError as e:
                raise _translate_error(e) from e

    def _new_query(self, entity: EntityDef) -> DocumentQuery:
        self._require_connection()
        return MongoDocumentQuery(self, entity)

    async def count(self, name: str, filter: dict[str, Any]) -> int:
        entity = self._require_schema(name)
        collection = self.collection(entity)
        try:
            return await asyncio.to_thread(
                collection.count_documents, cast_filter(entity, filter)
            )
        except PyMongoError as e:
            raise _translate_error(e) from e
