"""
Query Execution Engine for DocQuery.

The QueryEngine runs one validated query against a registered schema and
returns a uniform, paginated QueryResult. It is the only entry point the
outer surfaces (tool handler, HTTP, CLI) use to read documents.

Per-call state machine:
    RECEIVED ──▶ VALIDATED ──▶ EXECUTED ──▶ ASSEMBLED ──▶ DONE
        └────────────┴─────────────┴────────────┴──▶ FAILED(kind)

Invariants:
    - The registry is loaded (lazily) before any name check
    - Unknown schemas and invalid shapes fail before any store call
    - The filter reaches the store verbatim; the engine never translates it
    - Every store failure becomes QueryExecutionError; nothing is retried
    - The engine holds no per-call state between calls

How to change safely:
    - Keep store access behind the DocumentQuery capability methods
    - New request options go through request.normalize_request first
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import TYPE_CHECKING, Optional

from ..store.errors import StoreError, StoreNotConnectedError
from .errors import DocQueryError, QueryExecutionError, SchemaLoadFailure, UnknownSchemaError
from .request import DEFAULT_LIMIT, MAX_LIMIT, NormalizedRequest, QueryRequest, normalize_request
from .result import QueryResult

if TYPE_CHECKING:
    from ..config import QueryConfig
    from ..schema.registry import SchemaRegistry
    from ..store.base import DocumentStore

logger = logging.getLogger(__name__)


class ExecutionState(Enum):
    """Stages of a single execute() call."""

    RECEIVED = "received"
    VALIDATED = "validated"
    EXECUTED = "executed"
    ASSEMBLED = "assembled"
    DONE = "done"
    FAILED = "failed"


class QueryEngine:
    """Executes queries against schemas known to a SchemaRegistry.

    Attributes:
        registry: Registry deciding which schema names are queryable
        store: The shared, already connected document store

    Example:
        >>> engine = QueryEngine(registry, store)
        >>> result = await engine.execute(QueryRequest("Booking", {"status": "confirmed"}, limit=10))
        >>> result.to_envelope()["returnedCount"]
        10
    """

    def __init__(
        self,
        registry: SchemaRegistry,
        store: DocumentStore,
        query_config: Optional[QueryConfig] = None,
    ) -> None:
        self.registry = registry
        self.store = store
        self._default_limit = query_config.default_limit if query_config else DEFAULT_LIMIT
        self._max_limit = query_config.max_limit if query_config else MAX_LIMIT

    async def execute(self, request: QueryRequest) -> QueryResult:
        """Run one query.

        Args:
            request: The caller's request

        Returns:
            QueryResult with the page of documents and counts

        Raises:
            UnknownSchemaError: Schema name is not registered
            InvalidShapeError: Request shape is invalid
            QueryExecutionError: The store failed the query
        """
        state = ExecutionState.RECEIVED
        started = time.monotonic()
        self._trace(state, request.schema_name)

        try:
            normalized = await self._validate(request)
            state = self._advance(ExecutionState.VALIDATED, request.schema_name)

            documents, total = await self._run(normalized)
            state = self._advance(ExecutionState.EXECUTED, request.schema_name)

            result = QueryResult.assemble(
                normalized.schema_name,
                documents,
                total,
                skip=normalized.skip,
                limit=normalized.limit,
            )
            state = self._advance(ExecutionState.ASSEMBLED, request.schema_name)
        except DocQueryError as e:
            logger.warning(
                f"Query failed in state {state.value}: {e.message}",
                extra={
                    "schema": request.schema_name,
                    "kind": e.kind,
                    "state": ExecutionState.FAILED.value,
                },
            )
            raise

        self._advance(ExecutionState.DONE, request.schema_name)
        logger.info(
            "Query executed",
            extra={
                "schema": result.schema_name,
                "returned": result.returned_count,
                "total": result.total_count,
                "skip": result.skip,
                "limit": result.limit,
                "duration_ms": round((time.monotonic() - started) * 1000, 2),
            },
        )
        return result

    async def _validate(self, request: QueryRequest) -> NormalizedRequest:
        try:
            await self.registry.ensure_loaded()
        except StoreNotConnectedError as e:
            raise QueryExecutionError(str(e), request.schema_name) from e

        if not self.registry.is_registered(request.schema_name):
            raise UnknownSchemaError(request.schema_name, self.registry.registered_names())

        return normalize_request(
            request,
            default_limit=self._default_limit,
            max_limit=self._max_limit,
        )

    async def _run(self, request: NormalizedRequest) -> tuple[list[dict], int]:
        try:
            query = (
                self.store.query(request.schema_name)
                .apply_filter(request.filter)
                .apply_projection(request.projection)
                .apply_sort(request.sort)
                .apply_pagination(request.skip, request.limit)
            )
            for field_name in request.expand:
                query.expand(field_name)

            documents = await query.fetch()
            total = await self.store.count(request.schema_name, request.filter)
        except StoreError as e:
            raise QueryExecutionError(str(e), request.schema_name) from e
        except Exception as e:
            # Driver errors that slipped past the backend's translation
            logger.error(
                f"Unexpected store failure for schema '{request.schema_name}': {e}",
                exc_info=True,
            )
            raise QueryExecutionError(str(e), request.schema_name) from e

        return documents, total

    def load_failures(self) -> list[SchemaLoadFailure]:
        """Catalog entries that failed to register, as SchemaLoadFailure."""
        return [
            SchemaLoadFailure(name, reason)
            for name, reason in sorted(self.registry.failures.items())
        ]

    def _advance(self, state: ExecutionState, schema_name: str) -> ExecutionState:
        self._trace(state, schema_name)
        return state

    @staticmethod
    def _trace(state: ExecutionState, schema_name: str) -> None:
        logger.debug(f"Query {state.value}", extra={"schema": schema_name, "state": state.value})
