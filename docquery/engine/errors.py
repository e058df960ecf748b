"""
Error types for the DocQuery query engine.

This module defines the caller-facing failure kinds:
- DocQueryError: Base exception
- UnknownSchemaError: Requested schema is not registered
- InvalidShapeError: Request violates projection/pagination/shape rules
- SchemaLoadFailure: A catalog entry failed to register (recorded, not raised
  to callers)
- QueryExecutionError: The store rejected or failed the query

Invariants:
    - All errors inherit from DocQueryError
    - `kind` is stable and matches the class (used in logs and envelopes)
    - `message` is human-readable and safe to return to callers
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DocQueryError(Exception):
    """Base exception for all query engine errors.

    Attributes:
        message: Human-readable error message
        kind: Failure kind for programmatic handling
        details: Additional error context
    """

    kind = "DocQueryError"

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class UnknownSchemaError(DocQueryError):
    """Requested schema name is not in the registered set.

    Raised before any store call. Not retryable.
    """

    kind = "UnknownSchema"

    def __init__(self, schema_name: str, available: List[str]) -> None:
        available_text = ", ".join(available) if available else "(none)"
        super().__init__(
            f"Unknown schema: {schema_name}. Available schemas: {available_text}",
            details={"schema_name": schema_name, "available": list(available)},
        )
        self.schema_name = schema_name
        self.available = list(available)


class InvalidShapeError(DocQueryError):
    """Request shape is invalid.

    Raised when:
    - Projection mixes include and exclude keys
    - Projection or sort values are not recognised
    - filter is not a mapping, expand is not a list of names
    - limit/skip are not integers
    """

    kind = "InvalidShape"

    def __init__(self, reason: str, field_name: Optional[str] = None) -> None:
        super().__init__(
            f"Invalid query shape: {reason}",
            details={"field": field_name} if field_name else None,
        )
        self.reason = reason
        self.field_name = field_name


class SchemaLoadFailure(DocQueryError):
    """A catalog entry failed to register during the load pass.

    Only recorded by the registry; surfaces to callers as UnknownSchema.
    """

    kind = "SchemaLoadFailure"

    def __init__(self, schema_name: str, reason: str) -> None:
        super().__init__(
            f"Schema '{schema_name}' failed to load: {reason}",
            details={"schema_name": schema_name, "reason": reason},
        )
        self.schema_name = schema_name
        self.reason = reason


class QueryExecutionError(DocQueryError):
    """The store rejected the constructed query or failed mid-execution.

    Carries the store-provided message. Not retried automatically.
    """

    kind = "QueryExecutionError"

    def __init__(self, store_message: str, schema_name: Optional[str] = None) -> None:
        super().__init__(
            f"Database error: {store_message}",
            details={"schema_name": schema_name} if schema_name else None,
        )
        self.store_message = store_message
        self.schema_name = schema_name
