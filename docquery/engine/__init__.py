"""
Query engine for DocQuery.

Validates a query request against the schema registry, runs it through the
document store's capability interface and assembles a paginated result.

Invariants:
    - Requests are validated before any store call
    - Results satisfy returned_count <= limit and total_count >= returned_count
"""

from .errors import (
    DocQueryError,
    InvalidShapeError,
    QueryExecutionError,
    SchemaLoadFailure,
    UnknownSchemaError,
)
from .executor import ExecutionState, QueryEngine
from .request import (
    DEFAULT_LIMIT,
    MAX_LIMIT,
    NormalizedRequest,
    QueryRequest,
    clamp_limit,
    normalize_request,
)
from .result import QueryResult

__all__ = [
    # Engine
    "QueryEngine",
    "ExecutionState",
    # Request / result
    "QueryRequest",
    "NormalizedRequest",
    "QueryResult",
    "normalize_request",
    "clamp_limit",
    "DEFAULT_LIMIT",
    "MAX_LIMIT",
    # Errors
    "DocQueryError",
    "UnknownSchemaError",
    "InvalidShapeError",
    "SchemaLoadFailure",
    "QueryExecutionError",
]
