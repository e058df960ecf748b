"""
The `query_database` tool surface.

Turns an untyped tool call into a QueryRequest, runs it on the engine and
renders the outcome as tool content: the pretty-printed success envelope,
or a single human-readable failure message.

Invariants:
    - Only the documented argument names are accepted (unknown keys are an
      invalid shape); `model`, `query` and `populate` remain accepted aliases
    - Failures are returned as data, never raised to the transport
    - Documents are serialized with json_default, so ObjectId and datetime
      values render as strings
"""

from __future__ import annotations

import datetime
import json
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from ..engine.errors import DocQueryError, InvalidShapeError
from ..engine.request import QueryRequest

if TYPE_CHECKING:
    from ..engine.executor import QueryEngine

logger = logging.getLogger(__name__)

TOOL_NAME = "query_database"


class QueryToolInput(BaseModel):
    """Arguments of a `query_database` call."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    schema_name: str = Field(
        ...,
        validation_alias=AliasChoices("schemaName", "model", "schema_name"),
        description="The schema to query (e.g. User, Vehicle, Booking)",
    )
    filter: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("filter", "query"),
        description=(
            'MongoDB query object (e.g. {"status": "active"}, {"rating": {"$gte": 4}}). '
            "Use operators like $gt, $gte, $lt, $lte, $in, $ne, $regex."
        ),
    )
    projection: dict[str, Any] | None = Field(
        None,
        description=(
            'Fields to include or exclude (e.g. {"name": 1, "email": 1} or {"password": 0}); '
            "include and exclude cannot be mixed"
        ),
    )
    sort: dict[str, Any] | list[Any] | None = Field(
        None,
        description='Sort order (e.g. {"createdAt": -1} for descending, {"name": 1} for ascending)',
    )
    limit: int | None = Field(
        None,
        description="Maximum number of documents to return (default: 100, max: 1000)",
    )
    skip: int | None = Field(
        None,
        description="Number of documents to skip (for pagination)",
    )
    expand: list[str] = Field(
        default_factory=list,
        validation_alias=AliasChoices("expand", "populate"),
        description='Relationship fields to resolve inline (e.g. ["host", "vehicle"] for Booking)',
    )

    def to_request(self) -> QueryRequest:
        return QueryRequest(
            schema_name=self.schema_name,
            filter=self.filter,
            projection=self.projection,
            sort=self.sort,
            limit=self.limit,
            skip=self.skip,
            expand=list(self.expand),
        )


@dataclass(frozen=True)
class ToolResponse:
    """Tool call outcome in the content-block shape tool transports expect."""

    text: str
    is_error: bool = False
    envelope: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": [{"type": "text", "text": self.text}],
            "isError": self.is_error,
        }


def json_default(value: Any) -> Any:
    """json.dumps fallback for values documents carry but JSON lacks."""
    if isinstance(value, (datetime.datetime, datetime.date)):
        return value.isoformat()
    if isinstance(value, bytes):
        return value.hex()
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    # ObjectId, Decimal128 and friends all stringify to their canonical form
    return str(value)


def tool_description(schema_names: list[str]) -> str:
    available = ", ".join(schema_names) if schema_names else "none loaded"
    return (
        "Query the application database. Supports querying any registered schema "
        f"({available}) with MongoDB query syntax. Returns matching documents with "
        "pagination info (returnedCount, totalCount, hasMore)."
    )


def tool_definition(schema_names: list[str]) -> dict[str, Any]:
    """Tool listing entry: name, description and JSON input schema."""
    input_schema = QueryToolInput.model_json_schema(by_alias=True)
    if schema_names:
        input_schema["properties"]["schemaName"]["enum"] = list(schema_names)
    return {
        "name": TOOL_NAME,
        "description": tool_description(schema_names),
        "inputSchema": input_schema,
    }


def parse_arguments(arguments: Any) -> QueryToolInput:
    """Validate raw tool arguments.

    Raises:
        InvalidShapeError: If arguments are missing, mistyped or unknown
    """
    if not isinstance(arguments, dict):
        raise InvalidShapeError("tool arguments must be an object")
    try:
        return QueryToolInput.model_validate(arguments)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'arguments'}: {err['msg']}"
            for err in e.errors()
        )
        raise InvalidShapeError(problems) from e


async def handle_tool_call(engine: QueryEngine, arguments: Any) -> ToolResponse:
    """Run one `query_database` call and render its outcome.

    Never raises; every failure becomes a ToolResponse with is_error=True.
    """
    try:
        request = parse_arguments(arguments).to_request()
        result = await engine.execute(request)
    except DocQueryError as e:
        return ToolResponse(text=e.message, is_error=True)
    except Exception as e:
        logger.error(f"Unexpected error executing {TOOL_NAME}: {e}", exc_info=True)
        return ToolResponse(text=f"Error executing query: {e}", is_error=True)

    envelope = result.to_envelope()
    text = json.dumps(envelope, indent=2, default=json_default)
    return ToolResponse(text=text, is_error=False, envelope=envelope)
