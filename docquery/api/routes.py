"""
API routes for the DocQuery HTTP gateway.

All routes are read-only. The tool routes speak the tool-call shape
(content blocks + isError); /v1/query returns the bare envelope with an
HTTP status per failure kind.
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from ..engine.errors import DocQueryError
from ..engine.executor import QueryEngine
from .tool import TOOL_NAME, handle_tool_call, json_default, parse_arguments, tool_definition

logger = logging.getLogger(__name__)

router = APIRouter(tags=["DocQuery"])

_STATUS_BY_KIND = {
    "InvalidShape": 400,
    "UnknownSchema": 404,
    "QueryExecutionError": 502,
}


# --- Response Models ---


class ToolCallResponse(BaseModel):
    """Tool call result in content-block form."""

    content: list[dict[str, Any]]
    isError: bool


class SchemaListResponse(BaseModel):
    """Registered and failed schemas."""

    state: str
    catalog: str
    fingerprint: str | None
    registered: list[dict[str, Any]]
    failed: dict[str, str]


# --- Dependencies ---


def get_engine(request: Request) -> QueryEngine:
    """Get query engine from app state."""
    return request.app.state.engine


# --- Tool Routes ---


@router.get("/tools")
async def list_tools(engine: QueryEngine = Depends(get_engine)):
    """List the tools this gateway serves, with their JSON input schemas."""
    return {"tools": [tool_definition(engine.registry.registered_names())]}


@router.post(f"/tools/{TOOL_NAME}", response_model=ToolCallResponse)
async def call_query_tool(
    arguments: dict[str, Any] = Body(...),
    engine: QueryEngine = Depends(get_engine),
):
    """
    Invoke the query tool.

    Always answers 200; failures are reported with isError=true and the
    failure message as text content.
    """
    response = await handle_tool_call(engine, arguments)
    return response.to_dict()


# --- Query Routes ---


@router.post("/query")
async def run_query(
    arguments: dict[str, Any] = Body(...),
    engine: QueryEngine = Depends(get_engine),
):
    """
    Run a query and return the result envelope.

    Accepts the same body as the tool route. Failures return
    {"success": false, "error": ..., "kind": ...} with 400, 404 or 502.
    """
    try:
        request = parse_arguments(arguments).to_request()
        result = await engine.execute(request)
    except DocQueryError as e:
        return JSONResponse(
            status_code=_STATUS_BY_KIND.get(e.kind, 500),
            content={"success": False, "error": e.message, "kind": e.kind},
        )

    body = json.dumps(result.to_envelope(), default=json_default)
    return Response(content=body, media_type="application/json")


# --- Schema Routes ---


@router.get("/schemas", response_model=SchemaListResponse)
async def list_schemas(engine: QueryEngine = Depends(get_engine)):
    """
    List registered schemas and the catalog entries that failed to load.

    Useful to see why a schema name is reported as unknown.
    """
    registry = engine.registry
    return SchemaListResponse(
        state=registry.state.value,
        catalog=registry.catalog_label,
        fingerprint=registry.fingerprint,
        registered=[entity.to_dict() for entity in registry.schemas()],
        failed={failure.schema_name: failure.reason for failure in engine.load_failures()},
    )
