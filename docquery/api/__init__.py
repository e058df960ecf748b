"""
Outer surfaces for DocQuery.

- tool.py: the `query_database` tool (argument parsing, rendering)
- http_server.py / routes.py: FastAPI gateway exposing the tool and schemas
- settings.py: HTTP bind and CORS settings
"""

from .http_server import create_app
from .settings import HttpSettings
from .tool import (
    TOOL_NAME,
    QueryToolInput,
    ToolResponse,
    handle_tool_call,
    json_default,
    parse_arguments,
    tool_definition,
)

__all__ = [
    # HTTP
    "create_app",
    "HttpSettings",
    # Tool
    "TOOL_NAME",
    "QueryToolInput",
    "ToolResponse",
    "handle_tool_call",
    "parse_arguments",
    "tool_definition",
    "json_default",
]
