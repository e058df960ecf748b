"""
Configuration for the DocQuery HTTP surface.

Uses pydantic-settings for environment variable loading. Store, catalog and
query settings come from docquery.config; only bind and CORS settings live
here.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class HttpSettings(BaseSettings):
    """HTTP server configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8090, description="Bind port")

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    model_config = {"env_prefix": "DOCQUERY_HTTP_"}
