"""
DocQuery - Main entry point.

Starts the HTTP gateway: the FastAPI app from api/http_server.py served by
uvicorn. The app's lifespan connects the document store, loads the schema
catalog and builds the query engine before the first request is accepted.

Usage:
    docquery-server
    python -m docquery.main

Configuration is entirely via environment variables.
See config.py (store, catalog, limits, logging) and api/settings.py
(bind address, CORS).

Invariants:
    - Configuration errors exit with status 1 before anything starts
    - Logging is configured once, before the app is created

How to change safely:
    - Keep startup work in the app lifespan so tests exercise it too
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api.http_server import create_app
from .api.settings import HttpSettings
from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.JSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("pymongo").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    settings = HttpSettings()
    app = create_app(config, settings=settings)

    logger.info(f"Starting DocQuery gateway on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
