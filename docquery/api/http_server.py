"""
FastAPI application factory for the DocQuery HTTP gateway.

This module creates the FastAPI app with:
- Store connection and schema registry lifecycle management
- CORS configuration
- Read-only tool, query and schema routes
- A health endpoint at the root

Startup order (lifespan):
    config → store.connect() → catalog → SchemaRegistry → QueryEngine
    → registry.ensure_loaded()
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .._version import __version__
from ..config import ServerConfig
from ..engine.executor import QueryEngine
from ..schema.catalog import SchemaCatalog, create_catalog
from ..schema.registry import SchemaRegistry
from ..store.base import DocumentStore, create_document_store
from .routes import router
from .settings import HttpSettings

logger = logging.getLogger(__name__)


def create_app(
    config: Optional[ServerConfig] = None,
    *,
    store: Optional[DocumentStore] = None,
    catalog: Optional[SchemaCatalog] = None,
    settings: Optional[HttpSettings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        config: Server configuration (read from environment if None)
        store: Pre-built document store; the app then leaves closing it to
            the caller
        catalog: Pre-built catalog (built from config.catalog if None)
        settings: HTTP bind/CORS settings (read from environment if None)
    """
    settings = settings or HttpSettings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Manage store connection and registry lifecycle."""
        server_config = config or ServerConfig.from_env()
        owns_store = store is None
        doc_store = store if store is not None else create_document_store(server_config)

        await doc_store.connect()

        schema_catalog = catalog if catalog is not None else create_catalog(server_config.catalog)
        registry = SchemaRegistry(schema_catalog, doc_store)
        engine = QueryEngine(registry, doc_store, server_config.query)
        await registry.ensure_loaded()

        app.state.config = server_config
        app.state.store = doc_store
        app.state.registry = registry
        app.state.engine = engine

        logger.info(
            "DocQuery HTTP gateway ready",
            extra={"schemas": len(registry), "failed": len(registry.failures)},
        )

        yield

        if owns_store:
            await doc_store.close()

    app = FastAPI(
        title="DocQuery",
        description=(
            "Read-only query gateway over a document database. "
            "Exposes the query_database tool and a plain query endpoint."
        ),
        version=__version__,
        lifespan=lifespan,
    )

    # CORS for browser tool clients
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    app.include_router(router, prefix="/v1")

    @app.get("/health")
    async def health(request: Request):
        store_ok = await request.app.state.store.ping()
        return {
            "status": "healthy" if store_ok else "degraded",
            "service": "docquery",
            "store_connected": store_ok,
            "schemas": len(request.app.state.registry),
        }

    return app
