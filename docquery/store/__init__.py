"""
Document store abstraction for DocQuery.

This module provides a pluggable store backend interface supporting:
- MongoDB (recommended for production, native query language)
- SQLite (local development, tests, small read-only deployments)

Both backends accept the same MongoDB-style filter grammar and are driven
by the query engine through the DocumentQuery capability methods only.

Invariants:
    - The store connection is opened once by bootstrap and shared
    - The core never owns the connection lifecycle, only registration
    - All query paths are read-only

How to change safely:
    - New backends must subclass BaseDocumentStore / satisfy DocumentStore
    - Keep error translation to the Store* exceptions; the engine relies on it
"""

from .base import (
    BaseDocumentStore,
    DocumentQuery,
    DocumentStore,
    Expansion,
    create_document_store,
)
from .errors import (
    DuplicateSchemaError,
    StoreConnectionError,
    StoreError,
    StoreNotConnectedError,
    StoreQueryError,
)
from .mongo import MongoDocumentStore
from .sqlite import SqliteDocumentStore

__all__ = [
    # Protocol and types
    "DocumentStore",
    "BaseDocumentStore",
    "DocumentQuery",
    "Expansion",
    "StoreError",
    "StoreConnectionError",
    "StoreNotConnectedError",
    "StoreQueryError",
    "DuplicateSchemaError",
    # Factory
    "create_document_store",
    # Implementations
    "MongoDocumentStore",
    "SqliteDocumentStore",
]
