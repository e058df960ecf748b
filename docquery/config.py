"""
Configuration management for the DocQuery server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for the store connection
    - Secrets (connection strings with credentials) are never logged

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

DEFAULT_MONGODB_URI = "mongodb://localhost:27017/starter_project"


class StoreBackend(Enum):
    """Supported document store backends."""

    SQLITE = "sqlite"
    MONGODB = "mongodb"


@dataclass(frozen=True)
class SqliteConfig:
    """SQLite document store configuration.

    Attributes:
        path: Database file path (":memory:" for a throwaway database)
        wal_mode: SQLite WAL mode enabled
        busy_timeout_ms: SQLite busy timeout in milliseconds
        cache_size_pages: SQLite cache size in pages (negative = KB)
    """

    path: str = "/var/lib/docquery/documents.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000
    cache_size_pages: int = -64000  # 64MB

    @classmethod
    def from_env(cls) -> SqliteConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("SQLITE_PATH", "/var/lib/docquery/documents.db"),
            wal_mode=os.getenv("SQLITE_WAL_MODE", "true").lower() == "true",
            busy_timeout_ms=int(os.getenv("SQLITE_BUSY_TIMEOUT_MS", "5000")),
            cache_size_pages=int(os.getenv("SQLITE_CACHE_SIZE", "-64000")),
        )


@dataclass(frozen=True)
class MongoConfig:
    """MongoDB document store configuration.

    Attributes:
        uri: Connection string (may carry credentials and the database name)
        database: Database used when the URI does not name one
        server_selection_timeout_ms: How long to wait for a reachable server
        socket_timeout_ms: Socket read/write timeout
        auto_index: Create indexes for `indexed` fields at registration
    """

    uri: str = DEFAULT_MONGODB_URI
    database: str = "starter_project"
    server_selection_timeout_ms: int = 5000
    socket_timeout_ms: int = 45000
    auto_index: bool = False

    @classmethod
    def from_env(cls) -> MongoConfig:
        """Load configuration from environment variables."""
        return cls(
            uri=os.getenv("MONGODB_CONNECTION_STRING", DEFAULT_MONGODB_URI),
            database=os.getenv("MONGODB_DATABASE", "starter_project"),
            server_selection_timeout_ms=int(os.getenv("MONGODB_SERVER_SELECTION_TIMEOUT_MS", "5000")),
            socket_timeout_ms=int(os.getenv("MONGODB_SOCKET_TIMEOUT_MS", "45000")),
            auto_index=os.getenv("MONGODB_AUTO_INDEX", "false").lower() == "true",
        )

    @property
    def redacted_uri(self) -> str:
        """Connection string with any password masked."""
        return re.sub(r"(//[^:/@]+:)[^@]+@", r"\1***@", self.uri)


@dataclass(frozen=True)
class CatalogConfig:
    """Schema catalog configuration.

    Attributes:
        path: Directory of YAML/JSON entity definition files
        module: Python module exposing ENTITIES / get_entities() (wins over path)
    """

    path: str = "catalog"
    module: str | None = None

    @classmethod
    def from_env(cls) -> CatalogConfig:
        """Load configuration from environment variables."""
        return cls(
            path=os.getenv("CATALOG_PATH", "catalog"),
            module=os.getenv("CATALOG_MODULE") or None,
        )


@dataclass(frozen=True)
class QueryConfig:
    """Query engine limits.

    Attributes:
        default_limit: Limit applied when a request does not carry one
        max_limit: Upper bound every requested limit is clamped to
    """

    default_limit: int = 100
    max_limit: int = 1000

    @classmethod
    def from_env(cls) -> QueryConfig:
        """Load configuration from environment variables."""
        return cls(
            default_limit=int(os.getenv("QUERY_DEFAULT_LIMIT", "100")),
            max_limit=int(os.getenv("QUERY_MAX_LIMIT", "1000")),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        store_backend: Which document store backend to use
        sqlite: SQLite configuration (if store_backend is SQLITE)
        mongodb: MongoDB configuration (if store_backend is MONGODB)
        catalog: Schema catalog configuration
        query: Query engine limits
        observability: Logging configuration
    """

    store_backend: StoreBackend = StoreBackend.MONGODB
    sqlite: SqliteConfig = field(default_factory=SqliteConfig)
    mongodb: MongoConfig = field(default_factory=MongoConfig)
    catalog: CatalogConfig = field(default_factory=CatalogConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        backend_str = os.getenv("STORE_BACKEND", "mongodb").lower()
        try:
            store_backend = StoreBackend(backend_str)
        except ValueError:
            raise ValueError(
                f"Invalid STORE_BACKEND '{backend_str}'. Must be one of: sqlite, mongodb"
            )

        config = cls(
            store_backend=store_backend,
            sqlite=SqliteConfig.from_env(),
            mongodb=MongoConfig.from_env(),
            catalog=CatalogConfig.from_env(),
            query=QueryConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.store_backend == StoreBackend.MONGODB and not self.mongodb.uri:
            raise ValueError("MONGODB_CONNECTION_STRING is required when STORE_BACKEND=mongodb")
        if self.store_backend == StoreBackend.SQLITE and not self.sqlite.path:
            raise ValueError("SQLITE_PATH is required when STORE_BACKEND=sqlite")

        if self.query.max_limit < 1:
            raise ValueError("QUERY_MAX_LIMIT must be at least 1")
        if not 1 <= self.query.default_limit <= self.query.max_limit:
            raise ValueError("QUERY_DEFAULT_LIMIT must be between 1 and QUERY_MAX_LIMIT")

        if not self.catalog.module and not os.path.isdir(self.catalog.path):
            logger.warning(
                f"Catalog directory does not exist: {self.catalog.path}. "
                "No schemas will be queryable."
            )

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "store_backend": self.store_backend.value,
                "mongodb_uri": self.mongodb.redacted_uri
                if self.store_backend == StoreBackend.MONGODB
                else None,
                "sqlite_path": self.sqlite.path
                if self.store_backend == StoreBackend.SQLITE
                else None,
                "catalog_path": self.catalog.path,
                "catalog_module": self.catalog.module,
                "default_limit": self.query.default_limit,
                "max_limit": self.query.max_limit,
                "log_level": self.observability.log_level,
            },
        )
