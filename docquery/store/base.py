"""
Base protocol and types for the document store abstraction.

This module defines the DocumentStore protocol that all backends implement,
the DocumentQuery builder the query engine drives, and the store error
hierarchy.

The engine never speaks a backend's API directly. It goes through a narrow
capability interface:

    store.query(name)
        .apply_filter(filter)         # store-native grammar, verbatim
        .apply_projection(projection)
        .apply_sort(sort)
        .apply_pagination(skip, limit)
        .expand(field)                # once per relationship field
    await query.fetch()               # plain dict snapshots
    await store.count(name, filter)   # total ignoring shaping

Invariants:
    - A store is connected once and shared by every query
    - Schemas must be registered before they can be queried
    - A schema name can be registered only once per store
    - fetch() returns plain dicts, never live/driver objects

How to change safely:
    - Protocol changes require updating all backends
    - Keep expansion resolution in DocumentQuery so backends agree on errors
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from ..schema.types import EntityDef, FieldDef, FieldKind
from .errors import DuplicateSchemaError, StoreNotConnectedError, StoreQueryError

if TYPE_CHECKING:
    from ..config import ServerConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Expansion:
    """A resolved relationship expansion.

    Attributes:
        field: The relationship field on the queried entity
        target: The entity the field points at
    """

    field: FieldDef
    target: EntityDef

    @property
    def many(self) -> bool:
        return self.field.kind == FieldKind.LIST_REF


class DocumentQuery(ABC):
    """Query builder shared by all store backends.

    The capability methods only record the requested shape; nothing runs
    until fetch(). Each method returns the query for chaining.

    Attributes:
        entity: The entity being queried
        filter: Filter expression in the store's native grammar
        projection: Include (1) / exclude (0) mapping, or None
        sort: Ordered (field, direction) pairs, direction 1 or -1
        skip: Number of documents to skip
        limit: Maximum number of documents to return (None = unbounded)
        expansions: Relationship field names to resolve inline
    """

    def __init__(self, store: BaseDocumentStore, entity: EntityDef) -> None:
        self.store = store
        self.entity = entity
        self.filter: dict[str, Any] = {}
        self.projection: dict[str, int] | None = None
        self.sort: list[tuple[str, int]] = []
        self.skip = 0
        self.limit: int | None = None
        self.expansions: list[str] = []

    def apply_filter(self, filter: dict[str, Any]) -> DocumentQuery:
        self.filter = filter
        return self

    def apply_projection(self, projection: dict[str, int] | None) -> DocumentQuery:
        self.projection = dict(projection) if projection else None
        return self

    def apply_sort(self, sort: list[tuple[str, int]] | None) -> DocumentQuery:
        self.sort = list(sort or [])
        return self

    def apply_pagination(self, skip: int, limit: int | None) -> DocumentQuery:
        self.skip = skip
        self.limit = limit
        return self

    def expand(self, field_name: str) -> DocumentQuery:
        """Request inline resolution of a relationship field.

        Expanding the same field twice is the same as expanding it once.
        """
        if field_name not in self.expansions:
            self.expansions.append(field_name)
        return self

    def resolve_expansions(self) -> list[Expansion]:
        """Resolve requested expansion names against the schema.

        Returns:
            One Expansion per requested field, in request order

        Raises:
            StoreQueryError: If a field is not a relationship of the entity
                or its target entity is not registered
        """
        resolved = []
        for name in self.expansions:
            field_def = self.entity.get_field(name)
            if field_def is None or not field_def.is_relationship:
                raise StoreQueryError(
                    f"Cannot expand path `{name}` because it is not a relationship "
                    f"of schema '{self.entity.name}'"
                )
            target = self.store.get_schema(field_def.ref or "")
            if target is None:
                raise StoreQueryError(
                    f"Schema hasn't been registered for '{field_def.ref}' "
                    f"(referenced by {self.entity.name}.{name})"
                )
            resolved.append(Expansion(field=field_def, target=target))
        return resolved

    def projection_hides(self, field_name: str) -> bool:
        """Whether the projection removes a top-level field from results."""
        if not self.projection:
            return False
        if self._projection_is_inclusive():
            return not any(
                key == field_name or key.startswith(field_name + ".")
                for key, value in self.projection.items()
                if value
            )
        return self.projection.get(field_name, 1) == 0

    def _projection_is_inclusive(self) -> bool:
        return any(value for key, value in (self.projection or {}).items() if key != "_id")

    @abstractmethod
    async def fetch(self) -> list[dict[str, Any]]:
        """Execute the query and return plain document snapshots.

        Raises:
            StoreQueryError: If the store rejects the query
            StoreConnectionError: If the connection fails mid-query
        """
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    Example:
        >>> store = SqliteDocumentStore(SqliteConfig(path=":memory:"))
        >>> await store.connect()
        >>> await store.register_schema(User)
        >>> docs = await store.query("User").apply_filter({"active": True}).fetch()
    """

    @property
    def is_connected(self) -> bool:
        """Whether the store connection is open."""
        ...

    async def connect(self) -> None:
        """Open the process-wide connection.

        Raises:
            StoreConnectionError: If the connection cannot be established
        """
        ...

    async def close(self) -> None:
        """Close the connection and release resources."""
        ...

    async def ping(self) -> bool:
        """Round-trip to the backend; False if it is unreachable."""
        ...

    async def register_schema(self, entity: EntityDef) -> None:
        """Register an entity so it can be queried.

        Raises:
            StoreNotConnectedError: If not connected
            DuplicateSchemaError: If the name is already registered
            StoreError: If the backend cannot prepare the collection
        """
        ...

    def get_schema(self, name: str) -> EntityDef | None:
        """Get a registered entity definition by name."""
        ...

    def registered_schemas(self) -> list[str]:
        """Names of all registered entities, in registration order."""
        ...

    def query(self, name: str) -> DocumentQuery:
        """Start a query against a registered entity.

        Raises:
            StoreQueryError: If the entity is not registered
        """
        ...

    async def count(self, name: str, filter: dict[str, Any]) -> int:
        """Count documents matching a filter, ignoring any shaping."""
        ...


class BaseDocumentStore(ABC):
    """Schema bookkeeping shared by the concrete backends."""

    def __init__(self) -> None:
        self._schemas: dict[str, EntityDef] = {}

    @property
    @abstractmethod
    def is_connected(self) -> bool: ...

    @abstractmethod
    async def _prepare_collection(self, entity: EntityDef) -> None:
        """Backend-specific work to make an entity queryable (indexes etc)."""
        ...

    @abstractmethod
    def _new_query(self, entity: EntityDef) -> DocumentQuery: ...

    async def register_schema(self, entity: EntityDef) -> None:
        if not self.is_connected:
            raise StoreNotConnectedError(
                f"Cannot register schema '{entity.name}': store is not connected"
            )
        if entity.name in self._schemas:
            raise DuplicateSchemaError(f"Cannot overwrite `{entity.name}` schema once registered")

        await self._prepare_collection(entity)
        self._schemas[entity.name] = entity
        logger.debug(f"Registered schema: {entity.name} (collection={entity.collection})")

    def get_schema(self, name: str) -> EntityDef | None:
        return self._schemas.get(name)

    def registered_schemas(self) -> list[str]:
        return list(self._schemas)

    def query(self, name: str) -> DocumentQuery:
        entity = self._require_schema(name)
        return self._new_query(entity)

    def _require_schema(self, name: str) -> EntityDef:
        entity = self._schemas.get(name)
        if entity is None:
            raise StoreQueryError(f"Schema hasn't been registered for '{name}'")
        return entity

    def _require_connection(self) -> None:
        if not self.is_connected:
            raise StoreNotConnectedError("Document store is not connected")


def create_document_store(config: ServerConfig) -> DocumentStore:
    """Factory function to create a document store from configuration.

    Args:
        config: Server configuration

    Returns:
        Appropriate DocumentStore implementation (not yet connected)

    Raises:
        ValueError: If backend is not supported
    """
    from ..config import StoreBackend
    from .mongo import MongoDocumentStore
    from .sqlite import SqliteDocumentStore

    if config.store_backend == StoreBackend.SQLITE:
        return SqliteDocumentStore(config.sqlite)
    elif config.store_backend == StoreBackend.MONGODB:
        return MongoDocumentStore(config.mongodb)
    else:
        raise ValueError(f"Unsupported store backend: {config.store_backend}")
