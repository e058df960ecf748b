"""
Schema Registry for DocQuery.

The SchemaRegistry loads the entity catalog into the document store and is
the authority on which entity names are queryable. It provides:
- A one-shot, concurrency-safe load pass (ensure_loaded)
- Lookup of registered entity definitions by name
- The set of entries that failed to load, with reasons
- Schema fingerprinting for diagnostics

Lifecycle:
    EMPTY ──ensure_loaded()──▶ LOADING ──▶ LOADED

Invariants:
    - The load pass completes at most once per registry; LOADED never reverts
    - A cancelled pass leaves the registry EMPTY and is rerun by the next caller
    - Concurrent ensure_loaded() callers wait for the single pass
    - One bad catalog entry never blocks the rest
    - Registration goes to the store handle given at construction, never
      to a connection looked up from ambient state
    - After LOADED the registry is read-only

How to change safely:
    - Open the store connection before the first ensure_loaded()
    - Add catalog sources in catalog.py, not here
    - Never mutate registered definitions; the fingerprint assumes it

Example:
    >>> registry = SchemaRegistry(FileCatalog("catalog/"), store)
    >>> await store.connect()
    >>> await registry.ensure_loaded()
    >>> registry.is_registered("Booking")
    True
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from enum import Enum
from typing import TYPE_CHECKING, Iterator, Optional

from ..store.errors import DuplicateSchemaError, StoreNotConnectedError
from .catalog import CatalogEntry, SchemaCatalog
from .types import EntityDef

if TYPE_CHECKING:
    from ..store.base import DocumentStore

logger = logging.getLogger(__name__)


class LoadState(Enum):
    """Lifecycle of a registry's one-time load pass."""

    EMPTY = "empty"
    LOADING = "loading"
    LOADED = "loaded"


class SchemaRegistry:
    """Process-wide registry of queryable entity schemas.

    The registry owns its state; the query engine only reads it.

    Thread-safety:
        - The load pass is guarded by an asyncio lock (one-shot gate)
        - Lookups after LOADED are lock-free

    Attributes:
        state: Current LoadState
        fingerprint: SHA-256 hash of the registered schemas (after load)
        failures: Entry name -> reason for every entry that failed to load

    Example:
        >>> registry = SchemaRegistry(StaticCatalog([User, Booking]), store)
        >>> await registry.ensure_loaded()
        >>> registry.registered_names()
        ['User', 'Booking']
    """

    def __init__(self, catalog: SchemaCatalog, store: DocumentStore) -> None:
        """Initialize an empty registry.

        Args:
            catalog: Source of entity definitions
            store: The live, process-wide store handle to register into
        """
        self._catalog = catalog
        self._store = store
        self._state = LoadState.EMPTY
        self._schemas: dict[str, EntityDef] = {}
        self._failures: dict[str, str] = {}
        self._fingerprint: Optional[str] = None
        self._load_lock = asyncio.Lock()

    @property
    def state(self) -> LoadState:
        return self._state

    @property
    def loaded(self) -> bool:
        """Whether the load pass has completed (successfully or not)."""
        return self._state is LoadState.LOADED

    @property
    def fingerprint(self) -> Optional[str]:
        """Schema fingerprint (available after load)."""
        return self._fingerprint

    @property
    def failures(self) -> dict[str, str]:
        """Entries that failed to load, with the reason (copy)."""
        return dict(self._failures)

    @property
    def catalog_label(self) -> str:
        return self._catalog.label

    async def ensure_loaded(self) -> None:
        """Load the catalog into the store, once.

        Returns immediately if the pass already ran, whatever its outcome.
        Per-entry and catalog-level failures are recorded in `failures`
        and logged; they are never raised.

        Raises:
            StoreNotConnectedError: If the store is not connected yet. The
                registry stays EMPTY so a later call can still load.
            asyncio.CancelledError: If the caller is cancelled mid-pass. The
                partial pass is discarded and the registry returns to EMPTY.
        """
        if self._state is LoadState.LOADED:
            return

        async with self._load_lock:
            # Another caller may have finished the pass while we waited
            if self._state is LoadState.LOADED:
                return

            if not self._store.is_connected:
                raise StoreNotConnectedError(
                    "Cannot load schemas before the document store is connected"
                )

            self._state = LoadState.LOADING
            try:
                await self._load_pass()
            except asyncio.CancelledError:
                # Interrupted pass: forget it so the next caller runs it again.
                # Store-side registrations are adopted on the rerun.
                self._schemas.clear()
                self._failures.clear()
                self._state = LoadState.EMPTY
                logger.warning("Schema catalog load was cancelled; it will rerun on the next call")
                raise

            self._state = LoadState.LOADED
            self._fingerprint = self._compute_fingerprint()
            self._log_summary()

    async def _load_pass(self) -> None:
        logger.info(f"Loading schema catalog from {self._catalog.label}")
        try:
            for entry in self._catalog.entries():
                await self._register_entry(entry)
        except Exception as e:
            # The source itself broke; keep whatever registered before it did
            self._failures[self._catalog.label] = str(e)
            logger.error(
                f"Schema catalog {self._catalog.label} failed to load: {e}. "
                "Falling back to the schemas already registered.",
                exc_info=True,
            )

        for problem in self.validate_all():
            logger.warning(problem)

    async def _register_entry(self, entry: CatalogEntry) -> None:
        if not entry.ok or entry.definition is None:
            self._record_failure(entry.name, entry.error or "no definition", entry.source)
            return

        definition = entry.definition
        if definition.name in self._schemas:
            self._record_failure(
                definition.name, f"Duplicate schema name '{definition.name}'", entry.source
            )
            return

        try:
            await self._store.register_schema(definition)
        except DuplicateSchemaError as e:
            existing = self._store.get_schema(definition.name)
            if existing is None:
                self._record_failure(definition.name, str(e), entry.source)
                return
            # Already registered with the store by an earlier owner; use that one
            logger.info(f"Schema '{definition.name}' already registered with the store, reusing it")
            self._schemas[definition.name] = existing
            return
        except Exception as e:
            self._record_failure(definition.name, str(e), entry.source)
            return

        self._schemas[definition.name] = definition

    def _record_failure(self, name: str, reason: str, source: str) -> None:
        self._failures[name] = reason
        logger.warning(
            f"Failed to register schema '{name}': {reason}",
            extra={"schema": name, "source": source},
        )

    def _log_summary(self) -> None:
        registered = self.registered_names()
        failed = sorted(self._failures)
        logger.info(
            f"Schema registry loaded: {len(registered)} registered, {len(failed)} failed",
            extra={
                "registered": registered,
                "failed": failed,
                "fingerprint": self._fingerprint,
            },
        )

    def is_registered(self, name: str) -> bool:
        return name in self._schemas

    def __contains__(self, name: object) -> bool:
        return name in self._schemas

    def __len__(self) -> int:
        return len(self._schemas)

    def get(self, name: str) -> Optional[EntityDef]:
        """Get a registered entity by name.

        Returns:
            EntityDef if registered, None otherwise
        """
        return self._schemas.get(name)

    def registered_names(self) -> list[str]:
        """Names of registered entities, in registration order."""
        return list(self._schemas)

    def schemas(self) -> Iterator[EntityDef]:
        """Iterate over all registered entities."""
        yield from self._schemas.values()

    def validate_all(self) -> list[str]:
        """Check registered relationships point at registered entities.

        Returns:
            List of problems (empty if consistent)
        """
        errors = []
        for entity in self._schemas.values():
            for field_name, target in entity.relationships().items():
                if target not in self._schemas:
                    errors.append(
                        f"Field '{field_name}' in schema '{entity.name}' "
                        f"references unregistered schema '{target}'"
                    )
        return errors

    def _compute_fingerprint(self) -> str:
        """Compute SHA-256 fingerprint of the registered schemas.

        Returns:
            Fingerprint string in format 'sha256:<hash>'
        """
        # Catalog defaults may be YAML dates; hash their string form
        canonical = json.dumps(
            self.to_dict(), sort_keys=True, separators=(',', ':'), default=str
        )
        hash_bytes = hashlib.sha256(canonical.encode('utf-8')).hexdigest()
        return f"sha256:{hash_bytes}"

    def to_dict(self) -> dict:
        """Convert registered schemas to a dictionary, sorted by name."""
        return {
            "schemas": [self._schemas[name].to_dict() for name in sorted(self._schemas)],
        }

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, sort_keys=True, default=str)
