"""
Unit tests for the schema registry load pass.

Tests cover:
- One-shot loading (sequential and concurrent callers)
- Partial failure (bad entries, store rejections, broken catalog source)
- Not-connected store precondition
- Lookup, validation and fingerprinting
"""

import asyncio

import pytest

from docquery.schema.catalog import CatalogEntry, FileCatalog, StaticCatalog
from docquery.schema.registry import LoadState, SchemaRegistry
from docquery.schema.types import EntityDef, field
from docquery.store.base import BaseDocumentStore
from docquery.store.errors import StoreNotConnectedError, StoreQueryError

User = EntityDef(name="User", fields=(field("email", "str"),))
Vehicle = EntityDef(name="Vehicle", fields=(field("host", "ref", ref="User"),))
Booking = EntityDef(
    name="Booking",
    fields=(field("host", "ref", ref="User"), field("vehicle", "ref", ref="Vehicle")),
)


class RecordingStore(BaseDocumentStore):
    """Store that records registrations and can reject chosen names."""

    def __init__(self, connected=True, reject=(), delay=0.0, hold=()):
        super().__init__()
        self.connected = connected
        self.reject = set(reject)
        self.delay = delay
        self.hold = set(hold)
        self.held = asyncio.Event()
        self.register_calls = []

    @property
    def is_connected(self):
        return self.connected

    async def connect(self):
        self.connected = True

    async def close(self):
        self.connected = False

    async def ping(self):
        return self.connected

    async def _prepare_collection(self, entity):
        self.register_calls.append(entity.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if entity.name in self.hold:
            self.hold.discard(entity.name)
            self.held.set()
            await asyncio.Event().wait()
        if entity.name in self.reject:
            raise StoreQueryError(f"collection for {entity.name} is unavailable")

    def _new_query(self, entity):
        raise NotImplementedError

    async def count(self, name, filter):
        return 0


class BrokenCatalog:
    """Catalog whose source fails after yielding some entries."""

    label = "broken-source"

    def entries(self):
        yield CatalogEntry(name="User", definition=User, source="test")
        raise OSError("catalog volume went away")


class TestEnsureLoaded:
    """Tests for SchemaRegistry.ensure_loaded()."""

    @pytest.mark.asyncio
    async def test_loads_all_entries(self):
        """All entries register and state becomes LOADED."""
        store = RecordingStore()
        registry = SchemaRegistry(StaticCatalog([User, Vehicle, Booking]), store)

        assert registry.state == LoadState.EMPTY
        await registry.ensure_loaded()

        assert registry.state == LoadState.LOADED
        assert registry.registered_names() == ["User", "Vehicle", "Booking"]
        assert store.registered_schemas() == ["User", "Vehicle", "Booking"]
        assert registry.failures == {}

    @pytest.mark.asyncio
    async def test_second_call_is_noop(self):
        """Calling twice registers exactly once."""
        store = RecordingStore()
        registry = SchemaRegistry(StaticCatalog([User, Vehicle]), store)

        await registry.ensure_loaded()
        names_before = registry.registered_names()
        await registry.ensure_loaded()

        assert registry.registered_names() == names_before
        assert store.register_calls == ["User", "Vehicle"]

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_pass(self):
        """Racing callers wait for a single load pass."""
        store = RecordingStore(delay=0.01)
        registry = SchemaRegistry(StaticCatalog([User, Vehicle, Booking]), store)

        await asyncio.gather(*(registry.ensure_loaded() for _ in range(10)))

        assert store.register_calls == ["User", "Vehicle", "Booking"]
        assert registry.failures == {}
        assert len(registry) == 3

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_other_entries(self):
        """Entry 2 of 3 failing leaves 1 and 3 registered."""
        store = RecordingStore(reject={"Vehicle"})
        registry = SchemaRegistry(StaticCatalog([User, Vehicle, Booking]), store)

        await registry.ensure_loaded()

        assert registry.loaded
        assert registry.registered_names() == ["User", "Booking"]
        assert "Vehicle" not in registry
        assert "unavailable" in registry.failures["Vehicle"]

    @pytest.mark.asyncio
    async def test_failed_load_is_not_retried(self):
        """A partial failure still counts as the one load pass."""
        store = RecordingStore(reject={"Vehicle"})
        registry = SchemaRegistry(StaticCatalog([User, Vehicle]), store)

        await registry.ensure_loaded()
        store.reject.clear()
        await registry.ensure_loaded()

        assert "Vehicle" not in registry
        assert store.register_calls == ["User", "Vehicle"]

    @pytest.mark.asyncio
    async def test_error_entry_recorded(self):
        """Catalog entries that failed to parse are recorded as failures."""
        broken = CatalogEntry(name="Review", definition=None, source="review.yaml", error="bad yaml")
        registry = SchemaRegistry(StaticCatalog([User, broken]), RecordingStore())

        await registry.ensure_loaded()

        assert registry.registered_names() == ["User"]
        assert registry.failures == {"Review": "bad yaml"}

    @pytest.mark.asyncio
    async def test_duplicate_name_in_catalog(self):
        """A second definition with the same name is a failure, the first wins."""
        other_user = EntityDef(name="User", fields=(field("name", "str"),))
        registry = SchemaRegistry(StaticCatalog([User, other_user]), RecordingStore())

        await registry.ensure_loaded()

        assert registry.get("User") == User
        assert "Duplicate schema name" in registry.failures["User"]

    @pytest.mark.asyncio
    async def test_already_registered_in_store_is_reused(self):
        """A schema the store already holds is adopted instead of failing."""
        store = RecordingStore()
        await store.register_schema(User)
        registry = SchemaRegistry(StaticCatalog([User, Vehicle]), store)

        await registry.ensure_loaded()

        assert registry.registered_names() == ["User", "Vehicle"]
        assert registry.failures == {}

    @pytest.mark.asyncio
    async def test_catalog_source_failure(self):
        """A failing source keeps what registered before it broke."""
        registry = SchemaRegistry(BrokenCatalog(), RecordingStore())

        await registry.ensure_loaded()

        assert registry.loaded
        assert registry.registered_names() == ["User"]
        assert "went away" in registry.failures["broken-source"]

    @pytest.mark.asyncio
    async def test_cancelled_pass_is_rerun(self):
        """Cancelling the first caller mid-pass leaves EMPTY; the next call loads everything."""
        store = RecordingStore(hold={"Vehicle"})
        registry = SchemaRegistry(StaticCatalog([User, Vehicle, Booking]), store)

        task = asyncio.create_task(registry.ensure_loaded())
        await store.held.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert registry.state == LoadState.EMPTY
        assert registry.registered_names() == []
        assert registry.failures == {}

        await registry.ensure_loaded()

        assert registry.state == LoadState.LOADED
        assert registry.registered_names() == ["User", "Vehicle", "Booking"]
        assert registry.failures == {}
        assert store.register_calls == ["User", "Vehicle", "Vehicle", "Booking"]

    @pytest.mark.asyncio
    async def test_date_default_from_yaml(self, tmp_path):
        """YAML date defaults load and fingerprint without raising."""
        (tmp_path / "a_user.yaml").write_text("name: User\nfields:\n  - {name: email, kind: str}\n")
        (tmp_path / "b_promo.yaml").write_text(
            "name: Promo\nfields:\n  - {name: startsOn, kind: timestamp, default: 2024-01-01}\n"
        )
        store = RecordingStore()
        registry = SchemaRegistry(FileCatalog(tmp_path), store)

        await registry.ensure_loaded()
        await registry.ensure_loaded()

        assert registry.state == LoadState.LOADED
        assert registry.registered_names() == ["User", "Promo"]
        assert registry.failures == {}
        assert registry.fingerprint.startswith("sha256:")
        assert '"default": "2024-01-01"' in registry.to_json()
        assert store.register_calls == ["User", "Promo"]

    @pytest.mark.asyncio
    async def test_not_connected_fails_fast(self):
        """Loading before the store connects raises and leaves state EMPTY."""
        store = RecordingStore(connected=False)
        registry = SchemaRegistry(StaticCatalog([User]), store)

        with pytest.raises(StoreNotConnectedError):
            await registry.ensure_loaded()
        assert registry.state == LoadState.EMPTY
        assert store.register_calls == []

        await store.connect()
        await registry.ensure_loaded()
        assert registry.registered_names() == ["User"]


class TestRegistryLookups:
    """Tests for lookups, validation and fingerprint."""

    @pytest.mark.asyncio
    async def test_get_and_contains(self):
        """Registered names resolve; unknown names do not."""
        registry = SchemaRegistry(StaticCatalog([User]), RecordingStore())
        await registry.ensure_loaded()

        assert registry.get("User") == User
        assert registry.get("NotAThing") is None
        assert registry.is_registered("User")
        assert "NotAThing" not in registry

    @pytest.mark.asyncio
    async def test_validate_all_reports_dangling_relationships(self):
        """Relationships to unregistered schemas are reported."""
        registry = SchemaRegistry(StaticCatalog([Vehicle]), RecordingStore())
        await registry.ensure_loaded()

        problems = registry.validate_all()
        assert problems == [
            "Field 'host' in schema 'Vehicle' references unregistered schema 'User'"
        ]

    @pytest.mark.asyncio
    async def test_fingerprint_is_order_independent(self):
        """Same schemas in any catalog order give the same fingerprint."""
        first = SchemaRegistry(StaticCatalog([User, Vehicle]), RecordingStore())
        second = SchemaRegistry(StaticCatalog([Vehicle, User]), RecordingStore())
        await first.ensure_loaded()
        await second.ensure_loaded()

        assert first.fingerprint.startswith("sha256:")
        assert first.fingerprint == second.fingerprint

    def test_fingerprint_before_load(self):
        """No fingerprint before the load pass."""
        registry = SchemaRegistry(StaticCatalog([User]), RecordingStore())
        assert registry.fingerprint is None
        assert not registry.loaded
