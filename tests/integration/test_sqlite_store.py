"""
Integration tests for the SQLite document store.

These run real SQL against an in-memory database and check that the
MongoDB-style grammar behaves the way MongoDB answers the same query.

Tests cover:
- Filter operators, dotted paths and array matching
- Sorting, pagination and counting
- Include and exclude projections
- Relationship expansion, including dangling references
"""

import pytest

from docquery.config import SqliteConfig
from docquery.schema.types import EntityDef, field
from docquery.store.errors import DuplicateSchemaError, StoreQueryError
from docquery.store.sqlite import SqliteDocumentStore

User = EntityDef(
    name="User",
    fields=(
        field("email", "str", indexed=True),
        field("role", "enum", enum_values=("guest", "host")),
        field("rating", "float"),
    ),
)
AddOn = EntityDef(name="AddOn", fields=(field("name", "str"),), collection="addons")
Vehicle = EntityDef(
    name="Vehicle",
    fields=(
        field("host", "ref", ref="User"),
        field("make", "str"),
        field("year", "int"),
        field("features", "list_str"),
        field("addOns", "list_ref", ref="AddOn"),
        field("location", "json"),
    ),
)

USERS = [
    {"_id": "u1", "email": "ada@drivio.io", "role": "host", "rating": 4.9},
    {"_id": "u2", "email": "grace@drivio.io", "role": "guest", "rating": 4.2},
    {"_id": "u3", "email": "linus@example.com", "role": "host", "rating": None},
    {"_id": "u4", "email": "Margaret@Drivio.io", "role": "guest"},
]
ADDONS = [
    {"_id": "a1", "name": "Child seat"},
    {"_id": "a2", "name": "Roof rack"},
]
VEHICLES = [
    {
        "_id": "v1",
        "host": "u1",
        "make": "Tesla",
        "year": 2022,
        "features": ["autopilot", "heated seats"],
        "addOns": ["a1", "missing", "a2"],
        "location": {"city": "Austin", "state": "TX"},
    },
    {
        "_id": "v2",
        "host": "u3",
        "make": "Honda",
        "year": 2018,
        "features": ["bluetooth"],
        "addOns": [],
        "location": {"city": "Denver", "state": "CO"},
    },
    {
        "_id": "v3",
        "host": "gone",
        "make": "Ford",
        "year": 2020,
        "features": [],
        "location": {"city": "Austin", "state": "TX"},
    },
]


@pytest.fixture
async def store():
    """Connected in-memory store with users, add-ons and vehicles."""
    store = SqliteDocumentStore(SqliteConfig(path=":memory:"))
    await store.connect()
    for entity in (User, AddOn, Vehicle):
        await store.register_schema(entity)
    await store.insert_documents("User", USERS)
    await store.insert_documents("AddOn", ADDONS)
    await store.insert_documents("Vehicle", VEHICLES)
    yield store
    await store.close()


async def ids(query):
    return [doc["_id"] for doc in await query.fetch()]


class TestRegistration:
    """Tests for schema registration against SQLite."""

    @pytest.mark.asyncio
    async def test_duplicate_rejected(self, store):
        """A name registers once."""
        with pytest.raises(DuplicateSchemaError):
            await store.register_schema(User)

    @pytest.mark.asyncio
    async def test_unknown_schema_query(self, store):
        """Querying an unregistered name is a query error."""
        with pytest.raises(StoreQueryError):
            store.query("Booking")

    @pytest.mark.asyncio
    async def test_insert_generates_ids(self, store):
        """Documents without _id get one."""
        new_ids = await store.insert_documents("User", [{"email": "new@drivio.io"}])
        assert len(new_ids) == 1
        assert await store.count("User", {"_id": new_ids[0]}) == 1


class TestFilters:
    """Tests for the filter grammar."""

    @pytest.mark.asyncio
    async def test_equality(self, store):
        """Plain values are equality matches."""
        assert await ids(store.query("User").apply_filter({"role": "host"})) == ["u1", "u3"]

    @pytest.mark.asyncio
    async def test_empty_filter_matches_all(self, store):
        """An empty filter returns the whole collection."""
        assert len(await store.query("User").fetch()) == 4

    @pytest.mark.asyncio
    async def test_comparisons(self, store):
        """$gt/$lte compare numbers only with numbers."""
        assert await ids(store.query("User").apply_filter({"rating": {"$gt": 4.5}})) == ["u1"]
        assert await ids(store.query("Vehicle").apply_filter({"year": {"$lte": 2020}})) == ["v2", "v3"]

    @pytest.mark.asyncio
    async def test_in_and_nin(self, store):
        """$in and $nin take lists of values."""
        assert await ids(store.query("Vehicle").apply_filter({"make": {"$in": ["Ford", "Tesla"]}})) == [
            "v1",
            "v3",
        ]
        assert await ids(store.query("Vehicle").apply_filter({"make": {"$nin": ["Ford", "Tesla"]}})) == ["v2"]

    @pytest.mark.asyncio
    async def test_regex_with_options(self, store):
        """$regex honours the i option."""
        query = store.query("User").apply_filter({"email": {"$regex": "@drivio\\.io$", "$options": "i"}})
        assert await ids(query) == ["u1", "u2", "u4"]

    @pytest.mark.asyncio
    async def test_exists(self, store):
        """$exists distinguishes missing fields from present nulls."""
        assert await ids(store.query("User").apply_filter({"rating": {"$exists": False}})) == ["u4"]
        assert await ids(store.query("User").apply_filter({"rating": {"$exists": True}})) == [
            "u1",
            "u2",
            "u3",
        ]

    @pytest.mark.asyncio
    async def test_null_matches_missing(self, store):
        """{field: null} matches null and missing values."""
        assert await ids(store.query("User").apply_filter({"rating": None})) == ["u3", "u4"]

    @pytest.mark.asyncio
    async def test_dotted_path(self, store):
        """Dotted paths reach into embedded documents."""
        assert await ids(store.query("Vehicle").apply_filter({"location.city": "Austin"})) == ["v1", "v3"]

    @pytest.mark.asyncio
    async def test_array_contains(self, store):
        """A scalar equality matches any array element."""
        assert await ids(store.query("Vehicle").apply_filter({"features": "bluetooth"})) == ["v2"]

    @pytest.mark.asyncio
    async def test_size_and_all(self, store):
        """$size and $all work on arrays."""
        assert await ids(store.query("Vehicle").apply_filter({"features": {"$size": 0}})) == ["v3"]
        query = store.query("Vehicle").apply_filter({"features": {"$all": ["autopilot", "heated seats"]}})
        assert await ids(query) == ["v1"]

    @pytest.mark.asyncio
    async def test_logical_operators(self, store):
        """$or and $and combine sub-filters."""
        query = store.query("Vehicle").apply_filter(
            {"$or": [{"make": "Honda"}, {"$and": [{"year": {"$gte": 2021}}, {"location.state": "TX"}]}]}
        )
        assert await ids(query) == ["v1", "v2"]

    @pytest.mark.asyncio
    async def test_ne_includes_missing(self, store):
        """$ne matches documents where the field is absent."""
        assert await ids(store.query("User").apply_filter({"rating": {"$ne": 4.9}})) == ["u2", "u3", "u4"]

    @pytest.mark.asyncio
    async def test_unknown_operator(self, store):
        """Unknown operators fail with the operator name."""
        with pytest.raises(StoreQueryError, match="unknown operator: \\$foo"):
            await store.query("User").apply_filter({"rating": {"$foo": 1}}).fetch()

    @pytest.mark.asyncio
    async def test_bad_regex(self, store):
        """Invalid patterns are query errors."""
        with pytest.raises(StoreQueryError, match="Regular expression is invalid"):
            await store.query("User").apply_filter({"email": {"$regex": "("}}).fetch()


class TestSortAndPagination:
    """Tests for sort, skip, limit and count."""

    @pytest.mark.asyncio
    async def test_sort_descending(self, store):
        """Numeric sort descending."""
        query = store.query("Vehicle").apply_sort([("year", -1)])
        assert await ids(query) == ["v1", "v3", "v2"]

    @pytest.mark.asyncio
    async def test_multi_key_sort(self, store):
        """Later keys break ties of earlier ones."""
        query = store.query("Vehicle").apply_sort([("location.state", 1), ("make", -1)])
        assert await ids(query) == ["v2", "v1", "v3"]

    @pytest.mark.asyncio
    async def test_nulls_sort_first(self, store):
        """Missing and null values sort before numbers ascending."""
        result = await ids(store.query("User").apply_sort([("rating", 1)]))
        assert result[2:] == ["u2", "u1"]

    @pytest.mark.asyncio
    async def test_skip_and_limit(self, store):
        """Pagination slices the sorted result."""
        query = store.query("Vehicle").apply_sort([("year", 1)]).apply_pagination(1, 1)
        assert await ids(query) == ["v3"]

    @pytest.mark.asyncio
    async def test_skip_past_end(self, store):
        """Skipping past the end returns nothing."""
        assert await ids(store.query("Vehicle").apply_pagination(10, 5)) == []

    @pytest.mark.asyncio
    async def test_count_ignores_pagination(self, store):
        """count() uses only the filter."""
        assert await store.count("Vehicle", {"location.state": "TX"}) == 2
        assert await store.count("Vehicle", {}) == 3


class TestProjection:
    """Tests for projections."""

    @pytest.mark.asyncio
    async def test_include(self, store):
        """Include projections keep _id and the named fields."""
        docs = await store.query("Vehicle").apply_filter({"_id": "v1"}).apply_projection(
            {"make": 1, "location.city": 1}
        ).fetch()
        assert docs == [{"_id": "v1", "make": "Tesla", "location": {"city": "Austin"}}]

    @pytest.mark.asyncio
    async def test_include_without_id(self, store):
        """_id: 0 drops the id from an include projection."""
        docs = await store.query("User").apply_filter({"_id": "u1"}).apply_projection(
            {"email": 1, "_id": 0}
        ).fetch()
        assert docs == [{"email": "ada@drivio.io"}]

    @pytest.mark.asyncio
    async def test_exclude(self, store):
        """Exclude projections drop the named fields."""
        docs = await store.query("User").apply_filter({"_id": "u2"}).apply_projection({"rating": 0}).fetch()
        assert docs == [{"_id": "u2", "email": "grace@drivio.io", "role": "guest"}]


class TestExpansion:
    """Tests for relationship expansion."""

    @pytest.mark.asyncio
    async def test_single_reference(self, store):
        """A ref field is replaced by the referenced document."""
        docs = await store.query("Vehicle").apply_filter({"_id": "v1"}).expand("host").fetch()
        assert docs[0]["host"]["email"] == "ada@drivio.io"

    @pytest.mark.asyncio
    async def test_dangling_reference_is_none(self, store):
        """A ref to a missing document becomes None."""
        docs = await store.query("Vehicle").apply_filter({"_id": "v3"}).expand("host").fetch()
        assert docs[0]["host"] is None

    @pytest.mark.asyncio
    async def test_list_reference_drops_missing(self, store):
        """List refs keep order and drop ids with no document."""
        docs = await store.query("Vehicle").apply_filter({"_id": "v1"}).expand("addOns").fetch()
        assert [a["name"] for a in docs[0]["addOns"]] == ["Child seat", "Roof rack"]

    @pytest.mark.asyncio
    async def test_expansion_order_irrelevant(self, store):
        """Expanding in either order gives the same documents."""
        first = await store.query("Vehicle").expand("host").expand("addOns").fetch()
        second = await store.query("Vehicle").expand("addOns").expand("host").fetch()
        assert first == second

    @pytest.mark.asyncio
    async def test_projection_hides_expansion(self, store):
        """Fields removed by the projection are not expanded back in."""
        docs = await (
            store.query("Vehicle")
            .apply_filter({"_id": "v1"})
            .apply_projection({"make": 1})
            .expand("host")
            .fetch()
        )
        assert docs == [{"_id": "v1", "make": "Tesla"}]

    @pytest.mark.asyncio
    async def test_expand_plain_field(self, store):
        """Only relationship fields can be expanded."""
        with pytest.raises(StoreQueryError, match="not a relationship"):
            await store.query("Vehicle").expand("make").fetch()

    @pytest.mark.asyncio
    async def test_expand_unregistered_target(self):
        """Expanding toward an unregistered schema is a query error."""
        store = SqliteDocumentStore(SqliteConfig(path=":memory:"))
        await store.connect()
        await store.register_schema(Vehicle)
        try:
            with pytest.raises(StoreQueryError, match="hasn't been registered"):
                await store.query("Vehicle").expand("host").fetch()
        finally:
            await store.close()
