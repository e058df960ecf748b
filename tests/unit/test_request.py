"""
Unit tests for query request normalization.

Tests cover:
- Limit and skip defaulting and clamping
- Projection mode validation
- Sort normalization
- Filter and expand shape checks
"""

import pytest

from docquery.engine.errors import InvalidShapeError
from docquery.engine.request import (
    QueryRequest,
    clamp_limit,
    normalize_projection,
    normalize_request,
    normalize_sort,
)


class TestPagination:
    """Tests for limit/skip handling."""

    @pytest.mark.parametrize(
        "requested,expected",
        [(None, 100), (1, 1), (50, 50), (1000, 1000), (0, 1), (-5, 1), (1001, 1000), (10**9, 1000)],
    )
    def test_limit_clamped(self, requested, expected):
        """Limits outside [1, 1000] are clamped, never rejected."""
        assert clamp_limit(requested) == expected

    def test_custom_bounds(self):
        """Configured default and max are honoured."""
        request = normalize_request(QueryRequest("User"), default_limit=25, max_limit=50)
        assert request.limit == 25
        request = normalize_request(QueryRequest("User", limit=80), default_limit=25, max_limit=50)
        assert request.limit == 50

    def test_skip_defaults_and_clamps(self):
        """Skip defaults to 0 and negative values clamp to 0."""
        assert normalize_request(QueryRequest("User")).skip == 0
        assert normalize_request(QueryRequest("User", skip=-10)).skip == 0
        assert normalize_request(QueryRequest("User", skip=40)).skip == 40

    def test_integral_float_accepted(self):
        """10.0 is an integer as far as JSON callers are concerned."""
        assert normalize_request(QueryRequest("User", limit=10.0)).limit == 10

    @pytest.mark.parametrize("bad", ["10", 2.5, True, [10]])
    def test_non_integer_limit(self, bad):
        """Non-integer limits are an invalid shape."""
        with pytest.raises(InvalidShapeError, match="limit must be an integer"):
            normalize_request(QueryRequest("User", limit=bad))


class TestProjection:
    """Tests for normalize_projection()."""

    def test_include_mode(self):
        """Include projections normalize to 1."""
        assert normalize_projection({"name": 1, "email": True}) == {"name": 1, "email": 1}

    def test_exclude_mode(self):
        """Exclude projections normalize to 0."""
        assert normalize_projection({"password": 0, "apiKey": False}) == {"password": 0, "apiKey": 0}

    def test_mixed_rejected(self):
        """Include and exclude keys together are rejected."""
        with pytest.raises(InvalidShapeError, match="cannot mix"):
            normalize_projection({"name": 1, "password": 0})

    def test_id_exclusion_allowed_with_include(self):
        """_id: 0 is the one exclusion allowed in an include projection."""
        assert normalize_projection({"name": 1, "_id": 0}) == {"name": 1, "_id": 0}

    def test_empty_means_none(self):
        """An empty projection is no projection."""
        assert normalize_projection({}) is None
        assert normalize_projection(None) is None

    @pytest.mark.parametrize("bad", [{"name": 2}, {"name": "yes"}, {"name": None}, ["name"]])
    def test_invalid_values(self, bad):
        """Only 1/0/true/false values on a mapping are accepted."""
        with pytest.raises(InvalidShapeError):
            normalize_projection(bad)


class TestSort:
    """Tests for normalize_sort()."""

    def test_mapping_keeps_order(self):
        """Mapping order is sort priority."""
        assert normalize_sort({"createdAt": -1, "name": 1}) == [("createdAt", -1), ("name", 1)]

    def test_word_directions(self):
        """asc/desc words are accepted case-insensitively."""
        assert normalize_sort({"a": "asc", "b": "DESC", "c": "descending"}) == [
            ("a", 1),
            ("b", -1),
            ("c", -1),
        ]

    def test_pair_list(self):
        """A list of [field, direction] pairs is accepted."""
        assert normalize_sort([["rating", -1], ["name", 1]]) == [("rating", -1), ("name", 1)]

    @pytest.mark.parametrize("bad", [{"a": 0}, {"a": 2}, {"a": True}, {"a": "up"}, {"a": [1]}, "name"])
    def test_invalid(self, bad):
        """Unknown directions and shapes are rejected."""
        with pytest.raises(InvalidShapeError):
            normalize_sort(bad)


class TestRequestShape:
    """Tests for filter/expand checks in normalize_request()."""

    def test_filter_must_be_mapping(self):
        """A list filter is rejected."""
        with pytest.raises(InvalidShapeError, match="filter must be an object"):
            normalize_request(QueryRequest("User", filter=["status"]))

    def test_none_filter_is_empty(self):
        """A missing filter matches everything."""
        assert normalize_request(QueryRequest("User", filter=None)).filter == {}

    def test_filter_passes_through(self):
        """Operator documents reach the store untouched."""
        filter = {"rating": {"$gte": 4}, "$or": [{"a": 1}, {"b": 2}]}
        assert normalize_request(QueryRequest("Review", filter=filter)).filter == filter

    def test_expand_deduplicated(self):
        """Repeated expansion names collapse, order kept."""
        request = normalize_request(QueryRequest("Booking", expand=["host", "vehicle", "host"]))
        assert request.expand == ("host", "vehicle")

    @pytest.mark.parametrize("bad", ["host", [1], [""], {"host": 1}])
    def test_expand_must_be_names(self, bad):
        """Expand must be a list of non-empty strings."""
        with pytest.raises(InvalidShapeError, match="expand"):
            normalize_request(QueryRequest("Booking", expand=bad))

    def test_error_message(self):
        """Shape errors carry the caller-facing prefix."""
        with pytest.raises(InvalidShapeError) as exc_info:
            normalize_request(QueryRequest("User", projection={"name": 1, "password": 0}))
        assert exc_info.value.message.startswith("Invalid query shape: ")
        assert exc_info.value.kind == "InvalidShape"
