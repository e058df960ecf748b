"""
Query request model and shape normalization.

A QueryRequest is what a caller asks for; a NormalizedRequest is what the
engine actually runs after defaulting, clamping and shape checks.

Invariants:
    - limit is always within [1, max_limit]; missing limit means default_limit
    - skip is always >= 0; missing skip means 0
    - A projection is either include-mode or exclude-mode, never both
      (`_id: 0` inside an include projection is allowed, as MongoDB does)
    - Sort is an ordered list of (field, 1 | -1) pairs
    - Limits are clamped, never rejected

How to change safely:
    - New request fields need a default so older callers keep working
    - Keep normalization free of store calls; it runs before any I/O
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional

from .errors import InvalidShapeError

DEFAULT_LIMIT = 100
MAX_LIMIT = 1000

_SORT_DIRECTIONS = {
    1: 1,
    -1: -1,
    "asc": 1,
    "ascending": 1,
    "desc": -1,
    "descending": -1,
}


@dataclass
class QueryRequest:
    """One incoming query call.

    Attributes:
        schema_name: Registered entity name to query
        filter: Store-native predicate, passed through verbatim
        projection: Field -> include (1/true) or exclude (0/false)
        sort: Field -> direction, or an ordered list of (field, direction)
        limit: Page size (clamped to [1, max_limit], default 100)
        skip: Offset (clamped to >= 0, default 0)
        expand: Relationship fields to resolve inline
    """

    schema_name: str
    filter: Any = field(default_factory=dict)
    projection: Optional[Any] = None
    sort: Optional[Any] = None
    limit: Optional[Any] = None
    skip: Optional[Any] = None
    expand: Any = field(default_factory=list)


@dataclass(frozen=True)
class NormalizedRequest:
    """A request after defaulting, clamping and shape validation."""

    schema_name: str
    filter: dict[str, Any]
    projection: Optional[dict[str, int]]
    sort: list[tuple[str, int]]
    limit: int
    skip: int
    expand: tuple[str, ...]


def clamp_limit(requested: Optional[int], *, default: int = DEFAULT_LIMIT, max_limit: int = MAX_LIMIT) -> int:
    """Clamp a requested page size into [1, max_limit].

    Example:
        >>> clamp_limit(None), clamp_limit(0), clamp_limit(5000)
        (100, 1, 1000)
    """
    limit = default if requested is None else requested
    return max(1, min(limit, max_limit))


def clamp_skip(requested: Optional[int]) -> int:
    if requested is None:
        return 0
    return max(0, requested)


def _as_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    # bool is an int subclass; `limit: true` is a caller mistake
    if isinstance(value, bool):
        raise InvalidShapeError(f"{name} must be an integer, got {value!r}", name)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise InvalidShapeError(f"{name} must be an integer, got {value!r}", name)


def normalize_projection(projection: Any) -> Optional[dict[str, int]]:
    """Validate a projection and convert its values to 1/0.

    Raises:
        InvalidShapeError: If the projection is not a mapping, has values
            other than 1/0/true/false, or mixes include and exclude keys
    """
    if projection is None:
        return None
    if not isinstance(projection, Mapping):
        raise InvalidShapeError("projection must be an object", "projection")
    if not projection:
        return None

    normalized: dict[str, int] = {}
    for key, value in projection.items():
        if not isinstance(key, str) or not key:
            raise InvalidShapeError("projection keys must be field names", "projection")
        if value is True or value == 1:
            normalized[key] = 1
        elif value is False or value == 0:
            normalized[key] = 0
        else:
            raise InvalidShapeError(
                f"projection value for '{key}' must be 1, 0, true or false", "projection"
            )

    included = [k for k, v in normalized.items() if v == 1]
    excluded = [k for k, v in normalized.items() if v == 0 and k != "_id"]
    if included and excluded:
        raise InvalidShapeError(
            "projection cannot mix included "
            f"({', '.join(included)}) and excluded ({', '.join(excluded)}) fields",
            "projection",
        )
    return normalized


def normalize_sort(sort: Any) -> list[tuple[str, int]]:
    """Convert a sort argument into an ordered list of (field, 1 | -1).

    Accepts a mapping (insertion order is sort priority) or a list of
    [field, direction] pairs.

    Raises:
        InvalidShapeError: If a direction is not 1, -1, "asc" or "desc"
    """
    if sort is None:
        return []
    if isinstance(sort, Mapping):
        pairs = list(sort.items())
    elif isinstance(sort, (list, tuple)):
        pairs = []
        for item in sort:
            if not isinstance(item, (list, tuple)) or len(item) != 2:
                raise InvalidShapeError("sort list items must be [field, direction] pairs", "sort")
            pairs.append((item[0], item[1]))
    else:
        raise InvalidShapeError("sort must be an object", "sort")

    normalized = []
    for key, direction in pairs:
        if not isinstance(key, str) or not key:
            raise InvalidShapeError("sort keys must be field names", "sort")
        lookup = direction.lower() if isinstance(direction, str) else direction
        valid = (
            not isinstance(lookup, bool)
            and isinstance(lookup, (int, float, str))
            and lookup in _SORT_DIRECTIONS
        )
        if not valid:
            raise InvalidShapeError(
                f"sort direction for '{key}' must be 1, -1, 'asc' or 'desc'", "sort"
            )
        normalized.append((key, _SORT_DIRECTIONS[lookup]))
    return normalized


def normalize_expand(expand: Any) -> tuple[str, ...]:
    if expand is None:
        return ()
    if isinstance(expand, str) or not isinstance(expand, (list, tuple)):
        raise InvalidShapeError("expand must be a list of field names", "expand")
    names: list[str] = []
    for name in expand:
        if not isinstance(name, str) or not name:
            raise InvalidShapeError("expand must be a list of field names", "expand")
        if name not in names:
            names.append(name)
    return tuple(names)


def normalize_request(
    request: QueryRequest,
    *,
    default_limit: int = DEFAULT_LIMIT,
    max_limit: int = MAX_LIMIT,
) -> NormalizedRequest:
    """Apply defaults, clamps and shape checks to a request.

    Raises:
        InvalidShapeError: If the request shape is invalid
    """
    if request.filter is None:
        filter_ = {}
    elif isinstance(request.filter, Mapping):
        filter_ = dict(request.filter)
    else:
        raise InvalidShapeError("filter must be an object", "filter")

    return NormalizedRequest(
        schema_name=request.schema_name,
        filter=filter_,
        projection=normalize_projection(request.projection),
        sort=normalize_sort(request.sort),
        limit=clamp_limit(_as_int(request.limit, "limit"), default=default_limit, max_limit=max_limit),
        skip=clamp_skip(_as_int(request.skip, "skip")),
        expand=normalize_expand(request.expand),
    )
