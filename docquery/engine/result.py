"""
Query result and the outbound envelope.

Invariants:
    - returned_count == len(results) <= limit
    - total_count >= returned_count
    - has_more == (skip + returned_count < total_count)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class QueryResult:
    """Result of one execute() call. Immutable, built fresh per call."""

    schema_name: str
    results: tuple[dict[str, Any], ...]
    total_count: int
    skip: int
    limit: int

    @classmethod
    def assemble(
        cls,
        schema_name: str,
        documents: list[dict[str, Any]],
        total_count: int,
        skip: int,
        limit: int,
    ) -> QueryResult:
        """Build a result from fetched documents and the separate count.

        The count query runs independently of the page query, so documents
        inserted between the two could make the count lag; it is raised to
        keep total_count >= skip + returned_count whenever a page came back.
        """
        documents = documents[:limit]
        if documents:
            total_count = max(total_count, skip + len(documents))
        return cls(
            schema_name=schema_name,
            results=tuple(documents),
            total_count=total_count,
            skip=skip,
            limit=limit,
        )

    @property
    def returned_count(self) -> int:
        return len(self.results)

    @property
    def has_more(self) -> bool:
        return self.skip + self.returned_count < self.total_count

    def to_envelope(self) -> dict[str, Any]:
        """Convert to the camelCase success envelope."""
        return {
            "success": True,
            "schemaName": self.schema_name,
            "returnedCount": self.returned_count,
            "totalCount": self.total_count,
            "skip": self.skip,
            "limit": self.limit,
            "hasMore": self.has_more,
            "results": list(self.results),
        }
