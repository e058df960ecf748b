"""
DocQuery - Read-only document query gateway for tool-calling agents.

This package lets programmatic callers run ad-hoc read queries against a
fixed, pre-declared set of entity schemas without direct database access:
- Entity schemas are declared in an external catalog (YAML/JSON/module)
- The schema registry loads the catalog into the document store once
- The query engine validates requests and executes them against the store

Architecture:
    ┌─────────────┐     ┌──────────────┐     ┌─────────────────┐
    │   Agent     │────▶│  Tool / HTTP │────▶│   QueryEngine   │
    │  (caller)   │     │   surface    │     │                 │
    └─────────────┘     └──────────────┘     └────────┬────────┘
                                                      │
                              ┌───────────────────────┤
                              ▼                       ▼
                     ┌─────────────────┐     ┌─────────────────┐
                     │ SchemaRegistry  │────▶│  DocumentStore  │
                     │ (catalog load)  │     │ (SQLite/MongoDB)│
                     └─────────────────┘     └─────────────────┘

Invariants:
    - The store connection is opened once and shared by every call
    - The catalog is loaded into the store exactly once per registry
    - Filters are passed to the store verbatim (store-native grammar)
    - All operations are read-only

How to change safely:
    - New store backends must implement the DocumentStore protocol
    - Keep the tool envelope field names stable; agents depend on them
    - Add catalog sources behind create_catalog()
"""

from ._version import __version__

__all__ = ["__version__"]
