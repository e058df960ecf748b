"""
Schema module for DocQuery.

This module provides the entity schema system, including:
- Type definitions (EntityDef, FieldDef, FieldKind)
- Catalog sources (static list, definition files, Python module)
- Schema registry with a one-shot load pass

Invariants:
    - Entity names are unique within the registry
    - Definitions are immutable once registered
    - The registry loads its catalog at most once

How to change safely:
    - Add fields to catalog files; the gateway reloads them on restart
    - Keep relationship targets pointing at registered entity names
"""

from .catalog import (
    CatalogEntry,
    CatalogError,
    FileCatalog,
    ModuleCatalog,
    SchemaCatalog,
    StaticCatalog,
    create_catalog,
)
from .registry import LoadState, SchemaRegistry
from .types import EntityDef, FieldDef, FieldKind, field

__all__ = [
    # Types
    "EntityDef",
    "FieldDef",
    "FieldKind",
    "field",
    # Catalog
    "CatalogEntry",
    "CatalogError",
    "SchemaCatalog",
    "StaticCatalog",
    "FileCatalog",
    "ModuleCatalog",
    "create_catalog",
    # Registry
    "LoadState",
    "SchemaRegistry",
]
