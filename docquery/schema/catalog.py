"""
Schema catalog sources for DocQuery.

A catalog is the external, fixed collection of entity definitions the
registry loads at startup. This module does not design the definitions;
it only knows how to enumerate them from a few kinds of source:
- StaticCatalog: an in-process list of EntityDef objects
- FileCatalog: a directory of YAML/JSON definition files
- ModuleCatalog: a Python module exposing ENTITIES or get_entities()

Invariants:
    - entries() can be iterated once per load pass, in any order
    - A broken definition surfaces as a CatalogEntry carrying an error,
      never as an exception that aborts the whole iteration
    - Sources never register anything themselves

How to change safely:
    - New sources must implement the SchemaCatalog protocol
    - Keep file parsing tolerant per file; one bad file must not hide others

File format:
    A file holds either one entity mapping:

        name: Booking
        fields:
          - {name: status, kind: enum, enum_values: [pending, confirmed]}
          - {name: host, kind: ref, ref: User}

    or a list under `entities:`.
"""

from __future__ import annotations

import importlib
import json
import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

import yaml

from .types import EntityDef

if TYPE_CHECKING:
    from ..config import CatalogConfig

logger = logging.getLogger(__name__)

CATALOG_SUFFIXES = (".yaml", ".yml", ".json")


class CatalogError(Exception):
    """The catalog source itself could not be read."""

    pass


@dataclass(frozen=True)
class CatalogEntry:
    """One entry of a schema catalog.

    Attributes:
        name: Entity name (or the file stem when the file could not be parsed)
        definition: Parsed entity definition, None if parsing failed
        source: Where the entry came from (file path, module, "static")
        error: Why the definition could not be built, if it could not
    """

    name: str
    definition: EntityDef | None
    source: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.definition is not None and self.error is None


@runtime_checkable
class SchemaCatalog(Protocol):
    """Protocol for schema catalog sources."""

    @property
    def label(self) -> str:
        """Short description used in diagnostics."""
        ...

    def entries(self) -> Iterator[CatalogEntry]:
        """Enumerate catalog entries.

        Raises:
            CatalogError: If the source as a whole cannot be read
        """
        ...


class StaticCatalog:
    """Catalog backed by an in-process list of definitions.

    Example:
        >>> catalog = StaticCatalog([User, Vehicle, Booking])
        >>> [e.name for e in catalog.entries()]
        ['User', 'Vehicle', 'Booking']
    """

    def __init__(self, entities: Iterable[EntityDef | CatalogEntry]) -> None:
        self._entries: list[CatalogEntry] = []
        for item in entities:
            if isinstance(item, CatalogEntry):
                self._entries.append(item)
            else:
                self._entries.append(CatalogEntry(name=item.name, definition=item, source="static"))

    @property
    def label(self) -> str:
        return "static"

    def entries(self) -> Iterator[CatalogEntry]:
        yield from self._entries


class FileCatalog:
    """Catalog backed by a directory of YAML/JSON definition files.

    Files are read in sorted order. Each file is parsed independently; a
    file that fails to parse yields a single error entry named after the
    file stem.

    Example:
        >>> catalog = FileCatalog("catalog/")
        >>> for entry in catalog.entries():
        ...     print(entry.name, entry.ok)
    """

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    @property
    def label(self) -> str:
        return f"file:{self.directory}"

    def entries(self) -> Iterator[CatalogEntry]:
        if not self.directory.is_dir():
            raise CatalogError(f"Catalog directory not found: {self.directory}")

        paths = sorted(
            p for p in self.directory.iterdir() if p.is_file() and p.suffix in CATALOG_SUFFIXES
        )
        logger.debug(f"Scanning {len(paths)} catalog files in {self.directory}")

        for path in paths:
            yield from self._read_file(path)

    def _read_file(self, path: Path) -> Iterator[CatalogEntry]:
        source = str(path)
        try:
            data = _parse_file(path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning(f"Failed to read catalog file {path}: {e}")
            yield CatalogEntry(name=path.stem, definition=None, source=source, error=str(e))
            return

        yield from _entries_from_data(data, source, fallback_name=path.stem)


class ModuleCatalog:
    """Catalog backed by a Python module.

    The module must expose either an `ENTITIES` iterable or a
    `get_entities()` callable returning EntityDef objects or mappings.
    """

    def __init__(self, module_path: str) -> None:
        self.module_path = module_path

    @property
    def label(self) -> str:
        return f"module:{self.module_path}"

    def entries(self) -> Iterator[CatalogEntry]:
        try:
            module = importlib.import_module(self.module_path)
        except ImportError as e:
            raise CatalogError(f"Cannot import catalog module {self.module_path}: {e}") from e

        if hasattr(module, "ENTITIES"):
            items = module.ENTITIES
        elif hasattr(module, "get_entities"):
            items = module.get_entities()
        else:
            raise CatalogError(
                f"Module {self.module_path} has no 'ENTITIES' or 'get_entities()'"
            )

        for index, item in enumerate(items):
            if isinstance(item, EntityDef):
                yield CatalogEntry(name=item.name, definition=item, source=self.module_path)
            else:
                yield from _entries_from_data(
                    item, self.module_path, fallback_name=f"{self.module_path}[{index}]"
                )


def _parse_file(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def _entries_from_data(data: Any, source: str, fallback_name: str) -> Iterator[CatalogEntry]:
    """Turn parsed file content into catalog entries."""
    if isinstance(data, dict) and "entities" in data:
        items = data["entities"]
        if not isinstance(items, list):
            yield CatalogEntry(
                name=fallback_name,
                definition=None,
                source=source,
                error="'entities' must be a list",
            )
            return
    else:
        items = [data]

    for index, item in enumerate(items):
        name = item.get("name") if isinstance(item, dict) else None
        name = name or (fallback_name if len(items) == 1 else f"{fallback_name}[{index}]")
        try:
            definition = EntityDef.from_dict(item)
        except ValueError as e:
            yield CatalogEntry(name=name, definition=None, source=source, error=str(e))
            continue
        yield CatalogEntry(name=definition.name, definition=definition, source=source)


def create_catalog(config: CatalogConfig) -> SchemaCatalog:
    """Factory function to create a catalog source from configuration.

    Args:
        config: Catalog configuration

    Returns:
        ModuleCatalog if a module is configured, FileCatalog otherwise
    """
    if config.module:
        return ModuleCatalog(config.module)
    return FileCatalog(config.path)
