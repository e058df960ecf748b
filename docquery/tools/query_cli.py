"""
Query CLI tool for DocQuery.

Runs the same query pipeline the gateway runs, from a shell:
- query: Execute one query and print the envelope (or failure message)
- schemas: Load the catalog and print registered / failed schemas
- catalog validate: Check catalog definitions offline (no store needed)

Usage:
    docquery query --schema Booking --filter '{"status": "confirmed"}' --expand host
    docquery schemas
    docquery catalog validate --catalog catalog/

Invariants:
    - query and schemas use the configured store (STORE_BACKEND etc.)
    - Failures exit non-zero; output on stdout stays machine-parsable JSON
      on success

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from typing import Any, Optional

from ..api.tool import ToolResponse, handle_tool_call, json_default
from ..config import CatalogConfig, ServerConfig
from ..engine.executor import QueryEngine
from ..schema.catalog import CatalogError, SchemaCatalog, create_catalog
from ..schema.registry import SchemaRegistry
from ..store.base import create_document_store
from ..store.errors import StoreError

logger = logging.getLogger(__name__)


class QueryCLI:
    """CLI commands over a configured store and catalog.

    Example:
        >>> cli = QueryCLI(ServerConfig.from_env())
        >>> response = asyncio.run(cli.query({"schemaName": "User", "limit": 5}))
        >>> print(response.text)
    """

    def __init__(self, config: ServerConfig) -> None:
        self.config = config

    async def query(self, arguments: dict[str, Any]) -> ToolResponse:
        """Run one query through the full pipeline.

        Args:
            arguments: Tool-call arguments (schemaName, filter, ...)

        Returns:
            ToolResponse with the envelope or failure message
        """
        store = create_document_store(self.config)
        await store.connect()
        try:
            registry = SchemaRegistry(create_catalog(self.config.catalog), store)
            engine = QueryEngine(registry, store, self.config.query)
            return await handle_tool_call(engine, arguments)
        finally:
            await store.close()

    async def schemas(self) -> dict[str, Any]:
        """Load the catalog into the store and report the outcome.

        Returns:
            Dict with registered schemas, failures and fingerprint
        """
        store = create_document_store(self.config)
        await store.connect()
        try:
            registry = SchemaRegistry(create_catalog(self.config.catalog), store)
            await registry.ensure_loaded()
            return {
                "catalog": registry.catalog_label,
                "fingerprint": registry.fingerprint,
                "registered": registry.registered_names(),
                "failed": registry.failures,
            }
        finally:
            await store.close()

    def validate_catalog(self, catalog: SchemaCatalog) -> list[str]:
        """Validate catalog definitions without touching a store.

        Checks every entry parses, names are unique and relationship
        targets name another entry of the same catalog.

        Returns:
            List of problems (empty if the catalog is valid)
        """
        problems = []
        definitions = {}
        for entry in catalog.entries():
            if not entry.ok or entry.definition is None:
                problems.append(f"{entry.source}: {entry.error}")
                continue
            if entry.definition.name in definitions:
                problems.append(f"{entry.source}: duplicate schema name '{entry.definition.name}'")
                continue
            definitions[entry.definition.name] = entry.definition

        for entity in definitions.values():
            for field_name, target in entity.relationships().items():
                if target not in definitions:
                    problems.append(
                        f"Field '{field_name}' in schema '{entity.name}' "
                        f"references unknown schema '{target}'"
                    )
        return problems


def _json_arg(value: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        raise argparse.ArgumentTypeError(f"invalid JSON: {e}")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="docquery", description="DocQuery query tool")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # query command
    query_parser = subparsers.add_parser("query", help="Execute one query")
    query_parser.add_argument("--schema", "-s", required=True, help="Schema name to query")
    query_parser.add_argument("--filter", "-f", type=_json_arg, default={}, help="Filter as JSON")
    query_parser.add_argument("--projection", "-p", type=_json_arg, help="Projection as JSON")
    query_parser.add_argument("--sort", type=_json_arg, help="Sort as JSON")
    query_parser.add_argument("--limit", "-l", type=int, help="Page size (default 100, max 1000)")
    query_parser.add_argument("--skip", type=int, help="Documents to skip")
    query_parser.add_argument(
        "--expand", "-e", action="append", default=[], help="Relationship field to expand (repeatable)"
    )
    _add_catalog_args(query_parser)

    # schemas command
    schemas_parser = subparsers.add_parser("schemas", help="Show registered and failed schemas")
    _add_catalog_args(schemas_parser)

    # catalog validate command
    catalog_parser = subparsers.add_parser("catalog", help="Catalog maintenance")
    catalog_sub = catalog_parser.add_subparsers(dest="catalog_command", required=True)
    validate_parser = catalog_sub.add_parser("validate", help="Validate catalog definitions")
    _add_catalog_args(validate_parser)

    return parser


def _add_catalog_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--catalog", help="Catalog directory (overrides CATALOG_PATH)")
    parser.add_argument("--module", help="Python module with ENTITIES (overrides CATALOG_MODULE)")


def _apply_catalog_args(config: ServerConfig, args: argparse.Namespace) -> None:
    if args.module:
        config.catalog = CatalogConfig(path=config.catalog.path, module=args.module)
    elif args.catalog:
        config.catalog = dataclasses.replace(config.catalog, path=args.catalog, module=None)


def main(argv: Optional[list[str]] = None) -> None:
    """CLI entry point for the query tool."""
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        config = ServerConfig.from_env()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    _apply_catalog_args(config, args)
    cli = QueryCLI(config)

    if args.command == "query":
        arguments = {
            "schemaName": args.schema,
            "filter": args.filter,
            "projection": args.projection,
            "sort": args.sort,
            "limit": args.limit,
            "skip": args.skip,
            "expand": args.expand,
        }
        try:
            response = asyncio.run(cli.query(arguments))
        except StoreError as e:
            print(f"Store error: {e}", file=sys.stderr)
            sys.exit(1)

        if response.is_error:
            print(response.text, file=sys.stderr)
            sys.exit(1)
        print(response.text)
        sys.exit(0)

    elif args.command == "schemas":
        try:
            report = asyncio.run(cli.schemas())
        except (StoreError, CatalogError) as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)
        print(json.dumps(report, indent=2, default=json_default))
        sys.exit(0)

    elif args.command == "catalog":
        try:
            problems = cli.validate_catalog(create_catalog(config.catalog))
        except CatalogError as e:
            print(f"Error: {e}", file=sys.stderr)
            sys.exit(1)

        if not problems:
            print("Catalog is valid")
            sys.exit(0)
        else:
            print(f"Catalog validation failed with {len(problems)} error(s):")
            for problem in problems:
                print(f"  - {problem}")
            sys.exit(1)


if __name__ == "__main__":
    main()
