"""
CLI tools for DocQuery.

- query: Run one query against the configured store
- schemas: Show which catalog entries registered and which failed
- catalog validate: Check catalog definitions offline
"""

from .query_cli import QueryCLI, main

__all__ = ["QueryCLI", "main"]
