"""
Error types for the document store layer.

Must not import from docquery.schema; the registry imports this module.
"""


class StoreError(Exception):
    """Base exception for document store operations."""

    pass


class StoreConnectionError(StoreError):
    """Connection to the store failed or was lost."""

    pass


class StoreNotConnectedError(StoreConnectionError):
    """Operation attempted before the store connection was opened."""

    pass


class StoreQueryError(StoreError):
    """The store rejected a query (bad operator, bad path, unknown relation)."""

    pass


class DuplicateSchemaError(StoreError):
    """A schema with the same name is already registered with the store."""

    pass
