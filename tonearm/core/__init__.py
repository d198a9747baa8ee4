"""
Core domain package.

This package contains the library engine: schema, relational store, full-text
index synchronization, import reconciliation and queries. It is independent of
any UI layer (web, CLI).

We intentionally keep exports minimal; consumers should usually import from the
specific module they need (e.g. `tonearm.core.library`). The exception types
live here so every layer can catch them without importing the DB modules.
"""

from __future__ import annotations

__all__: list[str] = [
    "CoreError",
    "ConstraintViolationError",
    "IndexDesyncRiskError",
    "NotFoundError",
    "QueryError",
    "SchemaError",
    "TagReadError",
    "TransactionFailureError",
]


class CoreError(Exception):
    """Base class for core-layer exceptions."""


class NotFoundError(CoreError):
    """Raised when an album or item cannot be found."""


class ConstraintViolationError(CoreError):
    """Raised for a missing required field, a duplicate path or a bad field name."""


class TransactionFailureError(CoreError):
    """Raised when SQLite fails inside a write transaction. The transaction was rolled back."""


class IndexDesyncRiskError(CoreError):
    """
    Raised when the FTS index is touched outside a write transaction.

    This is a programming error: the triggers keep the index in sync, and manual
    re-indexing is only allowed inside `LibraryDb.transaction()`.
    """


class SchemaError(CoreError):
    """Raised when the schema cannot be created or migrated. Fatal at startup."""


class QueryError(CoreError):
    """Raised when a query string cannot be parsed."""


class TagReadError(CoreError):
    """Raised when an audio file's tags cannot be read."""
