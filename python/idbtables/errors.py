# -*- encoding: utf-8 -*-
"""
errors.py - Error taxonomy for idbtables operations.

Every public operation surfaces exactly one of the classes below. Engine
request failures (RequestError, TransactionAbortedError) stay inside the
bridge layer and are converted at the boundary of the operation that
triggered them.
"""

from __future__ import annotations

from typing import Optional


# =============================================================================
# ENGINE-LEVEL EXCEPTIONS (internal to the bridge)
# =============================================================================


class EngineError(Exception):
    """Base exception for failures reported by the storage engine."""

    pass


class RequestError(EngineError):
    """Request-level error with optional DOMException name."""

    def __init__(self, message: str, *, name: Optional[str] = None):
        super().__init__(message)
        self.name = name


class TransactionAbortedError(EngineError):
    """Transaction was aborted."""

    pass


class DatabaseBlockedError(EngineError):
    """Database upgrade blocked by another open connection."""

    pass


class UpgradeAbortedError(EngineError):
    """Schema callback raised; the upgrade was aborted. __cause__ holds the error."""

    pass


# =============================================================================
# PUBLIC TAXONOMY
# =============================================================================


class TablesError(Exception):
    """Base exception for all idbtables operations."""

    pass


class ConnectionError(TablesError):
    """Database could not be opened (blocked, version conflict, unavailable)."""

    pass


class SchemaError(TablesError):
    """Schema callback raised during the upgrade phase."""

    pass


class InsertError(TablesError):
    """Engine rejected an add."""

    pass


class SelectError(TablesError):
    """Full scan or single read failed."""

    pass


class NotFoundError(TablesError):
    """Update target key does not exist."""

    def __init__(self, message: str, *, table: Optional[str] = None, key=None):
        super().__init__(message)
        self.table = table
        self.key = key


class UpdateError(TablesError):
    """Read or write half of an update failed."""

    pass


class DeleteError(TablesError):
    """Engine rejected a delete or clear."""

    pass


class QueryError(TablesError):
    pass


class JoinError(TablesError):
    pass


class InvalidOperationError(TablesError):
    """Aggregate operation name is not one of SUM, AVG, COUNT, MAX, MIN."""

    pass


class AggregateError(TablesError):
    pass


def describe(exc: BaseException) -> str:
    """Human readable message for an engine or callback failure."""
    name = getattr(exc, "name", None)
    msg = str(exc) or type(exc).__name__
    if isinstance(name, str) and name and name not in msg:
        return f"{name}: {msg}"
    return msg
