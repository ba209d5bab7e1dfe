# -*- encoding: utf-8 -*-
"""
connection.py - Opening, upgrading and closing databases.

connect() drives the open / upgradeneeded / success protocol and returns a
Database object. That object is passed explicitly to every other operation;
nothing is kept in module state.

Usage:
    def schema(handle):
        handle.createObjectStore("users", {"keyPath": "id"})

    db = await connect("app", 1, schema)
    ...
    db.close()
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Optional

from . import ui_log
from .bridge import await_delete, await_open, default_factory, from_engine
from .errors import ConnectionError, SchemaError, UpgradeAbortedError, describe


SchemaCallback = Callable[[Any], None]


@dataclass
class Database:
    """
    An open database.

    Attributes:
        name: database name
        version: schema version the handle was opened at
        handle: engine database handle (IDBDatabase or MemoryDatabase)
        factory: engine factory that opened it
    """

    name: str
    version: int
    handle: Any = None
    factory: Any = None
    closed: bool = False

    @property
    def table_names(self) -> list[str]:
        """Names of the object stores in this database, sorted."""
        names = from_engine(self.handle.objectStoreNames)
        return sorted(str(name) for name in names)

    def has_table(self, table: str) -> bool:
        return table in self.table_names

    def close(self) -> None:
        """Close the handle. Later operations fail with their error kind."""
        if self.closed:
            return
        self.handle.close()
        self.closed = True
        ui_log.emit(f"closed '{self.name}'", "debug", op="close")


def _resolve_factory(factory: Any, name: str) -> Any:
    if factory is not None:
        return factory
    try:
        return default_factory()
    except Exception as e:
        raise ConnectionError(f"Cannot open database '{name}': {e}") from e


async def connect(
    name: str,
    version: int,
    schema: Optional[SchemaCallback] = None,
    *,
    factory: Any = None,
    on_blocked: Optional[Callable[[Any], None]] = None,
) -> Database:
    """
    Open database `name` at `version`.

    When the engine needs an upgrade (first creation or a higher version),
    schema(handle) is called inside the upgrade phase to create or delete
    tables. It is not called when the stored version already matches.

    Args:
        name: database name
        version: positive schema version
        schema: upgrade callback receiving the engine database handle
        factory: engine factory; defaults to the browser's indexedDB
        on_blocked: called when other connections block the upgrade; without
                    it a blocked open fails

    Returns:
        Database

    Raises:
        SchemaError: the schema callback raised; nothing was opened
        ConnectionError: the open request failed or was blocked
    """
    if schema is not None and not callable(schema):
        raise TypeError(f"schema must be callable, got {type(schema).__name__}")
    factory = _resolve_factory(factory, name)

    try:
        handle = await await_open(
            factory, name, version, on_upgrade=schema, on_blocked=on_blocked
        )
    except UpgradeAbortedError as e:
        cause = e.__cause__ if e.__cause__ is not None else e
        ui_log.emit(f"schema callback failed for '{name}': {cause}", "fail", op="connect")
        raise SchemaError(describe(cause)) from cause
    except Exception as e:
        ui_log.emit(f"open '{name}' v{version} failed: {describe(e)}", "fail", op="connect")
        raise ConnectionError(
            f"Failed to open database '{name}' at version {version}: {describe(e)}"
        ) from e

    db = Database(
        name=name,
        version=int(from_engine(handle.version) or version),
        handle=handle,
        factory=factory,
    )
    ui_log.emit(f"opened '{name}' v{db.version}", "debug", op="connect")
    return db


async def delete_database(
    name: str,
    *,
    factory: Any = None,
    on_blocked: Optional[Callable[[Any], None]] = None,
) -> None:
    """
    Delete an entire database.

    WARNING: This is destructive and cannot be undone.

    Open connections block the delete. With on_blocked the call keeps waiting
    for them to close; without it the call fails with ConnectionError and the
    engine finishes the delete once the last connection closes.
    """
    factory = _resolve_factory(factory, name)
    try:
        await await_delete(factory, name, on_blocked=on_blocked)
    except Exception as e:
        ui_log.emit(f"delete '{name}' failed: {describe(e)}", "fail", op="delete_database")
        raise ConnectionError(f"Failed to delete database '{name}': {describe(e)}") from e
    ui_log.emit(f"deleted '{name}'", "debug", op="delete_database")
