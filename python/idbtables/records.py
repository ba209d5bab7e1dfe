# -*- encoding: utf-8 -*-
"""
records.py - Single-record and full-scan operations.

Each call opens its own transaction on the database handle, issues its
request(s) and converts any engine or callback failure into the operation's
error kind:

    insert  -> InsertError
    select  -> SelectError (also get, count)
    update  -> NotFoundError | UpdateError
    delete  -> DeleteError (also clear)
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from . import ui_log
from .bridge import TransactionMode, key_path, run_request, to_engine
from .connection import Database
from .errors import (
    DeleteError,
    InsertError,
    NotFoundError,
    SelectError,
    UpdateError,
    describe,
)

Record = dict
Predicate = Callable[[Record], bool]


def always(record: Record) -> bool:
    """Predicate matching every record."""
    return True


def check_callable(value: Any, what: str) -> None:
    if not callable(value):
        raise TypeError(f"{what} must be callable, got {type(value).__name__}")


async def scan(db: Database, table: str) -> list[Record]:
    """
    Read every record of a table, in the engine's enumeration order.

    Engine failures propagate unconverted; callers wrap them in their own
    error kind.
    """
    records = await run_request(
        db.handle, table, TransactionMode.READONLY, lambda store: store.getAll()
    )
    return list(records or [])


def _add(store: Any, record: Record, key: Any) -> Any:
    value = to_engine(store, record)
    if key is None:
        return store.add(value)
    return store.add(value, to_engine(store, key))


async def insert(db: Database, table: str, record: Record, key: Any = None) -> Any:
    """
    Add one record. Returns its key (in-line, generated or as stored).

    `key` is only for tables without a key path (out-of-line keys); leave
    it None for in-line or generated keys.

    Raises:
        InsertError: key collision, missing key, missing table or other
                     engine rejection
    """
    try:
        added = await run_request(
            db.handle,
            table,
            TransactionMode.READWRITE,
            lambda store: _add(store, record, key),
        )
    except Exception as e:
        ui_log.emit(f"{table}: {describe(e)}", "fail", op="insert")
        raise InsertError(f"Insert into '{table}' failed: {describe(e)}") from e
    ui_log.emit(f"{table}: added key {added!r}", "debug", op="insert")
    return added


async def select(
    db: Database, table: str, predicate: Optional[Predicate] = None
) -> list[Record]:
    """
    Full scan filtered by predicate, in engine enumeration order.

    Raises:
        SelectError: scan failed or predicate raised
    """
    predicate = always if predicate is None else predicate
    check_callable(predicate, "predicate")
    try:
        records = await scan(db, table)
        selected = [record for record in records if predicate(record)]
    except Exception as e:
        ui_log.emit(f"{table}: {describe(e)}", "fail", op="select")
        raise SelectError(f"Select from '{table}' failed: {describe(e)}") from e
    ui_log.emit(f"{table}: {len(selected)} of {len(records)}", "debug", op="select")
    return selected


async def get(db: Database, table: str, key: Any) -> Optional[Record]:
    """Read one record by key; None when absent."""
    try:
        record = await run_request(
            db.handle,
            table,
            TransactionMode.READONLY,
            lambda store: store.get(to_engine(store, key)),
        )
    except Exception as e:
        ui_log.emit(f"{table}: {describe(e)}", "fail", op="get")
        raise SelectError(f"Get {key!r} from '{table}' failed: {describe(e)}") from e
    ui_log.emit(f"{table}: get {key!r} -> {'hit' if record is not None else 'miss'}", "debug", op="get")
    return record


async def count(db: Database, table: str) -> int:
    """Number of records in a table."""
    try:
        total = await run_request(
            db.handle, table, TransactionMode.READONLY, lambda store: store.count()
        )
    except Exception as e:
        ui_log.emit(f"{table}: {describe(e)}", "fail", op="count")
        raise SelectError(f"Count of '{table}' failed: {describe(e)}") from e
    ui_log.emit(f"{table}: {total} records", "debug", op="count")
    return int(total)


async def update(db: Database, table: str, key: Any, partial: Record) -> Record:
    """
    Merge `partial` into the record at `key` and write it back.

    Fields absent from `partial` are kept (shallow overwrite). The read and
    the write share one read-write transaction: the put is issued from the
    get's success handler.

    Returns:
        the merged record

    Raises:
        NotFoundError: no record at key; nothing is written
        UpdateError: the read or the write failed
    """
    if not isinstance(partial, dict):
        raise TypeError(f"partial must be a dict, got {type(partial).__name__}")
    merged: dict = {}

    def write_back(store, current):
        if current is None:
            raise NotFoundError(
                f"No record with key {key!r} in '{table}'", table=table, key=key
            )
        merged.update(current)
        merged.update(partial)
        value = to_engine(store, merged)
        if key_path(store) is None:
            return store.put(value, to_engine(store, key))
        return store.put(value)

    try:
        await run_request(
            db.handle,
            table,
            TransactionMode.READWRITE,
            lambda store: store.get(to_engine(store, key)),
            then=write_back,
        )
    except NotFoundError:
        ui_log.emit(f"{table}: key {key!r} not found", "fail", op="update")
        raise
    except Exception as e:
        ui_log.emit(f"{table}: {describe(e)}", "fail", op="update")
        raise UpdateError(f"Update of {key!r} in '{table}' failed: {describe(e)}") from e
    ui_log.emit(f"{table}: updated key {key!r}", "debug", op="update")
    return merged


async def delete(db: Database, table: str, key: Any) -> None:
    """
    Delete the record at key. Deleting a missing key succeeds.

    Raises:
        DeleteError: engine failure
    """
    try:
        await run_request(
            db.handle,
            table,
            TransactionMode.READWRITE,
            lambda store: store.delete(to_engine(store, key)),
        )
    except Exception as e:
        ui_log.emit(f"{table}: {describe(e)}", "fail", op="delete")
        raise DeleteError(f"Delete of {key!r} from '{table}' failed: {describe(e)}") from e
    ui_log.emit(f"{table}: deleted key {key!r}", "debug", op="delete")


async def clear(db: Database, table: str) -> None:
    """Delete every record of a table."""
    try:
        await run_request(
            db.handle, table, TransactionMode.READWRITE, lambda store: store.clear()
        )
    except Exception as e:
        ui_log.emit(f"{table}: {describe(e)}", "fail", op="clear")
        raise DeleteError(f"Clear of '{table}' failed: {describe(e)}") from e
    ui_log.emit(f"{table}: cleared", "debug", op="clear")
