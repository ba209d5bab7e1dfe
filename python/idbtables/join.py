# -*- encoding: utf-8 -*-
"""
join.py - Nested-loop join of exactly two tables.

Both tables are read in full by two independent select() calls (A first,
then B), each in its own read-only transaction, so the pair is not a
consistent snapshot under concurrent writers. Every (a, b) pair is tested:
O(|A| x |B|), no hashing or indexes. Output is outer-major (A) and
inner-minor (B), both in scan order.
"""

from __future__ import annotations

from typing import Any, Callable, Sequence, TypeVar

from . import ui_log
from .connection import Database
from .errors import JoinError, describe
from .records import Record, always, check_callable, select

R = TypeVar("R")
JoinPredicate = Callable[[Record, Record], bool]
Projector = Callable[[Record, Record], R]


async def join(
    db: Database,
    tables: Sequence[str],
    condition: JoinPredicate,
    selector: Projector,
) -> list[Any]:
    """
    Join two tables.

    Args:
        tables: exactly two table names (A, B)
        condition: condition(a, b) -> bool
        selector: selector(a, b) -> output row for matching pairs

    Raises:
        JoinError: wrong table count, a scan failed, or condition/selector
                   raised; no partial result is returned
    """
    check_callable(condition, "condition")
    check_callable(selector, "selector")
    if isinstance(tables, str) or len(tables) != 2:
        raise JoinError(f"join takes exactly two tables, got {tables!r}")
    table_a, table_b = tables

    try:
        rows_a = await select(db, table_a, always)
        rows_b = await select(db, table_b, always)
        joined = [
            selector(a, b) for a in rows_a for b in rows_b if condition(a, b)
        ]
    except Exception as e:
        ui_log.emit(f"{table_a} x {table_b}: {describe(e)}", "fail", op="join")
        raise JoinError(f"Join of '{table_a}' and '{table_b}' failed: {describe(e)}") from e
    ui_log.emit(
        f"{table_a} x {table_b}: {len(joined)} of {len(rows_a) * len(rows_b)} pairs",
        "debug",
        op="join",
    )
    return joined
