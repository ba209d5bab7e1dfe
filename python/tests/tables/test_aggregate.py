"""
test_aggregate.py - SUM / AVG / COUNT / MAX / MIN.
"""

from __future__ import annotations

import math

import pytest

from idbtables import (
    AggregateError,
    AggregateOp,
    InvalidOperationError,
    aggregate,
    insert,
)


async def _seed(db, rows):
    for i, row in enumerate(rows, start=1):
        await insert(db, "users", dict(row, id=i))


async def test_sum_count_max_with_missing_field(db):
    await _seed(db, [{"n": 1}, {"n": 2}, {}])
    assert await aggregate(db, "users", "SUM", "n") == 3
    assert await aggregate(db, "users", "COUNT", "n") == 3
    assert await aggregate(db, "users", "MAX", "n") == 2
    assert await aggregate(db, "users", "MIN", "n") == 1


async def test_avg_divides_by_record_count(db):
    await _seed(db, [{"n": 1}, {"n": 2}, {}])
    assert await aggregate(db, "users", AggregateOp.AVG, "n") == 1.0


async def test_empty_table(db):
    assert math.isnan(await aggregate(db, "users", "AVG", "n"))
    assert await aggregate(db, "users", "SUM", "n") == 0
    assert await aggregate(db, "users", "COUNT", "n") == 0
    assert await aggregate(db, "users", "MAX", "n") == -math.inf
    assert await aggregate(db, "users", "MIN", "n") == math.inf


async def test_all_missing_field(db):
    await _seed(db, [{}, {"other": 5}])
    assert await aggregate(db, "users", "MAX", "n") == -math.inf
    assert await aggregate(db, "users", "MIN", "n") == math.inf
    assert await aggregate(db, "users", "SUM", "n") == 0


async def test_none_counts_as_missing(db):
    await _seed(db, [{"n": None}, {"n": 4}])
    assert await aggregate(db, "users", "SUM", "n") == 4
    assert await aggregate(db, "users", "MIN", "n") == 4


async def test_floats(db):
    await _seed(db, [{"n": 0.5}, {"n": 1.25}])
    assert await aggregate(db, "users", "SUM", "n") == pytest.approx(1.75)
    assert await aggregate(db, "users", "AVG", "n") == pytest.approx(0.875)


async def test_unknown_operation_does_not_touch_store(db, factory):
    factory.inject_fault("getAll")
    with pytest.raises(InvalidOperationError, match="BOGUS"):
        await aggregate(db, "users", "BOGUS", "n")
    with pytest.raises(InvalidOperationError):
        await aggregate(db, "users", "sum", "n")
    # the fault is still pending: no scan was issued
    assert factory.pending_faults() == [
        {"method": "getAll", "store": None, "name": "UnknownError", "count": 1}
    ]


async def test_non_numeric_value(db):
    await _seed(db, [{"n": 1}, {"n": "two"}])
    with pytest.raises(AggregateError, match="non-numeric"):
        await aggregate(db, "users", "SUM", "n")
    assert await aggregate(db, "users", "COUNT", "n") == 2


async def test_scan_failure(db, factory):
    factory.inject_fault("getAll", store="users")
    with pytest.raises(AggregateError):
        await aggregate(db, "users", "COUNT", "n")


async def test_missing_table(db):
    with pytest.raises(AggregateError):
        await aggregate(db, "nope", "SUM", "n")
