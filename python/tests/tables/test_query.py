"""
test_query.py - where / order_by / limit pipeline.
"""

from __future__ import annotations

import math

import pytest

from idbtables import OrderBy, QueryError, QueryOptions, SortDirection, insert, query


async def _seed(db, rows):
    for row in rows:
        await insert(db, "users", row)


async def test_query_without_options_is_full_scan(db):
    await _seed(db, [{"id": 2}, {"id": 1}])
    assert await query(db, "users") == [{"id": 1}, {"id": 2}]
    assert await query(db, "users", QueryOptions()) == [{"id": 1}, {"id": 2}]


async def test_order_by_ascending(db):
    await _seed(db, [{"id": 1, "age": 40}, {"id": 2, "age": 20}, {"id": 3, "age": 30}])
    rows = await query(db, "users", QueryOptions(order_by="age ASC"))
    ages = [r["age"] for r in rows]
    assert ages == sorted(ages) == [20, 30, 40]


async def test_order_by_descending(db):
    await _seed(db, [{"id": 1, "age": 40}, {"id": 2, "age": 20}, {"id": 3, "age": 30}])
    rows = await query(db, "users", QueryOptions(order_by=OrderBy("age", SortDirection.DESC)))
    assert [r["age"] for r in rows] == [40, 30, 20]


async def test_order_by_is_stable(db):
    await _seed(
        db,
        [
            {"id": 1, "age": 30},
            {"id": 2, "age": 10},
            {"id": 3, "age": 30},
            {"id": 4, "age": 10},
        ],
    )
    rows = await query(db, "users", QueryOptions(order_by="age"))
    assert [r["id"] for r in rows] == [2, 4, 1, 3]
    rows = await query(db, "users", QueryOptions(order_by="age desc"))
    assert [r["id"] for r in rows] == [1, 3, 2, 4]


async def test_order_by_non_numeric_does_not_raise(db):
    """Order is undefined for values that cannot be subtracted, but the query succeeds."""
    await _seed(
        db,
        [
            {"id": 1, "age": "old"},
            {"id": 2},
            {"id": 3, "age": None},
            {"id": 4, "age": math.nan},
            {"id": 5, "age": 3},
        ],
    )
    rows = await query(db, "users", QueryOptions(order_by="age"))
    assert sorted(r["id"] for r in rows) == [1, 2, 3, 4, 5]


async def test_order_by_over_non_record_values(db):
    """Stored values without fields sort as equal instead of failing the query."""
    await insert(db, "notes", "plain", key="k1")
    await insert(db, "notes", "other", key="k2")
    rows = await query(db, "notes", QueryOptions(order_by="n"))
    assert sorted(rows) == ["other", "plain"]


async def test_limit_is_prefix_of_sorted(db):
    await _seed(db, [{"id": i, "score": (i * 7) % 5} for i in range(1, 9)])
    full = await query(db, "users", QueryOptions(order_by="score"))
    limited = await query(db, "users", QueryOptions(order_by="score", limit=3))
    assert limited == full[:3]
    assert len(limited) == 3


async def test_limit_larger_than_table(db):
    await _seed(db, [{"id": 1}, {"id": 2}])
    assert len(await query(db, "users", QueryOptions(limit=10))) == 2


async def test_limit_zero(db):
    await _seed(db, [{"id": 1}])
    assert await query(db, "users", QueryOptions(limit=0)) == []


async def test_where_then_sort_then_limit(db):
    await _seed(
        db,
        [
            {"id": 1, "age": 50, "active": True},
            {"id": 2, "age": 20, "active": False},
            {"id": 3, "age": 35, "active": True},
            {"id": 4, "age": 25, "active": True},
        ],
    )
    options = QueryOptions(where=lambda r: r["active"], order_by="age DESC", limit=2)
    rows = await query(db, "users", options)
    assert [r["id"] for r in rows] == [1, 3]


async def test_where_raising_is_query_error(db):
    await _seed(db, [{"id": 1}])
    with pytest.raises(QueryError):
        await query(db, "users", QueryOptions(where=lambda r: r["missing"]))


async def test_scan_failure_is_query_error(db, factory):
    factory.inject_fault("getAll", store="users")
    with pytest.raises(QueryError, match="users"):
        await query(db, "users", QueryOptions(limit=1))


async def test_missing_table_is_query_error(db):
    with pytest.raises(QueryError):
        await query(db, "nope")


def test_order_by_parse():
    assert OrderBy.parse("age") == OrderBy("age", SortDirection.ASC)
    assert OrderBy.parse("age DESC") == OrderBy("age", SortDirection.DESC)
    with pytest.raises(ValueError):
        OrderBy.parse("age sideways")
    with pytest.raises(ValueError):
        OrderBy.parse("")


def test_query_options_validation():
    with pytest.raises(ValueError):
        QueryOptions(limit=-1)
    with pytest.raises(TypeError):
        QueryOptions(limit=1.5)
    with pytest.raises(TypeError):
        QueryOptions(where="age > 3")
    with pytest.raises(TypeError):
        QueryOptions(order_by=("age", "ASC"))
