"""
test_memory.py - In-process engine semantics the bridge relies on.
"""

from __future__ import annotations

import asyncio

import pytest

from idbtables import get, insert, select
from idbtables.bridge import Transaction, TransactionMode, await_request
from idbtables.errors import RequestError, TransactionAbortedError
from idbtables.memory import MemoryDOMException


async def test_key_order_across_types(db):
    for key in ["b", 2, [1, "x"], "a", 1.5, b"\x00"]:
        await insert(db, "notes", {"k": repr(key)}, key=key)
    rows = await select(db, "notes")
    assert [r["k"] for r in rows] == [
        "1.5",
        "2",
        "'a'",
        "'b'",
        "b'\\x00'",
        "[1, 'x']",
    ]


async def test_inline_key_generated_and_injected(factory):
    from idbtables import connect

    db = await connect(
        "gen",
        1,
        lambda h: h.createObjectStore("items", {"keyPath": "id", "autoIncrement": True}),
        factory=factory,
    )
    assert await insert(db, "items", {"name": "a"}) == 1
    assert await insert(db, "items", {"id": 10, "name": "b"}) == 10
    assert await insert(db, "items", {"name": "c"}) == 11
    assert await get(db, "items", 11) == {"id": 11, "name": "c"}
    db.close()


async def test_request_after_await_is_inactive(db):
    """Awaiting outside the engine lets the transaction commit."""
    async with Transaction(db.handle, ["users"], TransactionMode.READWRITE) as tx:
        store = tx.objectStore("users")
        await await_request(store.put({"id": 1}))
        await asyncio.sleep(0)
        with pytest.raises(MemoryDOMException) as info:
            store.put({"id": 2})
        assert info.value.name == "TransactionInactiveError"
    assert await select(db, "users") == [{"id": 1}]


async def test_failed_request_rolls_back_transaction(db):
    await insert(db, "users", {"id": 1})
    with pytest.raises(RequestError) as info:
        async with Transaction(db.handle, ["users"], TransactionMode.READWRITE) as tx:
            store = tx.objectStore("users")
            store.put({"id": 2})
            await await_request(store.add({"id": 1}))
    assert info.value.name == "ConstraintError"
    assert await select(db, "users") == [{"id": 1}], "put of id 2 was rolled back"


async def test_explicit_abort(db):
    with pytest.raises(TransactionAbortedError):
        async with Transaction(db.handle, ["users"], TransactionMode.READWRITE) as tx:
            store = tx.objectStore("users")
            await await_request(store.put({"id": 5}), then=lambda _: tx.abort())
    assert await select(db, "users") == []


async def test_prevent_default_keeps_transaction(db):
    await insert(db, "users", {"id": 1})
    async with Transaction(db.handle, ["users"], TransactionMode.READWRITE) as tx:
        store = tx.objectStore("users")
        request = store.add({"id": 1})
        request.onerror = lambda event: event.preventDefault()
        await await_request(store.put({"id": 2}))
    assert [r["id"] for r in await select(db, "users")] == [1, 2]


async def test_readonly_rejects_writes(db):
    async with Transaction(db.handle, ["users"], TransactionMode.READONLY) as tx:
        store = tx.objectStore("users")
        with pytest.raises(MemoryDOMException) as info:
            store.put({"id": 1})
    assert info.value.name == "ReadOnlyError"


async def test_store_outside_scope(db):
    async with Transaction(db.handle, ["users"], TransactionMode.READONLY) as tx:
        with pytest.raises(MemoryDOMException) as info:
            tx.objectStore("orders")
    assert info.value.name == "NotFoundError"


async def test_values_are_cloned_on_read(db):
    await insert(db, "users", {"id": 1, "tags": ["a"]})
    first = await get(db, "users", 1)
    first["tags"].append("mutated")
    assert await get(db, "users", 1) == {"id": 1, "tags": ["a"]}


async def test_uncloneable_value(db):
    from idbtables import InsertError

    with pytest.raises(InsertError, match="DataCloneError"):
        await insert(db, "notes", {"gen": (x for x in ())}, key="g")


async def test_invalid_keys(db):
    from idbtables import InsertError

    for bad in (True, None, float("nan"), {"k": 1}):
        with pytest.raises(InsertError, match="DataError"):
            await insert(db, "users", {"id": bad})


async def test_fault_count_and_store_filter(db, factory):
    factory.inject_fault("getAll", store="orders", count=2)
    assert await select(db, "users") == []
    for _ in range(2):
        with pytest.raises(Exception):
            await select(db, "orders")
    assert await select(db, "orders") == []


async def test_pending_faults_report_remaining_count(db, factory):
    factory.inject_fault("getAll", store="orders", count=2, name="QuotaExceededError")
    assert factory.pending_faults() == [
        {"method": "getAll", "store": "orders", "name": "QuotaExceededError", "count": 2}
    ]
    with pytest.raises(Exception):
        await select(db, "orders")
    assert factory.pending_faults()[0]["count"] == 1
    with pytest.raises(Exception):
        await select(db, "orders")
    assert factory.pending_faults() == []


async def test_open_connections_counts_unclosed_handles(factory, db):
    assert factory.open_connections("test_tables") == 1
    db.close()
    assert factory.open_connections("test_tables") == 0
    assert factory.open_connections("missing") == 0


async def test_create_store_outside_upgrade(db):
    with pytest.raises(MemoryDOMException) as info:
        db.handle.createObjectStore("late")
    assert info.value.name == "InvalidStateError"
