"""
Shared fixtures: every test gets a fresh MemoryFactory and a database with
the tables below.

    users   in-line keys (keyPath "id")
    orders  generated keys (autoIncrement)
    notes   out-of-line keys supplied by the caller
    a, b    in-line keys, used by join tests
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from idbtables import MemoryFactory, connect, ui_log


def create_tables(handle):
    handle.createObjectStore("users", {"keyPath": "id"})
    handle.createObjectStore("orders", {"autoIncrement": True})
    handle.createObjectStore("notes")
    handle.createObjectStore("a", {"keyPath": "id"})
    handle.createObjectStore("b", {"keyPath": "bid"})


@pytest.fixture
def factory():
    return MemoryFactory()


@pytest_asyncio.fixture
async def db(factory):
    database = await connect("test_tables", 1, create_tables, factory=factory)
    yield database
    database.close()


@pytest.fixture
def log_entries():
    """Capture ui_log entries for the duration of a test."""
    entries = []
    ui_log.set_sinks(entries.append)
    yield entries
    ui_log.clear_sinks()
