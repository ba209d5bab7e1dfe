# -*- encoding: utf-8 -*-
"""
idbtables - Tables, queries, joins and aggregates over IndexedDB.

Runs against the browser's indexedDB under Pyodide/PyScript, or against the
in-process MemoryFactory anywhere else.

Usage:
    from idbtables import connect, insert, query, QueryOptions

    def schema(handle):
        handle.createObjectStore("users", {"keyPath": "id"})

    db = await connect("app", 1, schema)
    await insert(db, "users", {"id": 1, "name": "ada", "age": 36})
    rows = await query(db, "users", QueryOptions(order_by="age DESC", limit=10))
"""

__version__ = "0.1.0"

from .aggregate import AggregateOp, aggregate
from .config import DatabaseConfig
from .connection import Database, connect, delete_database
from .errors import (
    AggregateError,
    ConnectionError,
    DeleteError,
    InsertError,
    InvalidOperationError,
    JoinError,
    NotFoundError,
    QueryError,
    SchemaError,
    SelectError,
    TablesError,
    UpdateError,
)
from .join import join
from .memory import MemoryFactory
from .query import OrderBy, QueryOptions, SortDirection, query
from .records import clear, count, delete, get, insert, select, update
