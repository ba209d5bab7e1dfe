# -*- encoding: utf-8 -*-
"""
bridge.py - Turns the engine's event-based requests into awaitables.

IndexedDB operations return request objects that later fire exactly one of
onsuccess / onerror. Each helper here wraps such a request in a Future that
resolves on the first event; later or duplicate events are ignored.

The same code drives the browser's indexedDB (through Pyodide) and the
in-process MemoryFactory, because both expose the IndexedDB attribute names.

Memory Safety:
- Handlers attached to JS objects are wrapped with create_proxy
- All proxies are detached and destroyed once their request settles
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Callable, Optional

from .errors import (
    DatabaseBlockedError,
    EngineError,
    RequestError,
    TransactionAbortedError,
    UpgradeAbortedError,
)

# Pyodide/PyScript browser environment imports
try:
    from js import Object, indexedDB
    from pyodide.ffi import JsProxy, create_proxy, to_js
except ImportError:
    Object = None
    indexedDB = None
    JsProxy = None
    create_proxy = None
    to_js = None


class TransactionMode(Enum):
    """IndexedDB transaction modes."""

    READONLY = "readonly"
    READWRITE = "readwrite"


def default_factory() -> Any:
    """Return the browser's indexedDB factory."""
    if indexedDB is None:
        raise EngineError(
            "IndexedDB not available - not running in browser environment"
        )
    return indexedDB


def _is_js(obj: Any) -> bool:
    return JsProxy is not None and isinstance(obj, JsProxy)


def _is_js_null(value: Any) -> bool:
    """Return True if value represents JS null/undefined in Pyodide."""
    if value is None:
        return True
    tname = type(value).__name__
    return tname in ("JsNull", "JsUndefined")


def to_engine(target: Any, value: Any) -> Any:
    """Convert a Python record or key for the engine that owns target."""
    if not _is_js(target):
        return value
    if isinstance(value, (dict, list, tuple)):
        return to_js(value, dict_converter=Object.fromEntries)
    return value


def from_engine(value: Any) -> Any:
    """Convert an engine result (JS object/array or Python value) to Python."""
    if _is_js_null(value):
        return None
    if hasattr(value, "to_py"):
        return value.to_py()
    return value


def _bind(target: Any, attr: str, handler: Callable, proxies: list) -> None:
    if _is_js(target):
        handler = create_proxy(handler)
        proxies.append(handler)
    setattr(target, attr, handler)


def _release(bound: list[tuple[Any, str]], proxies: list) -> None:
    """Detach handlers, then destroy their proxies. Safe to call twice."""
    for target, attr in bound:
        setattr(target, attr, None)
    for proxy in proxies:
        proxy.destroy()
    bound.clear()
    proxies.clear()


def _request_error(event: Any, default: str) -> RequestError:
    error = event.target.error
    name = getattr(error, "name", None)
    error_msg = str(error) if not _is_js_null(error) else default
    return RequestError(error_msg, name=name)


async def await_request(
    request: Any, then: Optional[Callable[[Any], Any]] = None
) -> Any:
    """
    Await an engine request; resolve with its (Python-converted) result.

    `then`, when given, runs inside the success handler with the result. It
    may return a follow-up request placed on the same transaction; the
    future then resolves with that request's result instead. Issuing the
    follow-up from the handler keeps the transaction alive, which an await
    between the two requests would not.

    Exceptions raised by `then` fail the future unchanged.
    """
    loop = asyncio.get_event_loop()
    future = loop.create_future()
    bound: list = []
    proxies: list = []

    def attach(req: Any, step: Optional[Callable[[Any], Any]]) -> None:
        def on_success(event):
            if future.done():
                return
            result = from_engine(event.target.result)
            if step is None:
                future.set_result(result)
                return
            try:
                follow = step(result)
            except Exception as e:
                future.set_exception(e)
                return
            if follow is None:
                future.set_result(result)
            else:
                attach(follow, None)

        def on_error(event):
            if not future.done():
                future.set_exception(_request_error(event, "Request error"))

        _bind(req, "onsuccess", on_success, proxies)
        _bind(req, "onerror", on_error, proxies)
        bound.extend([(req, "onsuccess"), (req, "onerror")])

    try:
        attach(request, then)
        return await future
    finally:
        _release(bound, proxies)


class Transaction:
    """
    Async context manager for engine transactions.

    Completion handlers are attached as soon as the transaction is created,
    so a transaction that commits before the body finishes is still observed.
    On a clean exit the context waits for oncomplete (durability); when the
    body raises, the handlers are detached and the engine is left to commit
    or abort on its own.

    Usage:
        async with Transaction(handle, ["users"], TransactionMode.READWRITE) as tx:
            store = tx.objectStore("users")
            await await_request(store.put(record))
    """

    def __init__(
        self,
        handle: Any,
        store_names: list[str],
        mode: TransactionMode = TransactionMode.READONLY,
    ):
        self.handle = handle
        self.store_names = store_names
        self.mode = mode
        self.tx = None
        self._future = None
        self._bound: list = []
        self._proxies: list = []

    async def __aenter__(self) -> Any:
        names = to_engine(self.handle, list(self.store_names))
        self.tx = self.handle.transaction(names, self.mode.value)
        self._future = asyncio.get_event_loop().create_future()
        future = self._future

        def on_complete(event):
            if not future.done():
                future.set_result(True)

        def on_error(event):
            if not future.done():
                future.set_exception(_request_error(event, "Transaction error"))

        def on_abort(event):
            if not future.done():
                future.set_exception(TransactionAbortedError("Transaction aborted"))

        for attr, handler in (
            ("oncomplete", on_complete),
            ("onerror", on_error),
            ("onabort", on_abort),
        ):
            _bind(self.tx, attr, handler, self._proxies)
            self._bound.append((self.tx, attr))
        return self.tx

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        try:
            if exc_type is None:
                await self._future
        finally:
            if not self._future.done():
                self._future.cancel()
            elif not self._future.cancelled():
                self._future.exception()
            _release(self._bound, self._proxies)
        return False


async def run_request(
    handle: Any,
    table: str,
    mode: TransactionMode,
    issue: Callable[[Any], Any],
    then: Optional[Callable[[Any, Any], Any]] = None,
) -> Any:
    """
    Open a transaction on one table, issue one request and await it.

    Args:
        issue: called with the object store, returns the request
        then: optional (store, result) -> follow-up request, see await_request
    """
    async with Transaction(handle, [table], mode) as tx:
        store = tx.objectStore(table)
        step = None if then is None else (lambda result: then(store, result))
        result = await await_request(issue(store), then=step)
    return result


def key_path(store: Any) -> Optional[Any]:
    """The store's key path, or None for out-of-line keys."""
    return from_engine(store.keyPath)


async def await_open(
    factory: Any,
    name: str,
    version: int,
    on_upgrade: Optional[Callable[[Any], None]] = None,
    on_blocked: Optional[Callable[[Any], None]] = None,
) -> Any:
    """
    Open a database and return the engine handle.

    on_upgrade runs synchronously inside upgradeneeded with the handle. If it
    raises, the upgrade transaction is aborted and UpgradeAbortedError is
    raised with the callback's exception as __cause__.

    When another connection blocks the upgrade, on_blocked is called with the
    event and the open keeps waiting; without on_blocked the open fails with
    DatabaseBlockedError.

    A request that fails before the engine settles it keeps its handlers
    until it does: a late upgrade is aborted and a late success handle is
    closed, so no connection or version bump outlives the failed call.
    """
    loop = asyncio.get_event_loop()
    future = loop.create_future()
    bound: list = []
    proxies: list = []
    settled = False

    def on_upgrade_needed(event):
        if future.done():
            event.target.transaction.abort()
            return
        if on_upgrade is None:
            return
        try:
            on_upgrade(event.target.result)
        except Exception as e:
            failure = UpgradeAbortedError(f"Schema upgrade of '{name}' failed: {e}")
            failure.__cause__ = e
            future.set_exception(failure)
            event.target.transaction.abort()

    def on_blocked_handler(event):
        if on_blocked is not None:
            on_blocked(event)
        elif not future.done():
            future.set_exception(
                DatabaseBlockedError(
                    f"Database '{name}' upgrade blocked - close other connections using this database"
                )
            )

    def on_success(event):
        nonlocal settled
        settled = True
        if not future.done():
            future.set_result(event.target.result)
            return
        event.target.result.close()
        loop.call_soon(_release, bound, proxies)

    def on_error(event):
        nonlocal settled
        settled = True
        if not future.done():
            future.set_exception(_request_error(event, "Failed to open database"))
            return
        loop.call_soon(_release, bound, proxies)

    try:
        request = factory.open(name, version)
        for attr, handler in (
            ("onupgradeneeded", on_upgrade_needed),
            ("onblocked", on_blocked_handler),
            ("onsuccess", on_success),
            ("onerror", on_error),
        ):
            _bind(request, attr, handler, proxies)
            bound.append((request, attr))
        return await future
    finally:
        if settled:
            _release(bound, proxies)


async def await_delete(
    factory: Any, name: str, on_blocked: Optional[Callable[[Any], None]] = None
) -> None:
    """
    Delete an entire database.

    Open connections block the delete. on_blocked is called with the event
    and the delete keeps waiting; without it the call fails with
    DatabaseBlockedError. The engine cannot cancel a pending delete, so it
    still completes once the other connections close.
    """
    loop = asyncio.get_event_loop()
    future = loop.create_future()
    bound: list = []
    proxies: list = []
    settled = False

    def on_blocked_handler(event):
        if on_blocked is not None:
            on_blocked(event)
        elif not future.done():
            future.set_exception(
                DatabaseBlockedError(
                    f"Deleting database '{name}' blocked - it completes once other connections close"
                )
            )

    def on_success(event):
        nonlocal settled
        settled = True
        if not future.done():
            future.set_result(None)
            return
        loop.call_soon(_release, bound, proxies)

    def on_error(event):
        nonlocal settled
        settled = True
        if not future.done():
            future.set_exception(_request_error(event, "Failed to delete database"))
            return
        loop.call_soon(_release, bound, proxies)

    try:
        request = factory.deleteDatabase(name)
        for attr, handler in (
            ("onblocked", on_blocked_handler),
            ("onsuccess", on_success),
            ("onerror", on_error),
        ):
            _bind(request, attr, handler, proxies)
            bound.append((request, attr))
        await future
    finally:
        if settled:
            _release(bound, proxies)
