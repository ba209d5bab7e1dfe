# -*- encoding: utf-8 -*-
"""
memory.py - In-process engine speaking the IndexedDB request/event contract.

MemoryFactory mirrors the parts of the browser's IDBFactory that idbtables
consumes, so the same bridge code drives either engine:

- open(name, version) fires upgradeneeded / blocked / success / error
- deleteDatabase(name)
- db.transaction(stores, mode) -> objectStore(name) -> add/get/put/delete/
  getAll/count/clear requests completing once via onsuccess / onerror
- createObjectStore / deleteObjectStore inside the upgrade phase

Behaviour kept from IndexedDB:
- Events are delivered from the running asyncio loop, never synchronously
- Transactions auto-commit once they have no pending requests and control
  returns to the loop; requests placed on an inactive transaction raise
  TransactionInactiveError
- Values are structured-cloned (deep copied) on write and on read
- Records enumerate in key order (numbers < strings < bytes < arrays)
- An error event that is not preventDefault()-ed aborts the transaction and
  rolls back its writes; aborting the upgrade rolls back the catalog

Usage:
    factory = MemoryFactory()
    db = await connect("app", 1, schema, factory=factory)
"""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Callable, Optional

from . import ui_log


_MISSING = object()


class MemoryDOMException(Exception):
    """DOMException stand-in carrying the IndexedDB error name."""

    def __init__(self, name: str, message: str = ""):
        super().__init__(message or name)
        self.name = name
        self.message = message or name

    def __str__(self) -> str:
        return f"{self.name}: {self.message}"


class MemoryEvent:
    """Event delivered to on* handlers; target is the request or transaction."""

    def __init__(self, type: str, target: Any, **extra):
        self.type = type
        self.target = target
        self.defaultPrevented = False
        self.oldVersion = extra.get("oldVersion")
        self.newVersion = extra.get("newVersion")

    def preventDefault(self):
        self.defaultPrevented = True


class MemoryStoreNames(list):
    """DOMStringList look-alike."""

    @property
    def length(self) -> int:
        return len(self)

    def contains(self, name: str) -> bool:
        return name in self

    def item(self, index: int) -> Optional[str]:
        return self[index] if 0 <= index < len(self) else None


# =============================================================================
# KEYS
# =============================================================================


def _data_error(message: str) -> MemoryDOMException:
    return MemoryDOMException("DataError", message)


def _normalize_key(key: Any) -> Any:
    """Validate an IndexedDB key and return its hashable form."""
    if isinstance(key, bool) or key is None:
        raise _data_error("The parameter is not a valid key.")
    if isinstance(key, (int, float)):
        if key != key:
            raise _data_error("NaN is not a valid key.")
        return key
    if isinstance(key, str):
        return key
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key)
    if isinstance(key, (list, tuple)):
        return tuple(_normalize_key(part) for part in key)
    raise _data_error(f"Unsupported key type: {type(key).__name__}")


def _key_order(key: Any) -> tuple:
    """Sort key matching IndexedDB's cross-type key ordering."""
    if isinstance(key, (int, float)):
        return (0, key)
    if isinstance(key, str):
        return (2, key)
    if isinstance(key, bytes):
        return (3, key)
    return (4, tuple(_key_order(part) for part in key))


def _public_key(key: Any) -> Any:
    if isinstance(key, tuple):
        return [_public_key(part) for part in key]
    return key


def _extract(value: Any, key_path: str) -> Any:
    current = value
    for part in key_path.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _inject(value: dict, key_path: str, key: Any) -> None:
    parts = key_path.split(".")
    current = value
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = key


# =============================================================================
# STORAGE
# =============================================================================


class _StoreData:
    """Records and key generator of one object store."""

    def __init__(
        self, name: str, key_path: Optional[str] = None, auto_increment: bool = False
    ):
        self.name = name
        self.key_path = key_path
        self.auto_increment = auto_increment
        self.records: dict = {}
        self.current = 1

    def clone(self) -> "_StoreData":
        other = _StoreData(self.name, self.key_path, self.auto_increment)
        other.records = copy.deepcopy(self.records)
        other.current = self.current
        return other

    def restore(self, snapshot: "_StoreData") -> None:
        self.records = snapshot.records
        self.current = snapshot.current

    def ordered(self) -> list:
        return sorted(self.records.items(), key=lambda item: _key_order(item[0]))


class _StoredDatabase:
    def __init__(self, name: str, version: int = 0):
        self.name = name
        self.version = version
        self.stores: dict[str, _StoreData] = {}


def _invoke(handler: Optional[Callable], event: MemoryEvent) -> Optional[Exception]:
    """Call an on* handler; return the exception it raised, if any."""
    if handler is None:
        return None
    try:
        handler(event)
    except Exception as e:
        ui_log.emit(
            f"{event.type} handler raised {type(e).__name__}: {e}", "warn", op="memory"
        )
        return e
    return None


# =============================================================================
# REQUESTS
# =============================================================================


class MemoryRequest:
    """IDBRequest look-alike: completes once with result or error."""

    def __init__(self, source: Any = None, transaction: Any = None):
        self.source = source
        self.transaction = transaction
        self.readyState = "pending"
        self.result = None
        self.error = None
        self.onsuccess = None
        self.onerror = None

    def _fire_success(self, result: Any) -> Optional[Exception]:
        self.readyState = "done"
        self.result = result
        return _invoke(self.onsuccess, MemoryEvent("success", self))

    def _fire_error(self, error: Exception) -> MemoryEvent:
        self.readyState = "done"
        self.error = error
        event = MemoryEvent("error", self)
        _invoke(self.onerror, event)
        return event


class MemoryOpenRequest(MemoryRequest):
    """IDBOpenDBRequest look-alike."""

    def __init__(self, name: str):
        super().__init__()
        self.name = name
        self.onupgradeneeded = None
        self.onblocked = None


# =============================================================================
# TRANSACTIONS
# =============================================================================


class MemoryTransaction:
    """IDBTransaction look-alike with auto-commit and rollback on abort."""

    def __init__(self, db: "MemoryDatabase", scope: list[str], mode: str):
        self.db = db
        self.mode = mode
        self.objectStoreNames = MemoryStoreNames(sorted(scope))
        self.error = None
        self.oncomplete = None
        self.onerror = None
        self.onabort = None
        self._loop = asyncio.get_event_loop()
        self._state = "active"
        self._pending = 0
        self._snapshots: dict[str, _StoreData] = {}
        self._on_finish: list[Callable[[bool], None]] = []
        self._loop.call_soon(self._deactivate)

    @property
    def finished(self) -> bool:
        return self._state == "finished"

    def objectStore(self, name: str) -> "MemoryObjectStore":
        if self.finished:
            raise MemoryDOMException(
                "InvalidStateError", "The transaction has finished."
            )
        if self.mode != "versionchange" and name not in self.objectStoreNames:
            raise MemoryDOMException(
                "NotFoundError", f"Object store '{name}' is not in this transaction."
            )
        data = self.db._stored.stores.get(name)
        if data is None:
            raise MemoryDOMException(
                "NotFoundError", f"Object store '{name}' was not found."
            )
        return MemoryObjectStore(self, data)

    def abort(self):
        if self.finished:
            raise MemoryDOMException(
                "InvalidStateError", "The transaction has already finished."
            )
        self._abort(None)

    def _place(self, source: "MemoryObjectStore", op: Callable[[], Any]) -> MemoryRequest:
        if self._state != "active":
            raise MemoryDOMException(
                "TransactionInactiveError",
                "A request was placed against a transaction which is not active.",
            )
        request = MemoryRequest(source, self)
        self._pending += 1
        self._loop.call_soon(self._execute, request, op)
        return request

    def _touch(self, data: _StoreData) -> None:
        if data.name not in self._snapshots:
            self._snapshots[data.name] = data.clone()

    def _execute(self, request: MemoryRequest, op: Callable[[], Any]) -> None:
        if self.finished:
            request._fire_error(
                MemoryDOMException("AbortError", "The transaction was aborted.")
            )
            return
        try:
            result = op()
        except MemoryDOMException as e:
            self._state = "active"
            event = request._fire_error(e)
            self._pending -= 1
            if not event.defaultPrevented:
                self._abort(e, event)
                return
        else:
            self._state = "active"
            raised = request._fire_success(result)
            self._pending -= 1
            if raised is not None:
                self._abort(
                    MemoryDOMException("AbortError", f"Handler raised: {raised}")
                )
                return
        if not self.finished:
            self._state = "inactive"
            self._maybe_commit()

    def _deactivate(self) -> None:
        if self._state == "active":
            self._state = "inactive"
            self._maybe_commit()

    def _maybe_commit(self) -> None:
        if self._state == "inactive" and self._pending == 0:
            self._loop.call_soon(self._commit)

    def _commit(self) -> None:
        if self._state != "inactive" or self._pending:
            return
        self._state = "finished"
        self._snapshots.clear()
        _invoke(self.oncomplete, MemoryEvent("complete", self))
        for callback in self._on_finish:
            callback(False)

    def _abort(self, error: Optional[Exception], source: Optional[MemoryEvent] = None):
        if self.finished:
            return
        self._state = "finished"
        for name, snapshot in self._snapshots.items():
            data = self.db._stored.stores.get(name)
            if data is not None:
                data.restore(snapshot)
        self._snapshots.clear()
        self.error = error
        if source is not None:
            _invoke(self.onerror, source)
        _invoke(self.onabort, MemoryEvent("abort", self))
        for callback in self._on_finish:
            callback(True)


# =============================================================================
# OBJECT STORES
# =============================================================================


class MemoryObjectStore:
    """IDBObjectStore look-alike bound to one transaction."""

    def __init__(self, transaction: MemoryTransaction, data: _StoreData):
        self.transaction = transaction
        self._data = data

    @property
    def name(self) -> str:
        return self._data.name

    @property
    def keyPath(self) -> Optional[str]:
        return self._data.key_path

    @property
    def autoIncrement(self) -> bool:
        return self._data.auto_increment

    def add(self, value: Any, key: Any = None) -> MemoryRequest:
        return self._write("add", value, key, overwrite=False)

    def put(self, value: Any, key: Any = None) -> MemoryRequest:
        return self._write("put", value, key, overwrite=True)

    def get(self, key: Any) -> MemoryRequest:
        key = _normalize_key(key)

        def op():
            value = self._data.records.get(key, _MISSING)
            return None if value is _MISSING else copy.deepcopy(value)

        return self._request("get", op)

    def delete(self, key: Any) -> MemoryRequest:
        self._check_writable()
        key = _normalize_key(key)

        def op():
            self.transaction._touch(self._data)
            self._data.records.pop(key, None)
            return None

        return self._request("delete", op)

    def getAll(self) -> MemoryRequest:
        def op():
            return [copy.deepcopy(value) for _, value in self._data.ordered()]

        return self._request("getAll", op)

    def count(self) -> MemoryRequest:
        return self._request("count", lambda: len(self._data.records))

    def clear(self) -> MemoryRequest:
        self._check_writable()

        def op():
            self.transaction._touch(self._data)
            self._data.records.clear()
            return None

        return self._request("clear", op)

    def _check_writable(self) -> None:
        if self.transaction.mode == "readonly":
            raise MemoryDOMException(
                "ReadOnlyError", "The transaction is read-only."
            )

    def _effective_key(self, value: Any, key: Any) -> Any:
        """Resolve the record key at call time; None means generate one."""
        data = self._data
        if data.key_path is not None:
            if key is not None:
                raise _data_error(
                    "The object store uses in-line keys and the key parameter was provided."
                )
            found = _extract(value, data.key_path)
            if found is _MISSING:
                if data.auto_increment and isinstance(value, dict):
                    return None
                raise _data_error(
                    "Evaluating the object store's key path did not yield a value."
                )
            return _normalize_key(found)
        if key is None:
            if data.auto_increment:
                return None
            raise _data_error(
                "The object store uses out-of-line keys and has no key generator "
                "and the key parameter was not provided."
            )
        return _normalize_key(key)

    def _write(self, method: str, value: Any, key: Any, overwrite: bool) -> MemoryRequest:
        self._check_writable()
        try:
            value = copy.deepcopy(value)
        except Exception as e:
            raise MemoryDOMException(
                "DataCloneError", f"The value could not be cloned: {e}"
            ) from e
        key = self._effective_key(value, key)
        data = self._data

        def op():
            self.transaction._touch(data)
            effective = key
            if effective is None:
                effective = data.current
                data.current += 1
                if data.key_path is not None:
                    _inject(value, data.key_path, effective)
            elif not overwrite and effective in data.records:
                raise MemoryDOMException(
                    "ConstraintError",
                    f"Key already exists in the object store '{data.name}'.",
                )
            elif data.auto_increment and isinstance(effective, (int, float)):
                data.current = max(data.current, int(effective) + 1)
            data.records[effective] = value
            return _public_key(effective)

        return self._request(method, op)

    def _request(self, method: str, op: Callable[[], Any]) -> MemoryRequest:
        factory = self.transaction.db._factory
        name = self._data.name

        def run():
            fault = factory._take_fault(method, name)
            if fault is not None:
                raise fault
            return op()

        return self.transaction._place(self, run)


# =============================================================================
# DATABASE CONNECTIONS
# =============================================================================


class MemoryDatabase:
    """IDBDatabase look-alike: one open connection."""

    def __init__(self, factory: "MemoryFactory", stored: _StoredDatabase, version: int):
        self.name = stored.name
        self.version = version
        self.onversionchange = None
        self._factory = factory
        self._stored = stored
        self._closed = False
        self._upgrade_tx: Optional[MemoryTransaction] = None

    @property
    def objectStoreNames(self) -> MemoryStoreNames:
        return MemoryStoreNames(sorted(self._stored.stores))

    def _require_upgrade(self) -> MemoryTransaction:
        tx = self._upgrade_tx
        if tx is None or tx.finished:
            raise MemoryDOMException(
                "InvalidStateError",
                "The database is not running a version change transaction.",
            )
        return tx

    def createObjectStore(self, name: str, options: Optional[dict] = None) -> MemoryObjectStore:
        tx = self._require_upgrade()
        options = options or {}
        key_path = options.get("keyPath")
        auto_increment = bool(options.get("autoIncrement", False))
        if key_path is not None and not isinstance(key_path, str):
            raise MemoryDOMException(
                "SyntaxError", f"Unsupported key path: {key_path!r}"
            )
        if name in self._stored.stores:
            raise MemoryDOMException(
                "ConstraintError", f"Object store '{name}' already exists."
            )
        data = _StoreData(name, key_path, auto_increment)
        self._stored.stores[name] = data
        return MemoryObjectStore(tx, data)

    def deleteObjectStore(self, name: str) -> None:
        self._require_upgrade()
        if name not in self._stored.stores:
            raise MemoryDOMException(
                "NotFoundError", f"Object store '{name}' was not found."
            )
        del self._stored.stores[name]

    def transaction(self, store_names: Any, mode: str = "readonly") -> MemoryTransaction:
        if self._closed:
            raise MemoryDOMException(
                "InvalidStateError", "The database connection is closing."
            )
        if self._upgrade_tx is not None and not self._upgrade_tx.finished:
            raise MemoryDOMException(
                "InvalidStateError", "A version change transaction is running."
            )
        if mode not in ("readonly", "readwrite"):
            raise TypeError(f"Invalid transaction mode: {mode!r}")
        names = [store_names] if isinstance(store_names, str) else list(store_names)
        if not names:
            raise MemoryDOMException(
                "InvalidAccessError", "The store name list is empty."
            )
        for name in names:
            if name not in self._stored.stores:
                raise MemoryDOMException(
                    "NotFoundError",
                    f"One of the specified object stores ('{name}') was not found.",
                )
        return MemoryTransaction(self, names, mode)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._factory._release(self)

    def _fire_versionchange(self, old: int, new: Optional[int]) -> None:
        _invoke(
            self.onversionchange,
            MemoryEvent("versionchange", self, oldVersion=old, newVersion=new),
        )


# =============================================================================
# FACTORY
# =============================================================================


class MemoryFactory:
    """
    IDBFactory look-alike holding every database in process memory.

    Databases survive close() and are shared by all connections opened from
    the same factory, so reopen/upgrade flows behave as they do in a browser.
    """

    def __init__(self):
        self._databases: dict[str, _StoredDatabase] = {}
        self._connections: dict[str, list[MemoryDatabase]] = {}
        self._waiting: dict[str, list[Callable[[], None]]] = {}
        self._faults: list[dict] = []

    def databases(self) -> list[dict]:
        return [
            {"name": stored.name, "version": stored.version}
            for stored in sorted(self._databases.values(), key=lambda s: s.name)
        ]

    def inject_fault(
        self,
        method: str,
        *,
        store: Optional[str] = None,
        name: str = "UnknownError",
        message: str = "Injected fault",
        count: int = 1,
    ) -> None:
        """
        Make the next `count` matching requests fail with a DOMException.

        Args:
            method: request kind ("add", "get", "put", "delete", "getAll",
                    "count", "clear", "open", "deleteDatabase")
            store: restrict to one object store (None matches any)
            name: DOMException name carried by the error event
        """
        self._faults.append(
            {
                "method": method,
                "store": store,
                "error": MemoryDOMException(name, message),
                "count": count,
            }
        )

    def pending_faults(self) -> list[dict]:
        """Injected faults not yet consumed, with the requests each has left."""
        return [
            {
                "method": fault["method"],
                "store": fault["store"],
                "name": fault["error"].name,
                "count": fault["count"],
            }
            for fault in self._faults
        ]

    def open_connections(self, name: str) -> int:
        """Number of connections to database `name` that are still open."""
        return len(self._open_connections(name))

    def _take_fault(self, method: str, store: Optional[str]) -> Optional[Exception]:
        for fault in self._faults:
            if fault["method"] != method:
                continue
            if fault["store"] is not None and fault["store"] != store:
                continue
            fault["count"] -= 1
            if fault["count"] <= 0:
                self._faults.remove(fault)
            return fault["error"]
        return None

    def open(self, name: str, version: Optional[int] = None) -> MemoryOpenRequest:
        if version is not None and (
            isinstance(version, bool) or not isinstance(version, int) or version < 1
        ):
            raise TypeError(f"Invalid database version: {version!r}")
        request = MemoryOpenRequest(name)
        asyncio.get_event_loop().call_soon(self._process_open, request, version)
        return request

    def deleteDatabase(self, name: str) -> MemoryOpenRequest:
        request = MemoryOpenRequest(name)
        asyncio.get_event_loop().call_soon(self._process_delete, request)
        return request

    def _open_connections(self, name: str) -> list[MemoryDatabase]:
        return [conn for conn in self._connections.get(name, []) if not conn._closed]

    def _blocked(self, request: MemoryOpenRequest, old: int, new: Optional[int], retry) -> bool:
        """Fire versionchange on open connections; report blocked if any stay open."""
        for conn in self._open_connections(request.name):
            conn._fire_versionchange(old, new)
        if not self._open_connections(request.name):
            return False
        # queued first: the blocked handler may close the last connection
        self._waiting.setdefault(request.name, []).append(retry)
        _invoke(
            request.onblocked,
            MemoryEvent("blocked", request, oldVersion=old, newVersion=new),
        )
        return True

    def _release(self, conn: MemoryDatabase) -> None:
        conns = self._connections.get(conn.name, [])
        if conn in conns:
            conns.remove(conn)
        if not self._open_connections(conn.name):
            loop = asyncio.get_event_loop()
            for retry in self._waiting.pop(conn.name, []):
                loop.call_soon(retry)

    def _process_open(self, request: MemoryOpenRequest, version: Optional[int]) -> None:
        fault = self._take_fault("open", None)
        if fault is not None:
            request._fire_error(fault)
            return
        stored = self._databases.get(request.name)
        old = stored.version if stored is not None else 0
        new = version if version is not None else max(old, 1)
        if new < old:
            request._fire_error(
                MemoryDOMException(
                    "VersionError",
                    f"The requested version ({new}) is less than the existing version ({old}).",
                )
            )
            return
        if new == old:
            conn = MemoryDatabase(self, stored, old)
            self._connections.setdefault(request.name, []).append(conn)
            request._fire_success(conn)
            return
        retry = lambda: self._process_open(request, version)
        if self._blocked(request, old, new, retry):
            return
        self._upgrade(request, stored, old, new)

    def _upgrade(
        self, request: MemoryOpenRequest, stored: Optional[_StoredDatabase], old: int, new: int
    ) -> None:
        created = stored is None
        if created:
            stored = _StoredDatabase(request.name)
            self._databases[request.name] = stored
        snapshot = {name: data.clone() for name, data in stored.stores.items()}
        stored.version = new
        conn = MemoryDatabase(self, stored, new)
        self._connections.setdefault(request.name, []).append(conn)
        tx = MemoryTransaction(conn, list(stored.stores), "versionchange")
        conn._upgrade_tx = tx
        request.result = conn
        request.transaction = tx

        def finished(aborted: bool) -> None:
            request.transaction = None
            conn._upgrade_tx = None
            if not aborted:
                request._fire_success(conn)
                return
            stored.stores = snapshot
            stored.version = old
            if created:
                self._databases.pop(request.name, None)
            conn.version = old
            conn.close()
            request.result = None
            request._fire_error(
                MemoryDOMException(
                    "AbortError", "The version change transaction was aborted."
                )
            )

        tx._on_finish.append(finished)
        raised = _invoke(
            request.onupgradeneeded,
            MemoryEvent("upgradeneeded", request, oldVersion=old, newVersion=new),
        )
        if raised is not None and not tx.finished:
            tx._abort(MemoryDOMException("AbortError", str(raised)))

    def _process_delete(self, request: MemoryOpenRequest) -> None:
        fault = self._take_fault("deleteDatabase", None)
        if fault is not None:
            request._fire_error(fault)
            return
        stored = self._databases.get(request.name)
        old = stored.version if stored is not None else 0
        retry = lambda: self._process_delete(request)
        if self._blocked(request, old, None, retry):
            return
        self._databases.pop(request.name, None)
        request._fire_success(None)
