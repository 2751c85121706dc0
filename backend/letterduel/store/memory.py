"""In-process shared document store.

Models a replicated JSON tree addressed by slash-separated paths. Writers use
``set``/``update``/``remove`` or a compare-and-swap ``transaction``; readers
``subscribe`` to a path and receive full snapshots of it, in commit order,
whenever the value under that path changes.
"""

from __future__ import annotations

import copy
import itertools
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from threading import Lock, RLock
from typing import Any, Callable


logger = logging.getLogger(__name__)

# Placeholder resolved to the store clock at commit time.
SERVER_TIMESTAMP = {".sv": "timestamp"}


class _Abort:
    def __repr__(self) -> str:
        return "ABORT"


ABORT = _Abort()

MAX_TRANSACTION_RETRIES = 25


def now_ms() -> int:
    return int(time.time() * 1000)


def split_path(path: str) -> list[str]:
    return [p for p in (path or "").strip("/").split("/") if p]


def join_path(*parts: str) -> str:
    return "/".join(p.strip("/") for p in parts if p and p.strip("/"))


@dataclass
class TransactionResult:
    committed: bool
    value: Any = None


@dataclass
class _Subscription:
    id: int
    path: list[str]
    callback: Callable[[Any], None]
    active: bool = True
    last_delivered: Any = None
    delivered_once: bool = False


@dataclass
class _DisconnectOp:
    path: str
    fn: Callable[[Any], Any] | None = None


@dataclass
class OnDisconnect:
    """Operations queued to run when a connection drops."""

    store: "MemoryStore"
    connection_id: str
    ops: list[_DisconnectOp] = field(default_factory=list)

    def remove(self, path: str) -> "OnDisconnect":
        self.ops.append(_DisconnectOp(path=path))
        return self

    def transaction(self, path: str, fn: Callable[[Any], Any]) -> "OnDisconnect":
        self.ops.append(_DisconnectOp(path=path, fn=fn))
        return self

    def cancel(self) -> None:
        self.ops.clear()


class MemoryStore:
    def __init__(self, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or now_ms
        self._lock = RLock()
        self._root: dict[str, Any] = {}
        self._subs: dict[int, _Subscription] = {}
        self._sub_ids = itertools.count(1)
        self._queue: deque[tuple[_Subscription, Any]] = deque()
        self._queue_lock = Lock()
        self._draining = False
        self._on_disconnect: dict[str, list[OnDisconnect]] = {}

    # ---- clock -----------------------------------------------------------

    def server_now_ms(self) -> int:
        return int(self._clock())

    def server_time_offset_ms(self, local_now_ms: int) -> int:
        """Offset a client adds to its local clock to approximate server time."""
        return self.server_now_ms() - int(local_now_ms)

    # ---- reads -----------------------------------------------------------

    def get(self, path: str) -> Any:
        with self._lock:
            return copy.deepcopy(self._read(split_path(path)))

    def _read(self, parts: list[str]) -> Any:
        node: Any = self._root
        for p in parts:
            if not isinstance(node, dict) or p not in node:
                return None
            node = node[p]
        return node

    # ---- writes ----------------------------------------------------------

    def set(self, path: str, value: Any) -> None:
        with self._lock:
            self._write(split_path(path), self._resolve(copy.deepcopy(value)))
            self._enqueue_changes()
        self._drain()

    def remove(self, path: str) -> None:
        self.set(path, None)

    def update(self, path: str, fields: dict[str, Any]) -> None:
        """Multi-location update. Keys may be nested relative paths."""
        base = split_path(path)
        with self._lock:
            for key, value in fields.items():
                self._write(base + split_path(key), self._resolve(copy.deepcopy(value)))
            self._enqueue_changes()
        self._drain()

    def transaction(self, path: str, fn: Callable[[Any], Any]) -> TransactionResult:
        """Read-modify-write with compare-and-swap on the value at ``path``.

        ``fn`` receives a private copy of the current value and returns the new
        value, ``None`` to delete, or ``ABORT`` to leave the tree untouched. It
        may be invoked more than once when a concurrent writer wins the race.
        """
        parts = split_path(path)
        for _ in range(MAX_TRANSACTION_RETRIES):
            with self._lock:
                seen = copy.deepcopy(self._read(parts))
            proposed = fn(copy.deepcopy(seen))
            if proposed is ABORT:
                return TransactionResult(committed=False, value=seen)
            with self._lock:
                if self._read(parts) != seen:
                    continue
                self._write(parts, self._resolve(copy.deepcopy(proposed)))
                committed = copy.deepcopy(self._read(parts))
                self._enqueue_changes()
            self._drain()
            return TransactionResult(committed=True, value=committed)

        logger.warning("transaction on %s gave up after %s retries", path, MAX_TRANSACTION_RETRIES)
        with self._lock:
            return TransactionResult(committed=False, value=copy.deepcopy(self._read(parts)))

    def _write(self, parts: list[str], value: Any) -> None:
        if not parts:
            self._root = value if isinstance(value, dict) else {}
            return

        node = self._root
        trail: list[tuple[dict, str]] = []
        for p in parts[:-1]:
            child = node.get(p)
            if not isinstance(child, dict):
                if value is None:
                    return
                child = {}
                node[p] = child
            trail.append((node, p))
            node = child

        leaf = parts[-1]
        if value is None:
            node.pop(leaf, None)
            # Drop parents emptied by the removal.
            for parent, key in reversed(trail):
                if parent[key]:
                    break
                del parent[key]
        else:
            node[leaf] = value

    def _resolve(self, value: Any) -> Any:
        if value == SERVER_TIMESTAMP:
            return self.server_now_ms()
        if isinstance(value, dict):
            return {k: self._resolve(v) for k, v in value.items() if v is not None}
        if isinstance(value, list):
            return [self._resolve(v) for v in value]
        return value

    # ---- subscriptions ---------------------------------------------------

    def subscribe(self, path: str, callback: Callable[[Any], None]) -> Callable[[], None]:
        with self._lock:
            sub = _Subscription(id=next(self._sub_ids), path=split_path(path), callback=callback)
            self._subs[sub.id] = sub
            self._enqueue(sub)
        self._drain()

        def unsubscribe() -> None:
            with self._lock:
                sub.active = False
                self._subs.pop(sub.id, None)

        return unsubscribe

    def _enqueue_changes(self) -> None:
        for sub in list(self._subs.values()):
            self._enqueue(sub)

    def _enqueue(self, sub: _Subscription) -> None:
        value = self._read(sub.path)
        if sub.delivered_once and value == sub.last_delivered:
            return
        snapshot = copy.deepcopy(value)
        sub.last_delivered = copy.deepcopy(value)
        sub.delivered_once = True
        with self._queue_lock:
            self._queue.append((sub, snapshot))

    def _drain(self) -> None:
        with self._queue_lock:
            if self._draining:
                return
            self._draining = True
        while True:
            with self._queue_lock:
                # Cleared under the same lock as the empty check.
                if not self._queue:
                    self._draining = False
                    return
                sub, snapshot = self._queue.popleft()
            if not sub.active:
                continue
            try:
                sub.callback(snapshot)
            except Exception:
                logger.exception("subscriber on /%s failed", "/".join(sub.path))

    # ---- presence --------------------------------------------------------

    def on_disconnect(self, connection_id: str) -> OnDisconnect:
        handle = OnDisconnect(store=self, connection_id=connection_id)
        with self._lock:
            self._on_disconnect.setdefault(connection_id, []).append(handle)
        return handle

    def disconnect(self, connection_id: str) -> None:
        """Run every operation registered for ``connection_id``."""
        with self._lock:
            handles = self._on_disconnect.pop(connection_id, [])

        for handle in handles:
            for op in list(handle.ops):
                if op.fn is None:
                    self.remove(op.path)
                else:
                    self.transaction(op.path, op.fn)
            handle.ops.clear()
