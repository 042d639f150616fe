"""Async realtime facade over the shared document store.

Game components talk to the store only through ``SyncHub``: value
subscriptions with replay, unconditional set/update/remove, atomic
transactions, and connection-bound cleanup that runs when a client
disconnects.
"""

import asyncio
import logging
from collections import defaultdict
from collections.abc import Callable
from typing import Any

from .config import settings
from .errors import ConnectionUnavailable
from .store import DocumentStore, TransactionResult, normalize_path, paths_overlap

logger = logging.getLogger(__name__)

_CLOSED = object()


class Subscription:
    """Async iterator over successive values of one path."""

    def __init__(self, hub: "SyncHub", path: str) -> None:
        self.path = path
        self._hub = hub
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    def push(self, value: Any) -> None:
        if not self._closed:
            self._queue.put_nowait(value)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Any:
        value = await self._queue.get()
        if value is _CLOSED:
            raise StopAsyncIteration
        return value

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_CLOSED)
        await self._hub._unsubscribe(self)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *_exc) -> None:
        await self.close()


class SyncHub:
    """In-process fan-out of store changes plus on-disconnect cleanup registry."""

    def __init__(self, store: DocumentStore, *, max_attempts: int | None = None) -> None:
        self.store = store
        self.connected = True
        self._max_attempts = max_attempts or settings.transaction_max_attempts
        self._subscriptions: list[Subscription] = []
        self._on_disconnect: dict[str, set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    def _call(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            result = fn(*args, **kwargs)
        except ConnectionUnavailable:
            if self.connected:
                logger.warning("store connection lost")
            self.connected = False
            raise
        if not self.connected:
            logger.info("store connection restored")
        self.connected = True
        return result

    async def get(self, path: str) -> Any:
        return self._call(self.store.get, path)

    async def subscribe(self, path: str) -> Subscription:
        """Subscribe to a path; the current value is delivered first."""

        sub = Subscription(self, normalize_path(path))
        async with self._lock:
            self._subscriptions.append(sub)
        sub.push(await self.get(sub.path))
        return sub

    async def _unsubscribe(self, sub: Subscription) -> None:
        async with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    async def _notify(self, path: str) -> None:
        async with self._lock:
            targets = [sub for sub in self._subscriptions if paths_overlap(sub.path, path)]
        values: dict[str, Any] = {}
        for sub in targets:
            if sub.path not in values:
                try:
                    values[sub.path] = await self.get(sub.path)
                except ConnectionUnavailable:
                    logger.warning("cannot refresh subscription path=%s", sub.path)
                    continue
            sub.push(values[sub.path])

    async def set(self, path: str, value: Any) -> None:
        self._call(self.store.put, path, value)
        await self._notify(normalize_path(path))

    async def update(self, path: str, fields: dict[str, Any]) -> None:
        self._call(self.store.merge, path, fields)
        await self._notify(normalize_path(path))

    async def remove(self, path: str) -> None:
        self._call(self.store.delete, path)
        await self._notify(normalize_path(path))

    async def transaction(self, path: str, fn: Callable[[Any], Any]) -> TransactionResult:
        result = self._call(self.store.transact, path, fn, max_attempts=self._max_attempts)
        if result.committed:
            await self._notify(normalize_path(path))
        return result

    def on_disconnect_remove(self, connection_id: str, path: str) -> None:
        """Remove ``path`` once ``connection_id`` disconnects."""

        self._on_disconnect[connection_id].add(normalize_path(path))

    async def disconnect(self, connection_id: str) -> list[str]:
        paths = sorted(self._on_disconnect.pop(connection_id, set()))
        for path in paths:
            try:
                await self.remove(path)
            except ConnectionUnavailable:
                logger.warning("on-disconnect cleanup failed connection=%s path=%s", connection_id, path)
        return paths

    async def disconnect_all(self) -> None:
        for connection_id in list(self._on_disconnect):
            await self.disconnect(connection_id)
