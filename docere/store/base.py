from __future__ import annotations

import asyncio
import itertools
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from docere.core.time_provider import TimeProvider, default_time_provider


logger = logging.getLogger(__name__)


class DocumentStoreError(Exception):
    """Transport or backend failure while talking to the document store."""


class DocumentNotFound(LookupError):
    pass


class PreconditionFailed(Exception):
    """A conditional write found the document fields changed."""


class _ServerTimestamp:
    def __repr__(self) -> str:
        return 'SERVER_TIMESTAMP'


# Field values equal to this sentinel are replaced by the store clock on write.
SERVER_TIMESTAMP = _ServerTimestamp()


@dataclass(frozen=True)
class Snapshot:
    collection: str
    key: str
    data: dict[str, Any] | None
    version: int = 0
    update_time: datetime | None = None

    @property
    def exists(self) -> bool:
        return self.data is not None

    def get(self, name: str, default: Any = None) -> Any:
        if self.data is None:
            return default
        return self.data.get(name, default)


@dataclass(frozen=True)
class Query:
    where: tuple[tuple[str, Any], ...] = ()
    order_by: str | None = None
    descending: bool = False
    limit: int | None = None

    def matches(self, data: dict[str, Any] | None) -> bool:
        if data is None:
            return False
        return all(data.get(name) == value for name, value in self.where)

    def apply(self, snapshots: list[Snapshot]) -> list[Snapshot]:
        rows = [snap for snap in snapshots if self.matches(snap.data)]
        if self.order_by:
            order_field = self.order_by
            present = [snap for snap in rows if snap.get(order_field) is not None]
            missing = [snap for snap in rows if snap.get(order_field) is None]
            present.sort(key=lambda snap: snap.get(order_field), reverse=self.descending)
            rows = present + missing
        if self.limit is not None:
            rows = rows[: max(0, int(self.limit))]
        return rows


DocumentCallback = Callable[[Snapshot], Awaitable[None]]
QueryCallback = Callable[[list[Snapshot]], Awaitable[None]]
Mutator = Callable[[dict[str, Any] | None], tuple[dict[str, Any] | None, Any]]


@dataclass
class _Listener:
    id: int
    collection: str
    key: str | None
    callback: Callable[..., Awaitable[None]]
    query: Query | None = None
    active: bool = True
    last_version: int = -1
    lock: threading.Lock = field(default_factory=threading.Lock)

    async def deliver_document(self, snapshot: Snapshot) -> None:
        with self.lock:
            if not self.active or snapshot.version <= self.last_version:
                return
            self.last_version = snapshot.version
        await self.callback(snapshot)

    async def deliver_query(self, rows: list[Snapshot]) -> None:
        if not self.active:
            return
        await self.callback(rows)


class Subscription:
    """Handle returned by subscribe calls. Unsubscribing stops delivery immediately."""

    def __init__(self, store: 'DocumentStore | None', listener: _Listener | None) -> None:
        self._store = store
        self._listener = listener

    @classmethod
    def inactive(cls) -> 'Subscription':
        return cls(None, None)

    @property
    def active(self) -> bool:
        return bool(self._listener and self._listener.active)

    def unsubscribe(self) -> None:
        if self._listener is None or self._store is None:
            return
        with self._listener.lock:
            self._listener.active = False
        self._store._remove_listener(self._listener.id)


class DocumentStore(ABC):
    """Keyed collections of JSON-like documents with change notification."""

    def __init__(self, time_provider: TimeProvider = default_time_provider) -> None:
        self._time_provider = time_provider
        self._listeners: dict[int, _Listener] = {}
        self._listeners_lock = threading.Lock()
        self._listener_ids = itertools.count(1)

    @abstractmethod
    async def _read(self, collection: str, key: str) -> Snapshot:
        raise NotImplementedError

    @abstractmethod
    async def _scan(self, collection: str) -> list[Snapshot]:
        raise NotImplementedError

    @abstractmethod
    async def _mutate(self, collection: str, key: str, mutator: Mutator) -> tuple[Snapshot, Any, bool]:
        """Atomically apply ``mutator`` to one document.

        The mutator receives a private copy of the current data (or None) and
        returns ``(new_data, result)``; ``new_data=None`` leaves the document
        untouched. Returns the resulting snapshot, the mutator result and
        whether a write happened.
        """
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def _resolve(self, fields: dict[str, Any]) -> dict[str, Any]:
        now = self._time_provider.now()
        return {name: (now if value is SERVER_TIMESTAMP else value) for name, value in fields.items()}

    async def _write(self, collection: str, key: str, mutator: Mutator) -> tuple[Snapshot, Any]:
        snapshot, result, changed = await self._mutate(collection, key, mutator)
        if changed:
            await self._notify(snapshot)
        return snapshot, result

    async def get(self, collection: str, key: str) -> Snapshot:
        return await self._read(collection, key)

    async def set(self, collection: str, key: str, data: dict[str, Any], *, merge: bool = False) -> Snapshot:
        fields = self._resolve(data)

        def mutator(current):
            if merge and current is not None:
                return {**current, **fields}, None
            return dict(fields), None

        snapshot, _ = await self._write(collection, key, mutator)
        return snapshot

    async def update(self, collection: str, key: str, fields: dict[str, Any]) -> Snapshot:
        resolved = self._resolve(fields)

        def mutator(current):
            if current is None:
                return None, False
            return {**current, **resolved}, True

        snapshot, found = await self._write(collection, key, mutator)
        if not found:
            raise DocumentNotFound(f'{collection}/{key}')
        return snapshot

    async def create(self, collection: str, key: str, data: dict[str, Any]) -> bool:
        fields = self._resolve(data)

        def mutator(current):
            if current is not None:
                return None, False
            return dict(fields), True

        _, created = await self._write(collection, key, mutator)
        return bool(created)

    async def add(self, collection: str, data: dict[str, Any]) -> str:
        key = uuid.uuid4().hex
        await self.create(collection, key, data)
        return key

    async def array_union(
        self,
        collection: str,
        key: str,
        name: str,
        values: list[Any],
        *,
        expected: dict[str, Any] | None = None,
    ) -> list[Any]:
        """Append values missing from a list field; returns the values actually added.

        With ``expected``, the append only happens while those fields still hold
        the given values, otherwise PreconditionFailed is raised.
        """

        def mutator(current):
            if current is None:
                return None, None
            if expected and any(current.get(field_name) != value for field_name, value in expected.items()):
                return None, PreconditionFailed
            existing = list(current.get(name) or [])
            added = []
            for value in values:
                if value not in existing and value not in added:
                    added.append(value)
            if not added:
                return None, []
            return {**current, name: existing + added}, added

        _, added = await self._write(collection, key, mutator)
        if added is None:
            raise DocumentNotFound(f'{collection}/{key}')
        if added is PreconditionFailed:
            raise PreconditionFailed(f'{collection}/{key}')
        return added

    async def compare_and_merge(
        self,
        collection: str,
        key: str,
        expected: dict[str, Any],
        fields: dict[str, Any],
    ) -> bool:
        resolved = self._resolve(fields)

        def mutator(current):
            if current is None:
                return None, False
            if any(current.get(name) != value for name, value in expected.items()):
                return None, False
            return {**current, **resolved}, True

        _, applied = await self._write(collection, key, mutator)
        return bool(applied)

    async def query(self, collection: str, query: Query | None = None) -> list[Snapshot]:
        rows = await self._scan(collection)
        return (query or Query()).apply(rows)

    async def subscribe(self, collection: str, key: str, callback: DocumentCallback) -> Subscription:
        listener = self._add_listener(collection, key, callback)
        subscription = Subscription(self, listener)
        try:
            snapshot = await self._read(collection, key)
        except Exception:
            subscription.unsubscribe()
            raise
        await self._deliver(listener, snapshot)
        return subscription

    async def subscribe_query(
        self,
        collection: str,
        callback: QueryCallback,
        query: Query | None = None,
    ) -> Subscription:
        listener = self._add_listener(collection, None, callback, query=query or Query())
        subscription = Subscription(self, listener)
        try:
            rows = await self.query(collection, listener.query)
        except Exception:
            subscription.unsubscribe()
            raise
        await self._deliver(listener, rows)
        return subscription

    def _add_listener(
        self,
        collection: str,
        key: str | None,
        callback: Callable[..., Awaitable[None]],
        *,
        query: Query | None = None,
    ) -> _Listener:
        listener = _Listener(
            id=next(self._listener_ids),
            collection=collection,
            key=key,
            callback=callback,
            query=query,
        )
        with self._listeners_lock:
            self._listeners[listener.id] = listener
        return listener

    def _remove_listener(self, listener_id: int) -> None:
        with self._listeners_lock:
            self._listeners.pop(listener_id, None)

    def listener_count(self) -> int:
        with self._listeners_lock:
            return len(self._listeners)

    async def _deliver(self, listener: _Listener, payload: Any) -> None:
        try:
            if listener.key is None:
                await listener.deliver_query(payload)
            else:
                await listener.deliver_document(payload)
        except Exception:
            logger.exception(
                'listener_delivery_failed collection=%s key=%s listener_id=%s',
                listener.collection,
                listener.key,
                listener.id,
            )

    async def _notify(self, snapshot: Snapshot) -> None:
        with self._listeners_lock:
            targets = [
                listener
                for listener in self._listeners.values()
                if listener.collection == snapshot.collection and listener.key in (None, snapshot.key)
            ]
        if not targets:
            return
        deliveries = []
        for listener in targets:
            if listener.key is None:
                deliveries.append(self._deliver_query_refresh(listener))
            else:
                deliveries.append(self._deliver(listener, snapshot))
        await asyncio.gather(*deliveries)

    async def _deliver_query_refresh(self, listener: _Listener) -> None:
        try:
            rows = await self.query(listener.collection, listener.query)
        except DocumentStoreError:
            logger.exception('listener_query_refresh_failed collection=%s listener_id=%s', listener.collection, listener.id)
            return
        await self._deliver(listener, rows)
