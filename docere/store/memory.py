from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from docere.core.time_provider import TimeProvider, default_time_provider
from docere.store.base import DocumentStore, Mutator, Snapshot


@dataclass
class _StoredDocument:
    data: dict[str, Any]
    version: int
    update_time: datetime


class MemoryDocumentStore(DocumentStore):
    def __init__(self, time_provider: TimeProvider = default_time_provider) -> None:
        super().__init__(time_provider)
        self._lock = threading.Lock()
        self._collections: dict[str, dict[str, _StoredDocument]] = {}

    def _snapshot(self, collection: str, key: str, item: _StoredDocument | None) -> Snapshot:
        if item is None:
            return Snapshot(collection=collection, key=key, data=None)
        return Snapshot(
            collection=collection,
            key=key,
            data=copy.deepcopy(item.data),
            version=item.version,
            update_time=item.update_time,
        )

    async def _read(self, collection: str, key: str) -> Snapshot:
        with self._lock:
            item = self._collections.get(collection, {}).get(key)
            return self._snapshot(collection, key, item)

    async def _scan(self, collection: str) -> list[Snapshot]:
        with self._lock:
            items = self._collections.get(collection, {})
            return [self._snapshot(collection, key, item) for key, item in items.items()]

    async def _mutate(self, collection: str, key: str, mutator: Mutator) -> tuple[Snapshot, Any, bool]:
        with self._lock:
            documents = self._collections.setdefault(collection, {})
            current = documents.get(key)
            new_data, result = mutator(copy.deepcopy(current.data) if current else None)
            if new_data is None:
                return self._snapshot(collection, key, current), result, False
            stored = _StoredDocument(
                data=copy.deepcopy(new_data),
                version=(current.version if current else 0) + 1,
                update_time=self._time_provider.now(),
            )
            documents[key] = stored
            return self._snapshot(collection, key, stored), result, True

    def clear(self) -> None:
        with self._lock:
            self._collections.clear()
