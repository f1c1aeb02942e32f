from __future__ import annotations

import asyncio
import json
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from docere.core.time_provider import TimeProvider, default_time_provider, ensure_aware
from docere.models import Document
from docere.store.base import DocumentStore, DocumentStoreError, Mutator, Snapshot


logger = logging.getLogger(__name__)

_DATETIME_TAG = '$datetime'


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return {_DATETIME_TAG: ensure_aware(value).isoformat()}
    raise TypeError(f'Unsupported document value: {type(value).__name__}')


def _json_object_hook(obj: dict[str, Any]) -> Any:
    if len(obj) == 1 and _DATETIME_TAG in obj:
        return datetime.fromisoformat(obj[_DATETIME_TAG])
    return obj


def encode_document(data: dict[str, Any]) -> str:
    return json.dumps(data, default=_json_default, separators=(',', ':'))


def decode_document(raw: str | None) -> dict[str, Any]:
    if not raw:
        return {}
    return json.loads(raw, object_hook=_json_object_hook)


def _to_utc_naive(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_utc_naive(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


class SqlDocumentStore(DocumentStore):
    """Documents persisted as JSON rows in one SQLAlchemy table.

    SQLAlchemy sessions are blocking, so every call runs in a worker thread.
    Writes are serialised with a process lock and additionally take a row lock
    on dialects that support ``SELECT ... FOR UPDATE``.
    """

    def __init__(self, session_factory: sessionmaker, time_provider: TimeProvider = default_time_provider) -> None:
        super().__init__(time_provider)
        self._session_factory = session_factory
        self._write_lock = threading.Lock()

    @contextmanager
    def _session(self):
        db: Session = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception('document_store_failure error=%s', exc.__class__.__name__)
            raise DocumentStoreError(str(exc)) from exc
        finally:
            db.close()

    @staticmethod
    def _snapshot(collection: str, key: str, row: Document | None) -> Snapshot:
        if row is None:
            return Snapshot(collection=collection, key=key, data=None)
        return Snapshot(
            collection=collection,
            key=key,
            data=decode_document(row.data_json),
            version=int(row.version or 0),
            update_time=_from_utc_naive(row.updated_at),
        )

    def _read_sync(self, collection: str, key: str) -> Snapshot:
        with self._session() as db:
            row = (
                db.query(Document)
                .filter(Document.collection == collection, Document.doc_key == key)
                .first()
            )
            return self._snapshot(collection, key, row)

    def _scan_sync(self, collection: str) -> list[Snapshot]:
        with self._session() as db:
            rows = (
                db.query(Document)
                .filter(Document.collection == collection)
                .order_by(Document.id.asc())
                .all()
            )
            return [self._snapshot(collection, row.doc_key, row) for row in rows]

    def _mutate_sync(self, collection: str, key: str, mutator: Mutator) -> tuple[Snapshot, Any, bool]:
        with self._write_lock, self._session() as db:
            row = (
                db.query(Document)
                .filter(Document.collection == collection, Document.doc_key == key)
                .with_for_update()
                .first()
            )
            current = decode_document(row.data_json) if row is not None else None
            new_data, result = mutator(current)
            if new_data is None:
                return self._snapshot(collection, key, row), result, False

            now = _to_utc_naive(self._time_provider.now())
            if row is None:
                row = Document(collection=collection, doc_key=key, version=0, created_at=now)
                db.add(row)
            row.data_json = encode_document(new_data)
            row.version = int(row.version or 0) + 1
            row.updated_at = now
            db.commit()
            db.refresh(row)
            return self._snapshot(collection, key, row), result, True

    async def _read(self, collection: str, key: str) -> Snapshot:
        return await asyncio.to_thread(self._read_sync, collection, key)

    async def _scan(self, collection: str) -> list[Snapshot]:
        return await asyncio.to_thread(self._scan_sync, collection)

    async def _mutate(self, collection: str, key: str, mutator: Mutator) -> tuple[Snapshot, Any, bool]:
        return await asyncio.to_thread(self._mutate_sync, collection, key, mutator)

    def ping(self) -> None:
        with self._session() as db:
            db.query(Document.id).limit(1).all()
