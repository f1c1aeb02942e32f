"""Helpers shared by the write-a-record / fan-out-to-listeners services."""
from __future__ import annotations

import inspect
from datetime import date
from typing import Any, Callable

from docere.core.errors import ValidationError
from docere.core.remote import remote_call
from docere.core.time_provider import DATE_FORMAT, parse_date_key
from docere.store.base import DocumentStore, Query, Snapshot, Subscription


Listener = Callable[[Any], Any]


async def notify(callback: Listener, value: Any) -> None:
    result = callback(value)
    if inspect.isawaitable(result):
        await result


def require_text(value: str | None, message: str) -> str:
    text = (value or '').strip()
    if not text:
        raise ValidationError(message)
    return text


def normalize_date_key(value: str | date | None, message: str = 'Date must use YYYY-MM-DD') -> str:
    if isinstance(value, date):
        return value.strftime(DATE_FORMAT)
    text = (value or '').strip()
    if not text:
        raise ValidationError(message)
    try:
        return parse_date_key(text).strftime(DATE_FORMAT)
    except ValueError as exc:
        raise ValidationError(message) from exc


async def watch_document(
    store: DocumentStore,
    collection: str,
    key: str,
    callback: Listener,
    transform: Callable[[Snapshot], Any],
    *,
    action: str,
) -> Subscription:
    async def on_snapshot(snapshot: Snapshot) -> None:
        await notify(callback, transform(snapshot))

    with remote_call(action):
        return await store.subscribe(collection, key, on_snapshot)


async def watch_query(
    store: DocumentStore,
    collection: str,
    query: Query,
    callback: Listener,
    transform: Callable[[Snapshot], Any],
    *,
    action: str,
) -> Subscription:
    async def on_rows(rows: list[Snapshot]) -> None:
        await notify(callback, [transform(row) for row in rows])

    with remote_call(action):
        return await store.subscribe_query(collection, on_rows, query)
