from __future__ import annotations

import logging
from contextlib import contextmanager

from docere.core.errors import RemoteUnavailable
from docere.store.base import DocumentStoreError


logger = logging.getLogger(__name__)


@contextmanager
def remote_call(action: str):
    """Translate document store failures into ``RemoteUnavailable`` for the caller."""
    try:
        yield
    except DocumentStoreError as exc:
        logger.warning('remote_call_failed action=%s error=%s', action.replace(' ', '_'), exc)
        raise RemoteUnavailable(f'Failed to {action}. Please try again.') from exc
