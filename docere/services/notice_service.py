from __future__ import annotations

import logging

from docere.core.remote import remote_call
from docere.models import CURRENT_KEY, NOTICES, Role
from docere.services.broadcast import Listener, require_text, watch_document
from docere.services.role_service import Identity, RoleDirectory, require_directory
from docere.store.base import SERVER_TIMESTAMP, DocumentStore, Snapshot, Subscription


logger = logging.getLogger(__name__)

DEFAULT_NOTICE = 'No notice'


def _notice_text(snapshot: Snapshot) -> str:
    return snapshot.get('text') or DEFAULT_NOTICE


class NoticeService:
    def __init__(self, store: DocumentStore, roles: RoleDirectory | None) -> None:
        self._store = store
        self._roles = require_directory(roles)

    async def post_notice(self, text: str, actor: Identity | None) -> str:
        actor = await self._roles.require_role(actor, Role.TEACHER, action='post notices')
        notice = require_text(text, 'Please enter a notice')
        with remote_call('post notice'):
            await self._store.set(NOTICES, CURRENT_KEY, {'text': notice, 'timestamp': SERVER_TIMESTAMP})
        logger.info('notice_posted length=%s uid=%s', len(notice), actor.uid)
        return notice

    async def get_notice(self) -> str:
        with remote_call('load notice'):
            snapshot = await self._store.get(NOTICES, CURRENT_KEY)
        return _notice_text(snapshot)

    async def watch_notice(self, callback: Listener) -> Subscription:
        return await watch_document(self._store, NOTICES, CURRENT_KEY, callback, _notice_text, action='watch notice')
