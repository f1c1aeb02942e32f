from __future__ import annotations

import logging
from datetime import datetime

from docere.config import settings
from docere.core.errors import RecordNotFound
from docere.core.remote import remote_call
from docere.models import LATEST_KEY, PARENT_MESSAGES, PARENT_REPLIES, Role
from docere.services.broadcast import Listener, require_text, watch_document, watch_query
from docere.services.role_service import Identity, RoleDirectory, require_directory
from docere.store.base import SERVER_TIMESTAMP, DocumentNotFound, DocumentStore, Query, Snapshot, Subscription


logger = logging.getLogger(__name__)

DEFAULT_REPLY = 'No reply'


def _message_from(snapshot: Snapshot) -> dict:
    sent_at = snapshot.get('timestamp')
    return {
        'id': snapshot.key,
        'child_name': snapshot.get('childName', ''),
        'message': snapshot.get('message', ''),
        'read': bool(snapshot.get('read', False)),
        'sent_at': sent_at.isoformat() if isinstance(sent_at, datetime) else None,
    }


def _reply_text(snapshot: Snapshot) -> str:
    return snapshot.get('reply') or DEFAULT_REPLY


class ParentMessageService:
    """Parents write to the teacher; the teacher answers with a single broadcast reply."""

    def __init__(self, store: DocumentStore, roles: RoleDirectory | None, *, limit: int | None = None) -> None:
        self._store = store
        self._roles = require_directory(roles)
        self.limit = int(limit or settings.parent_messages_limit)

    def _latest(self) -> Query:
        return Query(order_by='timestamp', descending=True, limit=self.limit)

    async def send_message(self, child_name: str, message: str, actor: Identity | None) -> str:
        actor = await self._roles.require_role(actor, Role.PARENT, action='send messages to the teacher')
        child = require_text(child_name, "Please enter your child's name")
        body = require_text(message, 'Please enter a message')
        with remote_call('send message'):
            message_id = await self._store.add(
                PARENT_MESSAGES,
                {
                    'childName': child,
                    'message': body,
                    'senderUid': actor.uid,
                    'read': False,
                    'timestamp': SERVER_TIMESTAMP,
                },
            )
        logger.info('parent_message_sent message_id=%s uid=%s', message_id, actor.uid)
        return message_id

    async def list_messages(self) -> list[dict]:
        with remote_call('load parent messages'):
            rows = await self._store.query(PARENT_MESSAGES, self._latest())
        return [_message_from(row) for row in rows]

    async def watch_messages(self, callback: Listener) -> Subscription:
        return await watch_query(
            self._store,
            PARENT_MESSAGES,
            self._latest(),
            callback,
            _message_from,
            action='watch parent messages',
        )

    async def mark_read(self, message_id: str, actor: Identity | None) -> None:
        actor = await self._roles.require_role(actor, Role.TEACHER, action='mark messages as read')
        try:
            with remote_call('mark message read'):
                await self._store.update(PARENT_MESSAGES, message_id, {'read': True})
        except DocumentNotFound as exc:
            raise RecordNotFound('Message not found') from exc
        logger.info('parent_message_read message_id=%s uid=%s', message_id, actor.uid)

    async def send_reply(self, text: str, actor: Identity | None) -> str:
        actor = await self._roles.require_role(actor, Role.TEACHER, action='reply to parents')
        reply = require_text(text, 'Please enter a reply')
        with remote_call('send reply'):
            await self._store.set(PARENT_REPLIES, LATEST_KEY, {'reply': reply, 'timestamp': SERVER_TIMESTAMP})
        logger.info('parent_reply_sent length=%s uid=%s', len(reply), actor.uid)
        return reply

    async def get_reply(self) -> str:
        with remote_call('load reply'):
            snapshot = await self._store.get(PARENT_REPLIES, LATEST_KEY)
        return _reply_text(snapshot)

    async def watch_reply(self, callback: Listener) -> Subscription:
        return await watch_document(
            self._store, PARENT_REPLIES, LATEST_KEY, callback, _reply_text, action='watch reply'
        )
