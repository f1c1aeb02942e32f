from __future__ import annotations

import logging
from datetime import date, datetime

from docere.core.errors import AlreadySubmitted, DeadlineNotSet
from docere.core.remote import remote_call
from docere.metrics import timed_service
from docere.models import CURRENT_KEY, DEADLINES, SUBMISSIONS, Role
from docere.services.broadcast import Listener, normalize_date_key, notify, require_text, watch_document, watch_query
from docere.services.role_service import Identity, RoleDirectory, require_directory
from docere.store.base import SERVER_TIMESTAMP, DocumentStore, Query, Snapshot, Subscription


logger = logging.getLogger(__name__)


def submission_key(deadline_date: str, student_name: str) -> str:
    return f'{deadline_date}:{student_name}'


def _deadline_from(snapshot: Snapshot) -> dict:
    return {
        'date': snapshot.get('date') or None,
        'description': snapshot.get('description') or '',
    }


def _submission_from(snapshot: Snapshot) -> dict:
    submitted_at = snapshot.get('timestamp')
    return {
        'id': snapshot.key,
        'student_name': snapshot.get('studentName', ''),
        'content': snapshot.get('content', ''),
        'deadline_date': snapshot.get('deadlineDate'),
        'submitted_at': submitted_at.isoformat() if isinstance(submitted_at, datetime) else None,
    }


def _submissions_query(deadline_date: str) -> Query:
    return Query(where=(('deadlineDate', deadline_date),), order_by='timestamp', descending=True)


class SubmissionService:
    """Homework deadline plus one submission per student per deadline."""

    def __init__(self, store: DocumentStore, roles: RoleDirectory | None) -> None:
        self._store = store
        self._roles = require_directory(roles)

    async def set_deadline(self, deadline_date: str | date, actor: Identity | None, description: str = '') -> dict:
        actor = await self._roles.require_role(actor, Role.TEACHER, action='set the deadline')
        date_key = normalize_date_key(deadline_date, 'Please choose a deadline date (YYYY-MM-DD)')
        fields = {'date': date_key, 'description': (description or '').strip(), 'timestamp': SERVER_TIMESTAMP}
        with remote_call('set deadline'):
            await self._store.set(DEADLINES, CURRENT_KEY, fields)
        logger.info('deadline_set date=%s uid=%s', date_key, actor.uid)
        return {'date': date_key, 'description': fields['description']}

    async def get_deadline(self) -> dict:
        with remote_call('load deadline'):
            snapshot = await self._store.get(DEADLINES, CURRENT_KEY)
        return _deadline_from(snapshot)

    async def watch_deadline(self, callback: Listener) -> Subscription:
        return await watch_document(
            self._store, DEADLINES, CURRENT_KEY, callback, _deadline_from, action='watch deadline'
        )

    async def submit_work(self, student_name: str, content: str, actor: Identity | None) -> dict:
        actor = await self._roles.require_role(actor, Role.STUDENT, action='submit work')
        name = require_text(student_name, 'Please enter your name')
        body = require_text(content, 'Please enter your work')

        deadline = await self.get_deadline()
        deadline_date = deadline['date']
        if not deadline_date:
            raise DeadlineNotSet('No deadline set. Please wait for your teacher.')

        key = submission_key(deadline_date, name)
        with remote_call('submit work'):
            created = await self._store.create(
                SUBMISSIONS,
                key,
                {
                    'studentName': name,
                    'content': body,
                    'deadlineDate': deadline_date,
                    'timestamp': SERVER_TIMESTAMP,
                },
            )
        if not created:
            raise AlreadySubmitted('You already submitted.')
        logger.info('work_submitted deadline=%s student=%s uid=%s', deadline_date, name, actor.uid)
        return {'id': key, 'student_name': name, 'deadline_date': deadline_date}

    async def get_submissions(self, deadline_date: str | date | None) -> list[dict]:
        if not deadline_date:
            return []
        date_key = normalize_date_key(deadline_date)
        with remote_call('load submissions'):
            rows = await self._store.query(SUBMISSIONS, _submissions_query(date_key))
        return [_submission_from(row) for row in rows]

    async def watch_submissions(self, deadline_date: str | date | None, callback: Listener) -> Subscription:
        if not deadline_date:
            await notify(callback, [])
            return Subscription.inactive()
        date_key = normalize_date_key(deadline_date)
        return await watch_query(
            self._store,
            SUBMISSIONS,
            _submissions_query(date_key),
            callback,
            _submission_from,
            action='watch submissions',
        )

    @timed_service('submission_board')
    async def submission_board(self, roster: list[str], deadline_date: str | date | None) -> list[dict]:
        """Teacher view: each present student with whether they submitted for the deadline."""
        submitted = {row['student_name'] for row in await self.get_submissions(deadline_date)}
        return [{'student_name': name, 'submitted': name in submitted} for name in roster]
