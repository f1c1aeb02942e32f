from __future__ import annotations

import logging
from datetime import date

from docere.core.remote import remote_call
from docere.metrics import timed_service
from docere.models import CLASS_INFO, CURRENT_KEY, Role
from docere.services.attendance_service import AttendanceService
from docere.services.broadcast import Listener, require_text, watch_document
from docere.services.role_service import Identity, RoleDirectory, require_directory
from docere.store.base import SERVER_TIMESTAMP, DocumentStore, Snapshot, Subscription


logger = logging.getLogger(__name__)


def parse_strength(value) -> int:
    """Class strength as entered on the dashboard; anything non-numeric counts as 0."""
    if isinstance(value, bool):
        return 0
    try:
        strength = int(str(value).strip())
    except (TypeError, ValueError):
        return 0
    return max(0, strength)


def _class_info_from(snapshot: Snapshot) -> dict:
    return {
        'class_name': snapshot.get('className') or '',
        'strength': parse_strength(snapshot.get('strength', 0)),
    }


class ClassInfoService:
    def __init__(
        self,
        store: DocumentStore,
        roles: RoleDirectory | None,
        attendance: AttendanceService,
    ) -> None:
        self._store = store
        self._roles = require_directory(roles)
        self._attendance = attendance

    async def update_class_info(self, class_name: str, strength, actor: Identity | None) -> dict:
        actor = await self._roles.require_role(actor, Role.TEACHER, action='update class info')
        name = require_text(class_name, 'Please enter the class name')
        total = parse_strength(strength)
        with remote_call('update class info'):
            await self._store.set(
                CLASS_INFO,
                CURRENT_KEY,
                {'className': name, 'strength': total, 'timestamp': SERVER_TIMESTAMP},
            )
        logger.info('class_info_updated class_name=%s strength=%s uid=%s', name, total, actor.uid)
        return {'class_name': name, 'strength': total}

    async def get_class_info(self) -> dict:
        with remote_call('load class info'):
            snapshot = await self._store.get(CLASS_INFO, CURRENT_KEY)
        return _class_info_from(snapshot)

    async def watch_class_info(self, callback: Listener) -> Subscription:
        return await watch_document(
            self._store, CLASS_INFO, CURRENT_KEY, callback, _class_info_from, action='watch class info'
        )

    @timed_service('attendance_summary')
    async def attendance_summary(self, date: str | date | None = None) -> dict:
        info = await self.get_class_info()
        record = await self._attendance.get_attendance(date)
        present = len(record['students'])
        total = info['strength']
        return {
            'class_name': info['class_name'],
            'date': record['date'],
            'total': total,
            'present': present,
            'absent': max(0, total - present),
            'students': record['students'],
        }
