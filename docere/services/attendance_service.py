from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from docere.config import settings
from docere.core.errors import (
    AlreadyMarked,
    RemoteUnavailable,
    SessionExpired,
    SessionNotOpen,
    ValidationError,
)
from docere.core.remote import remote_call
from docere.core.time_provider import TimeProvider, default_time_provider
from docere.models import ATTENDANCE, CURRENT_KEY, Role, SessionStatus
from docere.services.broadcast import Listener, normalize_date_key, notify, require_text
from docere.services.countdown import Countdown, DisplaySink, StatusView, remaining_seconds
from docere.services.role_service import Identity, RoleDirectory, require_directory
from docere.store.base import (
    SERVER_TIMESTAMP,
    DocumentNotFound,
    DocumentStore,
    PreconditionFailed,
    Snapshot,
    Subscription,
)


logger = logging.getLogger(__name__)

OPEN = SessionStatus.OPEN.value
CLOSED = SessionStatus.CLOSED.value

NOT_OPEN_MESSAGE = 'Attendance is not open!'
EXPIRED_MESSAGE = 'Attendance time has expired!'
ALREADY_MARKED_MESSAGE = 'You have already marked your attendance!'


class AttendanceService:
    """Timed attendance window shared by every connected client.

    ``attendance/current`` points at the active day and carries the authoritative
    ``endTime``; ``attendance/<YYYY-MM-DD>`` holds that day's status and roster.
    Whoever first observes a passed ``endTime`` closes both records, guarded on the
    ``endTime`` it observed so a stale reader never closes a newer session.
    """

    def __init__(
        self,
        store: DocumentStore,
        roles: RoleDirectory | None,
        *,
        time_provider: TimeProvider = default_time_provider,
        display: DisplaySink | None = None,
        default_duration_seconds: int | None = None,
        max_duration_seconds: int | None = None,
    ) -> None:
        self._store = store
        self._roles = require_directory(roles)
        self._time_provider = time_provider
        self._countdown = Countdown(display) if display is not None else None
        self.default_duration_seconds = int(default_duration_seconds or settings.attendance_default_duration_seconds)
        self.max_duration_seconds = int(max_duration_seconds or settings.attendance_max_duration_seconds)

    @property
    def countdown_running(self) -> bool:
        return bool(self._countdown and self._countdown.running)

    def _date_key(self, value: str | date | None) -> str:
        if value is None or (isinstance(value, str) and not value.strip()):
            return self._time_provider.today_key()
        return normalize_date_key(value)

    def _validate_duration(self, duration_seconds: int | None) -> int:
        if duration_seconds is None:
            return self.default_duration_seconds
        if isinstance(duration_seconds, bool):
            raise ValidationError('Duration must be a whole number of seconds')
        try:
            duration = int(duration_seconds)
        except (TypeError, ValueError) as exc:
            raise ValidationError('Duration must be a whole number of seconds') from exc
        if duration != duration_seconds or duration <= 0:
            raise ValidationError('Duration must be a positive whole number of seconds')
        if duration > self.max_duration_seconds:
            raise ValidationError(f'Duration cannot exceed {self.max_duration_seconds} seconds')
        return duration

    def _has_passed(self, end_time: datetime) -> bool:
        return end_time <= self._time_provider.now()

    def _view(self, snapshot: Snapshot) -> tuple[StatusView, datetime | None]:
        """Status derived from the pointer plus the observed endTime when it has already passed."""
        date_key = snapshot.get('date')
        end_time = snapshot.get('endTime')
        if snapshot.get('status') != OPEN or not isinstance(end_time, datetime):
            return StatusView.closed(date_key), None
        now = self._time_provider.now()
        if end_time <= now:
            return StatusView.closed(date_key), end_time
        return (
            StatusView(
                is_open=True,
                remaining_seconds=remaining_seconds(end_time, now),
                date=date_key,
                end_time=end_time,
            ),
            None,
        )

    async def open_session(self, duration_seconds: int | None = None, actor: Identity | None = None) -> StatusView:
        actor = await self._roles.require_role(actor, Role.TEACHER, action='open attendance')
        duration = self._validate_duration(duration_seconds)
        now = self._time_provider.now()
        date_key = self._time_provider.today_key()
        end_time = now + timedelta(seconds=duration)

        with remote_call('open attendance'):
            previous = await self._store.get(ATTENDANCE, CURRENT_KEY)
            await self._store.set(
                ATTENDANCE,
                CURRENT_KEY,
                {'date': date_key, 'status': OPEN, 'endTime': end_time, 'timestamp': SERVER_TIMESTAMP},
            )
            await self._store.set(
                ATTENDANCE,
                date_key,
                {'status': OPEN, 'endTime': end_time, 'students': [], 'timestamp': SERVER_TIMESTAMP},
                merge=True,
            )
            previous_date = previous.get('date')
            if previous.get('status') == OPEN and previous_date and previous_date != date_key:
                await self._store.set(
                    ATTENDANCE,
                    previous_date,
                    {'status': CLOSED, 'timestamp': SERVER_TIMESTAMP},
                    merge=True,
                )

        if self._countdown is not None:
            self._countdown.start(end_time, date_key, self._time_provider)
        logger.info(
            'attendance_opened date=%s duration_seconds=%s end_time=%s uid=%s',
            date_key,
            duration,
            end_time.isoformat(),
            actor.uid,
        )
        return StatusView(is_open=True, remaining_seconds=duration, date=date_key, end_time=end_time)

    async def close_session(self, actor: Identity | None = None) -> None:
        """Close the current session. ``actor=None`` is the system path used by expiry and the sweep."""
        if actor is not None:
            await self._roles.require_role(actor, Role.TEACHER, action='close attendance')

        with remote_call('close attendance'):
            pointer = await self._store.get(ATTENDANCE, CURRENT_KEY)
            if not pointer.exists:
                return
            date_key = pointer.get('date') or self._time_provider.today_key()
            fields = {'status': CLOSED, 'timestamp': SERVER_TIMESTAMP}
            await self._store.set(ATTENDANCE, CURRENT_KEY, fields, merge=True)
            await self._store.set(ATTENDANCE, date_key, fields, merge=True)

        if self._countdown is not None:
            self._countdown.stop()
        logger.info('attendance_closed date=%s uid=%s', date_key, actor.uid if actor else 'system')

    async def expire_if_due(self, observed_end_time: datetime | None) -> bool:
        """Close the session whose endTime was observed, if that time has passed.

        Never raises: expiry runs on behalf of whoever happened to notice it.
        """
        if not isinstance(observed_end_time, datetime) or not self._has_passed(observed_end_time):
            return False
        fields = {'status': CLOSED, 'timestamp': SERVER_TIMESTAMP}
        try:
            with remote_call('close expired attendance'):
                pointer = await self._store.get(ATTENDANCE, CURRENT_KEY)
                date_key = pointer.get('date')
                applied = await self._store.compare_and_merge(
                    ATTENDANCE,
                    CURRENT_KEY,
                    {'status': OPEN, 'endTime': observed_end_time},
                    fields,
                )
                if applied and date_key:
                    await self._store.compare_and_merge(
                        ATTENDANCE,
                        date_key,
                        {'endTime': observed_end_time},
                        fields,
                    )
        except RemoteUnavailable:
            logger.warning('attendance_expiry_failed end_time=%s', observed_end_time.isoformat())
            return False

        if applied:
            if self._countdown is not None:
                self._countdown.stop()
            logger.info('attendance_expired date=%s end_time=%s', date_key, observed_end_time.isoformat())
        return applied

    async def mark_present(
        self,
        student_name: str,
        actor: Identity | None = None,
        date: str | date | None = None,
    ) -> list[str]:
        actor = await self._roles.require_role(actor, Role.STUDENT, action='mark attendance')
        name = require_text(student_name, 'Please enter your name')
        date_key = self._date_key(date)

        with remote_call('mark attendance'):
            pointer = await self._store.get(ATTENDANCE, CURRENT_KEY)
        end_time = pointer.get('endTime')
        if pointer.get('status') != OPEN or pointer.get('date') != date_key or not isinstance(end_time, datetime):
            raise SessionNotOpen(NOT_OPEN_MESSAGE)
        if self._has_passed(end_time):
            await self.expire_if_due(end_time)
            raise SessionExpired(EXPIRED_MESSAGE)

        with remote_call('mark attendance'):
            day = await self._store.get(ATTENDANCE, date_key)
        if day.get('status') != OPEN:
            raise SessionNotOpen(NOT_OPEN_MESSAGE)
        day_end = day.get('endTime')
        if isinstance(day_end, datetime) and self._has_passed(day_end):
            await self.expire_if_due(end_time)
            raise SessionExpired(EXPIRED_MESSAGE)
        if name in (day.get('students') or []):
            raise AlreadyMarked(ALREADY_MARKED_MESSAGE)

        try:
            with remote_call('mark attendance'):
                added = await self._store.array_union(
                    ATTENDANCE,
                    date_key,
                    'students',
                    [name],
                    expected={'status': OPEN, 'endTime': day_end},
                )
        except (DocumentNotFound, PreconditionFailed) as exc:
            raise SessionNotOpen(NOT_OPEN_MESSAGE) from exc
        if not added:
            raise AlreadyMarked(ALREADY_MARKED_MESSAGE)

        logger.info('attendance_marked date=%s student=%s uid=%s', date_key, name, actor.uid)
        return added

    async def get_status(self) -> StatusView:
        with remote_call('load attendance status'):
            pointer = await self._store.get(ATTENDANCE, CURRENT_KEY)
        view, expired_end = self._view(pointer)
        if expired_end is not None:
            await self.expire_if_due(expired_end)
        return view

    async def get_attendance(self, date: str | date | None = None) -> dict:
        date_key = self._date_key(date)
        with remote_call('load attendance'):
            day = await self._store.get(ATTENDANCE, date_key)
        end_time = day.get('endTime')
        status = day.get('status') or CLOSED
        if status == OPEN and (not isinstance(end_time, datetime) or self._has_passed(end_time)):
            await self.expire_if_due(end_time)
            status = CLOSED
        return {
            'date': date_key,
            'status': status,
            'students': list(day.get('students') or []),
            'end_time': end_time.isoformat() if isinstance(end_time, datetime) else None,
        }

    async def watch_status(self, callback: Listener) -> Subscription:
        """Deliver a StatusView for every pointer change, starting with the current one.

        A watcher that sees a passed endTime triggers expiry and reports the
        session closed. Once unsubscribed, a watcher has no further side effects.
        """
        handle: list[Subscription] = []

        async def on_pointer(snapshot: Snapshot) -> None:
            if handle and not handle[0].active:
                return
            view, expired_end = self._view(snapshot)
            if expired_end is not None:
                await self.expire_if_due(expired_end)
            if handle and not handle[0].active:
                return
            await notify(callback, view)

        with remote_call('watch attendance status'):
            subscription = await self._store.subscribe(ATTENDANCE, CURRENT_KEY, on_pointer)
        handle.append(subscription)
        return subscription

    async def watch_roster(self, callback: Listener, date: str | date | None = None) -> Subscription:
        date_key = self._date_key(date)

        async def on_day(snapshot: Snapshot) -> None:
            await notify(callback, list(snapshot.get('students') or []))

        with remote_call('watch attendance roster'):
            return await self._store.subscribe(ATTENDANCE, date_key, on_day)

    async def sweep_expired(self) -> bool:
        """Close a session nobody is watching once its endTime has passed."""
        try:
            with remote_call('sweep attendance'):
                pointer = await self._store.get(ATTENDANCE, CURRENT_KEY)
        except RemoteUnavailable:
            logger.warning('attendance_sweep_failed')
            return False
        _, expired_end = self._view(pointer)
        if expired_end is None:
            return False
        return await self.expire_if_due(expired_end)

    def shutdown(self) -> None:
        if self._countdown is not None:
            self._countdown.stop()
