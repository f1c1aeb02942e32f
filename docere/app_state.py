from __future__ import annotations

import logging
from dataclasses import dataclass

from docere.config import Settings, settings
from docere.core.errors import ConfigurationError
from docere.core.time_provider import TimeProvider, default_time_provider
from docere.services.attendance_service import AttendanceService
from docere.services.class_info_service import ClassInfoService
from docere.services.countdown import DisplaySink
from docere.services.notice_service import NoticeService
from docere.services.parent_message_service import ParentMessageService
from docere.services.role_service import RoleDirectory
from docere.services.submission_service import SubmissionService
from docere.store.base import DocumentStore
from docere.store.memory import MemoryDocumentStore
from docere.store.sql import SqlDocumentStore


logger = logging.getLogger(__name__)


@dataclass
class AppContext:
    store: DocumentStore
    roles: RoleDirectory
    attendance: AttendanceService
    submissions: SubmissionService
    notices: NoticeService
    parents: ParentMessageService
    class_info: ClassInfoService
    time_provider: TimeProvider

    async def close(self) -> None:
        self.attendance.shutdown()
        await self.store.close()


_ctx: AppContext | None = None


def build_store(config: Settings, time_provider: TimeProvider) -> DocumentStore:
    backend = (config.store_backend or 'memory').strip().lower()
    if backend == 'memory':
        return MemoryDocumentStore(time_provider)
    if backend == 'sql':
        from docere.db import Base, build_engine, build_session_factory

        engine = build_engine(config.database_url)
        Base.metadata.create_all(bind=engine)
        return SqlDocumentStore(build_session_factory(engine), time_provider)
    raise ConfigurationError(f'Unknown STORE_BACKEND {config.store_backend!r}; expected memory or sql')


def build_context(
    config: Settings | None = None,
    *,
    store: DocumentStore | None = None,
    time_provider: TimeProvider = default_time_provider,
    display: DisplaySink | None = None,
) -> AppContext:
    config = config or settings
    store = store or build_store(config, time_provider)
    roles = RoleDirectory(store)
    attendance = AttendanceService(
        store,
        roles,
        time_provider=time_provider,
        display=display,
        default_duration_seconds=config.attendance_default_duration_seconds,
        max_duration_seconds=config.attendance_max_duration_seconds,
    )
    logger.info('app_context_built backend=%s timezone=%s', type(store).__name__, config.app_timezone)
    return AppContext(
        store=store,
        roles=roles,
        attendance=attendance,
        submissions=SubmissionService(store, roles),
        notices=NoticeService(store, roles),
        parents=ParentMessageService(store, roles, limit=config.parent_messages_limit),
        class_info=ClassInfoService(store, roles, attendance),
        time_provider=time_provider,
    )


def set_context(ctx: AppContext | None) -> None:
    global _ctx
    _ctx = ctx


def get_context() -> AppContext:
    if _ctx is None:
        set_context(build_context())
    return _ctx
