from datetime import datetime
from enum import Enum

from sqlalchemy import DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from docere.db import Base


class Role(str, Enum):
    TEACHER = 'teacher'
    STUDENT = 'student'
    PARENT = 'parent'


class SessionStatus(str, Enum):
    OPEN = 'open'
    CLOSED = 'closed'


ATTENDANCE = 'attendance'
USERS = 'users'
DEADLINES = 'deadlines'
SUBMISSIONS = 'submissions'
NOTICES = 'notices'
PARENT_MESSAGES = 'parentMessages'
PARENT_REPLIES = 'parentReplies'
CLASS_INFO = 'classInfo'

CURRENT_KEY = 'current'
LATEST_KEY = 'latest'


class Document(Base):
    __tablename__ = 'documents'
    __table_args__ = (
        UniqueConstraint('collection', 'doc_key', name='uq_documents_collection_key'),
        Index('ix_documents_collection', 'collection'),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    collection: Mapped[str] = mapped_column(String(80))
    doc_key: Mapped[str] = mapped_column(String(255))
    data_json: Mapped[str] = mapped_column(Text, default='{}')
    version: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime)
    updated_at: Mapped[datetime] = mapped_column(DateTime, index=True)
