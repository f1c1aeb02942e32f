from __future__ import annotations

import logging
from dataclasses import dataclass

from docere.core.errors import ConfigurationError, Unauthenticated, Unauthorized
from docere.core.remote import remote_call
from docere.models import USERS, Role
from docere.store.base import DocumentStore


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    uid: str


class RoleDirectory:
    """Looks up the role tag stored on ``users/<uid>``. No caching: role changes apply on the next lookup."""

    def __init__(self, store: DocumentStore) -> None:
        self._store = store

    async def role_for(self, identity: Identity) -> Role | None:
        with remote_call('look up user role'):
            snapshot = await self._store.get(USERS, identity.uid)
        raw = str(snapshot.get('role') or '').strip().lower()
        try:
            return Role(raw)
        except ValueError:
            return None

    async def require_role(self, actor: Identity | None, role: Role, *, action: str) -> Identity:
        if actor is None or not actor.uid:
            raise Unauthenticated(f'You must be logged in to {action}.')
        actual = await self.role_for(actor)
        if actual != role:
            logger.warning(
                'role_check_denied uid=%s required=%s actual=%s action=%s',
                actor.uid,
                role.value,
                actual.value if actual else None,
                action.replace(' ', '_'),
            )
            raise Unauthorized(f'Only {role.value}s can {action}.')
        return actor


def require_directory(roles: RoleDirectory | None) -> RoleDirectory:
    if roles is None:
        raise ConfigurationError('A RoleDirectory is required; role checks cannot be skipped')
    return roles
