from __future__ import annotations

import json
import logging
from pathlib import Path

from docere.config import settings
from docere.core.errors import ClassroomError
from docere.services.auth_service import register_user
from docere.store.base import DocumentStore


logger = logging.getLogger(__name__)


def load_seed_users(path: str | Path) -> list[dict]:
    """Read ``[{"email", "password", "role", "name"?, "uid"?}, ...]`` or ``{"users": [...]}``."""
    raw = json.loads(Path(path).read_text(encoding='utf-8'))
    users = raw.get('users') if isinstance(raw, dict) else raw
    if not isinstance(users, list):
        raise ValueError('Seed file must contain a list of users')
    return users


async def seed_users(store: DocumentStore, users: list[dict]) -> dict:
    seeded = 0
    skipped = 0
    for entry in users:
        try:
            await register_user(
                store,
                str(entry.get('email') or ''),
                str(entry.get('password') or ''),
                str(entry.get('role') or ''),
                name=str(entry.get('name') or ''),
                uid=entry.get('uid'),
            )
            seeded += 1
        except ClassroomError as exc:
            skipped += 1
            logger.warning('user_seed_skipped email=%s error=%s', entry.get('email'), exc)
    return {'seeded': seeded, 'skipped': skipped}


async def run_bootstrap(store: DocumentStore, seed_file: str | None = None) -> dict:
    path = seed_file if seed_file is not None else settings.users_seed_file
    if not path:
        return {'ran': False, 'reason': 'no_seed_file'}
    result = await seed_users(store, load_seed_users(path))
    logger.info('bootstrap_users_seeded seeded=%s skipped=%s', result['seeded'], result['skipped'])
    return {'ran': True, **result}
