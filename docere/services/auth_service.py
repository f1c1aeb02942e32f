from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import secrets
import threading
import uuid
from datetime import timedelta

from docere.config import settings
from docere.core.errors import ValidationError
from docere.core.remote import remote_call
from docere.core.time_provider import TimeProvider, default_time_provider
from docere.models import USERS, Role
from docere.services.role_service import Identity
from docere.store.base import SERVER_TIMESTAMP, DocumentStore, Query, Snapshot


_REVOKED_TOKENS: set[str] = set()
_TOKENS_LOCK = threading.RLock()
logger = logging.getLogger(__name__)


class AuthAuthorizationError(ValueError):
    """Raised when valid credentials belong to an account without a role."""


class InvalidCredentials(ValueError):
    pass


def _normalize_email(email: str) -> str:
    return (email or '').strip().lower()


def _mask_email(email: str) -> str:
    local, _, domain = _normalize_email(email).partition('@')
    if not domain:
        return '***'
    return f'{local[:1]}***@{domain}'


def _hash_password(password: str) -> str:
    if len(password or '') < settings.auth_min_password_length:
        raise ValidationError(f'Password must be at least {settings.auth_min_password_length} characters')
    salt = secrets.token_hex(16)
    iterations = 120000
    derived = hashlib.pbkdf2_hmac('sha256', password.encode('utf-8'), salt.encode('utf-8'), iterations)
    return f'pbkdf2_sha256${iterations}${salt}${derived.hex()}'


def _verify_password(password: str, password_hash: str) -> bool:
    try:
        algo, iter_raw, salt, digest_hex = password_hash.split('$', 3)
        if algo != 'pbkdf2_sha256':
            return False
        iterations = int(iter_raw)
        derived = hashlib.pbkdf2_hmac('sha256', (password or '').encode('utf-8'), salt.encode('utf-8'), iterations).hex()
        return hmac.compare_digest(derived, digest_hex)
    except (AttributeError, ValueError):
        return False


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode('ascii').rstrip('=')


def _b64url_decode(value: str) -> bytes:
    padding = '=' * (-len(value) % 4)
    return base64.urlsafe_b64decode((value + padding).encode('ascii'))


def _encode_jwt(payload: dict) -> str:
    header = {'alg': 'HS256', 'typ': 'JWT'}
    header_part = _b64url_encode(json.dumps(header, separators=(',', ':')).encode('utf-8'))
    payload_part = _b64url_encode(json.dumps(payload, separators=(',', ':')).encode('utf-8'))
    signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    signature = hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()
    signature_part = _b64url_encode(signature)
    return f'{header_part}.{payload_part}.{signature_part}'


def _decode_jwt(token: str) -> dict | None:
    try:
        header_part, payload_part, signature_part = token.split('.')
    except ValueError:
        return None

    signing_input = f'{header_part}.{payload_part}'.encode('ascii')
    expected_signature = hmac.new(settings.auth_secret.encode('utf-8'), signing_input, hashlib.sha256).digest()
    try:
        provided_signature = _b64url_decode(signature_part)
    except ValueError:
        return None
    if not hmac.compare_digest(provided_signature, expected_signature):
        return None

    try:
        payload = json.loads(_b64url_decode(payload_part).decode('utf-8'))
    except (ValueError, json.JSONDecodeError, UnicodeDecodeError):
        return None

    if not isinstance(payload, dict):
        return None
    return payload


async def find_user_by_email(store: DocumentStore, email: str) -> Snapshot | None:
    clean_email = _normalize_email(email)
    if not clean_email:
        return None
    with remote_call('look up user'):
        rows = await store.query(USERS, Query(where=(('email', clean_email),), limit=1))
    return rows[0] if rows else None


async def register_user(
    store: DocumentStore,
    email: str,
    password: str,
    role: str | Role,
    *,
    name: str = '',
    uid: str | None = None,
) -> dict:
    clean_email = _normalize_email(email)
    if '@' not in clean_email:
        raise ValidationError('A valid email address is required')
    try:
        role_value = Role(str(getattr(role, 'value', role) or '').strip().lower()).value
    except ValueError as exc:
        raise ValidationError('Role must be one of: teacher, student, parent') from exc
    password_hash = _hash_password(password)

    existing = await find_user_by_email(store, clean_email)
    user_id = existing.key if existing else (uid or uuid.uuid4().hex)
    fields = {
        'email': clean_email,
        'name': (name or '').strip() or clean_email,
        'role': role_value,
        'passwordHash': password_hash,
    }
    with remote_call('save user'):
        if existing:
            await store.set(USERS, user_id, fields, merge=True)
        else:
            await store.set(USERS, user_id, {**fields, 'createdAt': SERVER_TIMESTAMP})
    logger.info('auth_user_registered email=%s role=%s', _mask_email(clean_email), role_value)
    return {'uid': user_id, 'email': clean_email, 'role': role_value, 'name': fields['name']}


async def get_user_data(store: DocumentStore, uid: str) -> dict | None:
    with remote_call('load user'):
        snapshot = await store.get(USERS, uid)
    if not snapshot.exists:
        return None
    return {
        'uid': snapshot.key,
        'email': snapshot.get('email', ''),
        'name': snapshot.get('name', ''),
        'role': snapshot.get('role'),
    }


def _issue_session_token(uid: str, role: str, *, time_provider: TimeProvider) -> dict:
    now = time_provider.now()
    expires_at = now + timedelta(hours=settings.auth_session_expiry_hours)
    token = _encode_jwt(
        {
            'sub': uid,
            'role': role,
            'iat': int(now.timestamp()),
            'exp': int(expires_at.timestamp()),
        }
    )
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.discard(token)
    return {'token': token, 'uid': uid, 'role': role, 'expires_at': expires_at.isoformat()}


async def login(
    store: DocumentStore,
    email: str,
    password: str,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> dict:
    user = await find_user_by_email(store, email)
    if not user or not _verify_password(password, str(user.get('passwordHash') or '')):
        logger.warning('auth_login_failed email=%s', _mask_email(email))
        raise InvalidCredentials('Login failed. Please check your credentials.')

    role = str(user.get('role') or '').strip().lower()
    if not role:
        logger.warning('auth_login_no_role email=%s', _mask_email(email))
        raise AuthAuthorizationError('No role assigned. Please contact administrator.')

    payload = _issue_session_token(user.key, role, time_provider=time_provider)
    logger.info('auth_login_success email=%s role=%s', _mask_email(email), role)
    return {**payload, 'name': user.get('name', '')}


def validate_session_token(
    token: str | None,
    *,
    time_provider: TimeProvider = default_time_provider,
) -> Identity | None:
    if not token:
        return None
    with _TOKENS_LOCK:
        if token in _REVOKED_TOKENS:
            return None

    payload = _decode_jwt(token)
    if not payload:
        return None
    uid = payload.get('sub')
    if not uid:
        return None
    expires_at = int(payload.get('exp') or 0)
    if expires_at and expires_at <= int(time_provider.now().timestamp()):
        return None
    return Identity(uid=str(uid))


def clear_session_token(token: str | None) -> None:
    if not token:
        return
    with _TOKENS_LOCK:
        _REVOKED_TOKENS.add(token)
