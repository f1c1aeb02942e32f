from __future__ import annotations

from fastapi import Depends, HTTPException, Request, WebSocket
from starlette.requests import HTTPConnection

from docere.app_state import AppContext, get_context
from docere.core.errors import (
    AlreadyMarked,
    AlreadySubmitted,
    ClassroomError,
    DeadlineNotSet,
    RecordNotFound,
    RemoteUnavailable,
    SessionExpired,
    SessionNotOpen,
    Unauthenticated,
    Unauthorized,
    ValidationError,
)
from docere.services.auth_service import validate_session_token
from docere.services.role_service import Identity


AUTH_COOKIE = 'auth_session'

_STATUS_BY_ERROR: tuple[tuple[type[ClassroomError], int], ...] = (
    (Unauthenticated, 401),
    (Unauthorized, 403),
    (ValidationError, 400),
    (SessionNotOpen, 409),
    (AlreadyMarked, 409),
    (AlreadySubmitted, 409),
    (DeadlineNotSet, 409),
    (SessionExpired, 410),
    (RecordNotFound, 404),
    (RemoteUnavailable, 503),
)


def resolve_token(connection: HTTPConnection) -> str | None:
    token = connection.cookies.get(AUTH_COOKIE)
    if token:
        return token
    authorization = connection.headers.get('authorization', '')
    if authorization.lower().startswith('bearer '):
        return authorization[7:].strip()
    if isinstance(connection, WebSocket):
        return connection.query_params.get('token') or None
    return None


def identity_from(connection: HTTPConnection, ctx: AppContext) -> Identity | None:
    return validate_session_token(resolve_token(connection), time_provider=ctx.time_provider)


def current_identity(request: Request, ctx: AppContext = Depends(get_context)) -> Identity | None:
    """Identity behind the request, or None; services decide whether anonymous access is allowed."""
    return identity_from(request, ctx)


def require_identity(identity: Identity | None = Depends(current_identity)) -> Identity:
    if identity is None:
        raise HTTPException(status_code=401, detail='Unauthorized')
    return identity


def status_code_for(exc: ClassroomError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 400


def to_http_exception(exc: ClassroomError) -> HTTPException:
    return HTTPException(status_code=status_code_for(exc), detail=str(exc))
