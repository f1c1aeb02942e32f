from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from docere.app_state import AppContext, get_context
from docere.config import settings
from docere.core.errors import ClassroomError
from docere.core.router_guard import AUTH_COOKIE, require_identity, resolve_token, to_http_exception
from docere.route_logging import EndpointNameRoute
from docere.schemas import LoginRequest
from docere.services.auth_service import (
    AuthAuthorizationError,
    InvalidCredentials,
    clear_session_token,
    get_user_data,
    login,
)
from docere.services.role_service import Identity


router = APIRouter(tags=['Auth'], route_class=EndpointNameRoute)


def _session_cookie_response(data: dict) -> JSONResponse:
    response = JSONResponse(
        {
            'ok': True,
            'token': data['token'],
            'uid': data['uid'],
            'role': data['role'],
            'name': data.get('name', ''),
            'expires_at': data['expires_at'],
        }
    )
    response.set_cookie(
        key=AUTH_COOKIE,
        value=data['token'],
        httponly=True,
        samesite='lax',
        secure=settings.app_env == 'production',
        max_age=settings.auth_session_expiry_hours * 60 * 60,
    )
    return response


@router.post('/auth/login')
async def auth_login(payload: LoginRequest, ctx: AppContext = Depends(get_context)):
    try:
        data = await login(ctx.store, payload.email, payload.password, time_provider=ctx.time_provider)
    except AuthAuthorizationError as exc:
        raise HTTPException(status_code=403, detail=str(exc)) from exc
    except InvalidCredentials as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return _session_cookie_response(data)


@router.post('/auth/logout')
def auth_logout(request: Request):
    clear_session_token(resolve_token(request))
    response = JSONResponse({'ok': True})
    response.delete_cookie(AUTH_COOKIE)
    return response


@router.get('/auth/me')
async def auth_me(identity: Identity = Depends(require_identity), ctx: AppContext = Depends(get_context)):
    try:
        user = await get_user_data(ctx.store, identity.uid)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    if not user:
        raise HTTPException(status_code=401, detail='Unauthorized')
    return user
