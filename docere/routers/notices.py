from fastapi import APIRouter, Depends

from docere.app_state import AppContext, get_context
from docere.core.errors import ClassroomError
from docere.core.router_guard import current_identity, require_identity, to_http_exception
from docere.route_logging import EndpointNameRoute
from docere.schemas import NoticeRequest
from docere.services.role_service import Identity


router = APIRouter(prefix='/api/notice', tags=['Notices'], route_class=EndpointNameRoute)


@router.put('')
async def post_notice(
    payload: NoticeRequest,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        text = await ctx.notices.post_notice(payload.text, actor)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return {'text': text}


@router.get('')
async def get_notice(
    identity: Identity = Depends(require_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return {'text': await ctx.notices.get_notice()}
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
