from fastapi import APIRouter, Depends

from docere.app_state import AppContext, get_context
from docere.core.errors import ClassroomError
from docere.core.router_guard import current_identity, require_identity, to_http_exception
from docere.route_logging import EndpointNameRoute
from docere.schemas import ClassInfoRequest
from docere.services.role_service import Identity


router = APIRouter(prefix='/api/class-info', tags=['Class info'], route_class=EndpointNameRoute)


@router.put('')
async def update_class_info(
    payload: ClassInfoRequest,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return await ctx.class_info.update_class_info(payload.class_name, payload.strength, actor)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc


@router.get('')
async def get_class_info(
    identity: Identity = Depends(require_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return await ctx.class_info.get_class_info()
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc


@router.get('/summary')
async def attendance_summary(
    date: str = '',
    identity: Identity = Depends(require_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return await ctx.class_info.attendance_summary(date or None)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
