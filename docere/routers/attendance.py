from fastapi import APIRouter, Depends

from docere.app_state import AppContext, get_context
from docere.core.errors import ClassroomError, Unauthenticated
from docere.core.router_guard import current_identity, require_identity, to_http_exception
from docere.route_logging import EndpointNameRoute
from docere.schemas import AttendanceMarkRequest, AttendanceOpenRequest
from docere.services.role_service import Identity


router = APIRouter(prefix='/api/attendance', tags=['Attendance'], route_class=EndpointNameRoute)


@router.post('/open')
async def open_attendance(
    payload: AttendanceOpenRequest,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        view = await ctx.attendance.open_session(payload.duration_seconds, actor)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return view.as_dict()


@router.post('/close')
async def close_attendance(
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    if actor is None:
        # close_session treats a missing actor as the system expiry path
        raise to_http_exception(Unauthenticated('You must be logged in to close attendance.'))
    try:
        await ctx.attendance.close_session(actor)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return {'ok': True}


@router.post('/mark')
async def mark_attendance(
    payload: AttendanceMarkRequest,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        added = await ctx.attendance.mark_present(payload.student_name, actor, payload.date)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return {'ok': True, 'student_name': added[0]}


@router.get('/status')
async def attendance_status(
    identity: Identity = Depends(require_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        view = await ctx.attendance.get_status()
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return view.as_dict()


@router.get('/{date}')
async def attendance_for_date(
    date: str,
    identity: Identity = Depends(require_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return await ctx.attendance.get_attendance(date)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
