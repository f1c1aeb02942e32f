from fastapi import APIRouter, Depends

from docere.app_state import AppContext, get_context
from docere.core.errors import ClassroomError
from docere.core.router_guard import current_identity, require_identity, to_http_exception
from docere.models import Role
from docere.route_logging import EndpointNameRoute
from docere.schemas import DeadlineRequest, SubmissionRequest
from docere.services.role_service import Identity


router = APIRouter(prefix='/api', tags=['Submissions'], route_class=EndpointNameRoute)


@router.put('/deadline')
async def set_deadline(
    payload: DeadlineRequest,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return await ctx.submissions.set_deadline(payload.date, actor, payload.description)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc


@router.get('/deadline')
async def get_deadline(
    identity: Identity = Depends(require_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return await ctx.submissions.get_deadline()
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc


@router.post('/submissions', status_code=201)
async def submit_work(
    payload: SubmissionRequest,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return await ctx.submissions.submit_work(payload.student_name, payload.content, actor)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc


@router.get('/submissions')
async def list_submissions(
    deadline_date: str = '',
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        await ctx.roles.require_role(actor, Role.TEACHER, action='view submissions')
        return await ctx.submissions.get_submissions(deadline_date)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc


@router.get('/submissions/board')
async def submission_board(
    date: str = '',
    deadline_date: str = '',
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        await ctx.roles.require_role(actor, Role.TEACHER, action='view the submission board')
        record = await ctx.attendance.get_attendance(date or None)
        deadline = deadline_date or (await ctx.submissions.get_deadline())['date']
        rows = await ctx.submissions.submission_board(record['students'], deadline)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return {'date': record['date'], 'deadline_date': deadline, 'students': rows}
