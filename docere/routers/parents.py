from fastapi import APIRouter, Depends

from docere.app_state import AppContext, get_context
from docere.core.errors import ClassroomError
from docere.core.router_guard import current_identity, require_identity, to_http_exception
from docere.models import Role
from docere.route_logging import EndpointNameRoute
from docere.schemas import ParentMessageRequest, ParentReplyRequest
from docere.services.role_service import Identity


router = APIRouter(prefix='/api', tags=['Parents'], route_class=EndpointNameRoute)


@router.post('/parent-messages', status_code=201)
async def send_message(
    payload: ParentMessageRequest,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        message_id = await ctx.parents.send_message(payload.child_name, payload.message, actor)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return {'id': message_id}


@router.get('/parent-messages')
async def list_messages(
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        await ctx.roles.require_role(actor, Role.TEACHER, action='read parent messages')
        return await ctx.parents.list_messages()
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc


@router.post('/parent-messages/{message_id}/read')
async def mark_message_read(
    message_id: str,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        await ctx.parents.mark_read(message_id, actor)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return {'ok': True}


@router.put('/parent-reply')
async def send_reply(
    payload: ParentReplyRequest,
    actor: Identity | None = Depends(current_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        reply = await ctx.parents.send_reply(payload.reply, actor)
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
    return {'reply': reply}


@router.get('/parent-reply')
async def get_reply(
    identity: Identity = Depends(require_identity),
    ctx: AppContext = Depends(get_context),
):
    try:
        return {'reply': await ctx.parents.get_reply()}
    except ClassroomError as exc:
        raise to_http_exception(exc) from exc
