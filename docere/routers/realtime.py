from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketState

from docere.app_state import AppContext, get_context
from docere.config import settings
from docere.core.errors import ClassroomError, Unauthenticated
from docere.core.router_guard import identity_from, status_code_for
from docere.models import Role
from docere.services.broadcast import Listener
from docere.store.base import Subscription


logger = logging.getLogger(__name__)
router = APIRouter(prefix='/ws', tags=['Realtime'])

Subscribe = Callable[[Listener], Awaitable[Subscription]]

# Close code for a client that cannot keep up with its stream.
TRY_AGAIN_LATER = 1013


class StreamOutbox:
    """Bounded buffer between store listeners and one socket.

    Once a stalled client fills it, further messages are dropped and the
    stream is closed so the client reconnects and receives fresh state.
    """

    def __init__(self, maxsize: int | None = None) -> None:
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize or settings.ws_queue_limit)
        self.overflowed = asyncio.Event()

    def offer(self, message: dict) -> None:
        if self.overflowed.is_set():
            return
        try:
            self.queue.put_nowait(message)
        except asyncio.QueueFull:
            self.overflowed.set()


async def _stream(
    websocket: WebSocket,
    ctx: AppContext,
    stream: str,
    subscribe: Subscribe,
    transform: Callable[[Any], Any] = lambda value: value,
    *,
    role: Role | None = None,
    action: str = '',
) -> None:
    """Relay store notifications to one authenticated client until it disconnects.

    Store listeners may fire on another thread's loop (for example an HTTP
    request served elsewhere), so deliveries hop onto this socket's loop.
    """
    await websocket.accept()
    loop = asyncio.get_running_loop()
    outbox = StreamOutbox()
    actor = identity_from(websocket, ctx)

    def push(value: Any) -> None:
        try:
            loop.call_soon_threadsafe(outbox.offer, {'type': stream, 'data': transform(value)})
        except RuntimeError:
            logger.debug('ws_push_after_close stream=%s', stream)

    action = action or 'watch ' + stream.replace('_', ' ')
    try:
        if role is not None:
            await ctx.roles.require_role(actor, role, action=action)
        elif actor is None:
            raise Unauthenticated(f'You must be logged in to {action}.')
        subscription = await subscribe(push)
    except ClassroomError as exc:
        await websocket.send_json({'type': 'error', 'error': str(exc), 'status': status_code_for(exc)})
        await websocket.close(code=1008)
        return

    async def pump() -> None:
        while True:
            await websocket.send_json(await outbox.queue.get())

    async def drain() -> None:
        while True:
            message = await websocket.receive()
            if message['type'] == 'websocket.disconnect':
                return

    tasks = [
        asyncio.create_task(pump()),
        asyncio.create_task(drain()),
        asyncio.create_task(outbox.overflowed.wait()),
    ]
    logger.info('ws_subscribed stream=%s uid=%s', stream, actor.uid)
    try:
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.info('ws_stream_ended stream=%s error=%s', stream, task.exception())
    finally:
        for task in tasks:
            task.cancel()
        subscription.unsubscribe()
        logger.info('ws_unsubscribed stream=%s', stream)

    if outbox.overflowed.is_set() and websocket.client_state == WebSocketState.CONNECTED:
        logger.warning('ws_stream_overflow stream=%s uid=%s limit=%s', stream, actor.uid, outbox.queue.maxsize)
        await websocket.close(code=TRY_AGAIN_LATER)


@router.websocket('/attendance/status')
async def attendance_status_stream(websocket: WebSocket, ctx: AppContext = Depends(get_context)):
    await _stream(websocket, ctx, 'attendance_status', ctx.attendance.watch_status, lambda view: view.as_dict())


@router.websocket('/attendance/roster')
async def attendance_roster_stream(websocket: WebSocket, date: str = '', ctx: AppContext = Depends(get_context)):
    async def subscribe(push: Listener) -> Subscription:
        return await ctx.attendance.watch_roster(push, date or None)

    await _stream(websocket, ctx, 'attendance_roster', subscribe)


@router.websocket('/deadline')
async def deadline_stream(websocket: WebSocket, ctx: AppContext = Depends(get_context)):
    await _stream(websocket, ctx, 'deadline', ctx.submissions.watch_deadline)


@router.websocket('/submissions')
async def submissions_stream(websocket: WebSocket, deadline_date: str = '', ctx: AppContext = Depends(get_context)):
    async def subscribe(push: Listener) -> Subscription:
        return await ctx.submissions.watch_submissions(deadline_date, push)

    await _stream(websocket, ctx, 'submissions', subscribe, role=Role.TEACHER, action='view submissions')


@router.websocket('/notice')
async def notice_stream(websocket: WebSocket, ctx: AppContext = Depends(get_context)):
    await _stream(websocket, ctx, 'notice', ctx.notices.watch_notice, lambda text: {'text': text})


@router.websocket('/parent-messages')
async def parent_messages_stream(websocket: WebSocket, ctx: AppContext = Depends(get_context)):
    await _stream(
        websocket,
        ctx,
        'parent_messages',
        ctx.parents.watch_messages,
        role=Role.TEACHER,
        action='read parent messages',
    )


@router.websocket('/parent-reply')
async def parent_reply_stream(websocket: WebSocket, ctx: AppContext = Depends(get_context)):
    await _stream(websocket, ctx, 'parent_reply', ctx.parents.watch_reply, lambda reply: {'reply': reply})


@router.websocket('/class-info')
async def class_info_stream(websocket: WebSocket, ctx: AppContext = Depends(get_context)):
    await _stream(websocket, ctx, 'class_info', ctx.class_info.watch_class_info)
