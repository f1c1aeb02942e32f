from contextlib import asynccontextmanager
import logging
import time

from fastapi import Depends, FastAPI, Request

from docere.app_state import AppContext, build_context, get_context, set_context
from docere.config import settings
from docere.routers import attendance, auth, class_info, notices, parents, realtime, submissions
from docere.route_logging import EndpointNameRoute
from docere.scheduler import start_scheduler, stop_scheduler
from docere.services.bootstrap_service import run_bootstrap

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format='%(asctime)s %(levelname)s %(name)s %(message)s',
)


@asynccontextmanager
async def lifespan(_: FastAPI):
    ctx = build_context()
    set_context(ctx)
    await run_bootstrap(ctx.store)
    start_scheduler(ctx)
    yield
    stop_scheduler()
    await ctx.close()
    set_context(None)


app = FastAPI(title=settings.app_name, version='0.1.0', lifespan=lifespan)
app.router.route_class = EndpointNameRoute


@app.middleware('http')
async def slow_request_logger(request: Request, call_next):
    started = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - started) * 1000.0
    if duration_ms >= settings.metrics_slow_ms:
        logging.getLogger('docere.request').info(
            'request_slow path=%s method=%s status_code=%s duration_ms=%.2f',
            request.url.path,
            request.method,
            response.status_code,
            duration_ms,
        )
    return response


app.include_router(auth.router)
app.include_router(attendance.router)
app.include_router(submissions.router)
app.include_router(notices.router)
app.include_router(parents.router)
app.include_router(class_info.router)
app.include_router(realtime.router)


@app.get('/health')
async def health(ctx: AppContext = Depends(get_context)):
    return {
        'status': 'ok',
        'app': settings.app_name,
        'env': settings.app_env,
        'store': type(ctx.store).__name__,
        'listeners': ctx.store.listener_count(),
    }
