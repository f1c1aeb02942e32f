from __future__ import annotations

import asyncio
import logging
import time
from contextlib import contextmanager
from typing import Awaitable, Callable, Iterator

from docere.config import settings


logger = logging.getLogger('docere.metrics')


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def _timed(
    *,
    label: str,
    threshold_ms: int | None = None,
    log_label: str = 'timed',
) -> Callable[[Callable[..., object]], Callable[..., object]]:
    def decorator(func: Callable[..., object]) -> Callable[..., object]:
        threshold_value = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms

        def report(started: float) -> None:
            duration_ms = _elapsed_ms(started)
            if duration_ms >= threshold_value:
                logger.info('service_timer label=%s duration_ms=%.2f event=%s', label, duration_ms, log_label)

        if asyncio.iscoroutinefunction(func):
            async def async_wrapper(*args: object, **kwargs: object):
                started = time.perf_counter()
                try:
                    return await func(*args, **kwargs)
                finally:
                    report(started)

            return async_wrapper  # type: ignore[return-value]

        def sync_wrapper(*args: object, **kwargs: object):
            started = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                report(started)

        return sync_wrapper  # type: ignore[return-value]

    return decorator


def timed_service(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., object]], Callable[..., object]]:
    return _timed(label=label, threshold_ms=threshold_ms, log_label='service')


@contextmanager
def _job_timer(label: str) -> Iterator[None]:
    started = time.perf_counter()
    logger.info('job_start name=%s', label)
    status = 'ok'
    try:
        yield
    except Exception:
        status = 'failed'
        logger.exception('job_failed name=%s duration_ms=%.2f', label, _elapsed_ms(started))
        raise
    finally:
        logger.info('job_end name=%s status=%s duration_ms=%.2f', label, status, _elapsed_ms(started))


def run_timed_job(label: str, fn: Callable[[], object]) -> object:
    with _job_timer(label):
        return fn()


async def run_timed_job_async(label: str, fn: Callable[[], Awaitable[object]]) -> object:
    """Scheduler jobs run on the event loop, so the sweep is awaited rather than called."""
    with _job_timer(label):
        return await fn()
