from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable

from docere.core.time_provider import TimeProvider
from docere.services.broadcast import notify


logger = logging.getLogger(__name__)


def remaining_seconds(end_time: datetime, now: datetime) -> int:
    return max(0, math.ceil((end_time - now).total_seconds()))


@dataclass(frozen=True)
class StatusView:
    is_open: bool
    remaining_seconds: int
    date: str | None = None
    end_time: datetime | None = None

    @classmethod
    def closed(cls, date: str | None = None) -> 'StatusView':
        return cls(is_open=False, remaining_seconds=0, date=date)

    def as_dict(self) -> dict[str, Any]:
        return {
            'is_open': self.is_open,
            'remaining_seconds': self.remaining_seconds,
            'date': self.date,
            'end_time': self.end_time.isoformat() if self.end_time else None,
        }


DisplaySink = Callable[[StatusView], Any]


class Countdown:
    """Ticks a display sink once per interval until the end time passes.

    Display only: expiry is decided from the stored end time, never from this timer.
    """

    def __init__(self, sink: DisplaySink, *, interval_seconds: float = 1.0) -> None:
        self._sink = sink
        self._interval = interval_seconds
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, end_time: datetime, date_key: str, time_provider: TimeProvider) -> None:
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self._run(end_time, date_key, time_provider))

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _emit(self, view: StatusView) -> None:
        try:
            await notify(self._sink, view)
        except Exception:
            logger.exception('countdown_sink_failed date=%s', view.date)

    async def _run(self, end_time: datetime, date_key: str, time_provider: TimeProvider) -> None:
        while True:
            left = remaining_seconds(end_time, time_provider.now())
            if left <= 0:
                await self._emit(StatusView.closed(date_key))
                return
            await self._emit(StatusView(is_open=True, remaining_seconds=left, date=date_key, end_time=end_time))
            await asyncio.sleep(self._interval)
