from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol, Set

logger = logging.getLogger(__name__)


class Scheduler(Protocol):
    @property
    def pending(self) -> bool: ...

    def schedule_after(self, delay_sec: float, callback: Callable[[], Awaitable[None]]) -> None: ...

    def cancel(self) -> None: ...


class AsyncioScheduler:
    """Single-slot timer: arming a new callback replaces the pending one."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._handle: asyncio.TimerHandle | None = None
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule_after(self, delay_sec: float, callback: Callable[[], Awaitable[None]]) -> None:
        loop = self._loop or asyncio.get_running_loop()
        self.cancel()
        self._handle = loop.call_later(max(0.0, float(delay_sec)), self._fire, callback)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    async def drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self, callback: Callable[[], Awaitable[None]]) -> None:
        self._handle = None
        task = asyncio.ensure_future(callback())
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("scheduled_callback_failed err=%r", exc, exc_info=exc)
