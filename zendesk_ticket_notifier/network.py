from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, List, Optional

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"

Listener = Callable[[], Optional[Awaitable[None]]]


async def tcp_probe(host: str, port: int, timeout_sec: float) -> bool:
    try:
        _, writer = await asyncio.wait_for(asyncio.open_connection(host, port), timeout=timeout_sec)
    except (OSError, asyncio.TimeoutError):
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


class NetworkMonitor:
    """Emits ``online``/``offline`` when reachability of ``host:port`` changes.

    The first probe always emits, so listeners learn the initial state.
    """

    def __init__(
        self,
        host: str,
        port: int = 443,
        *,
        interval_sec: float = 15.0,
        timeout_sec: float = 5.0,
        probe: Optional[Callable[[str, int, float], Awaitable[bool]]] = None,
    ) -> None:
        self._host = host
        self._port = int(port)
        self._interval_sec = max(0.01, float(interval_sec))
        self._timeout_sec = max(0.1, float(timeout_sec))
        self._probe = probe or tcp_probe
        self._listeners: Dict[str, List[Listener]] = {ONLINE: [], OFFLINE: []}
        self._online: bool | None = None
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task | None = None

    @property
    def online(self) -> bool | None:
        return self._online

    def on(self, event: str, callback: Listener) -> None:
        if event not in self._listeners:
            raise ValueError(f"unknown network event: {event}")
        self._listeners[event].append(callback)

    async def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        self._stop_event.clear()
        self._task = asyncio.create_task(self._run(), name="network-monitor")
        logger.info(
            "network_monitor_started host=%s port=%s interval_sec=%s",
            self._host,
            self._port,
            self._interval_sec,
        )

    async def stop(self) -> None:
        self._stop_event.set()
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None

    async def check_once(self) -> bool:
        reachable = await self._probe(self._host, self._port, self._timeout_sec)
        if reachable != self._online:
            self._online = reachable
            event = ONLINE if reachable else OFFLINE
            logger.info("network_state_changed state=%s host=%s", event, self._host)
            await self._emit(event)
        return reachable

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.check_once()
            except Exception:
                logger.exception("network_check_failed host=%s", self._host)
            await self._sleep_with_stop(self._interval_sec)

    async def _emit(self, event: str) -> None:
        for callback in list(self._listeners[event]):
            try:
                result = callback()
                if result is not None:
                    await result
            except Exception:
                logger.exception("network_listener_failed event=%s", event)

    async def _sleep_with_stop(self, delay: float) -> None:
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return
