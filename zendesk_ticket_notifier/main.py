from __future__ import annotations

import asyncio
import faulthandler
import logging
import signal
import sys
from typing import List, Set

from .config import Config, ConfigurationError
from .engine import TicketPollEngine
from .ledger import NotifiedTicketLedger, SQLiteLedgerStore
from .logging_config import setup_logging
from .network import OFFLINE, ONLINE, NetworkMonitor
from .notifiers import (
    LogNotificationSurface,
    NotificationDispatcher,
    NotificationSurface,
    TelegramNotificationSurface,
)
from .scheduler import AsyncioScheduler
from .zendesk_client import ZendeskApiClient

logger = logging.getLogger(__name__)


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            signal.signal(sig, lambda *_: stop_event.set())


def _install_fault_diagnostics() -> None:
    faulthandler.enable(file=sys.stderr, all_threads=True)
    try:
        faulthandler.register(signal.SIGUSR1, file=sys.stderr, all_threads=True, chain=True)
    except (AttributeError, OSError, RuntimeError, ValueError):
        logger.warning("faulthandler_sigusr1_register_failed")


def build_surface(config: Config) -> NotificationSurface:
    if config.telegram_enabled:
        return TelegramNotificationSurface(
            bot_token=config.telegram_bot_token,
            chat_id=config.telegram_chat_id,
            thread_id=config.telegram_thread_id,
            rate_limit_per_min=config.telegram_rate_limit_per_min,
        )
    return LogNotificationSurface()


def build_engine(config: Config, *, scheduler: AsyncioScheduler | None = None) -> TicketPollEngine:
    if not config.zendesk_base_url:
        raise ConfigurationError("ZENDESK_BASE_URL is required")
    if not config.has_search_criteria():
        raise ConfigurationError(
            "No search criteria configured. Set BASE_SEARCH_QUERY, TARGET_TAGS, "
            "TARGET_GROUP or TARGET_STATUS_LABELS."
        )

    client = ZendeskApiClient(
        base_url=config.zendesk_base_url,
        email=config.zendesk_email,
        api_token=config.zendesk_api_token,
        request_timeout_sec=config.api_request_timeout_sec,
    )
    dispatcher = NotificationDispatcher(
        build_surface(config),
        ticket_url_base=config.ticket_url_prefix,
        recent_view_url=config.recent_view_url,
    )
    ledger = NotifiedTicketLedger(SQLiteLedgerStore(config.ledger_path, config.ledger_key))
    return TicketPollEngine(config, client, dispatcher, ledger, scheduler=scheduler)


async def serve(
    engine: TicketPollEngine,
    *,
    scheduler: AsyncioScheduler,
    stop_event: asyncio.Event,
    monitor: NetworkMonitor | None = None,
) -> int:
    start_tasks: Set[asyncio.Task] = set()
    failures: List[BaseException | None] = []

    def _on_start_done(task: asyncio.Task) -> None:
        start_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None and (task.result() or engine.stop_requested):
            return
        failures.append(exc or engine.last_error)
        stop_event.set()

    def _spawn_start() -> None:
        task = asyncio.create_task(engine.start(), name="engine-start")
        start_tasks.add(task)
        task.add_done_callback(_on_start_done)

    if monitor is not None:
        monitor.on(ONLINE, _spawn_start)
        monitor.on(OFFLINE, engine.stop)
        await monitor.start()
    elif not await engine.start():
        failures.append(engine.last_error)

    try:
        if not failures:
            await stop_event.wait()
        if failures:
            logger.error("shutdown reason=startup_failed err=%s", failures[0])
        else:
            logger.info("shutdown signal received")
    finally:
        if monitor is not None:
            await monitor.stop()
        engine.stop()
        for task in list(start_tasks):
            await asyncio.gather(task, return_exceptions=True)
        await scheduler.drain()
    return 1 if failures else 0


async def run() -> int:
    config = Config.from_env()
    setup_logging(config.log_level)
    _install_fault_diagnostics()

    scheduler = AsyncioScheduler()
    try:
        engine = build_engine(config, scheduler=scheduler)
    except ConfigurationError as exc:
        logger.error("startup_failed reason=configuration err=%s", exc)
        return 1

    stop_event = asyncio.Event()
    _install_signal_handlers(stop_event)

    monitor: NetworkMonitor | None = None
    if config.network_check_enabled and config.network_check_host:
        monitor = NetworkMonitor(
            config.network_check_host,
            config.network_check_port,
            interval_sec=config.network_check_interval_sec,
        )
    return await serve(engine, scheduler=scheduler, stop_event=stop_event, monitor=monitor)


def main() -> int:
    return asyncio.run(run())


if __name__ == "__main__":
    raise SystemExit(main())
