from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, List, Optional

from .config import Config, ConfigurationError
from .ledger import NotifiedTicketLedger
from .models import TicketSearchResult
from .notifiers.base import (
    PERMISSION_DEFAULT,
    PERMISSION_DENIED,
    PERMISSION_GRANTED,
    NotificationDispatcher,
)
from .query import build_search_query
from .resolver import RemoteClient, resolve_criteria
from .scheduler import AsyncioScheduler, Scheduler
from .utils import parse_retry_after_ms, utc_now
from .zendesk_client import ZendeskApiError, ZendeskRateLimitError

logger = logging.getLogger(__name__)

DEFAULT_RATE_LIMIT_BACKOFF_MS = 60_000


class EngineState(str, Enum):
    IDLE = "idle"
    INITIALIZING = "initializing"
    POLLING = "polling"
    STOPPED = "stopped"


def compute_next_delay_ms(
    polling_interval_ms: int,
    error: BaseException | None,
    *,
    default_backoff_ms: int = DEFAULT_RATE_LIMIT_BACKOFF_MS,
    now: datetime | None = None,
) -> int:
    interval = max(0, int(polling_interval_ms))
    if not isinstance(error, ZendeskRateLimitError):
        return interval
    backoff_ms = parse_retry_after_ms(error.retry_after, now=now)
    if backoff_ms is None:
        backoff_ms = int(default_backoff_ms)
    return max(interval, backoff_ms)


class TicketPollEngine:
    def __init__(
        self,
        config: Config,
        client: RemoteClient,
        dispatcher: NotificationDispatcher,
        ledger: NotifiedTicketLedger,
        *,
        scheduler: Optional[Scheduler] = None,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        now_fn: Callable[[], datetime] = utc_now,
    ) -> None:
        self._config = config
        self._client = client
        self._dispatcher = dispatcher
        self._ledger = ledger
        self._scheduler = scheduler or AsyncioScheduler()
        self._sleep = sleep or asyncio.sleep
        self._now_fn = now_fn

        self._state = EngineState.IDLE
        self._is_polling = False
        self._stop_requested = False
        self._search_query = ""
        self._next_delay_ms = max(0, int(config.polling_interval_ms))
        self._permission: str | None = None
        self._last_error: BaseException | None = None
        self._init_lock = asyncio.Lock()

        restored = self._ledger.load()
        if restored:
            logger.info("ledger_restored entries=%s", len(restored))

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def search_query(self) -> str:
        return self._search_query

    @property
    def is_polling(self) -> bool:
        return self._is_polling

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    @property
    def next_delay_ms(self) -> int:
        return self._next_delay_ms

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    @property
    def ledger(self) -> NotifiedTicketLedger:
        return self._ledger

    async def start(self) -> bool:
        if self._state in (EngineState.INITIALIZING, EngineState.POLLING) and not self._stop_requested:
            logger.info("engine_start_ignored reason=already_running state=%s", self._state.value)
            return True

        if not self._config.has_search_criteria():
            self._last_error = ConfigurationError(
                "No search criteria configured. Set BASE_SEARCH_QUERY, TARGET_TAGS, "
                "TARGET_GROUP or TARGET_STATUS_LABELS."
            )
            self._state = EngineState.STOPPED
            logger.error("engine_start_failed reason=configuration err=%s", self._last_error)
            return False

        # A start issued after stop() waits for the stale initialization to observe its stop.
        async with self._init_lock:
            if self._state == EngineState.POLLING and not self._stop_requested:
                logger.info("engine_start_ignored reason=already_running state=%s", self._state.value)
                return True

            self._stop_requested = False
            self._last_error = None
            self._state = EngineState.INITIALIZING
            logger.info("engine_initializing max_attempts=%s", self._max_attempts())

            initialized = await self.initialize_with_retries()
            if self._stop_requested:
                self._state = EngineState.STOPPED
                logger.info("engine_start_aborted reason=stop_requested")
                return False

            if not initialized:
                self._state = EngineState.STOPPED
                logger.error("engine_start_failed reason=initialization polling_started=0")
                return False

            self._state = EngineState.POLLING
            logger.info(
                "engine_polling_started interval_ms=%s query=%s",
                self._config.polling_interval_ms,
                self._search_query,
            )
        await self.poll_once()
        return True

    def stop(self) -> None:
        had_pending = self._scheduler.pending
        self._stop_requested = True
        self._scheduler.cancel()
        if had_pending:
            logger.info("polling_stopped in_flight=%s", self._is_polling)
        if not self._is_polling and self._state == EngineState.POLLING:
            self._state = EngineState.STOPPED

    async def initialize_with_retries(self) -> bool:
        max_attempts = self._max_attempts()
        for attempt in range(1, max_attempts + 1):
            try:
                self._search_query = await self._perform_initialization()
                return True
            except ConfigurationError as exc:
                self._last_error = exc
                logger.error("engine_init_failed attempt=%s reason=configuration err=%s", attempt, exc)
                return False
            except ZendeskApiError as exc:
                self._last_error = exc
                logger.warning(
                    "engine_init_attempt_failed attempt=%s/%s endpoint=%s status=%s err=%s",
                    attempt,
                    max_attempts,
                    exc.endpoint or "none",
                    exc.status if exc.status is not None else "none",
                    exc,
                )
            except Exception as exc:
                self._last_error = exc
                logger.exception("engine_init_failed attempt=%s reason=unexpected", attempt)
                return False

            if self._stop_requested:
                return self._abort_init(attempt)
            if attempt >= max_attempts:
                break
            await self._sleep(max(0, self._config.retry_delay_ms) / 1000.0)
            if self._stop_requested:
                return self._abort_init(attempt)

        logger.error("engine_init_exhausted attempts=%s", max_attempts)
        return False

    def _abort_init(self, attempts: int) -> bool:
        logger.info("engine_init_aborted reason=stop_requested attempts=%s", attempts)
        return False

    async def poll_once(self) -> None:
        if self._is_polling:
            logger.info("poll_skipped reason=in_flight")
            return

        self._is_polling = True
        error: BaseException | None = None
        try:
            await self._run_poll_cycle()
        except ZendeskApiError as exc:
            error = exc
            logger.warning(
                "poll_failed endpoint=%s status=%s retry_after=%s err=%s",
                exc.endpoint or "none",
                exc.status if exc.status is not None else "none",
                exc.retry_after if exc.retry_after is not None else "none",
                exc,
            )
        except Exception as exc:
            error = exc
            logger.exception("poll_failed reason=unexpected")
        finally:
            self._is_polling = False

        self._next_delay_ms = compute_next_delay_ms(
            self._config.polling_interval_ms,
            error,
            default_backoff_ms=self._config.default_rate_limit_backoff_ms,
            now=self._now_fn(),
        )
        if isinstance(error, ZendeskRateLimitError):
            logger.warning("poll_backoff next_delay_ms=%s status=%s", self._next_delay_ms, error.status)

        if self._stop_requested:
            self._state = EngineState.STOPPED
            logger.info("poll_loop_terminated reason=stop_requested")
            return

        self._scheduler.schedule_after(self._next_delay_ms / 1000.0, self.poll_once)

    async def _run_poll_cycle(self) -> None:
        logger.debug("poll_start query=%s", self._search_query)
        found = await self._client.search_tickets(self._search_query)
        fresh: List[TicketSearchResult] = self._ledger.filter_new(found)
        if not fresh:
            logger.info("poll_complete found=%s new=0", len(found))
            return

        self._ledger.record([ticket.id for ticket in fresh], now=self._now_fn())
        self._ledger.save()
        logger.info(
            "poll_complete found=%s new=%s ids=%s",
            len(found),
            len(fresh),
            ",".join(str(ticket.id) for ticket in fresh),
        )
        await self._dispatcher.dispatch(fresh)

    async def _perform_initialization(self) -> str:
        await self._ensure_permission()
        criteria = await resolve_criteria(
            self._client,
            status_labels=self._config.target_status_labels,
            group_target=self._config.target_group,
        )
        query = build_search_query(
            self._config.base_search_query,
            self._config.target_tags,
            criteria.group_id,
            criteria.status_ids,
        )
        if not query:
            raise ConfigurationError(
                "Resolved search query is empty: none of the configured statuses or group matched."
            )
        logger.info("search_query_resolved query=%s", query)
        return query

    async def _ensure_permission(self) -> None:
        if self._permission == PERMISSION_DENIED:
            return
        try:
            permission = await self._dispatcher.surface.request_permission()
        except Exception:
            logger.exception("notification_permission_request_failed")
            permission = PERMISSION_DEFAULT

        previous, self._permission = self._permission, permission
        if permission == PERMISSION_GRANTED or previous not in (None, PERMISSION_GRANTED):
            return
        logger.warning(
            "notification_permission_not_granted permission=%s polling_continues=1", permission
        )

    def _max_attempts(self) -> int:
        return max(1, int(self._config.max_init_retries))
