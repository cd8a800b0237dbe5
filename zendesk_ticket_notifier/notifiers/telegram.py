from __future__ import annotations

import asyncio
import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from collections import deque
from dataclasses import dataclass
from html import escape
from typing import Any, Awaitable, Callable, Deque, Dict, Optional

from ..utils import mask_secret
from .base import PERMISSION_DENIED, PERMISSION_GRANTED, Notification

logger = logging.getLogger(__name__)

TELEGRAM_MAX_MESSAGE_CHARS = 4096


@dataclass(frozen=True)
class TelegramSendResult:
    ok: bool
    status_code: int
    retry_after: int | None = None
    error: str | None = None


class SlidingWindowRateLimiter:
    def __init__(
        self,
        limit_per_window: int,
        window_sec: float = 60.0,
        now_fn: Callable[[], float] = time.monotonic,
    ) -> None:
        self._limit = max(1, int(limit_per_window))
        self._window_sec = max(1.0, float(window_sec))
        self._now_fn = now_fn
        self._timestamps: Deque[float] = deque()

    @property
    def limit_per_window(self) -> int:
        return self._limit

    def reserve_delay(self) -> float:
        now = self._now_fn()
        while self._timestamps and (now - self._timestamps[0]) >= self._window_sec:
            self._timestamps.popleft()

        if len(self._timestamps) < self._limit:
            self._timestamps.append(now)
            return 0.0
        return max(0.0, self._window_sec - (now - self._timestamps[0]))


def render_notification_html(notification: Notification, max_chars: int = TELEGRAM_MAX_MESSAGE_CHARS) -> str:
    head = f"<b>{escape(notification.title)}</b>\n"
    tail = ""
    if notification.click_url:
        tail = f'\n<a href="{escape(notification.click_url, quote=True)}">Open in Zendesk</a>'

    body = escape(notification.body)
    keep = max(0, int(max_chars) - len(head) - len(tail))
    if len(body) > keep:
        suffix = "\n... [truncated]"
        body = body[: max(0, keep - len(suffix))] + suffix
    return f"{head}{body}{tail}"


class TelegramClient:
    def __init__(
        self,
        *,
        bot_token: str,
        request_timeout_sec: float = 8.0,
        sender: Optional[Callable[[Dict[str, str | int]], TelegramSendResult]] = None,
    ) -> None:
        self._bot_token = bot_token.strip()
        self._request_timeout_sec = max(0.5, float(request_timeout_sec))
        self._sender = sender or self._send_via_http
        self._masked_token = mask_secret(self._bot_token)

    @property
    def masked_token(self) -> str:
        return self._masked_token

    def send_message(
        self,
        *,
        chat_id: str,
        text: str,
        parse_mode: str,
        thread_id: int | None,
    ) -> TelegramSendResult:
        payload: Dict[str, str | int] = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": "true",
        }
        if parse_mode:
            payload["parse_mode"] = parse_mode
        if thread_id is not None:
            payload["message_thread_id"] = int(thread_id)
        return self._sender(payload)

    def _send_via_http(self, payload: Dict[str, str | int]) -> TelegramSendResult:
        url = f"https://api.telegram.org/bot{self._bot_token}/sendMessage"
        encoded = urllib.parse.urlencode(payload).encode("utf-8")
        request = urllib.request.Request(url, data=encoded, method="POST")
        request.add_header("Content-Type", "application/x-www-form-urlencoded")

        try:
            with urllib.request.urlopen(request, timeout=self._request_timeout_sec) as response:
                body = response.read().decode("utf-8", errors="replace")
                status = int(getattr(response, "status", response.getcode()))
                return self._parse_send_response(status, body)
        except urllib.error.HTTPError as exc:
            body = ""
            try:
                body = exc.read().decode("utf-8", errors="replace")
            except Exception:
                body = ""
            return self._parse_send_response(int(exc.code), body)
        except Exception as exc:
            return TelegramSendResult(
                ok=False,
                status_code=0,
                error=f"{type(exc).__name__}: {self._sanitize_text(str(exc))}",
            )

    def _parse_send_response(self, status_code: int, body: str) -> TelegramSendResult:
        payload: Dict[str, Any] = {}
        if body:
            try:
                parsed = json.loads(body)
                if isinstance(parsed, dict):
                    payload = parsed
            except json.JSONDecodeError:
                payload = {}

        retry_after: int | None = None
        if isinstance(payload.get("parameters"), dict):
            raw = payload["parameters"].get("retry_after")
            if isinstance(raw, int):
                retry_after = raw

        ok_flag = bool(payload.get("ok")) if payload else (200 <= status_code < 300)
        success = ok_flag and (200 <= status_code < 300)
        error = payload.get("description") if isinstance(payload.get("description"), str) else None
        if error is None and not success:
            error = f"http_{status_code}"
        return TelegramSendResult(
            ok=bool(success),
            status_code=status_code,
            retry_after=retry_after,
            error=self._sanitize_text(error) if error else None,
        )

    def _sanitize_text(self, text: str | None) -> str:
        if not text:
            return ""
        if not self._bot_token:
            return text
        return text.replace(self._bot_token, self._masked_token)


class TelegramDeliveryError(RuntimeError):
    pass


class TelegramNotificationSurface:
    def __init__(
        self,
        *,
        bot_token: str,
        chat_id: str,
        thread_id: int | None = None,
        rate_limit_per_min: int = 18,
        max_retries: int = 4,
        request_timeout_sec: float = 8.0,
        sender: Optional[Callable[[Dict[str, str | int]], TelegramSendResult]] = None,
        now_monotonic: Callable[[], float] = time.monotonic,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> None:
        self._chat_id = chat_id.strip()
        self._thread_id = thread_id
        self._max_retries = max(1, int(max_retries))
        self._sleep = sleep or asyncio.sleep
        self._client = TelegramClient(
            bot_token=bot_token,
            request_timeout_sec=request_timeout_sec,
            sender=sender,
        )
        self._rate_limiter = SlidingWindowRateLimiter(
            limit_per_window=max(1, int(rate_limit_per_min)),
            window_sec=60.0,
            now_fn=now_monotonic,
        )
        self._active = bool(self._chat_id) and bool(bot_token.strip())

    @property
    def active(self) -> bool:
        return self._active

    async def request_permission(self) -> str:
        if not self._active:
            logger.warning(
                "telegram_surface_missing_config chat_id=%s token=%s",
                self._chat_id or "none",
                self._client.masked_token,
            )
            return PERMISSION_DENIED
        return PERMISSION_GRANTED

    async def present(self, notification: Notification) -> None:
        if not self._active:
            logger.info("telegram_surface_inactive tag=%s dropped=1", notification.tag)
            return

        text = render_notification_html(notification)
        for attempt in range(1, self._max_retries + 1):
            await self._wait_for_rate_limit_slot()
            result = await asyncio.to_thread(
                self._client.send_message,
                chat_id=self._chat_id,
                text=text,
                parse_mode="HTML",
                thread_id=self._thread_id,
            )
            if result.ok:
                logger.info("telegram_send_ok tag=%s attempt=%s", notification.tag, attempt)
                return

            if (
                result.status_code == 429
                and result.retry_after is not None
                and attempt < self._max_retries
            ):
                logger.warning(
                    "telegram_rate_limited tag=%s retry_after=%s attempt=%s",
                    notification.tag,
                    result.retry_after,
                    attempt,
                )
                await self._sleep(float(result.retry_after))
                continue

            if attempt >= self._max_retries:
                raise TelegramDeliveryError(
                    f"telegram send failed status={result.status_code} "
                    f"err={result.error or 'unknown'} attempts={attempt}"
                )

            await self._sleep(min(8.0, float(2 ** (attempt - 1))))

    async def _wait_for_rate_limit_slot(self) -> None:
        while True:
            delay = self._rate_limiter.reserve_delay()
            if delay <= 0:
                return
            await self._sleep(delay)
