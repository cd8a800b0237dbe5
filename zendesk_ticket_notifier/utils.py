from __future__ import annotations

import math
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def mask_secret(secret: str) -> str:
    text = secret.strip()
    if not text:
        return "none"
    if len(text) <= 8:
        return "*" * len(text)
    return f"{text[:4]}...{text[-4:]}"


def parse_retry_after_ms(value: str | None, now: datetime | None = None) -> int | None:
    """Convert a ``Retry-After`` header into milliseconds.

    The header is either a delay in seconds or an HTTP-date. Dates in the
    past yield 0. Returns ``None`` when the value is missing or unparseable.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        seconds = None
    if seconds is not None:
        if not math.isfinite(seconds) or seconds < 0:
            return None
        return int(seconds * 1000)

    try:
        target = parsedate_to_datetime(text)
    except (TypeError, ValueError, IndexError):
        return None
    if target is None:
        return None
    if target.tzinfo is None:
        target = target.replace(tzinfo=timezone.utc)
    reference = now or utc_now()
    return max(0, int((target - reference).total_seconds() * 1000))
