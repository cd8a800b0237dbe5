from datetime import datetime, timedelta, timezone
from email.utils import format_datetime

import pytest

from zendesk_ticket_notifier.engine import compute_next_delay_ms
from zendesk_ticket_notifier.utils import mask_secret, parse_retry_after_ms
from zendesk_ticket_notifier.zendesk_client import (
    ZendeskHttpError,
    ZendeskRateLimitError,
    ZendeskTimeoutError,
)

NOW = datetime(2026, 2, 12, 9, 30, tzinfo=timezone.utc)


def _rate_limited(retry_after, status=429):
    return ZendeskRateLimitError("slow down", endpoint="/api/v2/search.json", status=status, retry_after=retry_after)


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("30", 30_000),
        (" 2.5 ", 2_500),
        ("0", 0),
        (None, None),
        ("", None),
        ("soon", None),
        ("-5", None),
        ("inf", None),
    ],
)
def test_parse_retry_after_seconds(value, expected):
    assert parse_retry_after_ms(value, now=NOW) == expected


def test_parse_retry_after_http_date():
    header = format_datetime(NOW + timedelta(seconds=120), usegmt=True)
    assert parse_retry_after_ms(header, now=NOW) == 120_000


def test_parse_retry_after_past_http_date_is_zero():
    header = format_datetime(NOW - timedelta(minutes=5), usegmt=True)
    assert parse_retry_after_ms(header, now=NOW) == 0


def test_rate_limit_with_retry_after_uses_larger_of_interval_and_hint():
    assert compute_next_delay_ms(15_000, _rate_limited("90"), now=NOW) == 90_000
    assert compute_next_delay_ms(120_000, _rate_limited("30"), now=NOW) == 120_000


def test_rate_limit_without_retry_after_uses_default_backoff():
    assert compute_next_delay_ms(15_000, _rate_limited(None, status=503), now=NOW) == 60_000
    assert compute_next_delay_ms(15_000, _rate_limited("garbage"), now=NOW) == 60_000
    assert compute_next_delay_ms(90_000, _rate_limited(None), now=NOW) == 90_000


def test_other_failures_keep_polling_interval():
    http_error = ZendeskHttpError("boom", status=500, retry_after="300")
    assert compute_next_delay_ms(15_000, http_error, now=NOW) == 15_000
    assert compute_next_delay_ms(15_000, ZendeskTimeoutError("timeout"), now=NOW) == 15_000
    assert compute_next_delay_ms(15_000, RuntimeError("bug"), now=NOW) == 15_000
    assert compute_next_delay_ms(15_000, None, now=NOW) == 15_000


def test_mask_secret():
    assert mask_secret("") == "none"
    assert mask_secret("abcd") == "****"
    assert mask_secret("abcdefghijkl") == "abcd...ijkl"
