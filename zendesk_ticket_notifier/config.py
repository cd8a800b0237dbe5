from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit


def _load_dotenv() -> None:
    env_path = Path(__file__).resolve().parents[1] / ".env"
    if not env_path.exists():
        return
    for line in env_path.read_text(encoding="utf-8").splitlines():
        text = line.strip()
        if not text or text.startswith("#") or "=" not in text:
            continue
        key, value = text.split("=", 1)
        key = key.strip()
        value = value.strip().strip("'\"")
        os.environ.setdefault(key, value)


def _get_env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _get_env_optional_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return int(value)


def _get_env_list(name: str, default: List[str]) -> List[str]:
    value = os.getenv(name)
    if not value:
        return default
    return [item.strip() for item in value.split(",") if item.strip()]


def _get_env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _host_from_url(url: str) -> str:
    if not url:
        return ""
    return urlsplit(url).hostname or ""


@dataclass(frozen=True)
class Config:
    zendesk_base_url: str = ""
    zendesk_email: str = ""
    zendesk_api_token: str = ""
    polling_interval_ms: int = 15_000
    target_status_labels: List[str] = field(default_factory=list)
    target_tags: List[str] = field(default_factory=list)
    target_group: str = ""
    base_search_query: str = ""
    max_init_retries: int = 3
    retry_delay_ms: int = 2_000
    api_request_timeout_ms: int = 15_000
    ticket_url_base: str = "/agent/tickets/"
    recent_view_path: str = "/agent/dashboard"
    default_rate_limit_backoff_ms: int = 60_000
    ledger_path: Path = Path("data/notified_tickets.db")
    ledger_key: str = "zendeskNotifiedTicketIds"
    network_check_enabled: bool = True
    network_check_host: str = ""
    network_check_port: int = 443
    network_check_interval_sec: int = 15
    telegram_enabled: bool = False
    telegram_bot_token: str = ""
    telegram_chat_id: str = ""
    telegram_thread_id: Optional[int] = None
    telegram_rate_limit_per_min: int = 18
    log_level: str = "INFO"

    def has_search_criteria(self) -> bool:
        return bool(
            self.base_search_query.strip()
            or list(self.target_tags)
            or self.target_group.strip()
            or list(self.target_status_labels)
        )

    @property
    def api_request_timeout_sec(self) -> float:
        return max(1, self.api_request_timeout_ms) / 1000.0

    @property
    def ticket_url_prefix(self) -> str:
        return f"{self.zendesk_base_url.rstrip('/')}{self.ticket_url_base}"

    @property
    def recent_view_url(self) -> str:
        return f"{self.zendesk_base_url.rstrip('/')}{self.recent_view_path}"

    @classmethod
    def from_env(cls) -> "Config":
        _load_dotenv()
        base_url = os.getenv("ZENDESK_BASE_URL", "").strip()
        return cls(
            zendesk_base_url=base_url,
            zendesk_email=os.getenv("ZENDESK_EMAIL", "").strip(),
            zendesk_api_token=os.getenv("ZENDESK_API_TOKEN", "").strip(),
            polling_interval_ms=_get_env_int("POLLING_INTERVAL_MS", 15_000),
            target_status_labels=_get_env_list("TARGET_STATUS_LABELS", []),
            target_tags=_get_env_list("TARGET_TAGS", []),
            target_group=os.getenv("TARGET_GROUP", "").strip(),
            base_search_query=os.getenv("BASE_SEARCH_QUERY", "").strip(),
            max_init_retries=_get_env_int("MAX_INIT_RETRIES", 3),
            retry_delay_ms=_get_env_int("RETRY_DELAY_MS", 2_000),
            api_request_timeout_ms=_get_env_int("API_REQUEST_TIMEOUT_MS", 15_000),
            ticket_url_base=os.getenv("ZENDESK_TICKET_URL_BASE", "/agent/tickets/"),
            recent_view_path=os.getenv("ZENDESK_RECENT_VIEW_PATH", "/agent/dashboard"),
            default_rate_limit_backoff_ms=_get_env_int("DEFAULT_RATE_LIMIT_BACKOFF_MS", 60_000),
            ledger_path=Path(os.getenv("LEDGER_PATH", "data/notified_tickets.db")),
            ledger_key=os.getenv("LEDGER_KEY", "zendeskNotifiedTicketIds"),
            network_check_enabled=_get_env_bool("NETWORK_CHECK_ENABLED", True),
            network_check_host=os.getenv("NETWORK_CHECK_HOST", "").strip()
            or _host_from_url(base_url),
            network_check_port=_get_env_int("NETWORK_CHECK_PORT", 443),
            network_check_interval_sec=_get_env_int("NETWORK_CHECK_INTERVAL_SEC", 15),
            telegram_enabled=_get_env_bool("TELEGRAM_ENABLED", False),
            telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
            telegram_chat_id=os.getenv("TELEGRAM_CHAT_ID", "").strip(),
            telegram_thread_id=_get_env_optional_int("TELEGRAM_THREAD_ID"),
            telegram_rate_limit_per_min=_get_env_int("TELEGRAM_RATE_LIMIT_PER_MIN", 18),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )


class ConfigurationError(ValueError):
    pass
