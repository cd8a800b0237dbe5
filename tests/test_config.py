import os
from pathlib import Path

import pytest

import zendesk_ticket_notifier.config as config_module
from zendesk_ticket_notifier.config import Config


def _clear_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith(
            (
                "ZENDESK_",
                "POLLING_",
                "TARGET_",
                "BASE_SEARCH_QUERY",
                "MAX_INIT_RETRIES",
                "RETRY_DELAY_MS",
                "API_REQUEST_TIMEOUT_MS",
                "DEFAULT_RATE_LIMIT_BACKOFF_MS",
                "LEDGER_",
                "NETWORK_CHECK_",
                "TELEGRAM_",
                "LOG_LEVEL",
            )
        ):
            monkeypatch.delenv(key, raising=False)


def test_config_from_env_defaults(monkeypatch):
    monkeypatch.setattr(config_module, "_load_dotenv", lambda: None)
    _clear_env(monkeypatch)

    cfg = Config.from_env()
    assert cfg.zendesk_base_url == ""
    assert cfg.polling_interval_ms == 15_000
    assert cfg.target_status_labels == []
    assert cfg.target_tags == []
    assert cfg.target_group == ""
    assert cfg.max_init_retries == 3
    assert cfg.retry_delay_ms == 2_000
    assert cfg.api_request_timeout_sec == 15.0
    assert cfg.default_rate_limit_backoff_ms == 60_000
    assert cfg.ledger_path == Path("data/notified_tickets.db")
    assert cfg.ledger_key == "zendeskNotifiedTicketIds"
    assert cfg.network_check_enabled is True
    assert cfg.network_check_host == ""
    assert cfg.telegram_enabled is False
    assert cfg.telegram_thread_id is None
    assert cfg.telegram_rate_limit_per_min == 18
    assert cfg.has_search_criteria() is False


def test_config_list_and_url_parsing(monkeypatch):
    monkeypatch.setattr(config_module, "_load_dotenv", lambda: None)
    _clear_env(monkeypatch)
    monkeypatch.setenv("ZENDESK_BASE_URL", " https://acme.zendesk.com/ ")
    monkeypatch.setenv("TARGET_STATUS_LABELS", " New , Pending Review ,,")
    monkeypatch.setenv("TARGET_TAGS", "vip,needs review")
    monkeypatch.setenv("TARGET_GROUP", " EMEA ")
    monkeypatch.setenv("POLLING_INTERVAL_MS", "30000")

    cfg = Config.from_env()
    assert cfg.target_status_labels == ["New", "Pending Review"]
    assert cfg.target_tags == ["vip", "needs review"]
    assert cfg.target_group == "EMEA"
    assert cfg.polling_interval_ms == 30_000
    assert cfg.network_check_host == "acme.zendesk.com"
    assert cfg.ticket_url_prefix == "https://acme.zendesk.com/agent/tickets/"
    assert cfg.recent_view_url == "https://acme.zendesk.com/agent/dashboard"
    assert cfg.has_search_criteria() is True


def test_config_parses_network_and_telegram_env(monkeypatch):
    monkeypatch.setattr(config_module, "_load_dotenv", lambda: None)
    _clear_env(monkeypatch)
    monkeypatch.setenv("BASE_SEARCH_QUERY", "type:ticket status:new")
    monkeypatch.setenv("NETWORK_CHECK_ENABLED", "off")
    monkeypatch.setenv("NETWORK_CHECK_HOST", "1.1.1.1")
    monkeypatch.setenv("NETWORK_CHECK_PORT", "53")
    monkeypatch.setenv("TELEGRAM_ENABLED", "1")
    monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "token")
    monkeypatch.setenv("TELEGRAM_CHAT_ID", "-1001")
    monkeypatch.setenv("TELEGRAM_THREAD_ID", "9")
    monkeypatch.setenv("TELEGRAM_RATE_LIMIT_PER_MIN", "5")

    cfg = Config.from_env()
    assert cfg.network_check_enabled is False
    assert cfg.network_check_host == "1.1.1.1"
    assert cfg.network_check_port == 53
    assert cfg.telegram_enabled is True
    assert cfg.telegram_bot_token == "token"
    assert cfg.telegram_chat_id == "-1001"
    assert cfg.telegram_thread_id == 9
    assert cfg.telegram_rate_limit_per_min == 5


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("POLLING_INTERVAL_MS", "abc"),
        ("MAX_INIT_RETRIES", "1.5"),
        ("RETRY_DELAY_MS", "NaN"),
        ("TELEGRAM_THREAD_ID", "oops"),
    ],
)
def test_config_invalid_numeric_values_raise(monkeypatch, key, value):
    monkeypatch.setattr(config_module, "_load_dotenv", lambda: None)
    _clear_env(monkeypatch)
    monkeypatch.setenv(key, value)

    with pytest.raises(ValueError):
        Config.from_env()
