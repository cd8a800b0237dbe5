import json
import os
from datetime import datetime, timezone

import pytest

import zendesk_ticket_notifier.cli.main as cli_main
import zendesk_ticket_notifier.config as config_module
from zendesk_ticket_notifier.ledger import NotifiedTicketLedger, SQLiteLedgerStore
from zendesk_ticket_notifier.models import CustomStatus, Group

T0 = datetime(2026, 2, 12, 9, 30, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    monkeypatch.setattr(config_module, "_load_dotenv", lambda: None)
    for key in list(os.environ):
        if key.startswith(("ZENDESK_", "TARGET_", "BASE_SEARCH_QUERY", "LEDGER_", "TELEGRAM_")):
            monkeypatch.delenv(key, raising=False)


def _seed_ledger(path, ids):
    ledger = NotifiedTicketLedger(SQLiteLedgerStore(path, "zendeskNotifiedTicketIds"))
    ledger.record(ids, now=T0)
    assert ledger.save() is True


def test_ledger_show_lists_entries(tmp_path, capsys):
    db_path = tmp_path / "ledger.db"
    _seed_ledger(db_path, [101, 102])

    assert cli_main.main(["ledger", "show", "--ledger", str(db_path)]) == 0
    out = capsys.readouterr().out
    assert "entries=2" in out
    assert "#101\t2026-02-12T09:30:00+00:00" in out
    assert "#102\t" in out


def test_ledger_show_json(tmp_path, capsys):
    db_path = tmp_path / "ledger.db"
    _seed_ledger(db_path, [7])

    assert cli_main.main(["ledger", "show", "--ledger", str(db_path), "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == [{"id": 7, "notified_at": "2026-02-12T09:30:00+00:00"}]


def test_ledger_clear_requires_confirmation(tmp_path, capsys):
    db_path = tmp_path / "ledger.db"
    _seed_ledger(db_path, [1, 2, 3])

    assert cli_main.main(["ledger", "clear", "--ledger", str(db_path)]) == 2
    assert "refusing" in capsys.readouterr().err

    assert cli_main.main(["ledger", "clear", "--ledger", str(db_path), "--yes"]) == 0
    assert "cleared=3" in capsys.readouterr().out

    restored = NotifiedTicketLedger(SQLiteLedgerStore(db_path, "zendeskNotifiedTicketIds"))
    assert restored.load() == {}


def test_query_prints_resolved_search(monkeypatch, capsys):
    class FakeApiClient:
        def __init__(self, **kwargs) -> None:
            self.kwargs = kwargs

        async def fetch_custom_statuses(self):
            return [CustomStatus(id=101, agent_label="New")]

        async def fetch_groups(self):
            return [Group(id=8, name="EMEA")]

    monkeypatch.setattr(cli_main, "ZendeskApiClient", FakeApiClient)
    monkeypatch.setenv("ZENDESK_BASE_URL", "https://acme.zendesk.com")
    monkeypatch.setenv("TARGET_STATUS_LABELS", "new")
    monkeypatch.setenv("TARGET_GROUP", "emea")
    monkeypatch.setenv("BASE_SEARCH_QUERY", "type:ticket")

    assert cli_main.main(["query", "--json"]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload == {
        "query": "type:ticket group:8 custom_status_id:101",
        "status_ids": [101],
        "group_id": 8,
    }


def test_query_without_base_url_fails(capsys):
    assert cli_main.main(["query"]) == 2
    assert "ZENDESK_BASE_URL" in capsys.readouterr().err
