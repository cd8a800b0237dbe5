from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Any

from zendesk_ticket_notifier.config import Config
from zendesk_ticket_notifier.ledger import NotifiedTicketLedger, SQLiteLedgerStore
from zendesk_ticket_notifier.logging_config import setup_logging
from zendesk_ticket_notifier.main import build_surface
from zendesk_ticket_notifier.notifiers import Notification, NotificationDispatcher
from zendesk_ticket_notifier.notifiers.base import PERMISSION_GRANTED
from zendesk_ticket_notifier.query import build_search_query
from zendesk_ticket_notifier.resolver import resolve_criteria
from zendesk_ticket_notifier.zendesk_client import ZendeskApiClient, ZendeskApiError


def _open_ledger(config: Config, ledger_arg: str | None) -> NotifiedTicketLedger:
    path = Path(ledger_arg) if ledger_arg else config.ledger_path
    ledger = NotifiedTicketLedger(SQLiteLedgerStore(path, config.ledger_key))
    ledger.load()
    return ledger


def _write_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, ensure_ascii=False, indent=2) + "\n")


def cmd_query(args: argparse.Namespace) -> int:
    config = Config.from_env()
    if not config.zendesk_base_url:
        print("ZENDESK_BASE_URL is not set", file=sys.stderr)
        return 2

    client = ZendeskApiClient(
        base_url=config.zendesk_base_url,
        email=config.zendesk_email,
        api_token=config.zendesk_api_token,
        request_timeout_sec=config.api_request_timeout_sec,
    )
    try:
        criteria = asyncio.run(
            resolve_criteria(
                client,
                status_labels=config.target_status_labels,
                group_target=config.target_group,
            )
        )
    except ZendeskApiError as exc:
        print(f"resolve failed: {exc}", file=sys.stderr)
        return 1

    query = build_search_query(
        config.base_search_query,
        config.target_tags,
        criteria.group_id,
        criteria.status_ids,
    )
    if args.json:
        _write_json(
            {
                "query": query,
                "status_ids": criteria.status_ids,
                "group_id": criteria.group_id,
            }
        )
    else:
        print(f"status_ids={','.join(str(i) for i in criteria.status_ids) or 'none'}")
        print(f"group_id={criteria.group_id if criteria.group_id is not None else 'none'}")
        print(f"query={query}")
    return 0 if query else 1


def cmd_ledger_show(args: argparse.Namespace) -> int:
    config = Config.from_env()
    ledger = _open_ledger(config, args.ledger)
    entries = ledger.entries()
    if args.json:
        _write_json([{"id": ticket_id, "notified_at": ts.isoformat()} for ticket_id, ts in entries.items()])
        return 0

    print(f"entries={len(entries)}")
    for ticket_id, ts in entries.items():
        print(f"#{ticket_id}\t{ts.isoformat()}")
    return 0


def cmd_ledger_clear(args: argparse.Namespace) -> int:
    config = Config.from_env()
    ledger = _open_ledger(config, args.ledger)
    count = len(ledger)
    if not args.yes:
        print(f"refusing to clear {count} entries without --yes", file=sys.stderr)
        return 2
    ledger.clear()
    print(f"cleared={count}")
    return 0


def cmd_notify_test(args: argparse.Namespace) -> int:
    config = Config.from_env()
    setup_logging(config.log_level)
    surface = build_surface(config)
    dispatcher = NotificationDispatcher(
        surface,
        ticket_url_base=config.ticket_url_prefix,
        recent_view_url=config.recent_view_url,
    )

    async def _send() -> bool:
        permission = await surface.request_permission()
        if permission != PERMISSION_GRANTED:
            print(f"notification permission={permission}", file=sys.stderr)
            return False
        try:
            await surface.present(
                Notification(
                    title="Zendesk notifier test",
                    body=args.message,
                    tag="zendesk-notifier-test",
                    click_url=dispatcher.ticket_url(0) if args.with_link else "",
                )
            )
        except Exception as exc:
            print(f"send failed: {type(exc).__name__}: {exc}", file=sys.stderr)
            return False
        return True

    ok = asyncio.run(_send())
    print("sent=1" if ok else "sent=0")
    return 0 if ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="zendesk-notifierctl", description="Zendesk Ticket Notifier CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    p_query = sub.add_parser("query", help="resolve statuses/group and print the search query")
    p_query.add_argument("--json", action="store_true")
    p_query.set_defaults(func=cmd_query)

    p_ledger = sub.add_parser("ledger", help="inspect or reset notified tickets")
    ledger_sub = p_ledger.add_subparsers(dest="ledger_command", required=True)

    p_ledger_show = ledger_sub.add_parser("show", help="list notified ticket ids")
    p_ledger_show.add_argument("--ledger", default=None, help="ledger sqlite path")
    p_ledger_show.add_argument("--json", action="store_true")
    p_ledger_show.set_defaults(func=cmd_ledger_show)

    p_ledger_clear = ledger_sub.add_parser("clear", help="forget all notified tickets")
    p_ledger_clear.add_argument("--ledger", default=None, help="ledger sqlite path")
    p_ledger_clear.add_argument("--yes", action="store_true")
    p_ledger_clear.set_defaults(func=cmd_ledger_clear)

    p_notify = sub.add_parser("notify-test", help="send a test notification")
    p_notify.add_argument("--message", default="Test notification from zendesk-notifierctl")
    p_notify.add_argument("--with-link", action="store_true")
    p_notify.set_defaults(func=cmd_notify_test)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return int(args.func(args))


if __name__ == "__main__":
    raise SystemExit(main())
