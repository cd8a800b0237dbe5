from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from collections import OrderedDict
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, TypeVar

from .utils import utc_now

logger = logging.getLogger(__name__)

DEFAULT_LEDGER_KEY = "zendeskNotifiedTicketIds"

CREATE_KV_TABLE_SQL = (
    "CREATE TABLE IF NOT EXISTS kv_store (\n"
    "  key TEXT PRIMARY KEY,\n"
    "  value TEXT NOT NULL,\n"
    "  updated_at_ms INTEGER NOT NULL\n"
    ");"
)

T = TypeVar("T")


class LedgerStore(Protocol):
    def read(self) -> Optional[str]: ...

    def write(self, value: str) -> None: ...

    def clear(self) -> None: ...


class MemoryLedgerStore:
    def __init__(self, value: Optional[str] = None) -> None:
        self.value = value
        self.writes = 0

    def read(self) -> Optional[str]:
        return self.value

    def write(self, value: str) -> None:
        self.value = value
        self.writes += 1

    def clear(self) -> None:
        self.value = None


class SQLiteLedgerStore:
    def __init__(
        self,
        db_path: Path,
        key: str = DEFAULT_LEDGER_KEY,
        *,
        busy_timeout_ms: int = 5000,
    ) -> None:
        self._db_path = Path(db_path)
        self._key = key
        self._busy_timeout_ms = max(1, int(busy_timeout_ms))
        self._lock = threading.Lock()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def read(self) -> Optional[str]:
        with self._lock:
            conn = self._open_conn()
            try:
                row = conn.execute(
                    "SELECT value FROM kv_store WHERE key = ?", (self._key,)
                ).fetchone()
            finally:
                conn.close()
        return row[0] if row else None

    def write(self, value: str) -> None:
        with self._lock:
            conn = self._open_conn()
            try:
                with conn:
                    conn.execute(
                        "INSERT OR REPLACE INTO kv_store (key, value, updated_at_ms) VALUES (?, ?, ?)",
                        (self._key, value, int(time.time() * 1000)),
                    )
            finally:
                conn.close()

    def clear(self) -> None:
        with self._lock:
            conn = self._open_conn()
            try:
                with conn:
                    conn.execute("DELETE FROM kv_store WHERE key = ?", (self._key,))
            finally:
                conn.close()

    def _open_conn(self) -> sqlite3.Connection:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self._db_path)
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA synchronous=NORMAL;")
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms};")
        conn.execute(CREATE_KV_TABLE_SQL)
        return conn


class LedgerFormatError(ValueError):
    pass


def encode_entries(entries: Dict[int, datetime]) -> str:
    return json.dumps([[ticket_id, ts.isoformat()] for ticket_id, ts in entries.items()])


def decode_entries(raw: str) -> "OrderedDict[int, datetime]":
    data = json.loads(raw)
    if not isinstance(data, list):
        raise LedgerFormatError("ledger payload is not a list")

    entries: "OrderedDict[int, datetime]" = OrderedDict()
    for item in data:
        if (
            not isinstance(item, list)
            or len(item) != 2
            or not isinstance(item[0], int)
            or isinstance(item[0], bool)
            or not isinstance(item[1], str)
        ):
            raise LedgerFormatError(f"invalid ledger entry: {item!r}")
        ts = datetime.fromisoformat(item[1])
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        entries[item[0]] = ts
    return entries


class NotifiedTicketLedger:
    """Ordered record of ticket ids that already produced a notification.

    Entries are never refreshed once recorded; only :meth:`clear` removes them.
    Persistence is best effort: load failures reset to empty, save failures are
    logged and the in-memory state is kept.
    """

    def __init__(self, store: LedgerStore) -> None:
        self._store = store
        self._entries: "OrderedDict[int, datetime]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, ticket_id: object) -> bool:
        return ticket_id in self._entries

    def contains(self, ticket_id: int) -> bool:
        return ticket_id in self._entries

    def entries(self) -> Dict[int, datetime]:
        return dict(self._entries)

    def load(self) -> Dict[int, datetime]:
        try:
            raw = self._store.read()
        except Exception:
            logger.exception("ledger_load_failed reason=store_read")
            self._entries = OrderedDict()
            return {}

        if not raw:
            self._entries = OrderedDict()
            return {}

        try:
            self._entries = decode_entries(raw)
        except (ValueError, TypeError) as exc:
            logger.error("ledger_load_failed reason=malformed err=%s starting_fresh=1", exc)
            self._entries = OrderedDict()
            try:
                self._store.clear()
            except Exception:
                logger.exception("ledger_clear_failed")
        return dict(self._entries)

    def save(self) -> bool:
        try:
            self._store.write(encode_entries(self._entries))
            return True
        except Exception:
            logger.exception("ledger_save_failed entries=%s", len(self._entries))
            return False

    def filter_new(
        self, items: Iterable[T], key: Callable[[T], int] = lambda item: item.id
    ) -> List[T]:
        fresh: List[T] = []
        seen: set[int] = set()
        for item in items:
            ticket_id = key(item)
            if ticket_id in self._entries or ticket_id in seen:
                continue
            seen.add(ticket_id)
            fresh.append(item)
        return fresh

    def record(self, ticket_ids: Sequence[int], now: datetime | None = None) -> List[int]:
        stamp = now or utc_now()
        added: List[int] = []
        for ticket_id in ticket_ids:
            if ticket_id in self._entries:
                continue
            self._entries[ticket_id] = stamp
            added.append(ticket_id)
        return added

    def clear(self) -> None:
        self._entries = OrderedDict()
        try:
            self._store.clear()
        except Exception:
            logger.exception("ledger_clear_failed")
