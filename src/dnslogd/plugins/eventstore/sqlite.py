"""SQLite-backed implementation of the BaseEventStore interface.

Inputs:
  - Constructed from the ``store.config`` mapping (db_path), typically
    through load_event_store_backend().

Outputs:
  - Concrete backend shared by the ingestion dispatcher (inserts and result
    updates) and the retention sweeper (deletes).

Notes:
  - A single connection is shared across threads and guarded by an RLock.
  - WAL journaling lets external readers query the file while ingestion
    writes.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
import time
from typing import Any, Dict, List, Optional, Tuple

from .base import (
    BaseEventStore,
    EventStoreError,
    normalize_domain,
    normalize_paging,
    total_pages,
)

logger = logging.getLogger(__name__)

_COLUMNS = "id, ts, client, domain, qtype, blocked, result, completed, completed_ts"


def _row_to_dict(row: Tuple[Any, ...]) -> Dict[str, Any]:
    (
        row_id,
        ts,
        client,
        domain,
        qtype,
        blocked,
        result,
        completed,
        completed_ts,
    ) = row
    return {
        "id": int(row_id),
        "ts": float(ts),
        "client": str(client),
        "domain": str(domain),
        "qtype": str(qtype),
        "blocked": bool(blocked),
        "result": str(result) if result is not None else None,
        "completed": bool(completed),
        "completed_ts": float(completed_ts) if completed_ts is not None else None,
    }


class SqliteEventStore(BaseEventStore):
    """SQLite-backed persistent query-event store.

    Inputs (constructor):
        db_path: Path to the SQLite database file, or ":memory:".

    Outputs:
        SqliteEventStore instance with schema ensured.
    """

    aliases = ("sqlite", "sqlite3")

    default_config = {
        "db_path": "./data/dnslogs.db",
    }

    def __init__(self, db_path: str = "./data/dnslogs.db", **_: Any) -> None:
        self._db_path = str(db_path)
        self._lock = threading.RLock()
        self._conn = self._init_connection()

    def _init_connection(self) -> sqlite3.Connection:
        """Brief: Create the SQLite connection and ensure the schema exists.

        Inputs:
            None; uses self._db_path.

        Outputs:
            sqlite3.Connection: open connection with schema ensured.

        Raises:
            EventStoreError: when the database cannot be opened or created.
        """

        if self._db_path != ":memory:":
            dir_path = os.path.dirname(os.path.abspath(os.path.expanduser(self._db_path)))
            if dir_path:
                os.makedirs(dir_path, exist_ok=True)

        try:
            conn = sqlite3.connect(self._db_path, check_same_thread=False)
        except sqlite3.Error as exc:
            raise EventStoreError(f"cannot open {self._db_path}: {exc}") from exc

        try:
            conn.execute("PRAGMA journal_mode=WAL")
        except sqlite3.Error:  # pragma: no cover - environment specific
            logger.debug("WAL journal mode unavailable for %s", self._db_path)

        try:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS queries (
                    id           INTEGER PRIMARY KEY AUTOINCREMENT,
                    ts           REAL NOT NULL,
                    client       TEXT NOT NULL,
                    domain       TEXT NOT NULL,
                    qtype        TEXT NOT NULL,
                    blocked      INTEGER NOT NULL DEFAULT 0,
                    result       TEXT,
                    completed    INTEGER NOT NULL DEFAULT 0,
                    completed_ts REAL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS idx_queries_ts ON queries(ts)")
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_queries_domain_ts ON queries(domain, ts)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_queries_client_ts ON queries(client, ts)"
            )
            conn.commit()
        except sqlite3.Error as exc:
            conn.close()
            raise EventStoreError(f"cannot create schema in {self._db_path}: {exc}") from exc
        return conn

    @property
    def db_path(self) -> str:
        return self._db_path

    def health_check(self) -> bool:
        """Return True when the underlying SQLite store is usable."""

        try:
            with self._lock:
                cur = self._conn.cursor()
                cur.execute("SELECT 1")
                cur.fetchone()
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Write API
    # ------------------------------------------------------------------
    def insert_event(
        self,
        ts: float,
        client: str,
        domain: str,
        qtype: str,
        blocked: bool,
    ) -> int:
        """Insert a query event and return its rowid."""

        sql = (
            "INSERT INTO queries (ts, client, domain, qtype, blocked) "
            "VALUES (?, ?, ?, ?, ?)"
        )
        params = (float(ts), client, normalize_domain(domain), qtype, int(bool(blocked)))
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(sql, params)
                return int(cur.lastrowid)
        except sqlite3.Error as exc:
            raise EventStoreError(f"insert failed: {exc}") from exc

    def update_result(self, event_id: int, result: Optional[str]) -> bool:
        """Set result on an event that has not been completed yet."""

        sql = (
            "UPDATE queries SET result = ?, completed = 1, completed_ts = ? "
            "WHERE id = ? AND completed = 0"
        )
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(sql, (result, time.time(), int(event_id)))
                return cur.rowcount > 0
        except sqlite3.Error as exc:
            raise EventStoreError(f"update of event {event_id} failed: {exc}") from exc

    def delete_older_than(self, cutoff_ts: float) -> int:
        try:
            with self._lock, self._conn:
                cur = self._conn.execute(
                    "DELETE FROM queries WHERE ts < ?", (float(cutoff_ts),)
                )
                return int(cur.rowcount)
        except sqlite3.Error as exc:
            raise EventStoreError(f"purge failed: {exc}") from exc

    # ------------------------------------------------------------------
    # Read helpers
    # ------------------------------------------------------------------
    def get_event(self, event_id: int) -> Optional[Dict[str, Any]]:
        try:
            with self._lock:
                cur = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM queries WHERE id = ?", (int(event_id),)
                )
                row = cur.fetchone()
        except sqlite3.Error as exc:
            raise EventStoreError(f"read of event {event_id} failed: {exc}") from exc
        return _row_to_dict(row) if row else None

    def count_events(self) -> int:
        try:
            with self._lock:
                row = self._conn.execute("SELECT COUNT(1) FROM queries").fetchone()
        except sqlite3.Error as exc:
            raise EventStoreError(f"count failed: {exc}") from exc
        return int(row[0]) if row else 0

    def select_events(
        self,
        client: Optional[str] = None,
        domain: Optional[str] = None,
        qtype: Optional[str] = None,
        blocked: Optional[bool] = None,
        start_ts: Optional[float] = None,
        end_ts: Optional[float] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        """Select events with basic filtering and pagination, newest first."""

        page_i, page_size_i = normalize_paging(page, page_size)

        where: List[str] = []
        params: List[Any] = []

        client_s = str(client).strip() if client is not None else None
        if client_s:
            where.append("client = ?")
            params.append(client_s)
        domain_s = normalize_domain(domain) if domain is not None else None
        if domain_s:
            where.append("domain = ?")
            params.append(domain_s)
        qtype_s = str(qtype).strip().upper() if qtype is not None else None
        if qtype_s:
            where.append("qtype = ?")
            params.append(qtype_s)
        if blocked is not None:
            where.append("blocked = ?")
            params.append(int(bool(blocked)))
        if isinstance(start_ts, (int, float)):
            where.append("ts >= ?")
            params.append(float(start_ts))
        if isinstance(end_ts, (int, float)):
            where.append("ts < ?")
            params.append(float(end_ts))

        where_sql = (" WHERE " + " AND ".join(where)) if where else ""
        offset = (page_i - 1) * page_size_i

        try:
            with self._lock:
                row = self._conn.execute(
                    f"SELECT COUNT(1) FROM queries{where_sql}", tuple(params)
                ).fetchone()
                total = int(row[0]) if row else 0
                cur = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM queries{where_sql} "
                    "ORDER BY ts DESC, id DESC LIMIT ? OFFSET ?",
                    tuple(params + [page_size_i, offset]),
                )
                items = [_row_to_dict(r) for r in cur.fetchall()]
        except sqlite3.Error as exc:
            raise EventStoreError(f"select failed: {exc}") from exc

        return {
            "total": total,
            "page": page_i,
            "page_size": page_size_i,
            "total_pages": total_pages(total, page_size_i),
            "items": items,
        }

    def close(self) -> None:
        """Close the underlying SQLite connection."""

        try:
            with self._lock:
                conn = getattr(self, "_conn", None)
                if conn is not None:
                    conn.close()
        except Exception:  # pragma: no cover
            logger.exception("Error while closing SqliteEventStore connection")
