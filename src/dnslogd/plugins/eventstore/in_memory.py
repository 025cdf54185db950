"""In-process event store backend.

Brief:
  Keeps events in a dict guarded by a lock. Nothing survives a restart, so
  this backend suits tests, dry runs, and deployments that only care about
  the live log output.

Inputs:
  - Optional max_events cap; the oldest events are discarded first when the
    cap is reached.

Outputs:
  - InMemoryEventStore implementing BaseEventStore.
"""

from __future__ import annotations

import itertools
import threading
import time
from collections import OrderedDict
from typing import Any, Dict, List, Optional

from .base import BaseEventStore, normalize_domain, normalize_paging, total_pages


class InMemoryEventStore(BaseEventStore):
    """Dict-backed event store.

    Inputs (constructor):
        max_events: Optional cap on stored events (0 = unbounded).
    """

    aliases = ("memory", "in_memory")

    default_config = {"max_events": 0}

    def __init__(self, max_events: int = 0, **_: Any) -> None:
        self._max_events = max(0, int(max_events or 0))
        self._lock = threading.RLock()
        self._rows: "OrderedDict[int, Dict[str, Any]]" = OrderedDict()
        self._ids = itertools.count(1)
        self._closed = False

    def health_check(self) -> bool:
        return not self._closed

    def close(self) -> None:
        self._closed = True

    def insert_event(
        self,
        ts: float,
        client: str,
        domain: str,
        qtype: str,
        blocked: bool,
    ) -> int:
        with self._lock:
            event_id = next(self._ids)
            self._rows[event_id] = {
                "id": event_id,
                "ts": float(ts),
                "client": client,
                "domain": normalize_domain(domain),
                "qtype": qtype,
                "blocked": bool(blocked),
                "result": None,
                "completed": False,
                "completed_ts": None,
            }
            if self._max_events and len(self._rows) > self._max_events:
                self._rows.popitem(last=False)
            return event_id

    def update_result(self, event_id: int, result: Optional[str]) -> bool:
        with self._lock:
            row = self._rows.get(int(event_id))
            if row is None or row["completed"]:
                return False
            row["result"] = result
            row["completed"] = True
            row["completed_ts"] = time.time()
            return True

    def delete_older_than(self, cutoff_ts: float) -> int:
        cutoff = float(cutoff_ts)
        with self._lock:
            stale = [eid for eid, row in self._rows.items() if row["ts"] < cutoff]
            for eid in stale:
                del self._rows[eid]
            return len(stale)

    def get_event(self, event_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self._rows.get(int(event_id))
            return dict(row) if row is not None else None

    def count_events(self) -> int:
        with self._lock:
            return len(self._rows)

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
        page_i, page_size_i = normalize_paging(page, page_size)
        client_s = str(client).strip() if client is not None else None
        domain_s = normalize_domain(domain) if domain is not None else None
        qtype_s = str(qtype).strip().upper() if qtype is not None else None

        def _keep(row: Dict[str, Any]) -> bool:
            if client_s and row["client"] != client_s:
                return False
            if domain_s and row["domain"] != domain_s:
                return False
            if qtype_s and row["qtype"] != qtype_s:
                return False
            if blocked is not None and row["blocked"] != bool(blocked):
                return False
            if isinstance(start_ts, (int, float)) and row["ts"] < start_ts:
                return False
            if isinstance(end_ts, (int, float)) and row["ts"] >= end_ts:
                return False
            return True

        with self._lock:
            matched: List[Dict[str, Any]] = [dict(r) for r in self._rows.values() if _keep(r)]

        matched.sort(key=lambda r: (r["ts"], r["id"]), reverse=True)
        offset = (page_i - 1) * page_size_i
        return {
            "total": len(matched),
            "page": page_i,
            "page_size": page_size_i,
            "total_pages": total_pages(len(matched), page_size_i),
            "items": matched[offset : offset + page_size_i],
        }
