"""In-memory correlation of resolver transaction ids to stored events.

Brief:
  A query line is stored immediately; its outcome arrives later on a
  separate ``dns done query`` line carrying the same transaction id. The
  CorrelationTable remembers ``txn_id -> event_id`` between the two.

Notes:
  - The table is owned by a single ingestion stream and is not locked.
  - Entries whose completion never arrives stay until process exit unless
    an expiry TTL is configured (see expire()).
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Optional


@dataclass
class PendingEntry:
    event_id: int
    created: float


class CorrelationTable:
    """Brief: Mapping of pending transaction ids to stored event ids.

    Inputs (constructor):
      - clock: Optional monotonic clock callable (defaults to
        time.monotonic); injectable for tests.

    Outputs:
      - CorrelationTable instance.

    Example:
      >>> table = CorrelationTable()
      >>> table.remember(42, 1)
      >>> table.pop(42)
      1
      >>> table.pop(42) is None
      True
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None) -> None:
        self._clock = clock or time.monotonic
        self._entries: Dict[int, PendingEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, txn_id: object) -> bool:
        return txn_id in self._entries

    def __iter__(self) -> Iterator[int]:
        return iter(list(self._entries))

    def remember(self, txn_id: int, event_id: int) -> Optional[int]:
        """Brief: Record a pending transaction.

        Inputs:
          - txn_id: Transaction id from the query line.
          - event_id: Identifier the store assigned to the inserted event.

        Outputs:
          - The event id previously pending under txn_id, if any. That event
            is abandoned: the newest query owns the id.
        """

        previous = self._entries.get(txn_id)
        self._entries[txn_id] = PendingEntry(event_id=event_id, created=self._clock())
        return previous.event_id if previous is not None else None

    def peek(self, txn_id: int) -> Optional[int]:
        entry = self._entries.get(txn_id)
        return entry.event_id if entry is not None else None

    def pop(self, txn_id: int) -> Optional[int]:
        """Consume and return the pending event id for txn_id, or None."""

        entry = self._entries.pop(txn_id, None)
        return entry.event_id if entry is not None else None

    def expire(self, max_age: float, now: Optional[float] = None) -> int:
        """Brief: Drop pending entries older than max_age seconds.

        Inputs:
          - max_age: Age threshold in seconds; values <= 0 disable expiry.
          - now: Optional clock reading (defaults to the table's clock).

        Outputs:
          - int: number of entries removed.
        """

        if max_age <= 0 or not self._entries:
            return 0
        current = self._clock() if now is None else now
        stale = [
            txn
            for txn, entry in self._entries.items()
            if current - entry.created > max_age
        ]
        for txn in stale:
            del self._entries[txn]
        return len(stale)

    def clear(self) -> None:
        self._entries.clear()
