"""Dispatch classified log lines to the event store.

Brief:
  LineDispatcher is the single sequential consumer of resolver log lines.
  Query lines are stored immediately and their transaction id remembered;
  completion lines look the id up, write the outcome onto the stored event,
  and forget the id. Nothing here is fatal: every failure is logged and the
  next line is processed.

Inputs:
  - A BaseEventStore backend and (optionally) a CorrelationTable.

Outputs:
  - LineDispatcher with handle_datagram()/handle_line() entry points.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional, Union

from ..plugins.eventstore.base import BaseEventStore, EventStoreError
from .classifier import CompletionEvent, QueryEvent, classify_line, split_datagram
from .correlation import CorrelationTable
from .qtypes import UNKNOWN_TYPE, resolve_type

logger = logging.getLogger("dnslogd.ingest")

# Outcomes returned by LineDispatcher.handle_line().
OUTCOME_STORED = "stored"
OUTCOME_COMPLETED = "completed"
OUTCOME_ORPHAN = "orphan"
OUTCOME_MISSING = "missing"
OUTCOME_SKIPPED = "skipped"
OUTCOME_UNMATCHED = "unmatched"
OUTCOME_STORE_ERROR = "store_error"

_COUNTER_NAMES = (
    "datagrams",
    "lines",
    "queries",
    "completions",
    "orphans",
    "missing",
    "unmatched",
    "store_errors",
    "skipped_self_referential",
    "expired",
)


def _is_self_referential(event: CompletionEvent) -> bool:
    if event.domain is None or event.detail is None:
        return False
    detail = event.detail.strip().rstrip(".").lower()
    return detail == event.domain.rstrip(".").lower()


class LineDispatcher:
    """Brief: Sequential query/completion correlation over an event store.

    Inputs (constructor):
      - store: BaseEventStore receiving inserts and result updates.
      - table: Optional CorrelationTable; a fresh one is created when omitted.
      - drop_self_referential_results: When True, completion lines whose
        detail equals the queried domain are skipped and the transaction
        stays pending.
      - pending_ttl_seconds: Age after which pending transactions are
        forgotten (0 disables expiry).
      - expiry_check_seconds: Minimum spacing between expiry passes.
      - clock: Wall-clock callable used for missing timestamps.

    Outputs:
      - LineDispatcher instance.

    Example:
      >>> from dnslogd.plugins.eventstore.in_memory import InMemoryEventStore
      >>> d = LineDispatcher(InMemoryEventStore())
      >>> d.handle_line("dns query from 10.0.0.5: #42 example.com. A")
      'stored'
      >>> d.handle_line("dns done query: #42 example.com. 93.184.216.34")
      'completed'
    """

    def __init__(
        self,
        store: BaseEventStore,
        table: Optional[CorrelationTable] = None,
        *,
        drop_self_referential_results: bool = False,
        pending_ttl_seconds: float = 0.0,
        expiry_check_seconds: float = 60.0,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self.store = store
        self.table = table if table is not None else CorrelationTable()
        self.drop_self_referential_results = bool(drop_self_referential_results)
        self.pending_ttl_seconds = max(0.0, float(pending_ttl_seconds or 0.0))
        self.expiry_check_seconds = max(0.0, float(expiry_check_seconds or 0.0))
        self._clock = clock or time.time
        self._last_expiry = time.monotonic()
        self.counters: Dict[str, int] = {name: 0 for name in _COUNTER_NAMES}

    def _bump(self, name: str) -> None:
        self.counters[name] = self.counters.get(name, 0) + 1

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------
    def handle_datagram(self, data: Union[bytes, str]) -> int:
        """Brief: Decode a datagram and dispatch each line in order.

        Inputs:
          - data: Raw datagram bytes (UTF-8; invalid sequences replaced) or
            an already-decoded string.

        Outputs:
          - int: number of non-empty lines dispatched.
        """

        self._bump("datagrams")
        if isinstance(data, (bytes, bytearray, memoryview)):
            text = bytes(data).decode("utf-8", errors="replace")
        else:
            text = str(data)

        lines = split_datagram(text)
        for line in lines:
            try:
                self.handle_line(line)
            except Exception:
                logger.exception("Unexpected error while handling line: %r", line)

        self.maybe_expire_pending()
        return len(lines)

    def handle_line(self, line: str) -> str:
        """Brief: Classify one line and apply it.

        Inputs:
          - line: Single log line.

        Outputs:
          - str outcome: "stored", "completed", "orphan", "missing",
            "skipped", "unmatched" or "store_error".
        """

        self._bump("lines")
        event = classify_line(line, now=self._clock())
        if event is None:
            self._bump("unmatched")
            logger.warning("Unparsed line: %s", line)
            return OUTCOME_UNMATCHED
        if isinstance(event, QueryEvent):
            return self._handle_query(event, line)
        return self._handle_completion(event)

    # ------------------------------------------------------------------
    # Query path
    # ------------------------------------------------------------------
    def _handle_query(self, event: QueryEvent, line: str) -> str:
        qtype, blocked = resolve_type(event.type_token)
        if qtype == UNKNOWN_TYPE:
            logger.info("Unknown type: [%s]", line)

        try:
            event_id = self.store.insert_event(
                ts=event.ts,
                client=event.client,
                domain=event.domain,
                qtype=qtype,
                blocked=blocked,
            )
        except EventStoreError as exc:
            self._bump("store_errors")
            logger.error("Store insert error for #%d: %s", event.txn_id, exc)
            return OUTCOME_STORE_ERROR

        self._bump("queries")
        abandoned = self.table.remember(event.txn_id, event_id)
        if abandoned is not None:
            logger.debug(
                "Transaction #%d reused before completion; event %d abandoned",
                event.txn_id,
                abandoned,
            )
        logger.debug("Logged query: %s %s %s", event.client, event.domain, qtype)
        return OUTCOME_STORED

    # ------------------------------------------------------------------
    # Completion path
    # ------------------------------------------------------------------
    def _handle_completion(self, event: CompletionEvent) -> str:
        self._bump("completions")

        if self.drop_self_referential_results and _is_self_referential(event):
            self._bump("skipped_self_referential")
            logger.debug(
                "Skipping self-referential completion for #%d (%s)",
                event.txn_id,
                event.domain,
            )
            return OUTCOME_SKIPPED

        event_id = self.table.pop(event.txn_id)
        if event_id is None:
            self._bump("orphans")
            logger.info("No pending query for completion #%d; dropped", event.txn_id)
            return OUTCOME_ORPHAN

        result = event.detail if event.has_detail else None
        try:
            updated = self.store.update_result(event_id, result)
        except EventStoreError as exc:
            self._bump("store_errors")
            logger.error(
                "Store update error for event %d (#%d): %s", event_id, event.txn_id, exc
            )
            return OUTCOME_STORE_ERROR

        if not updated:
            self._bump("missing")
            logger.info(
                "Event %d for completion #%d is no longer stored; dropped",
                event_id,
                event.txn_id,
            )
            return OUTCOME_MISSING

        logger.debug("Completed event %d (#%d): %s", event_id, event.txn_id, result)
        return OUTCOME_COMPLETED

    # ------------------------------------------------------------------
    # Pending-entry expiry
    # ------------------------------------------------------------------
    def maybe_expire_pending(self, now: Optional[float] = None) -> int:
        """Brief: Run expire_pending() when the check interval has elapsed.

        Inputs:
          - now: Optional monotonic clock reading.

        Outputs:
          - int: number of entries expired (0 when skipped or disabled).
        """

        if self.pending_ttl_seconds <= 0:
            return 0
        current = time.monotonic() if now is None else now
        if current - self._last_expiry < self.expiry_check_seconds:
            return 0
        self._last_expiry = current
        return self.expire_pending()

    def expire_pending(self) -> int:
        """Forget pending transactions older than pending_ttl_seconds."""

        removed = self.table.expire(self.pending_ttl_seconds)
        if removed:
            self.counters["expired"] += removed
            logger.info(
                "Expired %d pending transactions older than %.0fs",
                removed,
                self.pending_ttl_seconds,
            )
        return removed
