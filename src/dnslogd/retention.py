"""Periodic purge of events older than the retention window."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from .plugins.eventstore.base import BaseEventStore, EventStoreError

DEFAULT_WINDOW_SECONDS = 24 * 60 * 60
DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 60


class RetentionSweeper(threading.Thread):
    """
    Background daemon thread deleting events older than the retention window.

    Inputs (constructor):
        store: BaseEventStore to purge
        window_seconds: Retention window; events with ts < now - window are
            deleted (default 24h)
        interval_seconds: Seconds between sweeps (default 1h)
        clock: Wall-clock callable (default time.time)
        logger_name: Logger name to use (default "dnslogd.retention")

    Outputs:
        RetentionSweeper thread instance (call start() to begin)

    The sweeper waits interval_seconds, then deletes. A failed delete is
    logged and retried at the next period. It never sees the in-memory
    correlation table: a pending event purged here simply turns its later
    completion into an orphan.

    Example:
        >>> sweeper = RetentionSweeper(store, window_seconds=86400, interval_seconds=3600)
        >>> sweeper.start()
        >>> # ... later
        >>> sweeper.stop()
    """

    def __init__(
        self,
        store: BaseEventStore,
        window_seconds: float = DEFAULT_WINDOW_SECONDS,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Optional[Callable[[], float]] = None,
        logger_name: str = "dnslogd.retention",
    ) -> None:
        super().__init__(daemon=True, name="RetentionSweeper")
        self.store = store
        self.window_seconds = max(0.0, float(window_seconds))
        self.interval_seconds = max(1.0, float(interval_seconds))
        self._clock = clock or time.time
        self.logger = logging.getLogger(logger_name)
        self._stop_event = threading.Event()
        self.last_deleted: Optional[int] = None

    def cutoff(self, now: Optional[float] = None) -> float:
        current = self._clock() if now is None else float(now)
        return current - self.window_seconds

    def sweep_once(self, now: Optional[float] = None) -> Optional[int]:
        """
        Delete events older than the retention window.

        Inputs:
            now: Optional epoch seconds to measure the window from

        Outputs:
            Number of deleted events, or None when the store failed
        """
        cutoff = self.cutoff(now)
        try:
            deleted = self.store.delete_older_than(cutoff)
        except EventStoreError as e:
            self.logger.error("Error purging old records: %s", e)
            self.last_deleted = None
            return None

        self.last_deleted = deleted
        if deleted:
            self.logger.info("Purged %d events older than %.0f", deleted, cutoff)
        else:
            self.logger.debug("Retention sweep found nothing older than %.0f", cutoff)
        return deleted

    def run(self) -> None:
        while not self._stop_event.wait(self.interval_seconds):
            try:
                self.sweep_once()
            except Exception as e:  # pragma: no cover
                self.logger.error("RetentionSweeper error: %s", e, exc_info=True)

    def stop(self, timeout: float = 5.0) -> None:
        """Signal the sweeper to stop and wait for the thread to exit."""
        self._stop_event.set()
        if self.is_alive():
            self.join(timeout=timeout)
