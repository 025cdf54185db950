"""
Brief: Tests for dnslogd.retention.RetentionSweeper.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import time

from dnslogd.plugins.eventstore.base import EventStoreError
from dnslogd.plugins.eventstore.in_memory import InMemoryEventStore
from dnslogd.plugins.eventstore.sqlite import SqliteEventStore
from dnslogd.retention import RetentionSweeper

NOW = 1_700_000_000.0
HOUR = 3600.0


def test_sweep_deletes_events_older_than_24h_only():
    """
    Brief: The 24h boundary deletes now-24h-1s and keeps now-23h.

    Inputs:
      - SQLite store with events at now-24h-1s and now-23h

    Outputs:
      - None: Asserts one deletion and the surviving event
    """
    store = SqliteEventStore(db_path=":memory:")
    try:
        old = store.insert_event(NOW - 24 * HOUR - 1, "c", "old.example", "A", False)
        recent = store.insert_event(NOW - 23 * HOUR, "c", "new.example", "A", False)

        sweeper = RetentionSweeper(store, clock=lambda: NOW)
        assert sweeper.sweep_once() == 1
        assert sweeper.last_deleted == 1
        assert store.get_event(old) is None
        assert store.get_event(recent) is not None
    finally:
        store.close()


def test_cutoff_uses_window():
    sweeper = RetentionSweeper(InMemoryEventStore(), window_seconds=60, clock=lambda: NOW)
    assert sweeper.cutoff() == NOW - 60
    assert sweeper.cutoff(now=100.0) == 40.0


def test_interval_has_floor_of_one_second():
    sweeper = RetentionSweeper(InMemoryEventStore(), interval_seconds=0)
    assert sweeper.interval_seconds == 1.0


class BrokenStore(InMemoryEventStore):
    def delete_older_than(self, cutoff_ts):
        raise EventStoreError("database is locked")


def test_sweep_failure_is_logged_and_returns_none(caplog):
    caplog.set_level(logging.ERROR, logger="dnslogd.retention")
    sweeper = RetentionSweeper(BrokenStore(), clock=lambda: NOW)
    assert sweeper.sweep_once() is None
    assert sweeper.last_deleted is None
    assert any(
        "Error purging old records: database is locked" in r.getMessage()
        for r in caplog.records
    )


def test_thread_sweeps_periodically_and_stops():
    """
    Brief: The daemon thread sweeps after each interval and stops promptly.

    Inputs:
      - in-memory store with one stale event, 1s interval

    Outputs:
      - None: Asserts the event is purged and the thread exits on stop()
    """
    store = InMemoryEventStore()
    store.insert_event(0.0, "c", "stale.example", "A", False)
    sweeper = RetentionSweeper(store, interval_seconds=1, clock=lambda: NOW)
    assert sweeper.daemon is True
    sweeper.start()
    try:
        deadline = time.time() + 5.0
        while store.count_events() and time.time() < deadline:
            time.sleep(0.05)
        assert store.count_events() == 0
    finally:
        sweeper.stop(timeout=2.0)
    assert not sweeper.is_alive()


def test_stop_before_start_is_safe():
    sweeper = RetentionSweeper(InMemoryEventStore())
    sweeper.stop()
    assert not sweeper.is_alive()
