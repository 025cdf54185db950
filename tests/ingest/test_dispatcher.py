"""
Brief: Tests for dnslogd.ingest.dispatcher.LineDispatcher.

Inputs:
  - None

Outputs:
  - None
"""

import logging

from dnslogd.ingest.correlation import CorrelationTable
from dnslogd.ingest.dispatcher import (
    OUTCOME_COMPLETED,
    OUTCOME_MISSING,
    OUTCOME_ORPHAN,
    OUTCOME_SKIPPED,
    OUTCOME_STORE_ERROR,
    OUTCOME_STORED,
    OUTCOME_UNMATCHED,
    LineDispatcher,
)
from dnslogd.plugins.eventstore.base import EventStoreError
from dnslogd.plugins.eventstore.in_memory import InMemoryEventStore

NOW = 1_700_000_000.0


def _dispatcher(store, **kw):
    kw.setdefault("clock", lambda: NOW)
    return LineDispatcher(store, **kw)


class FailingStore(InMemoryEventStore):
    """In-memory store whose writes can be made to fail."""

    def __init__(self, fail_insert=False, fail_update=False):
        super().__init__()
        self.fail_insert = fail_insert
        self.fail_update = fail_update

    def insert_event(self, ts, client, domain, qtype, blocked):
        if self.fail_insert:
            raise EventStoreError("disk full")
        return super().insert_event(ts, client, domain, qtype, blocked)

    def update_result(self, event_id, result):
        if self.fail_update:
            raise EventStoreError("database is locked")
        return super().update_result(event_id, result)


def test_query_then_completion_end_to_end(memory_store):
    """
    Brief: A query followed by its completion yields one completed event.

    Inputs:
      - query line for #1234 and its "dns done query" line

    Outputs:
      - None: Asserts stored fields and the recorded result
    """
    d = _dispatcher(memory_store)
    assert (
        d.handle_line("dns query from 192.168.1.10: #1234 example.com. AAAA")
        == OUTCOME_STORED
    )
    assert 1234 in d.table

    assert (
        d.handle_line("dns done query: #1234 example.com. 2606:2800:220:1::1")
        == OUTCOME_COMPLETED
    )
    assert 1234 not in d.table

    rows = memory_store.select_events()["items"]
    assert len(rows) == 1
    row = rows[0]
    assert row["client"] == "192.168.1.10"
    assert row["domain"] == "example.com"
    assert row["qtype"] == "AAAA"
    assert row["blocked"] is False
    assert row["result"] == "2606:2800:220:1::1"
    assert row["completed"] is True
    assert row["ts"] == NOW


def test_unknown_type_is_stored_blocked_and_completed_without_result(
    memory_store, caplog
):
    """
    Brief: An untabled UNKNOWN (n) query is stored blocked; a free-text
    completion marks it completed with no result.

    Inputs:
      - query with "UNKNOWN (65399)", completion "dns done query: #77 blocked"

    Outputs:
      - None: Asserts blocked flag, UNKNOWN qtype, null result and log line
    """
    caplog.set_level(logging.INFO, logger="dnslogd.ingest")
    d = _dispatcher(memory_store)
    d.handle_line("dns query from 10.0.0.9: #77 ads.example. UNKNOWN (65399)")
    assert d.handle_line("dns done query: #77 blocked") == OUTCOME_COMPLETED

    row = memory_store.get_event(1)
    assert row["qtype"] == "UNKNOWN"
    assert row["blocked"] is True
    assert row["completed"] is True
    assert row["result"] is None
    assert any("Unknown type: [" in r.getMessage() for r in caplog.records)


def test_unknown_numeric_type_in_table_is_resolved(memory_store):
    d = _dispatcher(memory_store)
    d.handle_line("dns query from 10.0.0.9: #3 svc.example. UNKNOWN (65)")
    row = memory_store.get_event(1)
    assert row["qtype"] == "HTTPS"
    assert row["blocked"] is False


def test_second_completion_is_orphan(memory_store):
    d = _dispatcher(memory_store)
    d.handle_line("dns query from 10.0.0.5: #42 example.com. A")
    assert d.handle_line("dns done query: #42 example.com. 1.2.3.4") == OUTCOME_COMPLETED
    assert d.handle_line("dns done query: #42 example.com. 5.6.7.8") == OUTCOME_ORPHAN
    assert memory_store.get_event(1)["result"] == "1.2.3.4"
    assert d.counters["orphans"] == 1


def test_completion_before_query_is_orphan_and_not_retained(memory_store):
    """
    Brief: A completion with no pending query is dropped, not buffered.

    Inputs:
      - completion for #8 followed by the query for #8

    Outputs:
      - None: Asserts orphan outcome and the later query stays pending
    """
    d = _dispatcher(memory_store)
    assert d.handle_line("dns done query: #8 example.com. 1.1.1.1") == OUTCOME_ORPHAN
    assert d.handle_line("dns query from 10.0.0.5: #8 example.com. A") == OUTCOME_STORED
    row = memory_store.get_event(1)
    assert row["completed"] is False
    assert row["result"] is None
    assert 8 in d.table


def test_unparsed_line_is_logged_and_dropped(memory_store, caplog):
    caplog.set_level(logging.WARNING, logger="dnslogd.ingest")
    d = _dispatcher(memory_store)
    assert d.handle_line("something unrelated") == OUTCOME_UNMATCHED
    assert memory_store.count_events() == 0
    assert any("Unparsed line: something unrelated" in r.getMessage() for r in caplog.records)


def test_insert_failure_is_logged_and_not_remembered(caplog):
    """
    Brief: A failed insert never reaches the correlation table.

    Inputs:
      - store raising EventStoreError on insert

    Outputs:
      - None: Asserts store_error outcome, empty table, later completion orphan
    """
    caplog.set_level(logging.ERROR, logger="dnslogd.ingest")
    store = FailingStore(fail_insert=True)
    d = _dispatcher(store)
    assert d.handle_line("dns query from 10.0.0.5: #1 example.com. A") == OUTCOME_STORE_ERROR
    assert len(d.table) == 0
    assert d.handle_line("dns done query: #1 example.com. 1.2.3.4") == OUTCOME_ORPHAN
    assert d.counters["store_errors"] == 1
    assert any("disk full" in r.getMessage() for r in caplog.records)


def test_update_failure_consumes_pending_entry():
    store = FailingStore(fail_update=True)
    d = _dispatcher(store)
    d.handle_line("dns query from 10.0.0.5: #1 example.com. A")
    assert d.handle_line("dns done query: #1 example.com. 1.2.3.4") == OUTCOME_STORE_ERROR
    assert 1 not in d.table
    assert store.get_event(1)["completed"] is False


def test_completion_for_purged_event_is_missing(memory_store):
    d = _dispatcher(memory_store)
    d.handle_line("dns query from 10.0.0.5: #1 example.com. A")
    memory_store.delete_older_than(NOW + 1)
    assert d.handle_line("dns done query: #1 example.com. 1.2.3.4") == OUTCOME_MISSING
    assert 1 not in d.table


def test_reused_txn_abandons_older_event(memory_store):
    d = _dispatcher(memory_store)
    d.handle_line("dns query from 10.0.0.5: #9 first.example. A")
    d.handle_line("dns query from 10.0.0.6: #9 second.example. A")
    d.handle_line("dns done query: #9 second.example. 1.2.3.4")

    assert memory_store.get_event(1)["completed"] is False
    assert memory_store.get_event(2)["result"] == "1.2.3.4"


def test_self_referential_completion_recorded_by_default(memory_store):
    d = _dispatcher(memory_store)
    d.handle_line("dns query from 10.0.0.5: #4 cname.example. A")
    assert d.handle_line("dns done query: #4 cname.example. cname.example.") == OUTCOME_COMPLETED
    assert memory_store.get_event(1)["result"] == "cname.example."


def test_self_referential_completion_skipped_when_enabled(memory_store):
    """
    Brief: With drop_self_referential_results the entry stays pending.

    Inputs:
      - completion whose detail repeats the queried domain, then a real one

    Outputs:
      - None: Asserts skip outcome and later real completion applies
    """
    d = _dispatcher(memory_store, drop_self_referential_results=True)
    d.handle_line("dns query from 10.0.0.5: #4 cname.example. A")
    assert d.handle_line("dns done query: #4 cname.example. CNAME.example.") == OUTCOME_SKIPPED
    assert 4 in d.table
    assert d.handle_line("dns done query: #4 cname.example. 9.9.9.9") == OUTCOME_COMPLETED
    assert memory_store.get_event(1)["result"] == "9.9.9.9"


def test_handle_datagram_processes_lines_in_order(memory_store):
    d = _dispatcher(memory_store)
    data = (
        b"dns query from 10.0.0.5: #1 a.example. A\n"
        b"dns done query: #1 a.example. 1.1.1.1\n"
        b"garbage\n"
        b"dns query from 10.0.0.5: #2 b.example. MX\n"
    )
    assert d.handle_datagram(data) == 4
    assert memory_store.count_events() == 2
    assert memory_store.get_event(1)["result"] == "1.1.1.1"
    assert 2 in d.table
    assert d.counters["datagrams"] == 1
    assert d.counters["unmatched"] == 1


def test_handle_datagram_replaces_invalid_utf8(memory_store):
    d = _dispatcher(memory_store)
    d.handle_datagram(b"dns query from 10.0.0.5: #1 caf\xff.example. A")
    row = memory_store.get_event(1)
    assert row["domain"] == "caf\ufffd.example"


def test_handle_datagram_continues_after_unexpected_error(memory_store, monkeypatch, caplog):
    d = _dispatcher(memory_store)
    calls = []
    original = d.handle_line

    def flaky(line):
        calls.append(line)
        if len(calls) == 1:
            raise RuntimeError("boom")
        return original(line)

    monkeypatch.setattr(d, "handle_line", flaky)
    caplog.set_level(logging.ERROR, logger="dnslogd.ingest")
    d.handle_datagram("first\ndns query from 10.0.0.5: #1 a.example. A\n")
    assert len(calls) == 2
    assert memory_store.count_events() == 1


def test_pending_expiry_honours_ttl_and_check_interval(memory_store):
    """
    Brief: maybe_expire_pending only runs after the check interval.

    Inputs:
      - dispatcher with a 30s TTL and 10s check interval over a fake clock

    Outputs:
      - None: Asserts expired count and counters
    """
    clock = {"now": 0.0}
    table = CorrelationTable(clock=lambda: clock["now"])
    d = _dispatcher(
        memory_store, table=table, pending_ttl_seconds=30, expiry_check_seconds=10
    )
    d._last_expiry = 0.0
    d.handle_line("dns query from 10.0.0.5: #1 a.example. A")

    clock["now"] = 100.0
    assert d.maybe_expire_pending(now=5.0) == 0
    assert d.maybe_expire_pending(now=20.0) == 1
    assert 1 not in d.table
    assert d.counters["expired"] == 1
    assert d.handle_line("dns done query: #1 a.example. 1.1.1.1") == OUTCOME_ORPHAN


def test_pending_expiry_disabled_by_default(memory_store):
    d = _dispatcher(memory_store)
    d.handle_line("dns query from 10.0.0.5: #1 a.example. A")
    assert d.maybe_expire_pending(now=1e12) == 0
    assert 1 in d.table
