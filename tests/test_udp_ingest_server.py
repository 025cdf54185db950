"""
Brief: Tests for dnslogd.servers.udp_server over a real loopback socket.

Inputs:
  - None

Outputs:
  - None
"""

import socket
import time

import pytest

from dnslogd.ingest.dispatcher import LineDispatcher
from dnslogd.mirror import DatagramMirror
from dnslogd.plugins.eventstore.in_memory import InMemoryEventStore
from dnslogd.servers.udp_server import IngestServer, IngestUDPServer


def _wait_for(predicate, timeout=3.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


def _send(addr, payload: bytes) -> None:
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        sock.sendto(payload, addr)
    finally:
        sock.close()


@pytest.fixture
def running_server(tmp_path):
    store = InMemoryEventStore()
    dispatcher = LineDispatcher(store)
    mirror = DatagramMirror(str(tmp_path / "raw.jsonl"))
    server = IngestServer("127.0.0.1", 0, dispatcher, mirror=mirror)
    thread = server.start(name="test-udp")
    try:
        yield server, store, dispatcher, mirror
    finally:
        server.shutdown()
        thread.join(timeout=2.0)
        mirror.close()


def test_datagrams_are_ingested_in_order(running_server):
    """
    Brief: Query and completion datagrams produce a completed event.

    Inputs:
      - two datagrams sent to the bound loopback port

    Outputs:
      - None: Asserts the stored, completed event
    """
    server, store, dispatcher, _mirror = running_server
    addr = server.address

    _send(addr, b"dns query from 10.0.0.5: #1234 example.com. A\n")
    assert _wait_for(lambda: store.count_events() == 1)
    _send(addr, b"dns done query: #1234 example.com. 93.184.216.34")
    assert _wait_for(lambda: (store.get_event(1) or {}).get("completed"))

    row = store.get_event(1)
    assert row["result"] == "93.184.216.34"
    assert row["client"] == "10.0.0.5"
    assert len(dispatcher.table) == 0


def test_multi_line_datagram_and_garbage(running_server):
    server, store, dispatcher, _mirror = running_server
    payload = (
        b"garbage line\n"
        b"dns query from 10.0.0.5: #1 a.example. A\n"
        b"dns query from 10.0.0.6: #2 b.example. UNKNOWN (65399)\n"
    )
    _send(server.address, payload)
    assert _wait_for(lambda: store.count_events() == 2)
    assert _wait_for(lambda: dispatcher.counters["unmatched"] == 1)
    assert store.get_event(2)["blocked"] is True


def test_mirror_receives_raw_datagrams(running_server):
    server, _store, _dispatcher, mirror = running_server
    _send(server.address, b"not a resolver line")
    assert _wait_for(lambda: mirror_line_count(mirror) >= 2)


def mirror_line_count(mirror):
    with open(mirror.file_path, encoding="utf-8") as f:
        return len(f.read().splitlines())


def test_max_packet_size_has_floor():
    server = IngestUDPServer(
        ("127.0.0.1", 0), LineDispatcher(InMemoryEventStore()), max_packet_size=10
    )
    try:
        assert server.max_packet_size == 512
    finally:
        server.server_close()


def test_shutdown_without_serving_closes_socket():
    server = IngestServer("127.0.0.1", 0, LineDispatcher(InMemoryEventStore()))
    server.shutdown()
    assert server.server.socket.fileno() == -1

