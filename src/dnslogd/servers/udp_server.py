import logging
import socket
import socketserver
import threading
from typing import Optional, Tuple

from ..ingest.dispatcher import LineDispatcher
from ..mirror import DatagramMirror

logger = logging.getLogger("dnslogd.server")

DEFAULT_MAX_DATAGRAM_BYTES = 65535


class IngestDatagramHandler(socketserver.BaseRequestHandler):
    """
    Handles one resolver log datagram.

    The server is a plain (non-threading) UDPServer, so handlers run one at a
    time in arrival order and the dispatcher's correlation table is only ever
    touched from the serving thread.
    """

    def handle(self) -> None:
        data, _sock = self.request  # type: ignore[misc]
        peer = (
            str(self.client_address[0])
            if isinstance(self.client_address, tuple)
            else None
        )

        mirror: Optional[DatagramMirror] = getattr(self.server, "mirror", None)
        if mirror is not None:
            mirror.write(data, peer=peer)

        dispatcher: LineDispatcher = self.server.dispatcher  # type: ignore[attr-defined]
        try:
            count = dispatcher.handle_datagram(data)
            logger.debug("Handled %d lines from %s", count, peer)
        except Exception:
            logger.exception("Failed to process datagram from %s", peer)


class IngestUDPServer(socketserver.UDPServer):
    """
    Brief: Sequential UDP server feeding datagrams to a LineDispatcher.

    Inputs:
    - server_address: (host, port) to bind
    - dispatcher: LineDispatcher consuming datagrams
    - mirror: optional DatagramMirror receiving each raw datagram first
    - max_packet_size: receive buffer size per datagram

    Outputs:
    - Bound server; call serve_forever()
    """

    allow_reuse_address = True

    def __init__(
        self,
        server_address: Tuple[str, int],
        dispatcher: LineDispatcher,
        mirror: Optional[DatagramMirror] = None,
        max_packet_size: int = DEFAULT_MAX_DATAGRAM_BYTES,
    ) -> None:
        host = str(server_address[0])
        if ":" in host:
            self.address_family = socket.AF_INET6
        self.dispatcher = dispatcher
        self.mirror = mirror
        self.max_packet_size = max(512, int(max_packet_size))
        super().__init__(server_address, IngestDatagramHandler)

    def handle_error(self, request, client_address) -> None:
        logger.exception("Error handling datagram from %s", client_address)


class IngestServer:
    """A UDP ingestion server wrapper.

    Example use:
        >>> from dnslogd.ingest import LineDispatcher
        >>> from dnslogd.plugins.eventstore.in_memory import InMemoryEventStore
        >>> server = IngestServer("127.0.0.1", 0, LineDispatcher(InMemoryEventStore()))
        >>> t = server.start()
        >>> server.shutdown()
    """

    def __init__(
        self,
        host: str,
        port: int,
        dispatcher: LineDispatcher,
        *,
        mirror: Optional[DatagramMirror] = None,
        max_datagram_bytes: int = DEFAULT_MAX_DATAGRAM_BYTES,
    ) -> None:
        """Bind the UDP socket.

        Inputs:
            host: The host to listen on.
            port: The port to listen on (0 picks a free port).
            dispatcher: LineDispatcher receiving each datagram.
            mirror: Optional DatagramMirror.
            max_datagram_bytes: Largest datagram accepted without truncation.

        Raises:
            OSError: when the socket cannot be bound.
        """
        self.dispatcher = dispatcher
        self._serving = False
        self.server = IngestUDPServer(
            (host, int(port)),
            dispatcher,
            mirror=mirror,
            max_packet_size=max_datagram_bytes,
        )

    @property
    def address(self) -> Tuple[str, int]:
        host, port = self.server.server_address[:2]
        return str(host), int(port)

    def serve_forever(self, poll_interval: float = 0.5) -> None:
        """Serve until shutdown() is called from another thread."""
        self._serving = True
        try:
            self.server.serve_forever(poll_interval=poll_interval)
        except KeyboardInterrupt:
            pass

    def start(self, name: str = "dnslogd-udp") -> threading.Thread:
        """Run serve_forever() in a daemon thread and return the thread."""
        self._serving = True
        thread = threading.Thread(target=self.serve_forever, name=name, daemon=True)
        thread.start()
        return thread

    def shutdown(self) -> None:
        """Stop serve_forever() and close the socket. Must not be called from the serving thread."""
        try:
            if self._serving:
                self.server.shutdown()
        finally:
            self.server.server_close()

