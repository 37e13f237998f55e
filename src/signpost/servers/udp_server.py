import logging
import socketserver

from ..classifier import ClientIdentity, Transport
from .dispatcher import Dispatcher
from .listen import FamilyAwareServerMixin, listen_family

logger = logging.getLogger("signpost.server")


class UDPSink:
    """Brief: Response sink that answers a single datagram."""

    def __init__(self, sock, address) -> None:
        self.sock = sock
        self.address = address

    def write(self, wire: bytes) -> None:
        self.sock.sendto(wire, self.address)


class DNSUDPHandler(socketserver.BaseRequestHandler):
    """
    Handles UDP DNS requests.
    This class is instantiated for each incoming datagram, on its own thread.

    Example use:
        This handler is used internally by ThreadingUDPServer and is not
        typically instantiated directly by users.
    """

    def handle(self) -> None:
        data, sock = self.request
        client = ClientIdentity.from_peer(self.client_address, Transport.UDP)
        self.server.dispatcher.handle_wire(
            data, client, UDPSink(sock, self.client_address)
        )


class ThreadingUDPServer(FamilyAwareServerMixin, socketserver.ThreadingUDPServer):
    """
    Brief: Thread-per-datagram UDP listener bound to a Dispatcher.

    Inputs:
      - host: Listen host ("" for every interface).
      - port: Listen port.
      - dispatcher: Dispatcher answering each datagram.

    Outputs:
      - Bound server; call serve_forever() to start answering.

    Example:
        >>> srv = ThreadingUDPServer("127.0.0.1", 5353, dispatcher)
        >>> threading.Thread(target=srv.serve_forever, daemon=True).start()
    """

    daemon_threads = True
    # Large enough for any datagram; the base class default is 8192.
    max_packet_size = 65535

    def __init__(self, host: str, port: int, dispatcher: Dispatcher) -> None:
        family, bind_host, dual_stack = listen_family(host)
        self.address_family = family
        self.dual_stack = dual_stack
        self.dispatcher = dispatcher
        try:
            super().__init__((bind_host, int(port)), DNSUDPHandler)
        except PermissionError as e:
            logger.error(
                "Permission denied when binding to %s:%d. Try a port >1024 or run with elevated privileges. Original error: %s",
                bind_host,
                int(port),
                e,
            )
            raise
        logger.debug("DNS UDP server bound to %s:%d", bind_host, int(port))
