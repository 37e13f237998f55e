"""Upstream forwarding strategies keyed by query kind and inbound transport.

Brief:
  The Forwarder owns the network exchange with the chosen upstream. Which
  exchange runs is decided by a small table keyed by (QueryKind, Transport):

    (LOOKUP,   UDP) -> one UDP exchange, reply relayed verbatim
    (LOOKUP,   TCP) -> one framed TCP exchange, reply relayed verbatim
    (TRANSFER, TCP) -> zone transfer stream relayed message by message
    (TRANSFER, UDP) -> TransportMismatchError

Inputs:
  - Upstream "host:port", IncomingQuery, QueryKind, Transport, ResponseSink.

Outputs:
  - Messages written to the sink, or an UpstreamError/TransferError/
    TransportMismatchError for the dispatcher to turn into SERVFAIL.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Protocol, Tuple

from ..classifier import IncomingQuery, QueryKind, Transport
from ..errors import TransferError, TransportMismatchError, UpstreamError
from ..routing import split_host_port
from .transports.axfr import AXFRError, transfer_stream
from .transports.tcp import TCPError, tcp_query
from .transports.udp import UDPError, udp_query

logger = logging.getLogger("signpost.forwarder")


class ResponseSink(Protocol):
    """Destination for the message(s) answering one query."""

    def write(self, wire: bytes) -> None: ...


Strategy = Callable[["Forwarder", str, int, IncomingQuery, ResponseSink], int]


class Forwarder:
    """
    Executes the upstream exchange for a routed query.

    Inputs:
      - timeout_ms: Per-exchange timeout for ordinary lookups.
      - transfer_timeout_ms: Per-read timeout while streaming a transfer.

    Example use:
        >>> fwd = Forwarder(timeout_ms=1500)
        >>> fwd.forward("8.8.8.8:53", query, QueryKind.LOOKUP, Transport.UDP, sink)
    """

    def __init__(self, timeout_ms: int = 2000, transfer_timeout_ms: int = 5000):
        self.timeout_ms = max(1, int(timeout_ms))
        self.transfer_timeout_ms = max(1, int(transfer_timeout_ms))

    def forward(
        self,
        upstream: str,
        query: IncomingQuery,
        kind: QueryKind,
        transport: Transport,
        sink: ResponseSink,
    ) -> int:
        """
        Forward *query* to *upstream* and write the outcome to *sink*.

        Inputs:
          - upstream: "host:port" chosen by the routing table.
          - query: IncomingQuery to forward unchanged.
          - kind: QueryKind from the classifier.
          - transport: Transport the client used.
          - sink: ResponseSink for the client.

        Outputs:
          - int: Number of messages written to the sink.

        Raises:
          - TransportMismatchError, UpstreamError, TransferError.
        """
        strategy = self.STRATEGIES[(kind, transport)]
        host, port = split_host_port(upstream)
        return strategy(self, host, port, query, sink)

    def _lookup_udp(
        self, host: str, port: int, query: IncomingQuery, sink: ResponseSink
    ) -> int:
        try:
            reply = udp_query(host, port, query.wire, timeout_ms=self.timeout_ms)
        except UDPError as e:
            raise UpstreamError(str(e)) from e
        sink.write(reply)
        return 1

    def _lookup_tcp(
        self, host: str, port: int, query: IncomingQuery, sink: ResponseSink
    ) -> int:
        try:
            reply = tcp_query(
                host,
                port,
                query.wire,
                connect_timeout_ms=self.timeout_ms,
                read_timeout_ms=self.timeout_ms,
            )
        except TCPError as e:
            raise UpstreamError(str(e)) from e
        sink.write(reply)
        return 1

    def _transfer_tcp(
        self, host: str, port: int, query: IncomingQuery, sink: ResponseSink
    ) -> int:
        written = 0
        try:
            for message in transfer_stream(
                host,
                port,
                query.wire,
                connect_timeout_ms=self.timeout_ms,
                read_timeout_ms=self.transfer_timeout_ms,
            ):
                sink.write(message)
                written += 1
        except AXFRError as e:
            if written:
                logger.warning(
                    "Zone transfer from %s:%d aborted after %d message(s): %s",
                    host,
                    port,
                    written,
                    e,
                )
            raise TransferError(str(e)) from e
        logger.debug(
            "Zone transfer from %s:%d relayed %d message(s)", host, port, written
        )
        return written

    def _transfer_udp(
        self, host: str, port: int, query: IncomingQuery, sink: ResponseSink
    ) -> int:
        raise TransportMismatchError("zone transfers are only served over TCP")

    STRATEGIES: Dict[Tuple[QueryKind, Transport], Strategy] = {
        (QueryKind.LOOKUP, Transport.UDP): _lookup_udp,
        (QueryKind.LOOKUP, Transport.TCP): _lookup_tcp,
        (QueryKind.TRANSFER, Transport.TCP): _transfer_tcp,
        (QueryKind.TRANSFER, Transport.UDP): _transfer_udp,
    }
