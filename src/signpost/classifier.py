"""Per-query values and the zone-transfer classifier.

Inputs:
  - Wire-format DNS queries parsed with dnslib, plus the peer address and
    transport reported by a listener.

Outputs:
  - IncomingQuery / ClientIdentity values and a QueryKind for each query.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from dnslib import QTYPE, DNSRecord

from .errors import MalformedQueryError

TRANSFER_QTYPES = frozenset((QTYPE.AXFR, QTYPE.IXFR))


class Transport(enum.Enum):
    UDP = "udp"
    TCP = "tcp"


class QueryKind(enum.Enum):
    LOOKUP = "lookup"
    TRANSFER = "transfer"


@dataclass(frozen=True)
class ClientIdentity:
    """Remote peer of one datagram or TCP connection.

    Inputs:
      - host: Peer IP with the port stripped.
      - port: Peer port.
      - transport: Transport the query arrived on.
    """

    host: str
    port: int
    transport: Transport

    @classmethod
    def from_peer(cls, peer: object, transport: Transport) -> "ClientIdentity":
        """Brief: Build from a socket peername tuple (IPv4 2-tuple or IPv6 4-tuple)."""

        if isinstance(peer, tuple) and peer:
            port = int(peer[1]) if len(peer) > 1 else 0
            return cls(host=str(peer[0]), port=port, transport=transport)
        return cls(host="0.0.0.0", port=0, transport=transport)


@dataclass(frozen=True)
class IncomingQuery:
    """Parsed query and the exact bytes it arrived as.

    The wire form is what gets forwarded so upstreams see the client's
    message unchanged.
    """

    wire: bytes
    record: DNSRecord

    @classmethod
    def from_wire(cls, data: bytes) -> "IncomingQuery":
        """Brief: Parse wire bytes; raises dnslib.DNSError on garbage."""

        return cls(wire=bytes(data), record=DNSRecord.parse(data))

    @classmethod
    def from_record(cls, record: DNSRecord) -> "IncomingQuery":
        return cls(wire=record.pack(), record=record)

    @property
    def id(self) -> int:
        return self.record.header.id

    @property
    def qname(self) -> str:
        """Name of the first question; MalformedQueryError if there is none."""

        if not self.record.questions:
            raise MalformedQueryError("query has no questions")
        return str(self.record.questions[0].qname)


def is_transfer(record: DNSRecord) -> bool:
    return any(q.qtype in TRANSFER_QTYPES for q in record.questions)


def classify(query: IncomingQuery) -> QueryKind:
    """Brief: Classify a query as an ordinary lookup or a zone transfer.

    Inputs:
      - query: IncomingQuery with at least one question.

    Outputs:
      - QueryKind.TRANSFER when any question asks for AXFR or IXFR, else
        QueryKind.LOOKUP.

    Raises:
      - MalformedQueryError when the question section is empty.

    Example:
      >>> classify(IncomingQuery.from_record(DNSRecord.question("example.com", "AXFR")))
      <QueryKind.TRANSFER: 'transfer'>
    """

    if not query.record.questions:
        raise MalformedQueryError(f"query id={query.id} has no questions")
    if is_transfer(query.record):
        return QueryKind.TRANSFER
    return QueryKind.LOOKUP
