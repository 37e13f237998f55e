"""
Brief: Tests for query classification and the per-query value types.

Inputs:
  - None

Outputs:
  - None
"""

import pytest
from dnslib import DNSHeader, DNSQuestion, DNSRecord, QTYPE

from signpost.classifier import (
    ClientIdentity,
    IncomingQuery,
    QueryKind,
    Transport,
    classify,
    is_transfer,
)
from signpost.errors import MalformedQueryError


@pytest.mark.parametrize(
    "qtype,kind",
    [
        ("A", QueryKind.LOOKUP),
        ("SOA", QueryKind.LOOKUP),
        ("AXFR", QueryKind.TRANSFER),
        ("IXFR", QueryKind.TRANSFER),
    ],
)
def test_classify_by_qtype(qtype, kind) -> None:
    query = IncomingQuery.from_record(DNSRecord.question("example.com", qtype))
    assert classify(query) is kind


def test_transfer_detected_in_any_question() -> None:
    """Brief: A multi-question query is a transfer if any question is AXFR/IXFR.

    Inputs:
      - None

    Outputs:
      - None
    """
    record = DNSRecord(
        DNSHeader(id=7),
        questions=[
            DNSQuestion("example.com.", QTYPE.A),
            DNSQuestion("example.com.", QTYPE.AXFR),
        ],
    )
    assert is_transfer(record)
    assert classify(IncomingQuery.from_record(record)) is QueryKind.TRANSFER


def test_zero_questions_is_malformed() -> None:
    query = IncomingQuery.from_record(DNSRecord(DNSHeader(id=9)))
    with pytest.raises(MalformedQueryError):
        classify(query)
    with pytest.raises(MalformedQueryError):
        query.qname


def test_incoming_query_keeps_wire_bytes() -> None:
    record = DNSRecord.question("www.example.com", "A")
    wire = record.pack()
    query = IncomingQuery.from_wire(wire)
    assert query.wire == wire
    assert query.id == record.header.id
    assert query.qname == "www.example.com."
    assert query.record.q.qtype == QTYPE.A


def test_client_identity_from_peer() -> None:
    v4 = ClientIdentity.from_peer(("1.2.3.4", 5300), Transport.UDP)
    v6 = ClientIdentity.from_peer(("::1", 5301, 0, 0), Transport.TCP)
    assert (v4.host, v4.port, v4.transport) == ("1.2.3.4", 5300, Transport.UDP)
    assert (v6.host, v6.port, v6.transport) == ("::1", 5301, Transport.TCP)
