"""
Brief: Tests for the (query kind, transport) forwarding strategies.

Inputs:
  - None

Outputs:
  - None
"""

import pytest
from dnslib import DNSRecord

from dnsstub import ZONE, RecordingSink, a_reply, axfr_messages, closed_port
from signpost.classifier import IncomingQuery, QueryKind, Transport
from signpost.errors import TransferError, TransportMismatchError, UpstreamError
from signpost.servers.forwarder import Forwarder


def _query(name: str = "www.example.com", qtype: str = "A") -> IncomingQuery:
    return IncomingQuery.from_record(DNSRecord.question(name, qtype))


def test_strategy_table_covers_every_combination() -> None:
    keys = set(Forwarder.STRATEGIES)
    assert keys == {(k, t) for k in QueryKind for t in Transport}


@pytest.mark.parametrize("transport", [Transport.UDP, Transport.TCP])
def test_lookup_uses_client_transport(stub_upstream, transport) -> None:
    """Brief: Lookups reach the upstream over the transport the client used.

    Inputs:
      - stub_upstream: local stub factory.
      - transport: client transport.

    Outputs:
      - None; asserts the reply is relayed verbatim to the sink.
    """
    replies = []

    def respond(rec, via):
        replies.append(a_reply(rec))
        return [replies[-1]]

    stub = stub_upstream(respond)
    sink = RecordingSink()
    query = _query()
    written = Forwarder().forward(stub.address, query, QueryKind.LOOKUP, transport, sink)
    assert written == 1
    assert sink.messages == replies
    assert [via for via, _ in stub.queries] == [transport.value]
    assert stub.queries[0][1].pack() == query.wire


def test_lookup_failure_raises_upstream_error() -> None:
    fwd = Forwarder(timeout_ms=300)
    sink = RecordingSink()
    with pytest.raises(UpstreamError):
        fwd.forward(
            f"127.0.0.1:{closed_port()}", _query(), QueryKind.LOOKUP, Transport.TCP, sink
        )
    assert sink.messages == []


def test_transfer_over_udp_is_rejected_without_upstream_contact(stub_upstream) -> None:
    stub = stub_upstream(lambda rec, via: [a_reply(rec)])
    sink = RecordingSink()
    with pytest.raises(TransportMismatchError):
        Forwarder().forward(
            stub.address, _query(ZONE, "AXFR"), QueryKind.TRANSFER, Transport.UDP, sink
        )
    assert stub.queries == []
    assert sink.messages == []


def test_transfer_over_tcp_streams_every_message(stub_upstream) -> None:
    """Brief: Every transfer message is written to the sink in upstream order.

    Inputs:
      - stub_upstream: local stub factory.

    Outputs:
      - None
    """
    sent = {}

    def respond(rec, via):
        sent["messages"] = axfr_messages(rec)
        return sent["messages"]

    stub = stub_upstream(respond)
    sink = RecordingSink()
    written = Forwarder().forward(
        stub.address, _query(ZONE, "AXFR"), QueryKind.TRANSFER, Transport.TCP, sink
    )
    assert written == len(sent["messages"])
    assert sink.messages == sent["messages"]


def test_partial_transfer_raises_transfer_error(stub_upstream, caplog) -> None:
    caplog.set_level("WARNING")
    stub = stub_upstream(lambda rec, via: axfr_messages(rec)[:3])
    sink = RecordingSink()
    with pytest.raises(TransferError):
        Forwarder().forward(
            stub.address, _query(ZONE, "AXFR"), QueryKind.TRANSFER, Transport.TCP, sink
        )
    assert len(sink.messages) == 3
    assert "aborted after 3" in caplog.text


def test_forwarder_clamps_timeouts() -> None:
    fwd = Forwarder(timeout_ms=0, transfer_timeout_ms=-5)
    assert fwd.timeout_ms == 1
    assert fwd.transfer_timeout_ms == 1
