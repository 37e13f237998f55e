"""
Brief: Tests for the upstream TCP transport and its RFC 7766 framing.

Inputs:
  - None

Outputs:
  - None
"""

from typing import List

import pytest
from dnslib import DNSRecord

from dnsstub import a_reply, closed_port
import signpost.servers.transports.tcp as tcp_mod
from signpost.servers.transports.tcp import (
    TCPError,
    frame,
    read_frame,
    tcp_query,
    tcp_stream,
)


class _FakeSocket:
    """Brief: Minimal fake socket returning queued chunks from recv().

    Inputs:
      - chunks: bytes returned by recv() in order; b"" afterwards.

    Outputs:
      - None
    """

    def __init__(self, chunks: List[bytes]) -> None:
        self._chunks = list(chunks)

    def recv(self, n: int) -> bytes:
        if not self._chunks:
            return b""
        chunk = self._chunks[0]
        if len(chunk) <= n:
            self._chunks.pop(0)
            return chunk
        self._chunks[0] = chunk[n:]
        return chunk[:n]


def test_frame_prefixes_big_endian_length() -> None:
    assert frame(b"abc") == b"\x00\x03abc"
    assert frame(b"x" * 300)[:2] == b"\x01\x2c"


def test_read_frame_reassembles_split_chunks() -> None:
    sock = _FakeSocket([b"\x00", b"\x05he", b"llo"])
    assert read_frame(sock) == b"hello"
    assert read_frame(sock) == b""


@pytest.mark.parametrize(
    "chunks",
    [
        [b"\x00"],
        [b"\x00\x00"],
        [b"\x00\x05abc"],
    ],
)
def test_read_frame_rejects_truncated_or_empty_frames(chunks) -> None:
    """Brief: Short headers, zero-length frames and short bodies raise TCPError.

    Inputs:
      - chunks: recv() payloads for the fake socket.

    Outputs:
      - None
    """
    with pytest.raises(TCPError):
        read_frame(_FakeSocket(chunks))


def test_tcp_query_round_trip(stub_upstream) -> None:
    stub = stub_upstream(lambda rec, transport: [a_reply(rec, "192.0.2.44")])
    query = DNSRecord.question("www.example.com", "A")
    reply = DNSRecord.parse(tcp_query("127.0.0.1", stub.port, query.pack()))
    assert reply.header.id == query.header.id
    assert str(reply.rr[0].rdata) == "192.0.2.44"
    assert stub.queries[0][0] == "tcp"


def test_tcp_query_without_reply_raises(stub_upstream) -> None:
    stub = stub_upstream(lambda rec, transport: [])
    query = DNSRecord.question("www.example.com", "A").pack()
    with pytest.raises(TCPError):
        tcp_query("127.0.0.1", stub.port, query)


def test_tcp_query_connection_refused() -> None:
    query = DNSRecord.question("example.com", "A").pack()
    with pytest.raises(TCPError):
        tcp_query("127.0.0.1", closed_port(), query, connect_timeout_ms=500)


def test_tcp_stream_yields_every_message_in_order(stub_upstream) -> None:
    """Brief: tcp_stream yields each framed message until the peer closes.

    Inputs:
      - stub_upstream: local stub factory.

    Outputs:
      - None
    """

    def respond(rec, transport):
        return [a_reply(rec, f"192.0.2.{i}") for i in (1, 2, 3)]

    stub = stub_upstream(respond)
    query = DNSRecord.question("www.example.com", "A").pack()
    bodies = list(tcp_stream("127.0.0.1", stub.port, query))
    assert [str(DNSRecord.parse(b).rr[0].rdata) for b in bodies] == [
        "192.0.2.1",
        "192.0.2.2",
        "192.0.2.3",
    ]


def test_connect_sets_nodelay(monkeypatch) -> None:
    calls = {}

    class _Sock:
        def setsockopt(self, level, opt, value):
            calls["opt"] = (level, opt, value)

    def fake_create_connection(addr, timeout=None):
        calls["addr"] = addr
        calls["timeout"] = timeout
        return _Sock()

    monkeypatch.setattr(tcp_mod.socket, "create_connection", fake_create_connection)
    tcp_mod.connect("192.0.2.1", 53, 1500)
    assert calls["addr"] == ("192.0.2.1", 53)
    assert calls["timeout"] == 1.5
    assert calls["opt"][2] == 1


def test_connect_socket_option_failure_is_tcp_error(monkeypatch) -> None:
    """
    Brief: An OSError while configuring the upstream socket surfaces as TCPError.

    Inputs:
      - monkeypatch: replaces socket.create_connection with a fake socket.

    Outputs:
      - None; asserts TCPError from connect() and tcp_query() and that the
        socket was closed.
    """
    closed = []

    class _Sock:
        def setsockopt(self, level, opt, value):
            raise OSError(22, "Invalid argument")

        def close(self):
            closed.append(True)

    monkeypatch.setattr(
        tcp_mod.socket, "create_connection", lambda addr, timeout=None: _Sock()
    )
    with pytest.raises(tcp_mod.TCPError):
        tcp_mod.connect("192.0.2.1", 53, 1500)
    with pytest.raises(tcp_mod.TCPError):
        tcp_mod.tcp_query("192.0.2.1", 53, b"\x00\x01")
    assert closed == [True, True]
