from __future__ import annotations

from typing import Iterator, Optional

from dnslib import QTYPE, RCODE, DNSRecord

from .tcp import TCPError, tcp_stream


class AXFRError(Exception):
    """Brief: Zone transfer (AXFR/IXFR) stream error.

    Inputs:
      - message: Short description of the failure.

    Outputs:
      - Exception instance indicating a transfer-specific failure.
    """

    pass


class TransferTracker:
    """Brief: Detect the end of an AXFR or IXFR response stream.

    Inputs:
      - qtype: QTYPE.AXFR or QTYPE.IXFR of the client's question.

    Outputs:
      - feed(message) returns True once *message* completes the transfer.

    Notes:
      - AXFR: the first RR must be an SOA; the transfer ends with the first
        later message whose last RR is an SOA.
      - IXFR: the first RR is the server's current SOA. A lone SOA means the
        client is up to date. Otherwise the stream ends on the second
        occurrence of that serial while every SOA seen carries it (the server
        fell back to a full transfer), or on the third occurrence.
    """

    def __init__(self, qtype: int) -> None:
        self.qtype = qtype
        self.messages = 0
        self.serial: Optional[int] = None
        self._seen = 0
        self._full = True

    def feed(self, msg: DNSRecord) -> bool:
        if msg.header.rcode != RCODE.NOERROR:
            raise AXFRError(
                f"transfer rejected with {RCODE.get(msg.header.rcode, msg.header.rcode)}"
            )
        first = self.messages == 0
        self.messages += 1
        answers = list(msg.rr)

        if first:
            if not answers or answers[0].rtype != QTYPE.SOA:
                raise AXFRError("first record of a transfer is not an SOA")
            self.serial = _soa_serial(answers[0])
            if self.qtype == QTYPE.IXFR and len(answers) == 1:
                return True

        if self.qtype == QTYPE.IXFR:
            return self._feed_ixfr(answers)

        rest = answers[1:] if first else answers
        return bool(rest) and rest[-1].rtype == QTYPE.SOA

    def _feed_ixfr(self, answers) -> bool:
        for rr in answers:
            if rr.rtype != QTYPE.SOA:
                continue
            if _soa_serial(rr) == self.serial:
                self._seen += 1
                if (self._full and self._seen == 2) or self._seen == 3:
                    return True
            else:
                self._full = False
        return False


def _soa_serial(rr) -> int:
    try:
        return int(rr.rdata.times[0])
    except (AttributeError, IndexError, TypeError, ValueError) as exc:
        raise AXFRError(f"malformed SOA record: {exc}") from exc


def transfer_stream(
    host: str,
    port: int,
    query: bytes,
    *,
    connect_timeout_ms: int = 2000,
    read_timeout_ms: int = 5000,
) -> Iterator[bytes]:
    """Brief: Run a zone transfer against host:port and yield each message.

    Inputs:
      - host: Upstream server host/IP.
      - port: Upstream TCP port.
      - query: The client's AXFR/IXFR query in wire format (forwarded as-is).
      - connect_timeout_ms: TCP connect timeout in milliseconds.
      - read_timeout_ms: Per-read timeout in milliseconds.

    Outputs:
      - Iterator of raw response messages in upstream order. A message is
        yielded only after it has been parsed and checked, and iteration ends
        right after the message that completes the transfer.

    Raises:
      - AXFRError on connect/read errors, unparsable or rejected messages, or
        when the upstream closes the stream before the transfer completes.
    """

    try:
        request = DNSRecord.parse(query)
    except Exception as exc:
        raise AXFRError(f"failed to parse transfer query: {exc}") from exc
    if not request.questions:
        raise AXFRError("transfer query has no questions")

    tracker = TransferTracker(request.questions[0].qtype)
    stream = tcp_stream(
        host,
        port,
        query,
        connect_timeout_ms=connect_timeout_ms,
        read_timeout_ms=read_timeout_ms,
    )
    try:
        for body in stream:
            try:
                msg = DNSRecord.parse(body)
            except Exception as exc:
                raise AXFRError(f"failed to parse transfer response: {exc}") from exc
            if msg.header.id != request.header.id:
                raise AXFRError(
                    f"transfer response id {msg.header.id} does not match query id {request.header.id}"
                )
            done = tracker.feed(msg)
            yield body
            if done:
                return
    except TCPError as exc:
        raise AXFRError(f"transfer I/O error from {host}:{port}: {exc}") from exc
    finally:
        stream.close()

    if tracker.messages == 0:
        raise AXFRError(f"transfer from {host}:{port} returned no data")
    raise AXFRError(f"transfer from {host}:{port} ended before the closing SOA")
