from __future__ import annotations

import enum
import logging
import random
from typing import Optional

from dnslib import RCODE, DNSHeader, DNSRecord

from ..authorizer import TransferAuthorizer
from ..classifier import ClientIdentity, IncomingQuery, QueryKind, classify
from ..errors import ClientGoneError, ProxyError, UnauthorizedTransferError
from ..routing import RoutingTable
from .forwarder import Forwarder, ResponseSink

logger = logging.getLogger("signpost.dispatcher")


class Outcome(enum.Enum):
    RESPONDED = "responded"
    FAILED = "failed"


def make_failure_response(record: DNSRecord, rcode: int = RCODE.SERVFAIL) -> bytes:
    """Brief: Build the standard failure reply for *record*.

    Inputs:
      - record: Parsed client query (may have an empty question section).
      - rcode: Response code, SERVFAIL by default.

    Outputs:
      - bytes: Packed reply with the query's id, opcode and RD bit, QR set,
        and the question section echoed.
    """

    header = DNSHeader(
        id=record.header.id,
        qr=1,
        opcode=record.header.opcode,
        rd=record.header.rd,
        ra=1,
        rcode=rcode,
    )
    return DNSRecord(header, questions=list(record.questions)).pack()


class _ClientSink:
    """Raises ClientGoneError when the wrapped client sink fails a write."""

    def __init__(self, sink: ResponseSink) -> None:
        self._sink = sink

    def write(self, wire: bytes) -> None:
        try:
            self._sink.write(wire)
        except OSError as e:
            raise ClientGoneError(str(e)) from e


class Dispatcher:
    """
    Single entry point that answers one query end to end.

    Per query: Received -> Classified -> Authorized -> UpstreamSelected ->
    Forwarded -> Responded | Failed. Every failure produces exactly one
    SERVFAIL written to the sink.

    Inputs:
      - routing: RoutingTable (read-only).
      - authorizer: TransferAuthorizer (read-only).
      - forwarder: Forwarder performing the upstream exchange.
      - rng: Optional random.Random for the fallback pick.

    Example use:
        >>> dispatcher = Dispatcher(RoutingTable.build(), TransferAuthorizer.build())
        >>> dispatcher.handle_wire(data, client, sink)
    """

    def __init__(
        self,
        routing: RoutingTable,
        authorizer: TransferAuthorizer,
        forwarder: Optional[Forwarder] = None,
        *,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.routing = routing
        self.authorizer = authorizer
        self.forwarder = forwarder or Forwarder()
        self.rng = rng

    def handle(
        self, query: IncomingQuery, client: ClientIdentity, sink: ResponseSink
    ) -> Outcome:
        """
        Route, authorize and forward one parsed query.

        Inputs:
          - query: IncomingQuery owned by this invocation.
          - client: ClientIdentity of the sender.
          - sink: ResponseSink for the reply (or transfer stream).

        Outputs:
          - Outcome.RESPONDED when the forwarder wrote the reply, otherwise
            Outcome.FAILED after a SERVFAIL has been written.
        """
        try:
            kind = classify(query)
            if not self.authorizer.is_allowed(client, kind is QueryKind.TRANSFER):
                raise UnauthorizedTransferError(
                    f"{client.host} is not allowed to transfer {query.qname}"
                )
            upstream = self.routing.select(query.qname, self.rng)
            logger.debug(
                "%s %s from %s/%s -> %s",
                kind.value,
                query.qname,
                client.host,
                client.transport.value,
                upstream,
            )
            self.forwarder.forward(
                upstream, query, kind, client.transport, _ClientSink(sink)
            )
            return Outcome.RESPONDED
        except ProxyError as e:
            logger.info(
                "Query id=%d from %s failed (%s): %s",
                query.id,
                client.host,
                type(e).__name__,
                e,
            )
        except ClientGoneError as e:
            logger.debug("Client %s went away mid-response: %s", client.host, e)
            return Outcome.FAILED
        except Exception:
            logger.exception(
                "Unexpected error handling query id=%d from %s", query.id, client.host
            )

        self._fail(query, client, sink)
        return Outcome.FAILED

    def handle_wire(
        self, data: bytes, client: ClientIdentity, sink: ResponseSink
    ) -> Optional[Outcome]:
        """
        Parse *data* and handle it; unparseable input is dropped.

        Outputs:
          - Outcome, or None when the bytes are not a DNS message.
        """
        try:
            query = IncomingQuery.from_wire(data)
        except Exception as e:
            logger.debug("Dropping unparseable query from %s: %s", client.host, e)
            return None
        return self.handle(query, client, sink)

    def _fail(
        self, query: IncomingQuery, client: ClientIdentity, sink: ResponseSink
    ) -> None:
        try:
            sink.write(make_failure_response(query.record))
        except OSError as e:
            logger.debug("Could not send SERVFAIL to %s: %s", client.host, e)
