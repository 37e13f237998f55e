"""Failure taxonomy for the query pipeline.

Brief:
  Every error raised while handling a single query derives from ProxyError.
  The dispatcher converts all of them into a SERVFAIL response; none of them
  is fatal to the process.
"""


class ProxyError(Exception):
    """Base class for per-query failures."""

    pass


class MalformedQueryError(ProxyError):
    """Brief: Query carries no question entries."""

    pass


class UnauthorizedTransferError(ProxyError):
    """Brief: AXFR/IXFR requested by a client that is not on the allow-list."""

    pass


class TransportMismatchError(ProxyError):
    """Brief: Zone transfer requested over UDP."""

    pass


class UpstreamError(ProxyError):
    """
    Brief: Upstream exchange failed (connect, read, timeout or framing).

    Inputs:
      - message: Error description; the originating transport error is chained.
    Outputs:
      - Exception instance.
    """

    pass


class TransferError(UpstreamError):
    """Brief: Zone transfer stream failed part way or was rejected upstream."""

    pass


class ClientGoneError(Exception):
    """
    Brief: Writing to the client failed part way through a response.

    Inputs:
      - message: Error description; the client's OSError is chained.
    Outputs:
      - Exception instance. Not a ProxyError: nothing more is sent.
    """

    pass
