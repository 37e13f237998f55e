from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, Iterable

from .classifier import ClientIdentity

logger = logging.getLogger(__name__)


def canonical_ip(text: str) -> str:
    """Brief: Canonical text form of an IP literal; other strings unchanged.

    Example:
      >>> canonical_ip("0:0::1")
      '::1'
    """

    s = str(text).strip()
    try:
        ip = ipaddress.ip_address(s)
    except ValueError:
        return s
    # Dual-stack listeners report IPv4 peers as ::ffff:a.b.c.d
    if ip.version == 6 and ip.ipv4_mapped is not None:
        ip = ip.ipv4_mapped
    return str(ip)


@dataclass(frozen=True)
class TransferAuthorizer:
    """Allow-list check for AXFR/IXFR requests.

    Inputs:
      - allowed: Frozen set of canonical IP strings.

    Outputs:
      - Immutable authorizer shared by all handler threads.

    Example:
      >>> auth = TransferAuthorizer.build(["1.2.3.4"])
      >>> auth.is_allowed(ClientIdentity("1.2.3.4", 5353, Transport.TCP), True)
      True
    """

    allowed: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def build(cls, addresses: Iterable[str] = ()) -> "TransferAuthorizer":
        """Brief: Build from raw strings; blanks (e.g. from "a,,b") are skipped."""

        entries = {canonical_ip(a) for a in addresses or () if str(a).strip()}
        return cls(allowed=frozenset(entries))

    def is_allowed(self, client: ClientIdentity, is_transfer: bool) -> bool:
        """Brief: Decide whether *client* may run this query.

        Inputs:
          - client: ClientIdentity of the requester.
          - is_transfer: Whether the query is AXFR/IXFR.

        Outputs:
          - bool: Always True for ordinary queries; for transfers True only
            when the client address is on the allow-list.
        """

        if not is_transfer:
            return True
        if canonical_ip(client.host) in self.allowed:
            return True
        logger.warning("Zone transfer denied for %s", client.host)
        return False
