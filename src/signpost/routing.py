from __future__ import annotations

import logging
import random
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Tuple, Union

logger = logging.getLogger(__name__)


def split_host_port(addr: str) -> Tuple[str, int]:
    """Brief: Split a "host:port" string into its parts.

    Inputs:
      - addr: "host:port", "[v6addr]:port".

    Outputs:
      - (host, port) with port as int in 1..65535.

    Raises:
      - ValueError when the host or port is missing or the port is not numeric.

    Example:
      >>> split_host_port("[::1]:5353")
      ('::1', 5353)
    """

    text = str(addr).strip()
    if text.startswith("["):
        end = text.find("]")
        if end < 0 or text[end + 1 : end + 2] != ":":
            raise ValueError(f"invalid host:port {addr!r}")
        host = text[1:end]
        port_text = text[end + 2 :]
    else:
        host, sep, port_text = text.rpartition(":")
        if not sep:
            raise ValueError(f"missing port in address {addr!r}")
        if ":" in host:
            raise ValueError(f"too many colons in address {addr!r}")
    if not host or not port_text:
        raise ValueError(f"invalid host:port {addr!r}")
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"invalid port in address {addr!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in address {addr!r}")
    return host, port


def join_host_port(host: str, port: int) -> str:
    if ":" in host:
        return f"[{host}]:{int(port)}"
    return f"{host}:{int(port)}"


def with_default_port(addr: str, port: int = 53) -> str:
    """Brief: Return *addr* unchanged when it carries a port, else append *port*."""

    try:
        split_host_port(addr)
        return str(addr).strip()
    except ValueError:
        host = str(addr).strip().strip("[]")
        return join_host_port(host, port)


# Public resolvers used when no configured route applies.
PUBLIC_RESOLVERS: Tuple[str, ...] = tuple(
    with_default_port(a)
    for a in (
        "1.1.1.1:53",
        "8.8.8.8:53",
        "8.8.4.4:53",
        "209.244.0.3",
        "209.244.0.4",
        "64.6.64.6",
        "64.6.65.6",
        "9.9.9.9:53",
        "149.112.112.112:53",
        "84.200.69.80:53",
        "84.200.70.40:53",
        "8.26.56.26:53",
        "8.20.247.20:53",
        "208.67.222.222:53",
        "208.67.220.220",
        "199.85.126.10:53",
        "199.85.127.10:53",
        "81.218.119.11:53",
        "209.88.198.133:53",
        "195.46.39.39:53",
        "195.46.39.40:53",
        "69.195.152.204:53",
        "23.94.60.240:53",
        "208.76.50.50:53",
        "208.76.51.51:53",
        "216.146.35.35:53",
        "216.146.36.36:53",
        "37.235.1.174:53",
        "37.235.1.177:53",
        "198.101.242.72:53",
        "23.253.163.53:53",
        "77.88.8.8:53",
        "77.88.8.1:53",
        "91.239.100.100:53",
    )
)


def normalize_suffix(suffix: str) -> str:
    """Brief: Normalize a route suffix to lower case with a trailing dot.

    Inputs:
      - suffix: Domain suffix as configured, e.g. ".Example.com" or "corp".

    Outputs:
      - str: "example.com." / "corp."; "" and "." both become the root ".".

    Example:
      >>> normalize_suffix(".Example.COM")
      'example.com.'
    """

    s = str(suffix).strip().lower().lstrip(".")
    if not s:
        return "."
    if not s.endswith("."):
        s += "."
    return s


def normalize_name(qname: object) -> str:
    name = str(qname).strip().lower()
    if not name.endswith("."):
        name += "."
    return name


def suffix_matches(name: str, suffix: str) -> bool:
    """Brief: Label-aligned suffix test on normalized names.

    Inputs:
      - name: Normalized query name (trailing dot).
      - suffix: Normalized route suffix (trailing dot).

    Outputs:
      - bool: True when *suffix* equals *name* or ends it on a label boundary.

    Example:
      >>> suffix_matches("www.example.com.", "example.com.")
      True
      >>> suffix_matches("notexample.com.", "example.com.")
      False
    """

    if suffix == ".":
        return True
    return name == suffix or name.endswith("." + suffix)


RouteItems = Union[Mapping[str, str], Iterable[Tuple[str, str]]]


@dataclass(frozen=True)
class RoutingTable:
    """Immutable suffix -> upstream routing table plus the fallback pool.

    Inputs:
      - routes: Read-only mapping of normalized suffix to "host:port".
      - fallback: Non-empty tuple of "host:port" used when no route matches.

    Outputs:
      - RoutingTable shared read-only by every handler thread.

    Overlapping routes resolve to the longest matching suffix.
    """

    routes: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    fallback: Tuple[str, ...] = PUBLIC_RESOLVERS
    _ordered: Tuple[Tuple[str, str], ...] = field(
        init=False, repr=False, compare=False, default=()
    )

    def __post_init__(self) -> None:
        if not self.fallback:
            raise ValueError("fallback upstream pool must not be empty")
        if not isinstance(self.routes, MappingProxyType):
            object.__setattr__(self, "routes", MappingProxyType(dict(self.routes)))
        ordered = sorted(self.routes.items(), key=lambda kv: len(kv[0]), reverse=True)
        object.__setattr__(self, "_ordered", tuple(ordered))

    @classmethod
    def build(
        cls,
        routes: Optional[RouteItems] = None,
        fallback: Optional[Iterable[str]] = None,
    ) -> "RoutingTable":
        """Brief: Build a table from raw (suffix, upstream) pairs.

        Inputs:
          - routes: Mapping or iterable of (suffix, "host:port") pairs.
          - fallback: Optional replacement for PUBLIC_RESOLVERS. Entries
            without a port get ":53".

        Outputs:
          - RoutingTable with normalized suffix keys.

        Raises:
          - ValueError for an upstream that is not a valid host:port.

        Example:
          >>> t = RoutingTable.build({"example.com": "8.8.4.4:53"})
          >>> t.lookup("www.example.com.")
          '8.8.4.4:53'
        """

        table = {}
        items = routes.items() if isinstance(routes, Mapping) else (routes or [])
        for suffix, upstream in items:
            split_host_port(upstream)
            key = normalize_suffix(suffix)
            previous = table.get(key)
            if previous is not None and previous != upstream:
                logger.warning(
                    "Route for %s redefined: %s replaces %s", key, upstream, previous
                )
            table[key] = str(upstream).strip()

        pool = PUBLIC_RESOLVERS
        if fallback:
            pool = tuple(with_default_port(a) for a in fallback)
        return cls(routes=MappingProxyType(table), fallback=pool)

    def lookup(self, qname: object) -> Optional[str]:
        """Return the upstream of the longest matching route, or None."""

        name = normalize_name(qname)
        for suffix, upstream in self._ordered:
            if suffix_matches(name, suffix):
                return upstream
        return None

    def select(self, qname: object, rng: Optional[random.Random] = None) -> str:
        """Brief: Choose the upstream for *qname*.

        Inputs:
          - qname: Queried name (str or dnslib DNSLabel).
          - rng: Optional random.Random for the fallback pick.

        Outputs:
          - str: Routed upstream, or a uniform random member of the fallback
            pool when no route matches.
        """

        upstream = self.lookup(qname)
        if upstream is not None:
            return upstream
        return (rng or random).choice(self.fallback)

    def __len__(self) -> int:
        return len(self.routes)
