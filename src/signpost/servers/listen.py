import socket
from typing import Tuple


def listen_family(host: str) -> Tuple[int, str, bool]:
    """
    Brief: Pick the socket family for a listen host.

    Inputs:
      - host: Listen host; "" or "::" means every interface.

    Outputs:
      - (family, bind_host, dual_stack). Wildcard hosts bind "::" with
        IPV6_V6ONLY cleared when the platform has IPv6, so one socket serves
        both IPv4 and IPv6 clients.
    """
    if not host or host == "::":
        if socket.has_ipv6:
            return socket.AF_INET6, "::", True
        return socket.AF_INET, "0.0.0.0", False
    if ":" in host:
        return socket.AF_INET6, host, False
    return socket.AF_INET, host, False


class FamilyAwareServerMixin:
    """socketserver mixin that binds IPv4, IPv6 or dual-stack sockets."""

    dual_stack = False

    def server_bind(self) -> None:
        if self.address_family == socket.AF_INET6 and hasattr(socket, "IPV6_V6ONLY"):
            self.socket.setsockopt(
                socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 0 if self.dual_stack else 1
            )
        super().server_bind()
