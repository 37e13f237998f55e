import socket

# Largest possible UDP DNS payload.
_MAX_DATAGRAM = 65535


class UDPError(Exception):
    """
    Brief: DNS-over-UDP upstream transport error.

    Inputs:
    - message: description

    Outputs:
    - Exception instance
    """

    pass


def udp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    timeout_ms: int = 2000,
) -> bytes:
    """
    Brief: Send one DNS query over UDP and wait for the matching reply.

    Inputs:
    - host: upstream resolver host/IP (IPv4, IPv6 or hostname)
    - port: upstream UDP port
    - query: wire-format DNS query bytes
    - timeout_ms: overall wait for the reply in milliseconds

    Outputs:
    - bytes: wire-format DNS response whose ID matches the query

    Datagrams carrying a different transaction ID are ignored.

    Example:
        >>> try:
        ...     udp_query('127.0.0.1', 53, b'\x00\x01')
        ... except UDPError:
        ...     pass
    """
    try:
        infos = socket.getaddrinfo(host, int(port), type=socket.SOCK_DGRAM)
    except (OSError, UnicodeError) as e:
        raise UDPError(f"cannot resolve {host}:{port}: {e}")
    family, socktype, proto, _canon, sockaddr = infos[0]
    try:
        s = socket.socket(family, socktype, proto)
        try:
            s.settimeout(timeout_ms / 1000.0)
            s.connect(sockaddr)
            s.send(query)
            while True:
                data = s.recv(_MAX_DATAGRAM)
                if len(data) >= 2 and data[:2] == query[:2]:
                    return data
        finally:
            s.close()
    except OSError as e:
        raise UDPError(f"UDP error from {host}:{port}: {e}")
