import socket
from typing import Iterator


class TCPError(Exception):
    """
    A DNS-over-TCP transport error.

    Inputs:
      - message: Error description.
    Outputs:
      - Exception instance.

    Brief: Raised for connect/read/write or framing errors.
    """

    pass


def frame(message: bytes) -> bytes:
    """Prefix *message* with its 2-byte big-endian length (RFC 7766)."""
    return len(message).to_bytes(2, byteorder="big") + message


def connect(host: str, port: int, connect_timeout_ms: int) -> socket.socket:
    """
    Open a TCP connection to host:port with Nagle disabled.

    Inputs:
      - host: Upstream host/IP (IPv4 or IPv6).
      - port: Upstream TCP port.
      - connect_timeout_ms: Connect timeout.
    Outputs:
      - Connected socket.
    """
    try:
        sock = socket.create_connection(
            (host, int(port)), timeout=connect_timeout_ms / 1000.0
        )
    except (OSError, UnicodeError) as e:
        raise TCPError(f"connect to {host}:{port} failed: {e}")
    try:
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    except OSError as e:
        sock.close()
        raise TCPError(f"configuring connection to {host}:{port} failed: {e}")
    return sock


def read_frame(sock: socket.socket) -> bytes:
    """
    Read one length-prefixed DNS message.

    Inputs:
      - sock: Connected socket with a read timeout set.
    Outputs:
      - bytes: Message body, or b"" on a clean EOF before the length header.
    """
    hdr = _recv_exact(sock, 2)
    if not hdr:
        return b""
    if len(hdr) != 2:
        raise TCPError("short read on length header")
    ln = int.from_bytes(hdr, byteorder="big")
    if ln <= 0:
        raise TCPError("zero-length frame")
    body = _recv_exact(sock, ln)
    if len(body) != ln:
        raise TCPError("short read on body")
    return body


def tcp_query(
    host: str,
    port: int,
    query: bytes,
    *,
    connect_timeout_ms: int = 1000,
    read_timeout_ms: int = 1500,
) -> bytes:
    """
    Perform a single DNS-over-TCP query to host:port using length-prefixed framing (RFC 7766).

    Inputs:
      - host: Upstream resolver host/IP.
      - port: Upstream TCP port (53 typically).
      - query: Wire-format DNS query bytes.
      - connect_timeout_ms: TCP connect timeout.
      - read_timeout_ms: Read timeout per operation.
    Outputs:
      - bytes: Wire-format DNS response.

    Example:
      >>> resp = tcp_query('8.8.8.8', 53, b'\x12\x34...')
    """
    sock = connect(host, port, connect_timeout_ms)
    try:
        sock.settimeout(read_timeout_ms / 1000.0)
        sock.sendall(frame(query))
        resp = read_frame(sock)
        if not resp:
            raise TCPError(f"{host}:{port} closed the connection without a reply")
        return resp
    except OSError as e:
        raise TCPError(f"Network error: {e}")
    finally:
        sock.close()


def tcp_stream(
    host: str,
    port: int,
    query: bytes,
    *,
    connect_timeout_ms: int = 2000,
    read_timeout_ms: int = 5000,
) -> Iterator[bytes]:
    """
    Send one query and yield every framed message the peer sends back.

    Inputs:
      - host, port: Upstream endpoint.
      - query: Wire-format DNS query bytes.
      - connect_timeout_ms / read_timeout_ms: Timeouts.
    Outputs:
      - Iterator of message bodies in arrival order; stops at EOF. The
        connection is closed when the iterator is exhausted or closed.
    """
    sock = connect(host, port, connect_timeout_ms)
    try:
        sock.settimeout(read_timeout_ms / 1000.0)
        sock.sendall(frame(query))
        while True:
            body = read_frame(sock)
            if not body:
                return
            yield body
    except OSError as e:
        raise TCPError(f"Network error from {host}:{port}: {e}")
    finally:
        sock.close()


def _recv_exact(sock: socket.socket, n: int) -> bytes:
    """
    Receive exactly n bytes from a blocking socket.

    Inputs:
      - sock: Socket
      - n: Number of bytes
    Outputs:
      - bytes: Exactly n bytes unless EOF occurs.

    Example:
      >>> _recv_exact(sock, 2)
    """
    remaining = n
    chunks = []
    while remaining > 0:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)
