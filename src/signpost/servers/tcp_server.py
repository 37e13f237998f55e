import asyncio
import concurrent.futures
import logging
import socket
import socketserver
import threading
from typing import Callable, Optional, Set

from ..classifier import ClientIdentity, Transport
from .dispatcher import Dispatcher
from .listen import FamilyAwareServerMixin, listen_family
from .transports.tcp import _recv_exact, frame

logger = logging.getLogger("signpost.server")


async def _read_exact(reader: asyncio.StreamReader, n: int) -> bytes:
    """
    Read exactly n bytes from an asyncio StreamReader.

    Inputs:
      - reader: asyncio.StreamReader
      - n: Number of bytes to read
    Outputs:
      - bytes: Exactly n bytes unless EOF occurs early.

    Example:
      >>> await _read_exact(reader, 2)
    """
    data = b""
    while len(data) < n:
        chunk = await reader.read(n - len(data))
        if not chunk:
            break
        data += chunk
    return data


class StreamSink:
    """
    Response sink that frames messages onto an asyncio StreamWriter.

    write() is called from query threads; each message is written and
    drained on the event loop before write() returns, so a transfer stream
    reaches the client in the order the forwarder produced it. Once close()
    has run, write() raises ConnectionResetError.
    """

    def __init__(
        self, writer: asyncio.StreamWriter, loop: asyncio.AbstractEventLoop
    ) -> None:
        self._writer = writer
        self._loop = loop
        self._closed = False
        self._pending: Set[concurrent.futures.Future] = set()

    async def _send(self, wire: bytes) -> None:
        self._writer.write(frame(wire))
        await self._writer.drain()

    def write(self, wire: bytes) -> None:
        if self._closed:
            raise ConnectionResetError("client connection closed")
        try:
            fut = asyncio.run_coroutine_threadsafe(self._send(wire), self._loop)
        except RuntimeError as e:
            raise ConnectionResetError(f"client connection closed: {e}") from e
        self._pending.add(fut)
        try:
            fut.result()
        except concurrent.futures.CancelledError as e:
            raise ConnectionResetError("client connection closed") from e
        finally:
            self._pending.discard(fut)

    def close(self) -> None:
        """Refuse further writes and cancel any write still waiting for the loop."""
        self._closed = True
        for fut in list(self._pending):
            fut.cancel()


def _run_in_thread(
    loop: asyncio.AbstractEventLoop, fn: Callable[..., object], *args
) -> "asyncio.Future[None]":
    """
    Run fn(*args) on its own daemon thread.

    Inputs:
      - loop: Running event loop that owns the returned future.
      - fn / args: Blocking call to run.
    Outputs:
      - asyncio.Future resolved on *loop* when the call returns, or failed
        with its exception. Cancelling the future does not stop the thread.
    """
    done = loop.create_future()

    def _settle(exc: Optional[BaseException]) -> None:
        if done.done():
            return
        if exc is None:
            done.set_result(None)
        else:
            done.set_exception(exc)

    def _target() -> None:
        exc: Optional[BaseException] = None
        try:
            fn(*args)
        except Exception as e:
            exc = e
        try:
            loop.call_soon_threadsafe(_settle, exc)
        except RuntimeError:
            # Loop already closed; nobody is waiting for the result.
            logger.debug("TCP query finished after the listener stopped")

    threading.Thread(target=_target, name="signpost-tcp-query", daemon=True).start()
    return done


async def _handle_conn(
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
    dispatcher: Dispatcher,
    idle_timeout: float = 15.0,
) -> None:
    """
    Handle one downstream DNS-over-TCP connection (RFC 7766 framing).

    Inputs:
      - reader / writer: Connection streams.
      - dispatcher: Dispatcher answering each framed query.
      - idle_timeout: Seconds to wait for the next query before closing.
    Outputs:
      - None; queries on the connection are answered in order until EOF,
        a framing error or the idle timeout. Each query runs on its own
        thread, so a slow upstream only holds up its own connection.
    """
    loop = asyncio.get_running_loop()
    client = ClientIdentity.from_peer(writer.get_extra_info("peername"), Transport.TCP)
    sink = StreamSink(writer, loop)
    try:
        while True:
            hdr = await asyncio.wait_for(_read_exact(reader, 2), timeout=idle_timeout)
            if len(hdr) != 2:
                break
            ln = int.from_bytes(hdr, byteorder="big")
            if ln <= 0:
                break
            query = await asyncio.wait_for(
                _read_exact(reader, ln), timeout=idle_timeout
            )
            if len(query) != ln:
                break
            await _run_in_thread(loop, dispatcher.handle_wire, query, client, sink)
    except asyncio.TimeoutError:
        logger.debug("Closing idle TCP connection from %s", client.host)
    except OSError as e:
        logger.debug("TCP connection from %s failed: %s", client.host, e)
    finally:
        sink.close()
        try:
            writer.close()
            await writer.wait_closed()
        except OSError:
            pass


class TCPListener:
    """
    asyncio DNS-over-TCP listener that tracks its open connections.

    Inputs:
      - dispatcher: Dispatcher answering queries.
      - idle_timeout: Per-connection idle timeout in seconds.

    Example use:
        >>> listener = TCPListener(dispatcher)
        >>> await listener.start("127.0.0.1", 5353)
        >>> await listener.close()
    """

    def __init__(self, dispatcher: Dispatcher, idle_timeout: float = 15.0) -> None:
        self.dispatcher = dispatcher
        self.idle_timeout = idle_timeout
        self.server: Optional[asyncio.AbstractServer] = None
        self._connections: Set["asyncio.Task[None]"] = set()

    @property
    def port(self) -> Optional[int]:
        if self.server is None or not self.server.sockets:
            return None
        return self.server.sockets[0].getsockname()[1]

    @property
    def connections(self) -> int:
        return len(self._connections)

    async def _on_connect(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> None:
        task = asyncio.current_task()
        self._connections.add(task)
        try:
            await _handle_conn(reader, writer, self.dispatcher, self.idle_timeout)
        finally:
            self._connections.discard(task)

    async def start(self, host: str, port: int) -> "TCPListener":
        self.server = await asyncio.start_server(
            self._on_connect, host or None, int(port), reuse_address=True
        )
        return self

    async def close(self) -> None:
        """Stop accepting, then cancel open connections and wait for them to close."""
        if self.server is not None:
            self.server.close()
        pending = list(self._connections)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if self.server is not None:
            await self.server.wait_closed()


async def start_tcp_server(
    host: str,
    port: int,
    dispatcher: Dispatcher,
    *,
    idle_timeout: float = 15.0,
) -> TCPListener:
    """
    Bind an asyncio DNS-over-TCP listener.

    Inputs:
      - host: Listen address ("" for every interface).
      - port: Listen port.
      - dispatcher: Dispatcher answering queries.
      - idle_timeout: Per-connection idle timeout in seconds.
    Outputs:
      - TCPListener already accepting connections.

    Example:
      >>> listener = await start_tcp_server('127.0.0.1', 5353, dispatcher)
    """
    return await TCPListener(dispatcher, idle_timeout).start(host, port)


class _TCPHandler(socketserver.BaseRequestHandler):
    """
    Brief: Thread-per-connection handler used when asyncio is unavailable.

    Inputs:
    - request: connected socket provided by socketserver
    - client_address: peer address

    Outputs:
    - None
    """

    def handle(self) -> None:
        sock = self.request
        client = ClientIdentity.from_peer(self.client_address, Transport.TCP)
        sink = _SocketSink(sock)
        sock.settimeout(self.server.idle_timeout)
        try:
            while True:
                hdr = _recv_exact(sock, 2)
                if len(hdr) != 2:
                    break
                ln = int.from_bytes(hdr, byteorder="big")
                if ln <= 0:
                    break
                query = _recv_exact(sock, ln)
                if len(query) != ln:
                    break
                self.server.dispatcher.handle_wire(query, client, sink)
        except OSError as e:
            logger.debug("TCP connection from %s closed: %s", client.host, e)


class _SocketSink:
    def __init__(self, sock: socket.socket) -> None:
        self._sock = sock

    def write(self, wire: bytes) -> None:
        self._sock.sendall(frame(wire))


class ThreadingTCPServer(FamilyAwareServerMixin, socketserver.ThreadingTCPServer):
    """
    Brief: Thread-per-connection DNS-over-TCP listener.

    Inputs:
    - host: listen address
    - port: listen port
    - dispatcher: Dispatcher answering queries
    - idle_timeout: seconds a connection may sit idle

    Outputs:
    - Bound server; call serve_forever() to start answering.
    """

    daemon_threads = True
    allow_reuse_address = True

    def __init__(
        self,
        host: str,
        port: int,
        dispatcher: Dispatcher,
        idle_timeout: Optional[float] = 15.0,
    ) -> None:
        family, bind_host, dual_stack = listen_family(host)
        self.address_family = family
        self.dual_stack = dual_stack
        self.dispatcher = dispatcher
        self.idle_timeout = idle_timeout
        super().__init__((bind_host, int(port)), _TCPHandler)
