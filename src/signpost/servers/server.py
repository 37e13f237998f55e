"""Dual-transport (UDP + TCP) listener lifecycle.

Brief:
  ProxyServer binds a UDP and a TCP listener on the same address and hands
  every inbound query to one shared Dispatcher. Listeners run on daemon
  threads; the caller drives shutdown through stop().
"""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import List, Optional

from .dispatcher import Dispatcher
from .tcp_server import TCPListener, ThreadingTCPServer, start_tcp_server
from .udp_server import ThreadingUDPServer

logger = logging.getLogger("signpost.server")


class ProxyServer:
    """UDP and TCP DNS listeners sharing one Dispatcher.

    Example use:
        >>> server = ProxyServer("127.0.0.1", 5353, dispatcher)
        >>> server.start()
        >>> ...
        >>> server.stop()
    """

    def __init__(
        self,
        host: str,
        port: int,
        dispatcher: Dispatcher,
        *,
        udp: bool = True,
        tcp: bool = True,
        tcp_idle_timeout: float = 15.0,
    ) -> None:
        """Initialize a ProxyServer.

        Inputs:
            host: Listen host ("" for every interface, IPv4 and IPv6).
            port: Listen port shared by both transports (0 picks a free port
              for UDP and reuses it for TCP).
            dispatcher: Dispatcher that answers queries.
            udp / tcp: Enable each listener.
            tcp_idle_timeout: Seconds before an idle TCP connection is closed.
        """
        self.host = host
        self.port = int(port)
        self.dispatcher = dispatcher
        self.udp_enabled = bool(udp)
        self.tcp_enabled = bool(tcp)
        self.tcp_idle_timeout = float(tcp_idle_timeout)

        self.udp_server: Optional[ThreadingUDPServer] = None
        self.tcp_threaded: Optional[ThreadingTCPServer] = None
        self._tcp_loop: Optional[asyncio.AbstractEventLoop] = None
        self._tcp_listener: Optional[TCPListener] = None
        self._threads: List[threading.Thread] = []

    @property
    def udp_port(self) -> Optional[int]:
        if self.udp_server is None:
            return None
        return self.udp_server.server_address[1]

    @property
    def tcp_port(self) -> Optional[int]:
        if self._tcp_listener is not None:
            return self._tcp_listener.port
        if self.tcp_threaded is not None:
            return self.tcp_threaded.server_address[1]
        return None

    def start(self) -> None:
        """Bind every enabled listener and start serving in background threads.

        Raises:
          - OSError (including PermissionError) when a listen socket cannot be
            bound. Listeners that were already started are stopped first.
        """
        try:
            if self.udp_enabled:
                self.udp_server = ThreadingUDPServer(
                    self.host, self.port, self.dispatcher
                )
                self._spawn(self.udp_server.serve_forever, "signpost-udp")
                logger.info("Listening on %s:%d/udp", self.host, self.udp_port)
            if self.tcp_enabled:
                port = self.port or (self.udp_port or 0)
                self._start_tcp(port)
                logger.info("Listening on %s:%d/tcp", self.host, self.tcp_port)
        except OSError:
            self.stop()
            raise

    def _spawn(self, target, name: str) -> None:
        t = threading.Thread(target=target, name=name, daemon=True)
        t.start()
        self._threads.append(t)

    def _start_tcp(self, port: int) -> None:
        try:
            loop = asyncio.new_event_loop()
        except PermissionError:
            # Environment forbids creating the asyncio self-pipe/socketpair.
            logger.warning("asyncio unavailable; using threaded TCP listener")
            self.tcp_threaded = ThreadingTCPServer(
                self.host, port, self.dispatcher, self.tcp_idle_timeout
            )
            self._spawn(self.tcp_threaded.serve_forever, "signpost-tcp")
            return

        try:
            self._tcp_listener = loop.run_until_complete(
                start_tcp_server(
                    self.host,
                    port,
                    self.dispatcher,
                    idle_timeout=self.tcp_idle_timeout,
                )
            )
        except BaseException:
            loop.close()
            raise
        self._tcp_loop = loop

        def runner() -> None:
            asyncio.set_event_loop(loop)
            try:
                loop.run_forever()
            finally:
                loop.close()

        self._spawn(runner, "signpost-tcp")

    def stop(self) -> None:
        """Request graceful shutdown and close every listening socket.

        Inputs:
          - None
        Outputs:
          - None; best-effort shutdown suitable for use from signal handlers.
        """
        if self.udp_server is not None:
            try:
                self.udp_server.shutdown()
                self.udp_server.server_close()
            except Exception:
                logger.exception("Error while shutting down UDP server")
            self.udp_server = None

        if self.tcp_threaded is not None:
            try:
                self.tcp_threaded.shutdown()
                self.tcp_threaded.server_close()
            except Exception:
                logger.exception("Error while shutting down TCP server")
            self.tcp_threaded = None

        loop, listener = self._tcp_loop, self._tcp_listener
        if loop is not None and listener is not None and not loop.is_closed():
            try:
                asyncio.run_coroutine_threadsafe(listener.close(), loop).result(
                    timeout=5.0
                )
            except Exception:
                logger.exception("Error while closing TCP connections")
            try:
                loop.call_soon_threadsafe(loop.stop)
            except RuntimeError:
                logger.debug("TCP event loop already closed")
        self._tcp_loop = None
        self._tcp_listener = None

        for t in self._threads:
            t.join(timeout=5.0)
        self._threads = []
