from __future__ import annotations

import argparse
import logging
import signal
import threading
from typing import Any, Dict, List, Optional

from .config.config_parser import (
    ProxySettings,
    apply_cli_overrides,
    build_settings,
    load_config_file,
)
from .config.logging_config import init_logging
from .servers.dispatcher import Dispatcher
from .servers.forwarder import Forwarder
from .servers.server import ProxyServer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="signpost",
        description="DNS reverse proxy routing queries by domain suffix",
    )
    parser.add_argument("--config", default=None, help="Path to YAML config")
    parser.add_argument(
        "--address", default=None, help="Listen address, e.g. :53 or 127.0.0.1:5353"
    )
    parser.add_argument(
        "--route",
        default=None,
        help="Routes as domain=host:port[,domain=host:port...]",
    )
    parser.add_argument(
        "--allow-transfer",
        dest="allow_transfer",
        default=None,
        help="Comma separated IPs allowed to run AXFR/IXFR",
    )
    parser.add_argument(
        "--default",
        default=None,
        help="Comma separated fallback upstreams replacing the public resolver pool",
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        default=None,
        choices=["debug", "info", "warn", "warning", "error", "crit", "critical"],
        help="Override logging.level from the config file",
    )
    return parser


def load_settings(args: argparse.Namespace) -> tuple[Dict[str, Any], ProxySettings]:
    """
    Brief: Combine the config file and command-line flags into settings.

    Inputs:
      - args: Parsed argparse namespace from build_parser().

    Outputs:
      - (cfg, settings): merged raw mapping (for the logging block) and the
        frozen ProxySettings.

    Raises:
      - ValueError / OSError for unreadable or invalid configuration.
    """
    cfg: Dict[str, Any] = {}
    if args.config:
        cfg = load_config_file(args.config)
    cfg = apply_cli_overrides(
        cfg,
        address=args.address,
        routes=args.route,
        allow_transfer=args.allow_transfer,
        default=args.default,
    )
    return cfg, build_settings(cfg)


def build_dispatcher(settings: ProxySettings) -> Dispatcher:
    """Brief: Build the shared Dispatcher from frozen settings."""
    return Dispatcher(
        settings.routing_table(),
        settings.authorizer(),
        Forwarder(
            timeout_ms=settings.timeout_ms,
            transfer_timeout_ms=settings.transfer_timeout_ms,
        ),
    )


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the DNS reverse proxy.

    Args:
        argv: Command-line arguments.

    Returns:
        Exit code: 0 after SIGHUP or Ctrl-C, 2 after SIGTERM/SIGINT, 1 on
        configuration or bind errors.

    Example use:
        CLI:
            signpost --address :5353 --route example.com=8.8.4.4:53 \\
                --allow-transfer 127.0.0.1
    """
    args = build_parser().parse_args(argv)

    try:
        cfg, settings = load_settings(args)
    except (ValueError, OSError) as exc:
        print(str(exc))
        return 1

    init_logging(cfg.get("logging"), level_override=args.log_level)
    logger = logging.getLogger("signpost.main")
    if args.config:
        logger.info("Loaded config from %s", args.config)

    dispatcher = build_dispatcher(settings)
    logger.info(
        "%d route(s), %d fallback upstream(s), %d transfer client(s)",
        len(dispatcher.routing),
        len(dispatcher.routing.fallback),
        len(dispatcher.authorizer.allowed),
    )

    listen = settings.listen
    server = ProxyServer(
        listen.host,
        listen.port,
        dispatcher,
        udp=listen.udp,
        tcp=listen.tcp,
        tcp_idle_timeout=listen.tcp_idle_timeout,
    )

    shutdown_event = threading.Event()
    exit_code = 0

    def _request_shutdown(reason: str, code: int) -> None:
        nonlocal exit_code
        if shutdown_event.is_set():
            return
        exit_code = code
        logger.info("Received %s, initiating shutdown (exit code=%d)", reason, code)
        shutdown_event.set()

    def _sighup_handler(signum, frame):
        _request_shutdown("SIGHUP", 0)

    def _sigterm_handler(signum, frame):
        _request_shutdown("SIGTERM", 2)

    def _sigint_handler(signum, frame):
        _request_shutdown("SIGINT", 2)

    for name, handler in (
        ("SIGHUP", _sighup_handler),
        ("SIGTERM", _sigterm_handler),
        ("SIGINT", _sigint_handler),
    ):
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        try:
            signal.signal(sig, handler)
        except ValueError:
            # Not on the main thread.
            logger.debug("Could not install %s handler", name)

    try:
        server.start()
    except OSError as e:
        logger.error(
            "Failed to bind %s:%d: %s", listen.host or "*", listen.port, e
        )
        return 1

    logger.info("Startup Completed")
    try:
        while not shutdown_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        exit_code = 0
    finally:
        server.stop()
        logger.info("Shutdown complete")

    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
