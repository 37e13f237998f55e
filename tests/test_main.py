"""
Brief: Tests for signpost.main helpers and CLI entry.

Inputs:
  - None

Outputs:
  - None
"""

import signal

import pytest

import signpost.main as main_mod
from signpost.main import build_dispatcher, build_parser, load_settings, main


class _FakeServer:
    """Brief: ProxyServer stand-in that fires a captured signal handler on start.

    Inputs:
      - host, port, dispatcher and listener options, as ProxyServer.

    Outputs:
      - Records construction arguments and start/stop calls on the class.
    """

    instances = []
    fire = None
    start_error = None

    def __init__(self, host, port, dispatcher, **kwargs):
        self.host = host
        self.port = port
        self.dispatcher = dispatcher
        self.kwargs = kwargs
        self.started = False
        self.stopped = False
        _FakeServer.instances.append(self)

    def start(self):
        if _FakeServer.start_error is not None:
            raise _FakeServer.start_error
        self.started = True
        if _FakeServer.fire is not None:
            _FakeServer.fire()

    def stop(self):
        self.stopped = True


@pytest.fixture
def fake_runtime(monkeypatch):
    """
    Brief: Replace ProxyServer and signal.signal inside signpost.main.

    Inputs:
      - monkeypatch: pytest fixture

    Outputs:
      - dict of installed signal handlers keyed by signal number
    """
    handlers = {}
    _FakeServer.instances = []
    _FakeServer.fire = None
    _FakeServer.start_error = None
    monkeypatch.setattr(main_mod, "ProxyServer", _FakeServer)
    monkeypatch.setattr(
        main_mod.signal, "signal", lambda sig, h: handlers.__setitem__(sig, h)
    )
    return handlers


def test_sigterm_shutdown_returns_2(fake_runtime) -> None:
    """
    Brief: A SIGTERM during serving stops the server and exits with code 2.

    Inputs:
      - fake_runtime: patched server and signal registration

    Outputs:
      - None
    """
    _FakeServer.fire = lambda: fake_runtime[signal.SIGTERM](signal.SIGTERM, None)
    rc = main(["--address", "127.0.0.1:5353", "--route", "example.com=8.8.4.4:53"])
    assert rc == 2
    (server,) = _FakeServer.instances
    assert (server.host, server.port) == ("127.0.0.1", 5353)
    assert server.started and server.stopped
    assert server.dispatcher.routing.select("www.example.com.") == "8.8.4.4:53"


def test_sighup_shutdown_returns_0(fake_runtime) -> None:
    _FakeServer.fire = lambda: fake_runtime[signal.SIGHUP](signal.SIGHUP, None)
    assert main(["--address", ":5353"]) == 0
    assert _FakeServer.instances[0].host == ""


def test_sigint_shutdown_returns_2(fake_runtime) -> None:
    _FakeServer.fire = lambda: fake_runtime[signal.SIGINT](signal.SIGINT, None)
    assert main(["--address", ":5353"]) == 2


def test_bind_failure_returns_1(fake_runtime) -> None:
    _FakeServer.start_error = PermissionError("denied")
    assert main(["--address", ":53"]) == 1


def test_invalid_route_flag_prints_and_returns_1(fake_runtime, capsys) -> None:
    rc = main(["--route", "example.com"])
    assert rc == 1
    assert "domain=host:port" in capsys.readouterr().out
    assert _FakeServer.instances == []


def test_invalid_allow_transfer_returns_1(fake_runtime, capsys) -> None:
    assert main(["--allow-transfer", "not-an-ip"]) == 1
    assert "allow_transfer" in capsys.readouterr().out


def test_missing_config_file_returns_1(fake_runtime, tmp_path) -> None:
    assert main(["--config", str(tmp_path / "nope.yaml")]) == 1


def test_config_file_and_flag_overrides(fake_runtime, tmp_path) -> None:
    """
    Brief: Flags override file values; file-only values are kept.

    Inputs:
      - fake_runtime: patched server and signal registration
      - tmp_path: pytest temporary directory

    Outputs:
      - None
    """
    cfg = tmp_path / "config.yaml"
    cfg.write_text(
        "listen: {host: 127.0.0.1, port: 5300, tcp: false}\n"
        "routes: {corp.: '10.0.0.53:53'}\n"
        "allow_transfer: ['10.0.0.9']\n"
        "logging: {level: warn, stderr: false}\n",
        encoding="utf-8",
    )
    _FakeServer.fire = lambda: fake_runtime[signal.SIGHUP](signal.SIGHUP, None)
    rc = main(["--config", str(cfg), "--allow-transfer", "1.2.3.4"])
    assert rc == 0
    (server,) = _FakeServer.instances
    assert (server.host, server.port) == ("127.0.0.1", 5300)
    assert server.kwargs["tcp"] is False
    assert server.dispatcher.routing.select("db.corp.") == "10.0.0.53:53"
    assert server.dispatcher.authorizer.allowed == frozenset({"1.2.3.4"})


def test_load_settings_and_build_dispatcher() -> None:
    args = build_parser().parse_args(
        ["--default", "9.9.9.9", "--route", "a.example=10.0.0.1:53"]
    )
    cfg, settings = load_settings(args)
    dispatcher = build_dispatcher(settings)
    assert dispatcher.routing.fallback == ("9.9.9.9:53",)
    assert dispatcher.routing.select("x.a.example.") == "10.0.0.1:53"
    assert dispatcher.forwarder.timeout_ms == settings.timeout_ms
