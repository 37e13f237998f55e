"""
Brief: Global pytest configuration enforcing a per-test 10s timeout.

Inputs:
  - None

Outputs:
  - None
"""

import logging
import os
import signal
import sys

import pytest

# Ensure 'src' is on sys.path so 'signpost' is importable in tests, and the
# tests directory so the shared 'dnsstub' helpers are too.
TESTS_DIR = os.path.abspath(os.path.dirname(__file__))
ROOT = os.path.abspath(os.path.join(TESTS_DIR, os.pardir))
SRC_DIR = os.path.join(ROOT, "src")
for _path in (SRC_DIR, TESTS_DIR):
    if _path not in sys.path:
        sys.path.insert(0, _path)


def _alarm_handler(signum, frame):
    """
    Brief: Signal handler that raises TimeoutError when alarm triggers.

    Inputs:
      - signum: signal number (int)
      - frame: current frame (ignored)

    Outputs:
      - None: Raises TimeoutError to fail the test
    """
    raise TimeoutError("Test exceeded 10 seconds")


if hasattr(signal, "SIGALRM"):
    signal.signal(signal.SIGALRM, _alarm_handler)


@pytest.fixture(autouse=True)
def enforce_test_timeout():
    """
    Brief: Enforce a hard 10-second timeout for each test.

    Inputs:
      - None

    Outputs:
      - None: Cancels alarm after test
    """
    if hasattr(signal, "SIGALRM"):
        signal.alarm(10)
        try:
            yield
        finally:
            signal.alarm(0)
    else:
        yield


@pytest.fixture(autouse=True)
def restore_root_logger():
    """
    Brief: Undo init_logging() side effects between tests.

    Inputs:
      - None

    Outputs:
      - None; handlers installed by the test are closed and the root level
        is restored. pytest's own capture handlers are left alone.
    """
    root = logging.getLogger()
    level = root.level
    yield
    for h in list(root.handlers):
        if not type(h).__module__.startswith("_pytest"):
            root.removeHandler(h)
            h.close()
    root.setLevel(level)
    logging.captureWarnings(False)


@pytest.fixture
def stub_upstream():
    """
    Brief: Factory fixture starting local UDP+TCP DNS stubs on one port.

    Inputs:
      - None

    Outputs:
      - Callable(respond) -> dnsstub.StubUpstream; every stub is closed at
        teardown.
    """
    from dnsstub import StubUpstream

    stubs = []

    def _make(respond, **kwargs):
        stub = StubUpstream(respond, **kwargs)
        stubs.append(stub)
        return stub

    yield _make
    for stub in stubs:
        stub.close()
