"""Shared pytest fixtures for vibesync tests."""

import subprocess
from datetime import datetime, timedelta, timezone

import pytest

from vibesync.core.inject import Injector, InjectionDenied, InjectionError
from vibesync.core.memory_store import InMemoryStore
from vibesync.core.records import SessionState

START = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def tmux_works() -> bool:
    """Check if tmux can actually start a server and create sessions.

    CI environments may have tmux installed but not be able to run it
    properly (no PTY, etc.).
    """
    test_socket = "vibesync-tmux-check"
    try:
        result = subprocess.run(
            ["tmux", "-L", test_socket, "new-session", "-d", "-s", "check"],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return False
    if result.returncode != 0:
        return False
    subprocess.run(["tmux", "-L", test_socket, "kill-server"], capture_output=True)
    return True


# Cache the result to avoid running the check multiple times
_tmux_works_cached: bool | None = None


def get_tmux_works() -> bool:
    """Get cached result of tmux_works check."""
    global _tmux_works_cached
    if _tmux_works_cached is None:
        _tmux_works_cached = tmux_works()
    return _tmux_works_cached


# Skip marker for tests requiring a working tmux environment
requires_tmux = pytest.mark.skipif(
    not get_tmux_works(),
    reason="tmux not available or cannot start sessions in this environment",
)


class FakeClock:
    """Settable clock for code that takes a ``clock`` callable."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class FakeInjector(Injector):
    """Injector that records calls instead of typing anything.

    Set ``error`` to an exception instance to make the next calls fail.
    """

    name = "fake"
    fix_hint = "Allow input automation."

    def __init__(self) -> None:
        super().__init__()
        self.calls: list[tuple[str, int | None]] = []
        self.error: InjectionError | None = None

    def _inject(self, text: str, pid: int | None) -> None:
        self.calls.append((text, pid))
        if self.error is not None:
            raise self.error


class FakeDetector:
    """Detector returning whatever the test puts in ``sessions``."""

    def __init__(self, sessions: list[SessionState] | None = None) -> None:
        self.sessions = sessions or []

    def scan(self) -> list[SessionState]:
        return list(self.sessions)


def make_state(
    session_id: str = "abc",
    status: str = "idle",
    project: str = "webapp",
    pid: int | None = 4242,
    timestamp: datetime = START,
) -> SessionState:
    return SessionState(
        session_id=session_id,
        status=status,
        project=project,
        pid=pid,
        timestamp=timestamp,
    )


@pytest.fixture
def vibesync_home(tmp_path, monkeypatch):
    """Point VIBESYNC_HOME at a temporary directory.

    Keeps tests away from the real ~/.vibesync/ directory. The shared store
    defaults to {home}/store, so CLI commands stay isolated too.
    """
    home = tmp_path / "vibesync"
    home.mkdir()
    monkeypatch.setenv("VIBESYNC_HOME", str(home))
    monkeypatch.setenv("HOME", str(tmp_path))
    return home


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def injector():
    return FakeInjector()


@pytest.fixture
def denied_injector():
    injector = FakeInjector()
    injector.error = InjectionDenied("automation not permitted")
    return injector
