"""Local session detector.

Scans the status directory written by the Claude Code hooks and reports the
sessions that are currently active. Expired sessions, and sessions whose
process has died, are removed from disk as they are found.
"""

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from pathlib import Path

import orjson

from vibesync.core.config import DEFAULT_STATUS_TTL
from vibesync.core.records import SessionState, utcnow
from vibesync.core.session_id import canonical_session_id
from vibesync.core.status_files import get_status_dir

logger = logging.getLogger(__name__)

# The hook's parent may be a short-lived shell, so pids are only trusted
# once a session is older than this
PID_CHECK_AGE = timedelta(seconds=60)


def is_process_running(pid: int) -> bool:
    """Check if a process with the given pid exists."""
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


@dataclass
class ScanResult:
    sessions: list[SessionState] = field(default_factory=list)
    error_count: int = 0


class StatusDirectoryDetector:
    """Produces SessionState tuples from local status files.

    Args:
        home: Base directory holding ``status/``. Defaults to VIBESYNC_HOME.
        status_ttl: Seconds without an update before a session is dropped.
        clock: Returns the current aware datetime.
        process_check: Returns whether a pid is alive.
    """

    def __init__(
        self,
        home: Path | None = None,
        status_ttl: float = DEFAULT_STATUS_TTL,
        clock: Callable[[], datetime] = utcnow,
        process_check: Callable[[int], bool] = is_process_running,
    ) -> None:
        self.home = home
        self.status_ttl = timedelta(seconds=status_ttl)
        self.clock = clock
        self.process_check = process_check
        self.last_error_count = 0

    def scan(self) -> list[SessionState]:
        """Return currently active sessions, sorted by project."""
        result = self.read()
        self.last_error_count = result.error_count
        return result.sessions

    def read(self) -> ScanResult:
        status_dir = get_status_dir(self.home)
        if not status_dir.exists():
            return ScanResult()

        now = self.clock()
        result = ScanResult()
        for path in status_dir.glob("*.json"):
            try:
                session = self._read_file(path, now)
            except (OSError, orjson.JSONDecodeError, ValueError, TypeError) as e:
                result.error_count += 1
                logger.debug("Failed to decode %s: %s", path.name, e)
                continue
            if session is not None:
                result.sessions.append(session)

        result.sessions.sort(key=lambda s: (s.project, s.session_id))
        return result

    def _read_file(self, path: Path, now: datetime) -> SessionState | None:
        content = path.read_bytes()
        if not content:
            return None
        data = orjson.loads(content)
        if not isinstance(data, dict) or "state" not in data:
            raise ValueError(f"not a status file: {path.name}")

        raw_timestamp = data.get("timestamp")
        timestamp = (
            datetime.fromisoformat(raw_timestamp.replace("Z", "+00:00"))
            if raw_timestamp
            else now
        )
        pid = data.get("pid") or None

        age = now - timestamp
        if age >= self.status_ttl:
            logger.info("Session %s expired, removing status file", path.stem)
            path.unlink(missing_ok=True)
            return None
        if age > PID_CHECK_AGE and pid is not None and not self.process_check(pid):
            logger.info("Session %s process %s exited, removing status file", path.stem, pid)
            path.unlink(missing_ok=True)
            return None

        return SessionState(
            session_id=canonical_session_id(path.name),
            status=data["state"],
            project=data.get("project") or "Unknown",
            pid=pid,
            timestamp=timestamp,
        )
