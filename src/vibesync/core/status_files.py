"""Local session files shared by the hook handler and the source daemon.

All local data is stored under {VIBESYNC_HOME} (default ~/.vibesync):
- status/{session_id}.json: current state written by the Claude Code hooks
  {"state", "project", "timestamp", "pid", "message"}
- prompts/{session_id}.json: context of the prompt a session is blocked on
  {"session_id", "project", "prompt_message", "notification_type",
   "transcript_path", "transcript_excerpt", "timestamp", "pid"}
- responses/{session_id}.txt: fallback copy of a remote response that could
  not be injected, removed once the user submits input

Files are replaced atomically so the poller never reads a half-written file.
"""

import os
import tempfile
from datetime import datetime
from pathlib import Path

import orjson

from vibesync.core.config import get_vibesync_home
from vibesync.core.records import utcnow
from vibesync.core.session_id import canonical_session_id


def _home(home: Path | None) -> Path:
    return Path(home) if home is not None else get_vibesync_home()


def get_status_dir(home: Path | None = None) -> Path:
    """Get path to the status file directory."""
    return _home(home) / "status"


def get_prompts_dir(home: Path | None = None) -> Path:
    """Get path to the prompt file directory."""
    return _home(home) / "prompts"


def get_responses_dir(home: Path | None = None) -> Path:
    """Get path to the fallback response directory."""
    return _home(home) / "responses"


def status_path(session_id: str, home: Path | None = None) -> Path:
    return get_status_dir(home) / f"{canonical_session_id(session_id)}.json"


def prompt_path(session_id: str, home: Path | None = None) -> Path:
    return get_prompts_dir(home) / f"{canonical_session_id(session_id)}.json"


def response_path(session_id: str, home: Path | None = None) -> Path:
    return get_responses_dir(home) / f"{canonical_session_id(session_id)}.txt"


def write_atomic(path: Path, content: bytes) -> None:
    """Replace a file's content in one rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.replace(tmp, path)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def write_status(
    session_id: str,
    state: str,
    project: str,
    pid: int | None = None,
    message: str | None = None,
    timestamp: datetime | None = None,
    home: Path | None = None,
) -> Path:
    """Write a session's status file.

    Args:
        session_id: Session id (normalized before use).
        state: New status value.
        project: Project label.
        pid: Session process id, if known.
        message: Optional free-form message.
        timestamp: Observation time. Defaults to now.
        home: Base directory. Defaults to VIBESYNC_HOME.

    Returns:
        Path of the written file.
    """
    path = status_path(session_id, home)
    data = {
        "state": state,
        "project": project,
        "timestamp": (timestamp or utcnow()).isoformat(),
        "pid": pid,
    }
    if message:
        data["message"] = message
    write_atomic(path, orjson.dumps(data))
    return path


def remove_status(session_id: str, home: Path | None = None) -> None:
    status_path(session_id, home).unlink(missing_ok=True)


def write_prompt_file(session_id: str, data: dict, home: Path | None = None) -> Path:
    """Write the prompt context file for a session."""
    path = prompt_path(session_id, home)
    write_atomic(path, orjson.dumps(data))
    return path


def read_prompt_file(session_id: str, home: Path | None = None) -> dict | None:
    """Read a session's prompt file, or None if missing or unreadable."""
    path = prompt_path(session_id, home)
    try:
        content = path.read_bytes()
        data = orjson.loads(content) if content else None
    except (FileNotFoundError, orjson.JSONDecodeError):
        return None
    return data if isinstance(data, dict) else None


def delete_prompt_file(session_id: str, home: Path | None = None) -> None:
    prompt_path(session_id, home).unlink(missing_ok=True)


def write_response_file(session_id: str, text: str, home: Path | None = None) -> Path:
    """Write the fallback response file for a session."""
    path = response_path(session_id, home)
    write_atomic(path, text.encode())
    return path


def consume_response_file(session_id: str, home: Path | None = None) -> str | None:
    """Read and delete a session's fallback response file.

    Returns:
        The response text, or None if there was no file.
    """
    path = response_path(session_id, home)
    try:
        text = path.read_text()
    except FileNotFoundError:
        return None
    path.unlink(missing_ok=True)
    return text
