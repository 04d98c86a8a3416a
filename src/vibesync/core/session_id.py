"""Canonical session identifiers.

The same id must be used when publishing a session, when publishing its
prompts, and when polling for responses. Every path derives it through
``canonical_session_id`` so a status file name like "vibesync-abc123.json"
and the raw hook id "abc123" both map to "abc123".
"""

FILE_PREFIX = "vibesync-"
FILE_SUFFIX = ".json"


def canonical_session_id(raw: str) -> str:
    """Normalize a session identifier.

    Strips surrounding whitespace, a leading "vibesync-" and a trailing
    ".json". Canonical ids are returned unchanged.

    Args:
        raw: Session id, status file name, or hook-provided id.

    Returns:
        The canonical session id.

    Raises:
        ValueError: If nothing is left after normalization.
    """
    session_id = raw.strip()
    if session_id.startswith(FILE_PREFIX):
        session_id = session_id[len(FILE_PREFIX) :]
    if session_id.endswith(FILE_SUFFIX):
        session_id = session_id[: -len(FILE_SUFFIX)]
    if not session_id or "/" in session_id:
        raise ValueError(f"Invalid session id: {raw!r}")
    return session_id


def status_file_name(session_id: str) -> str:
    """File name of the local status file for a session."""
    return f"{canonical_session_id(session_id)}{FILE_SUFFIX}"
