"""Record shapes exchanged with the remote store.

SessionRecord and PromptRecord are the remote-visible views of local state.
SessionState is what the local detector reports on every tick.

Both record types convert to and from store ``Record`` objects. Field names
on the store side are camelCase so that every device reading the shared
store agrees on them.
"""

from dataclasses import dataclass
from datetime import datetime, timezone

from vibesync.core.store import Record

SESSION_RECORD_TYPE = "Session"
PROMPT_RECORD_TYPE = "Prompt"

WORKING = "working"
IDLE = "idle"
NEEDS_INPUT = "needs_input"
NOT_RUNNING = "not_running"

VALID_STATUSES = {WORKING, IDLE, NEEDS_INPUT, NOT_RUNNING}

DISPLAY_NAMES = {
    WORKING: "Working",
    IDLE: "Ready",
    NEEDS_INPUT: "Needs Input",
    NOT_RUNNING: "Not Running",
}


class MalformedRecord(Exception):
    """Raised when a store record cannot be decoded into a known shape."""

    pass


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def _validate_status(status: str) -> None:
    if status not in VALID_STATUSES:
        raise ValueError(
            f"Invalid status: {status}. Must be one of {VALID_STATUSES}"
        )


@dataclass
class SessionState:
    """One locally observed session, as reported by the detector.

    Attributes:
        session_id: Canonical session id (see ``session_id.canonical_session_id``)
        status: One of "working", "idle", "needs_input", "not_running"
        project: Display label, usually the working directory name
        pid: Process id of the session, if known
        timestamp: When the detector last observed this state
    """

    session_id: str
    status: str
    project: str
    pid: int | None
    timestamp: datetime

    def __post_init__(self) -> None:
        _validate_status(self.status)


@dataclass
class SessionRecord:
    """Remote-visible state of one local session.

    Attributes:
        id: Store key, equal to the canonical session id
        status: Session status
        project: Display label
        timestamp: Time of the write that produced this record
        pid: Local process id, diagnostics only
        source_device_name: Host that published the record
    """

    id: str
    status: str
    project: str
    timestamp: datetime
    pid: int | None
    source_device_name: str

    def __post_init__(self) -> None:
        _validate_status(self.status)

    @property
    def display_status(self) -> str:
        return DISPLAY_NAMES[self.status]

    def to_fields(self) -> dict:
        """Store fields for this record."""
        fields = {
            "sessionId": self.id,
            "status": self.status,
            "project": self.project,
            "timestamp": self.timestamp,
            "sourceDeviceName": self.source_device_name,
        }
        if self.pid is not None:
            fields["pid"] = self.pid
        return fields

    def to_record(self) -> Record:
        """Build a brand new store record (no change tag)."""
        return Record(SESSION_RECORD_TYPE, self.id, self.to_fields())

    def apply_to(self, record: Record) -> Record:
        """Copy this record's fields onto an existing store record."""
        record.fields.update(self.to_fields())
        return record

    @classmethod
    def from_record(cls, record: Record) -> "SessionRecord":
        """Decode a store record.

        Raises:
            MalformedRecord: If a required field is missing or invalid.
        """
        fields = record.fields
        try:
            session = cls(
                id=_require(fields, "sessionId", str),
                status=_require(fields, "status", str),
                project=_require(fields, "project", str),
                timestamp=_require(fields, "timestamp", datetime),
                pid=_optional(fields, "pid", int),
                source_device_name=_require(fields, "sourceDeviceName", str),
            )
        except ValueError as e:
            raise MalformedRecord(f"{record.record_id}: {e}") from e
        return session


@dataclass
class PromptRecord:
    """A request for human input, and the answer once one arrives.

    The payload fields are written once by the source. The response fields
    are written by whichever remote device answers, and ``responded`` only
    ever moves from False to True.
    """

    id: str
    session_id: str
    project: str
    prompt_message: str
    notification_type: str
    timestamp: datetime
    transcript_path: str | None = None
    transcript_excerpt: str | None = None
    pid: int | None = None
    response_text: str | None = None
    responded_at: datetime | None = None
    responded_from_device: str | None = None
    responded: bool = False

    @property
    def is_responded(self) -> bool:
        return self.response_text is not None and self.responded_at is not None

    def to_fields(self) -> dict:
        fields = {
            "promptId": self.id,
            "sessionId": self.session_id,
            "project": self.project,
            "promptMessage": self.prompt_message,
            "notificationType": self.notification_type,
            "timestamp": self.timestamp,
            "responded": self.responded,
        }
        optional = {
            "transcriptPath": self.transcript_path,
            "transcriptExcerpt": self.transcript_excerpt,
            "pid": self.pid,
            "responseText": self.response_text,
            "respondedAt": self.responded_at,
            "respondedFromDevice": self.responded_from_device,
        }
        for key, value in optional.items():
            if value is not None:
                fields[key] = value
        return fields

    def to_record(self) -> Record:
        return Record(PROMPT_RECORD_TYPE, self.id, self.to_fields())

    @classmethod
    def from_record(cls, record: Record) -> "PromptRecord":
        """Decode a store record.

        Raises:
            MalformedRecord: If a required field is missing or invalid.
        """
        fields = record.fields
        try:
            return cls(
                id=_require(fields, "promptId", str),
                session_id=_require(fields, "sessionId", str),
                project=_require(fields, "project", str),
                prompt_message=_require(fields, "promptMessage", str),
                notification_type=_require(fields, "notificationType", str),
                timestamp=_require(fields, "timestamp", datetime),
                transcript_path=_optional(fields, "transcriptPath", str),
                transcript_excerpt=_optional(fields, "transcriptExcerpt", str),
                pid=_optional(fields, "pid", int),
                response_text=_optional(fields, "responseText", str),
                responded_at=_optional(fields, "respondedAt", datetime),
                responded_from_device=_optional(fields, "respondedFromDevice", str),
                responded=bool(fields.get("responded", False)),
            )
        except ValueError as e:
            raise MalformedRecord(f"{record.record_id}: {e}") from e


def aggregate_status(sessions) -> str:
    """Combined status across sessions (SessionState or SessionRecord).

    Priority: needs_input > working > idle > not_running.
    """
    statuses = {s.status for s in sessions}
    for status in (NEEDS_INPUT, WORKING, IDLE):
        if status in statuses:
            return status
    return NOT_RUNNING


def prompt_id_for(session_id: str, timestamp: datetime) -> str:
    """Deterministic id for one prompt occurrence of a session."""
    return f"{session_id}-{int(timestamp.timestamp() * 1000)}"


def _require(fields: dict, key: str, kind: type):
    value = fields.get(key)
    if value is None:
        raise ValueError(f"missing field {key!r}")
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise ValueError(f"field {key!r} is not {kind.__name__}")
    return value


def _optional(fields: dict, key: str, kind: type):
    if fields.get(key) is None:
        return None
    return _require(fields, key, kind)
