"""Session list widget for vibesync TUI."""

from datetime import datetime, timezone

from textual.widgets import DataTable

from vibesync.core.records import PromptRecord, SessionRecord


def _age(timestamp: datetime, now: datetime) -> str:
    """Short human age, e.g. "5s", "3m", "1h"."""
    seconds = max(0, int((now - timestamp).total_seconds()))
    if seconds < 60:
        return f"{seconds}s"
    if seconds < 3600:
        return f"{seconds // 60}m"
    return f"{seconds // 3600}h"


def _truncate(text: str, limit: int) -> str:
    text = " ".join(text.split())
    if len(text) > limit:
        return text[: limit - 3] + "..."
    return text


class SessionTable(DataTable):
    """DataTable widget displaying remote sessions.

    Columns: Project, Status, Device, Updated, Prompt
    Rows are keyed by session id.
    """

    def on_mount(self) -> None:
        """Set up the table columns on mount."""
        self.add_columns("Project", "Status", "Device", "Updated", "Prompt")
        self.cursor_type = "row"

    def update_sessions(
        self,
        sessions: list[SessionRecord],
        prompts: list[PromptRecord],
        now: datetime | None = None,
    ) -> None:
        """Update the table with the given sessions and their pending prompts."""
        now = now or datetime.now(timezone.utc)
        latest: dict[str, PromptRecord] = {}
        for prompt in prompts:
            current = latest.get(prompt.session_id)
            if current is None or prompt.timestamp > current.timestamp:
                latest[prompt.session_id] = prompt

        selected = self.selected_session_id
        self.clear()
        for session in sessions:
            prompt = latest.get(session.id)
            self.add_row(
                _truncate(session.project, 30),
                session.display_status,
                session.source_device_name,
                _age(session.timestamp, now),
                _truncate(prompt.prompt_message, 50) if prompt else "-",
                key=session.id,
            )
        if selected is not None and selected in {s.id for s in sessions}:
            self.move_cursor(row=self.get_row_index(selected))

    @property
    def selected_session_id(self) -> str | None:
        """Session id of the row under the cursor."""
        if self.row_count == 0:
            return None
        row_key, _ = self.coordinate_to_cell_key(self.cursor_coordinate)
        return str(row_key.value)
