"""Main Textual app for vibesync TUI."""

import asyncio

from textual.app import App, ComposeResult
from textual.widgets import Footer, Header, Input, Static

from vibesync.core.prompts import PromptNotFound
from vibesync.core.records import DISPLAY_NAMES, NEEDS_INPUT
from vibesync.core.remote import RemoteAgent
from vibesync.core.store import StoreError
from vibesync.tui.widgets.session_table import SessionTable


class VibesyncApp(App):
    """vibesync TUI application.

    Displays sessions published by every source device and lets the user
    answer sessions that are waiting for input.
    """

    TITLE = "vibesync"
    BINDINGS = [
        ("a", "answer", "Answer"),
        ("r", "refresh", "Refresh"),
        ("j", "cursor_down", "Down"),
        ("k", "cursor_up", "Up"),
        ("escape", "cancel_answer", "Cancel"),
        ("q", "quit", "Quit"),
    ]
    CSS = """
    SessionTable {
        height: 1fr;
    }

    #empty-message {
        width: 100%;
        height: 100%;
        content-align: center middle;
        color: $text-muted;
    }

    #answer {
        dock: bottom;
    }
    """

    def __init__(self, agent: RemoteAgent) -> None:
        super().__init__()
        self.agent = agent
        self._agent_task: asyncio.Task | None = None
        # Prompt being answered in the input box
        self._answering: str | None = None

    def compose(self) -> ComposeResult:
        """Compose the app layout."""
        yield Header()
        yield SessionTable()
        yield Static("No active sessions", id="empty-message")
        yield Input(placeholder="Type a response and press Enter", id="answer")
        yield Footer()

    def on_mount(self) -> None:
        """Called when the app is mounted."""
        self.query_one("#answer", Input).display = False
        self.agent.view.on_change = self.refresh_sessions
        self.refresh_sessions()
        self._agent_task = asyncio.create_task(self.agent.run())

    async def on_unmount(self) -> None:
        """Called when the app is unmounted."""
        self.agent.view.on_change = None
        if self._agent_task:
            self._agent_task.cancel()
            try:
                await self._agent_task
            except asyncio.CancelledError:
                pass

    def refresh_sessions(self) -> None:
        """Redraw the table from the remote view."""
        view = self.agent.view
        sessions = view.sessions
        table = self.query_one(SessionTable)
        empty_msg = self.query_one("#empty-message", Static)

        if sessions:
            table.update_sessions(sessions, view.prompts)
            table.display = True
            empty_msg.display = False
            waiting = sum(1 for s in sessions if s.status == NEEDS_INPUT)
            self.sub_title = f"{DISPLAY_NAMES[view.status]} - {waiting} waiting"
        else:
            table.display = False
            empty_msg.display = True
            self.sub_title = "0 sessions"

    async def action_refresh(self) -> None:
        await self.agent.refresh()

    def action_cursor_down(self) -> None:
        self.query_one(SessionTable).action_cursor_down()

    def action_cursor_up(self) -> None:
        self.query_one(SessionTable).action_cursor_up()

    def action_answer(self) -> None:
        """Open the answer box for the selected session's pending prompt."""
        session_id = self.query_one(SessionTable).selected_session_id
        if session_id is None:
            self.notify("No session selected", severity="warning")
            return
        prompt = self.agent.view.prompt_for(session_id)
        if prompt is None:
            self.notify("This session is not waiting for input", severity="warning")
            return

        self._answering = prompt.id
        answer = self.query_one("#answer", Input)
        answer.placeholder = f"Answer {prompt.project}: {prompt.prompt_message[:60]}"
        answer.value = ""
        answer.display = True
        answer.focus()

    def action_cancel_answer(self) -> None:
        self._answering = None
        answer = self.query_one("#answer", Input)
        answer.display = False
        self.query_one(SessionTable).focus()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        """Send the typed response for the prompt being answered."""
        prompt_id = self._answering
        text = event.value.strip()
        self.action_cancel_answer()
        if prompt_id is None or not text:
            return
        try:
            await self.agent.submit_response(prompt_id, text)
        except PromptNotFound:
            self.notify("Prompt was already answered or withdrawn", severity="warning")
            return
        except StoreError as e:
            self.notify(f"Failed to send response: {e}", severity="error")
            return
        self.notify("Response sent")
