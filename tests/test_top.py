"""Tests for vibesync TUI."""

from datetime import timedelta

import pytest

from vibesync.core.memory_store import InMemoryStore
from vibesync.core.records import PromptRecord, SessionRecord, utcnow
from vibesync.core.remote import RemoteAgent
from vibesync.tui.app import VibesyncApp
from vibesync.tui.widgets.session_table import SessionTable, _age, _truncate


async def seed(store, session_id="abc", status="needs_input", prompt=True):
    now = utcnow()
    await store.save(
        SessionRecord(
            id=session_id,
            status=status,
            project="webapp",
            timestamp=now,
            pid=4242,
            source_device_name="mac",
        ).to_record()
    )
    if prompt:
        await store.save(
            PromptRecord(
                id=f"{session_id}-1",
                session_id=session_id,
                project="webapp",
                prompt_message="Claude needs your permission to use Bash",
                notification_type="permission_prompt",
                timestamp=now,
            ).to_record()
        )


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def agent(store):
    return RemoteAgent(store, "phone", refresh_interval=60)


@pytest.mark.asyncio
async def test_app_launches(agent):
    """Test that the app launches without error."""
    app = VibesyncApp(agent)
    async with app.run_test() as pilot:
        await pilot.pause(0.1)
        assert app.is_running


@pytest.mark.asyncio
async def test_app_shows_empty_message(agent):
    """Test that empty state shows message."""
    app = VibesyncApp(agent)
    async with app.run_test() as pilot:
        await pilot.pause(0.1)
        table = app.query_one(SessionTable)
        assert table.display is False
        assert app.sub_title == "0 sessions"


@pytest.mark.asyncio
async def test_app_displays_sessions(store, agent):
    """Test that app displays sessions and the waiting count."""
    await seed(store, "abc", "needs_input")
    await seed(store, "def", "working", prompt=False)

    app = VibesyncApp(agent)
    async with app.run_test() as pilot:
        await pilot.pause(0.1)
        table = app.query_one(SessionTable)
        assert table.display is True
        assert table.row_count == 2
        assert app.sub_title == "Needs Input - 1 waiting"


@pytest.mark.asyncio
async def test_app_picks_up_pushed_sessions(store, agent):
    """Test a session published while the app runs appears without a refresh."""
    await seed(store, "seed", "idle", prompt=False)
    app = VibesyncApp(agent)
    async with app.run_test() as pilot:
        await pilot.pause(0.1)
        await seed(store, "abc", "working", prompt=False)
        await pilot.pause(0.1)
        assert app.query_one(SessionTable).row_count == 2


@pytest.mark.asyncio
async def test_answer_sends_response(store, agent):
    """Test answering a waiting session writes the response to the store."""
    await seed(store, "abc", "needs_input")

    app = VibesyncApp(agent)
    async with app.run_test() as pilot:
        await pilot.pause(0.1)
        await pilot.press("a")
        await pilot.press("y", "e", "s")
        await pilot.press("enter")
        await pilot.pause(0.1)

    record = await store.fetch("Prompt", "abc-1")
    assert record.fields["responseText"] == "yes"
    assert record.fields["respondedFromDevice"] == "phone"
    assert record.fields["responded"] is True


@pytest.mark.asyncio
async def test_answer_needs_waiting_session(store, agent):
    await seed(store, "abc", "working", prompt=False)

    app = VibesyncApp(agent)
    async with app.run_test() as pilot:
        await pilot.pause(0.1)
        await pilot.press("a")
        assert app.query_one("#answer").display is False


@pytest.mark.asyncio
async def test_app_quit_binding(agent):
    """Test that q quits the app."""
    app = VibesyncApp(agent)
    async with app.run_test() as pilot:
        await pilot.press("q")
        assert not app.is_running


def test_age_formatting():
    now = utcnow()
    assert _age(now - timedelta(seconds=5), now) == "5s"
    assert _age(now - timedelta(minutes=3), now) == "3m"
    assert _age(now - timedelta(hours=2), now) == "2h"
    assert _age(now + timedelta(seconds=5), now) == "0s"


def test_truncate():
    assert _truncate("short", 10) == "short"
    assert _truncate("a  b\nc", 10) == "a b c"
    assert _truncate("x" * 20, 10) == "xxxxxxx..."
