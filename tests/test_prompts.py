"""Tests for the prompt/response channel."""

import asyncio
from datetime import timedelta

import pytest

from vibesync.core.fallback import FallbackDelivery
from vibesync.core.prompts import PromptChannel, PromptNotFound, PromptPublisher
from vibesync.core.records import PromptRecord
from vibesync.core.responder import ResponsePoller
from vibesync.core.status_files import prompt_path, write_prompt_file

from conftest import START, make_state


def make_prompt(prompt_id="abc-1", session_id="abc", minutes_ago=0) -> PromptRecord:
    return PromptRecord(
        id=prompt_id,
        session_id=session_id,
        project="webapp",
        prompt_message="Claude is waiting for your input",
        notification_type="idle_prompt",
        timestamp=START - timedelta(minutes=minutes_ago),
        pid=4242,
    )


@pytest.fixture
def channel(store, clock):
    return PromptChannel(store, clock=clock)


@pytest.mark.asyncio
async def test_publish_creates_once(channel, store):
    """Test a prompt occurrence is never duplicated or overwritten."""
    assert await channel.publish(make_prompt()) is True
    assert await channel.publish(make_prompt()) is False

    assert store.operations == [("create", "Prompt", "abc-1")]


@pytest.mark.asyncio
async def test_submit_response_sets_response_fields(channel, store, clock):
    await channel.publish(make_prompt())

    answered = await channel.submit_response("abc-1", "yes, continue", "phone")

    assert answered.responded is True
    assert answered.response_text == "yes, continue"
    assert answered.responded_at == clock.now
    assert answered.responded_from_device == "phone"
    # Source-written payload untouched
    assert answered.prompt_message == "Claude is waiting for your input"
    assert answered.pid == 4242


@pytest.mark.asyncio
async def test_submit_response_to_missing_prompt(channel, store):
    """Test answering a missing prompt never creates one."""
    with pytest.raises(PromptNotFound):
        await channel.submit_response("nope", "hello", "phone")

    assert store.records("Prompt") == []


@pytest.mark.asyncio
async def test_fetch_pending(channel):
    assert await channel.fetch_pending() == []

    await channel.publish(make_prompt("abc-1", minutes_ago=5))
    await channel.publish(make_prompt("abc-2", minutes_ago=1))
    await channel.publish(make_prompt("def-1", session_id="def", minutes_ago=3))
    await channel.submit_response("def-1", "ok", "phone")

    pending = await channel.fetch_pending()

    assert [p.id for p in pending] == ["abc-2", "abc-1"]


@pytest.mark.asyncio
async def test_fetch_responses_uses_canonical_id(channel, clock):
    await channel.publish(make_prompt("abc-1"))
    await channel.publish(make_prompt("abc-2"))
    await channel.submit_response("abc-1", "first", "phone")
    clock.advance(10)
    await channel.submit_response("abc-2", "second", "tablet")

    responses = await channel.fetch_responses("vibesync-abc.json")

    assert [p.response_text for p in responses] == ["second", "first"]


@pytest.mark.asyncio
async def test_concurrent_responses_leave_one_text(channel, store, injector, vibesync_home):
    """Test two devices answering at once leave exactly one of the texts."""
    await channel.publish(make_prompt())

    await asyncio.gather(
        channel.submit_response("abc-1", "from phone", "phone"),
        channel.submit_response("abc-1", "from tablet", "tablet"),
    )

    [prompt] = await channel.fetch_responses("abc")
    assert prompt.response_text in {"from phone", "from tablet"}
    assert len(store.records("Prompt")) == 1

    # The source types in whichever text won, exactly once
    sessions = [make_state(status="needs_input")]
    poller = ResponsePoller(
        channel, injector, FallbackDelivery(), sessions=lambda: sessions
    )
    await poller.check_once()
    await poller.check_once()

    assert injector.calls == [(prompt.response_text, 4242)]


@pytest.mark.asyncio
async def test_delete_is_idempotent(channel, store):
    await channel.publish(make_prompt())
    await channel.delete("abc-1")
    await channel.delete("abc-1")

    assert store.records("Prompt") == []


def write_prompt(home, session_id="abc", timestamp=START):
    write_prompt_file(
        session_id,
        {
            "session_id": session_id,
            "project": "webapp",
            "prompt_message": "Claude needs your permission to use Bash",
            "notification_type": "permission_prompt",
            "transcript_path": "/tmp/t.jsonl",
            "transcript_excerpt": "Shall I run the migrations?",
            "timestamp": timestamp.isoformat(),
            "pid": 4242,
        },
        home=home,
    )


@pytest.mark.asyncio
async def test_publisher_publishes_on_transition(channel, store, vibesync_home):
    publisher = PromptPublisher(channel)
    write_prompt(vibesync_home)

    assert await publisher.observe([make_state(status="working")]) == []
    created = await publisher.observe([make_state(status="needs_input")])
    again = await publisher.observe([make_state(status="needs_input")])

    assert [p.notification_type for p in created] == ["permission_prompt"]
    assert created[0].transcript_excerpt == "Shall I run the migrations?"
    assert again == []
    assert len(store.records("Prompt")) == 1


@pytest.mark.asyncio
async def test_publisher_waits_for_prompt_file(channel, store, vibesync_home):
    """Test a prompt file that lands a tick late is still published."""
    publisher = PromptPublisher(channel)

    assert await publisher.observe([make_state(status="needs_input")]) == []
    write_prompt(vibesync_home)
    created = await publisher.observe([make_state(status="needs_input")])

    assert len(created) == 1


@pytest.mark.asyncio
async def test_publisher_retries_after_store_failure(channel, store, vibesync_home):
    publisher = PromptPublisher(channel)
    write_prompt(vibesync_home)
    store.available = False

    assert await publisher.observe([make_state(status="needs_input")]) == []

    store.available = True
    assert len(await publisher.observe([make_state(status="needs_input")])) == 1


@pytest.mark.asyncio
async def test_publisher_new_occurrence_after_answer(channel, store, vibesync_home):
    """Test a second needs_input episode produces a second prompt."""
    publisher = PromptPublisher(channel)
    write_prompt(vibesync_home, timestamp=START)
    await publisher.observe([make_state(status="needs_input")])

    await publisher.observe([make_state(status="working")])
    write_prompt(vibesync_home, timestamp=START + timedelta(minutes=2))
    await publisher.observe([make_state(status="needs_input")])

    assert len(store.records("Prompt")) == 2


@pytest.mark.asyncio
async def test_publisher_prompt_id_is_stable(channel, vibesync_home):
    """Test a restarted publisher maps the same prompt file to the same id."""
    write_prompt(vibesync_home)
    state = make_state(status="needs_input")

    first = PromptPublisher(channel).build_prompt(state)
    second = PromptPublisher(channel).build_prompt(state)

    assert first.id == second.id
    assert await channel.publish(first) is True
    assert await channel.publish(second) is False


def test_publisher_forget_removes_prompt_file(channel, vibesync_home):
    write_prompt(vibesync_home)
    PromptPublisher(channel).forget("abc")
    assert not prompt_path("abc").exists()
