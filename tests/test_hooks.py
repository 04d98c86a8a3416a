"""Tests for hook handler."""

from datetime import datetime

import orjson
import pytest
from click.testing import CliRunner

from vibesync.core.status_files import (
    prompt_path,
    read_prompt_file,
    response_path,
    status_path,
    write_response_file,
)
from vibesync.hooks import handler
from vibesync.hooks.handler import extract_final_response, find_claude_pid, main
from vibesync.hooks.install import get_claude_settings_path, install_hooks, uninstall_hooks


@pytest.fixture
def runner():
    """Click CLI test runner."""
    return CliRunner()


@pytest.fixture(autouse=True)
def fixed_pid(monkeypatch):
    """Pretend every hook runs under Claude process 4242."""
    monkeypatch.setattr("vibesync.hooks.handler.find_claude_pid", lambda: 4242)


def hook_input(**extra) -> str:
    data = {"session_id": "abc", "cwd": "/home/dev/webapp"}
    data.update(extra)
    return orjson.dumps(data).decode()


def read_status(session_id="abc") -> dict:
    return orjson.loads(status_path(session_id).read_bytes())


def test_session_start_writes_idle(runner, vibesync_home):
    """Test session-start hook writes an idle status file."""
    result = runner.invoke(main, ["session-start"], input=hook_input())

    assert result.exit_code == 0
    status = read_status()
    assert status["state"] == "idle"
    assert status["project"] == "webapp"
    assert status["pid"] == 4242
    assert datetime.fromisoformat(status["timestamp"]).tzinfo is not None


def test_prompt_submit_writes_working(runner, vibesync_home):
    result = runner.invoke(main, ["prompt-submit"], input=hook_input())

    assert result.exit_code == 0
    assert read_status()["state"] == "working"


def test_prompt_submit_consumes_fallback_response(runner, vibesync_home):
    """Test a pasted fallback response is cleared once the user submits."""
    write_response_file("abc", "use postgres")

    runner.invoke(main, ["prompt-submit"], input=hook_input())

    assert not response_path("abc").exists()


def test_stop_writes_idle(runner, vibesync_home):
    runner.invoke(main, ["prompt-submit"], input=hook_input())
    runner.invoke(main, ["stop"], input=hook_input())

    assert read_status()["state"] == "idle"


def test_session_end_removes_status(runner, vibesync_home):
    runner.invoke(main, ["session-start"], input=hook_input())

    result = runner.invoke(main, ["session-end"], input=hook_input())

    assert result.exit_code == 0
    assert not status_path("abc").exists()


def test_prefixed_session_id_is_normalized(runner, vibesync_home):
    runner.invoke(main, ["session-start"], input=hook_input(session_id="vibesync-abc"))

    assert status_path("abc").name == "abc.json"
    assert status_path("abc").exists()


def test_hook_without_session_id_does_nothing(runner, vibesync_home):
    result = runner.invoke(main, ["session-start"], input=orjson.dumps({"cwd": "/x"}).decode())

    assert result.exit_code == 0
    assert not (vibesync_home / "status").exists()


def test_hook_with_invalid_json_does_nothing(runner, vibesync_home):
    result = runner.invoke(main, ["stop"], input="not json")

    assert result.exit_code == 0
    assert not (vibesync_home / "status").exists()


def test_missing_cwd_is_unknown_project(runner, vibesync_home):
    runner.invoke(main, ["session-start"], input=orjson.dumps({"session_id": "abc"}).decode())

    assert read_status()["project"] == "Unknown"


def test_notification_records_prompt_then_needs_input(runner, vibesync_home, tmp_path):
    """Test an input notification writes the prompt file and needs_input status."""
    transcript = tmp_path / "transcript.jsonl"
    transcript.write_text(
        "\n".join(
            [
                orjson.dumps({"type": "user", "message": {"content": "hi"}}).decode(),
                orjson.dumps(
                    {
                        "type": "assistant",
                        "message": {"content": [{"type": "text", "text": "Which database?"}]},
                    }
                ).decode(),
            ]
        )
    )

    result = runner.invoke(
        main,
        ["notification"],
        input=hook_input(
            notification_type="idle_prompt",
            message="Claude is waiting for your input",
            transcript_path=str(transcript),
        ),
    )

    assert result.exit_code == 0
    status = read_status()
    assert status["state"] == "needs_input"
    prompt = read_prompt_file("abc")
    assert prompt["session_id"] == "abc"
    assert prompt["project"] == "webapp"
    assert prompt["prompt_message"] == "Claude is waiting for your input"
    assert prompt["notification_type"] == "idle_prompt"
    assert prompt["transcript_excerpt"] == "Which database?"
    assert prompt["pid"] == 4242
    assert prompt["timestamp"] == status["timestamp"]


def test_notification_excerpt_keeps_the_tail(runner, vibesync_home, tmp_path):
    transcript = tmp_path / "transcript.jsonl"
    text = "a" * 1000 + "b" * 2000
    transcript.write_text(
        orjson.dumps({"type": "assistant", "message": {"content": text}}).decode()
    )

    runner.invoke(
        main,
        ["notification"],
        input=hook_input(notification_type="permission_prompt", transcript_path=str(transcript)),
    )

    assert read_prompt_file("abc")["transcript_excerpt"] == "b" * 2000


def test_other_notifications_are_ignored(runner, vibesync_home):
    result = runner.invoke(
        main, ["notification"], input=hook_input(notification_type="auth_success")
    )

    assert result.exit_code == 0
    assert not status_path("abc").exists()
    assert not prompt_path("abc").exists()


def test_extract_final_response_missing_file(tmp_path):
    assert extract_final_response(str(tmp_path / "nope.jsonl")) is None


def test_extract_final_response_skips_bad_lines(tmp_path):
    transcript = tmp_path / "t.jsonl"
    transcript.write_text(
        "{broken\n"
        + orjson.dumps({"type": "assistant", "message": {"content": ["one", "two"]}}).decode()
        + "\n\n"
    )

    assert extract_final_response(str(transcript)) == "one\ntwo"


def test_find_claude_pid_walks_to_claude(monkeypatch):
    table = {
        100: ("zsh", "200"),
        200: ("node", "300"),
        300: ("tmux", "1"),
    }

    def fake_ps(pid, field):
        name, ppid = table.get(pid, ("", ""))
        return name if field == "comm" else ppid

    monkeypatch.setattr(handler, "_ps", fake_ps)

    assert find_claude_pid(start=100) == 200


def test_find_claude_pid_falls_back_to_parent(monkeypatch):
    monkeypatch.setattr(handler, "_ps", lambda pid, field: "bash" if field == "comm" else "1")

    assert find_claude_pid(start=100) == 100


# --- Install tests ---


@pytest.fixture
def mock_claude_dir(tmp_path, monkeypatch):
    """Mock ~/.claude directory."""
    claude_dir = tmp_path / ".claude"
    claude_dir.mkdir()

    def mock_path():
        return claude_dir / "settings.json"

    monkeypatch.setattr(
        "vibesync.hooks.install.get_claude_settings_path", mock_path
    )
    return claude_dir


def test_settings_path_is_under_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))

    assert get_claude_settings_path() == tmp_path / ".claude" / "settings.json"


def test_install_hooks_creates_config(mock_claude_dir):
    """Test install_hooks creates settings.json if missing."""
    settings_path = mock_claude_dir / "settings.json"
    assert not settings_path.exists()

    install_hooks()

    settings = orjson.loads(settings_path.read_bytes())
    for event in ["SessionStart", "UserPromptSubmit", "Stop", "Notification", "SessionEnd"]:
        assert event in settings["hooks"]
    notification = settings["hooks"]["Notification"][0]
    assert notification["matcher"] == "idle_prompt|permission_prompt"
    assert notification["hooks"][0]["command"] == "vibesync-hook notification"


def test_install_hooks_preserves_existing_hooks(mock_claude_dir):
    """Test install_hooks preserves existing settings and hooks."""
    settings_path = mock_claude_dir / "settings.json"
    existing = {
        "theme": "dark",
        "hooks": {
            "Stop": [
                {
                    "matcher": "*",
                    "hooks": [{"type": "command", "command": "my-custom-hook"}],
                }
            ]
        },
    }
    settings_path.write_bytes(orjson.dumps(existing))

    install_hooks()

    settings = orjson.loads(settings_path.read_bytes())
    assert settings["theme"] == "dark"
    commands = [h["hooks"][0]["command"] for h in settings["hooks"]["Stop"]]
    assert commands == ["my-custom-hook", "vibesync-hook stop"]


def test_install_hooks_idempotent(mock_claude_dir):
    """Test install_hooks is idempotent (no duplicate hooks)."""
    install_hooks()
    install_hooks()

    settings = orjson.loads((mock_claude_dir / "settings.json").read_bytes())
    assert len(settings["hooks"]["Stop"]) == 1


def test_uninstall_hooks_removes_only_vibesync_hooks(mock_claude_dir):
    settings_path = mock_claude_dir / "settings.json"
    settings_path.write_bytes(
        orjson.dumps(
            {
                "hooks": {
                    "Stop": [
                        {"matcher": "*", "hooks": [{"type": "command", "command": "my-hook"}]},
                    ]
                }
            }
        )
    )
    install_hooks()

    uninstall_hooks()

    settings = orjson.loads(settings_path.read_bytes())
    assert settings["hooks"] == {
        "Stop": [{"matcher": "*", "hooks": [{"type": "command", "command": "my-hook"}]}]
    }


def test_uninstall_hooks_drops_empty_hooks_key(mock_claude_dir):
    install_hooks()

    uninstall_hooks()

    settings = orjson.loads((mock_claude_dir / "settings.json").read_bytes())
    assert "hooks" not in settings


def test_uninstall_hooks_no_file(mock_claude_dir):
    """Test uninstall_hooks handles missing settings file."""
    # Should not raise
    uninstall_hooks()
