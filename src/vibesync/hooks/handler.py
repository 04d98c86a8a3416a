"""Hook handler for Claude Code integration.

This module provides the `vibesync-hook` CLI command that is called by Claude
Code hooks to keep the local status files current.

Entry point defined in pyproject.toml:
    vibesync-hook = "vibesync.hooks.handler:main"
"""

import os
import subprocess
import sys
from pathlib import Path

import click
import orjson

from vibesync.core.records import IDLE, NEEDS_INPUT, WORKING, utcnow
from vibesync.core.session_id import canonical_session_id
from vibesync.core.status_files import (
    consume_response_file,
    remove_status,
    write_prompt_file,
    write_status,
)

# Notification types that mean Claude is waiting on the user
INPUT_NOTIFICATION_TYPES = {"idle_prompt", "permission_prompt"}

# Process names that identify the Claude Code process itself
CLAUDE_PROCESS_NAMES = {"claude", "node"}

EXCERPT_LIMIT = 2000


def read_stdin_json() -> dict:
    """Read and parse JSON from stdin."""
    try:
        data = sys.stdin.read()
        if not data:
            return {}
        parsed = orjson.loads(data)
        return parsed if isinstance(parsed, dict) else {}
    except (orjson.JSONDecodeError, ValueError):
        return {}


def _ps(pid: int, field: str) -> str:
    try:
        result = subprocess.run(
            ["ps", "-p", str(pid), "-o", f"{field}="],
            capture_output=True,
            text=True,
        )
    except FileNotFoundError:
        return ""
    return result.stdout.strip() if result.returncode == 0 else ""


def find_claude_pid(start: int | None = None, max_depth: int = 8) -> int:
    """Find the Claude Code process this hook runs under.

    The hook's parent is usually a shell, so walk up the process tree looking
    for a process named claude or node. Falls back to the direct parent.
    """
    parent = start if start is not None else os.getppid()
    current = parent
    for _ in range(max_depth):
        name = Path(_ps(current, "comm")).name.lower()
        if name in CLAUDE_PROCESS_NAMES:
            return current
        ppid = _ps(current, "ppid")
        if not ppid.isdigit() or int(ppid) <= 1:
            break
        current = int(ppid)
    return parent


def project_name(data: dict) -> str:
    """Project label: the last component of the session's working directory."""
    cwd = data.get("cwd") or ""
    return Path(cwd).name or "Unknown"


def session_id_from(data: dict) -> str | None:
    raw = data.get("session_id") or ""
    try:
        return canonical_session_id(raw)
    except ValueError:
        return None


def extract_final_response(transcript_path: str) -> str | None:
    """Extract the final assistant response from a transcript JSONL file.

    Args:
        transcript_path: Path to the conversation transcript (.jsonl)

    Returns:
        The text content of the last assistant message, or None if not found.
    """
    path = Path(transcript_path).expanduser()
    if not path.exists():
        return None

    last_assistant_message = None

    with path.open() as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entry = orjson.loads(line)
                if entry.get("type") != "assistant":
                    continue
                content = entry.get("message", {}).get("content", [])
                if isinstance(content, str):
                    content = [content]
                text_parts = []
                for block in content:
                    if isinstance(block, dict) and block.get("type") == "text":
                        text_parts.append(block.get("text", ""))
                    elif isinstance(block, str):
                        text_parts.append(block)
                if text_parts:
                    last_assistant_message = "\n".join(text_parts)
            except (orjson.JSONDecodeError, AttributeError, TypeError):
                continue

    return last_assistant_message


def _update_status(state: str) -> dict | None:
    """Write a status file for the hook's session. Returns the hook payload."""
    data = read_stdin_json()
    session_id = session_id_from(data)
    if session_id is None:
        return None
    write_status(session_id, state, project_name(data), pid=find_claude_pid())
    return data


@click.group()
def main() -> None:
    """Hook handler for Claude Code integration."""
    pass


@main.command("session-start")
def session_start() -> None:
    """Handle SessionStart hook - session is ready for input."""
    _update_status(IDLE)


@main.command("prompt-submit")
def prompt_submit() -> None:
    """Handle UserPromptSubmit hook - Claude is working."""
    data = _update_status(WORKING)
    if data is not None:
        # A pending fallback response has been typed in by hand
        consume_response_file(session_id_from(data))


@main.command()
def stop() -> None:
    """Handle Stop hook - Claude finished its turn."""
    _update_status(IDLE)


@main.command()
def notification() -> None:
    """Handle Notification hook - record a prompt when Claude needs input."""
    data = read_stdin_json()
    session_id = session_id_from(data)
    if session_id is None:
        return
    notification_type = data.get("notification_type") or ""
    if notification_type not in INPUT_NOTIFICATION_TYPES:
        return

    project = project_name(data)
    pid = find_claude_pid()
    now = utcnow()
    transcript_path = data.get("transcript_path") or ""

    excerpt = None
    if transcript_path:
        response = extract_final_response(transcript_path)
        if response:
            excerpt = response[-EXCERPT_LIMIT:]

    # Prompt file first, so the poller never sees needs_input without it
    write_prompt_file(
        session_id,
        {
            "session_id": session_id,
            "project": project,
            "prompt_message": data.get("message") or "",
            "notification_type": notification_type,
            "transcript_path": transcript_path or None,
            "transcript_excerpt": excerpt,
            "timestamp": now.isoformat(),
            "pid": pid,
        },
    )
    write_status(session_id, NEEDS_INPUT, project, pid=pid, timestamp=now)


@main.command("session-end")
def session_end() -> None:
    """Handle SessionEnd hook - remove the session's status file."""
    session_id = session_id_from(read_stdin_json())
    if session_id is not None:
        remove_status(session_id)


if __name__ == "__main__":
    main()
