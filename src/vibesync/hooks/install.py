"""Hook installation for Claude Code integration.

Registers vibesync-hook commands in Claude Code's settings.json so that
every session keeps its local status file current.
"""

from pathlib import Path

import orjson

HOOK_PREFIX = "vibesync-hook"

# Hook configuration to install
HOOK_CONFIG = {
    "SessionStart": [
        {
            "matcher": "*",
            "hooks": [{"type": "command", "command": "vibesync-hook session-start"}],
        }
    ],
    "UserPromptSubmit": [
        {
            "matcher": "*",
            "hooks": [{"type": "command", "command": "vibesync-hook prompt-submit"}],
        }
    ],
    "Stop": [
        {
            "matcher": "*",
            "hooks": [{"type": "command", "command": "vibesync-hook stop"}],
        }
    ],
    "Notification": [
        {
            "matcher": "idle_prompt|permission_prompt",
            "hooks": [{"type": "command", "command": "vibesync-hook notification"}],
        }
    ],
    "SessionEnd": [
        {
            "matcher": "*",
            "hooks": [{"type": "command", "command": "vibesync-hook session-end"}],
        }
    ],
}


def get_claude_settings_path() -> Path:
    """Get the path to Claude Code's settings.json."""
    return Path.home() / ".claude" / "settings.json"


def _read_settings(settings_path: Path) -> dict:
    if not settings_path.exists():
        return {}
    content = settings_path.read_bytes()
    return orjson.loads(content) if content else {}


def _is_vibesync_entry(entry) -> bool:
    return isinstance(entry, dict) and any(
        h.get("command", "").startswith(HOOK_PREFIX) for h in entry.get("hooks", [])
    )


def install_hooks() -> None:
    """Install vibesync hooks into Claude Code settings.

    Existing hooks are preserved. Running it twice installs nothing new.
    """
    settings_path = get_claude_settings_path()
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    settings = _read_settings(settings_path)
    hooks = settings.get("hooks", {})

    for event, event_hooks in HOOK_CONFIG.items():
        entries = hooks.setdefault(event, [])
        existing_commands = {
            h.get("command", "")
            for entry in entries
            if isinstance(entry, dict)
            for h in entry.get("hooks", [])
        }
        for hook_entry in event_hooks:
            if hook_entry["hooks"][0]["command"] not in existing_commands:
                entries.append(hook_entry)

    settings["hooks"] = hooks
    settings_path.write_bytes(orjson.dumps(settings, option=orjson.OPT_INDENT_2))


def uninstall_hooks() -> None:
    """Remove vibesync hooks from Claude Code settings, leaving others intact."""
    settings_path = get_claude_settings_path()
    settings = _read_settings(settings_path)
    if not settings:
        return

    hooks = settings.get("hooks", {})
    for event in list(hooks):
        hooks[event] = [h for h in hooks[event] if not _is_vibesync_entry(h)]
        # Remove empty event entries
        if not hooks[event]:
            del hooks[event]

    if hooks:
        settings["hooks"] = hooks
    elif "hooks" in settings:
        del settings["hooks"]

    settings_path.write_bytes(orjson.dumps(settings, option=orjson.OPT_INDENT_2))
