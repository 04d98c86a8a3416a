"""Fallback delivery for responses that could not be injected.

The response is written to {VIBESYNC_HOME}/responses/{session_id}.txt, copied
to the clipboard, and announced with a desktop notification so the user can
paste it by hand.
"""

import logging
import platform
import shutil
import subprocess
from pathlib import Path

from vibesync.core.status_files import write_response_file

logger = logging.getLogger(__name__)

APP_NAME = "vibesync"

# Candidate clipboard writers, tried in order
_CLIPBOARD_COMMANDS = [
    ["pbcopy"],
    ["wl-copy"],
    ["xclip", "-selection", "clipboard"],
]


def copy_to_clipboard(text: str) -> bool:
    """Copy text to the system clipboard.

    Returns:
        True if a clipboard tool accepted the text.
    """
    for cmd in _CLIPBOARD_COMMANDS:
        if shutil.which(cmd[0]) is None:
            continue
        try:
            result = subprocess.run(cmd, input=text, capture_output=True, text=True)
        except OSError as e:
            logger.debug("Clipboard command %s failed: %s", cmd[0], e)
            continue
        if result.returncode == 0:
            return True
    logger.warning("No clipboard tool available")
    return False


def notify(title: str, body: str) -> bool:
    """Show a desktop notification using notify-send (Linux) or osascript (macOS)."""
    # Truncate message for desktop notification
    short_body = body[:200] + "..." if len(body) > 200 else body
    system = platform.system()

    if system == "Darwin":
        escaped_title = title.replace('"', '\\"')
        escaped_body = short_body.replace('"', '\\"')
        cmd = [
            "osascript",
            "-e",
            f'display notification "{escaped_body}" with title "{escaped_title}"',
        ]
    elif system == "Linux":
        cmd = ["notify-send", "--app-name", APP_NAME, title, short_body]
    else:
        logger.warning("Desktop notifications not supported on %s", system)
        return False

    try:
        result = subprocess.run(cmd, capture_output=True)
    except OSError as e:
        logger.warning("Failed to send desktop notification: %s", e)
        return False
    return result.returncode == 0


class FallbackDelivery:
    """Hands a response to the user when it can't be typed in for them."""

    def __init__(self, home: Path | None = None) -> None:
        self.home = home

    def deliver(self, session_id: str, text: str, project: str = "") -> Path:
        """Write, copy and announce a response.

        Returns:
            Path of the response file.
        """
        path = write_response_file(session_id, text, home=self.home)
        logger.info("Wrote response for %s to %s", session_id, path)

        copied = copy_to_clipboard(text)
        where = "in your clipboard" if copied else f"saved to {path}"
        label = f" for {project}" if project else ""
        notify("Response Ready", f"Your response{label} is {where}. Paste it in the terminal.")
        return path

    def notify(self, title: str, body: str) -> bool:
        return notify(title, body)
