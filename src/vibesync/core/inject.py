"""Local input injection.

Types a remote response into the terminal running a Claude Code session.
Two backends:
- TmuxInjector: finds the tmux pane that owns the session's process and uses
  send-keys. Works anywhere tmux runs.
- AppleScriptInjector: sends keystrokes to the frontmost Terminal window via
  System Events. Needs macOS automation permission.

Both are blocking; callers run them with ``asyncio.to_thread``.
"""

import os
import subprocess
import time

# Socket name for tmux isolation (used for testing)
# Set VIBESYNC_TMUX_SOCKET to use a separate tmux server
TMUX_SOCKET_ENV = "VIBESYNC_TMUX_SOCKET"

UNKNOWN = "unknown"
GRANTED = "granted"
DENIED = "denied"

# osascript: "Not authorized to send Apple events"
APPLESCRIPT_NOT_AUTHORIZED = "-1743"

# tmux stderr fragments that mean we can't reach the server at all
_TMUX_DENIED_MARKERS = ("no server running", "error connecting", "Permission denied")

# Walking further than this up the process tree means we are lost
_MAX_ANCESTORS = 32


def _tmux_cmd(args: list[str]) -> list[str]:
    """Build a tmux command, optionally with a custom socket.

    If VIBESYNC_TMUX_SOCKET is set, adds -L <socket> to use an isolated server.
    """
    socket = os.environ.get(TMUX_SOCKET_ENV)
    if socket:
        return ["tmux", "-L", socket] + args
    return ["tmux"] + args


class InjectionError(Exception):
    """Raised when a response could not be typed into its session."""

    pass


class InjectionDenied(InjectionError):
    """Raised when the platform refuses input automation altogether."""

    pass


class TmuxError(InjectionError):
    """Raised when a tmux command fails."""

    pass


class Injector:
    """Base class for injection backends.

    ``capability`` reflects the outcome of the last attempt. It is never
    treated as a permanent verdict: every ``inject`` call tries again.
    """

    name = "base"
    fix_hint = ""

    def __init__(self) -> None:
        self.capability = UNKNOWN

    def inject(self, text: str, pid: int | None) -> None:
        """Type text into the session and submit it.

        Raises:
            InjectionDenied: If automation is not permitted.
            InjectionError: If the text could not be delivered.
        """
        try:
            self._inject(text, pid)
        except InjectionDenied:
            self.capability = DENIED
            raise
        except (OSError, ValueError) as e:
            # e.g. ps vanished mid-lookup, or a NUL byte in the text
            raise InjectionError(f"{self.name} injection failed: {e}") from e
        self.capability = GRANTED

    def _inject(self, text: str, pid: int | None) -> None:
        raise NotImplementedError


def parent_pid(pid: int) -> int | None:
    """Get the parent pid of a process via ps, or None if it is gone."""
    result = subprocess.run(
        ["ps", "-o", "ppid=", "-p", str(pid)],
        capture_output=True,
        text=True,
    )
    if result.returncode != 0:
        return None
    try:
        return int(result.stdout.strip())
    except ValueError:
        return None


class TmuxInjector(Injector):
    """Send keys to the tmux pane whose process tree contains the session.

    Args:
        submit_delay: Seconds to wait between typing and pressing Enter.
    """

    name = "tmux"
    fix_hint = "Run Claude Code inside tmux so responses can be typed into its pane."

    def __init__(self, submit_delay: float = 0.5) -> None:
        super().__init__()
        self.submit_delay = submit_delay

    def _run(self, args: list[str]) -> subprocess.CompletedProcess:
        try:
            result = subprocess.run(_tmux_cmd(args), capture_output=True, text=True)
        except FileNotFoundError:
            raise InjectionDenied("tmux is not installed") from None
        if result.returncode != 0:
            stderr = result.stderr.strip()
            if any(marker in stderr for marker in _TMUX_DENIED_MARKERS):
                raise InjectionDenied(f"tmux unavailable: {stderr}")
            raise TmuxError(f"tmux {args[0]} failed: {stderr}")
        return result

    def list_panes(self) -> dict[int, str]:
        """Map each pane's shell pid to its pane id."""
        result = self._run(["list-panes", "-a", "-F", "#{pane_id} #{pane_pid}"])
        panes = {}
        for line in result.stdout.strip().split("\n"):
            parts = line.split()
            if len(parts) == 2 and parts[1].isdigit():
                panes[int(parts[1])] = parts[0]
        return panes

    def find_pane(self, pid: int) -> str | None:
        """Find the pane running pid or one of its ancestors."""
        panes = self.list_panes()
        current: int | None = pid
        for _ in range(_MAX_ANCESTORS):
            if current is None or current <= 1:
                return None
            if current in panes:
                return panes[current]
            current = parent_pid(current)
        return None

    def _inject(self, text: str, pid: int | None) -> None:
        if pid is None:
            raise InjectionError("No pid known for session")
        pane = self.find_pane(pid)
        if pane is None:
            raise InjectionError(f"No tmux pane found for pid {pid}")

        # -l sends the text literally so key names in it aren't interpreted
        self._run(["send-keys", "-t", pane, "-l", text])
        time.sleep(self.submit_delay)
        # C-m (Ctrl+M) is carriage return - submits in Claude Code
        self._run(["send-keys", "-t", pane, "C-m"])


def escape_applescript(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


class AppleScriptInjector(Injector):
    """Type into the frontmost Terminal window through System Events."""

    name = "applescript"
    fix_hint = (
        "Grant automation permission in System Settings > Privacy & Security > "
        "Automation, and enable System Events for your terminal."
    )

    def script_for(self, text: str) -> str:
        return (
            'tell application "Terminal"\n'
            "    activate\n"
            "    delay 0.2\n"
            '    tell application "System Events"\n'
            f'        keystroke "{escape_applescript(text)}"\n'
            "        delay 0.1\n"
            "        keystroke return\n"
            "    end tell\n"
            "end tell\n"
        )

    def _inject(self, text: str, pid: int | None) -> None:
        try:
            result = subprocess.run(
                ["osascript", "-e", self.script_for(text)],
                capture_output=True,
                text=True,
            )
        except FileNotFoundError:
            raise InjectionDenied("osascript is not available") from None
        if result.returncode != 0:
            stderr = result.stderr.strip()
            if APPLESCRIPT_NOT_AUTHORIZED in stderr:
                raise InjectionDenied(f"Automation not authorized: {stderr}")
            raise InjectionError(f"AppleScript failed: {stderr}")


INJECTORS = {
    TmuxInjector.name: TmuxInjector,
    AppleScriptInjector.name: AppleScriptInjector,
}


def make_injector(name: str) -> Injector:
    """Build the injector configured by name.

    Raises:
        ValueError: If name is not a known injector.
    """
    try:
        return INJECTORS[name]()
    except KeyError:
        raise ValueError(
            f"Invalid injector: {name}. Must be one of {set(INJECTORS)}"
        ) from None
