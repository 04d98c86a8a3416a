"""vibesync configuration management.

Handles {VIBESYNC_HOME}/config.json (default ~/.vibesync/config.json) and
turns it into a validated Settings object.
"""

import os
import socket
from dataclasses import dataclass, fields
from pathlib import Path

import orjson

HOME_ENV = "VIBESYNC_HOME"

# Remote records older than this drop out of queries (30 minutes)
DEFAULT_SESSION_EXPIRATION = 30 * 60
# Local status files older than this are treated as dead sessions (2 hours)
DEFAULT_STATUS_TTL = 2 * 60 * 60

VALID_INJECTORS = {"tmux", "applescript"}


def get_vibesync_home() -> Path:
    """Get the base directory for local vibesync files.

    Configurable via VIBESYNC_HOME, defaults to ~/.vibesync.
    """
    if env_home := os.environ.get(HOME_ENV):
        return Path(env_home).expanduser()
    return Path.home() / ".vibesync"


def get_config_path() -> Path:
    """Get the path to vibesync's config file."""
    return get_vibesync_home() / "config.json"


def read_config() -> dict:
    """Read vibesync config, returning empty dict if not found."""
    config_path = get_config_path()
    if not config_path.exists():
        return {}
    try:
        content = config_path.read_bytes()
        return orjson.loads(content) if content else {}
    except (orjson.JSONDecodeError, OSError):
        return {}


def write_config(config: dict) -> None:
    """Write vibesync config."""
    config_path = get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_bytes(orjson.dumps(config, option=orjson.OPT_INDENT_2))


def set_config_value(key: str, value) -> None:
    """Set a single config key after validating the resulting settings.

    Raises:
        KeyError: If key is not a known setting.
        ValueError: If the new value produces invalid settings.
    """
    if key not in Settings.keys():
        raise KeyError(key)
    config = read_config()
    config[key] = value
    Settings.from_dict(config)
    write_config(config)


@dataclass
class Settings:
    """Runtime settings for both the source and the remote role.

    Intervals are in seconds. ``debounce_delay`` must be strictly shorter
    than ``poll_interval``: every tick reschedules pending writes, so a
    longer debounce would never let a write fire.
    """

    device_name: str
    store_path: Path
    poll_interval: float = 1.0
    debounce_delay: float = 0.5
    keepalive_interval: float = 60.0
    response_poll_interval: float = 2.0
    refresh_interval: float = 5.0
    cleanup_every: int = 10
    session_expiration: float = DEFAULT_SESSION_EXPIRATION
    status_ttl: float = DEFAULT_STATUS_TTL
    injector: str = "tmux"
    sync_enabled: bool = True

    def __post_init__(self) -> None:
        self.store_path = Path(self.store_path).expanduser()
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be > 0")
        if not 0 <= self.debounce_delay < self.poll_interval:
            raise ValueError(
                "debounce_delay must be >= 0 and shorter than poll_interval "
                f"(got {self.debounce_delay} >= {self.poll_interval})"
            )
        if self.keepalive_interval >= self.session_expiration:
            raise ValueError("keepalive_interval must be shorter than session_expiration")
        if self.cleanup_every < 1:
            raise ValueError("cleanup_every must be >= 1")
        if self.injector not in VALID_INJECTORS:
            raise ValueError(
                f"Invalid injector: {self.injector}. Must be one of {VALID_INJECTORS}"
            )

    @classmethod
    def keys(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    @classmethod
    def from_dict(cls, config: dict) -> "Settings":
        """Build settings from a config dict, ignoring unknown keys."""
        values = {k: v for k, v in config.items() if k in cls.keys()}
        values.setdefault("device_name", socket.gethostname())
        values.setdefault("store_path", get_vibesync_home() / "store")
        return cls(**values)

    @classmethod
    def load(cls) -> "Settings":
        """Load settings from the config file."""
        return cls.from_dict(read_config())

    def to_dict(self) -> dict:
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values["store_path"] = str(self.store_path)
        return values
