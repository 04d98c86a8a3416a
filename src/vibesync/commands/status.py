"""Status command - show local sessions as seen by the detector."""

import click
import orjson

from vibesync.commands.config import load_settings
from vibesync.core.detector import StatusDirectoryDetector
from vibesync.core.records import DISPLAY_NAMES, aggregate_status


@click.command()
def status() -> None:
    """Show sessions running on this machine.

    Returns JSON with the combined status and one entry per session.

    Examples:

        vibesync status
    """
    settings = load_settings()
    sessions = StatusDirectoryDetector(status_ttl=settings.status_ttl).scan()
    combined = aggregate_status(sessions)
    result = {
        "status": combined,
        "display": DISPLAY_NAMES[combined],
        "sessions": sessions,
    }
    click.echo(orjson.dumps(result, option=orjson.OPT_INDENT_2).decode())
