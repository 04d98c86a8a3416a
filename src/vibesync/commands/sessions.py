"""Sessions command - list active sessions from the shared store as JSON."""

import asyncio

import click
import orjson

from vibesync.commands.config import load_settings
from vibesync.core.directory_store import DirectoryStore
from vibesync.core.fetch import FetchEngine
from vibesync.core.records import aggregate_status
from vibesync.core.store import RecordTypeNotFound, StoreError


@click.command()
@click.option("--summary", is_flag=True, help="Print only the combined status")
def sessions(summary: bool) -> None:
    """List sessions active within the expiration window.

    Output is a JSON array of session records, most recently updated first.

    Examples:

        vibesync sessions

        vibesync sessions --summary
    """
    settings = load_settings()
    engine = FetchEngine(
        DirectoryStore(settings.store_path),
        session_expiration=settings.session_expiration,
    )
    try:
        active = asyncio.run(engine.query_active())
    except RecordTypeNotFound:
        # Nothing published yet
        active = []
    except StoreError as e:
        click.echo(f"Failed to query sessions: {e}", err=True)
        raise SystemExit(1)

    if summary:
        result = {"status": aggregate_status(active), "count": len(active)}
        click.echo(orjson.dumps(result).decode())
        return
    click.echo(orjson.dumps(active, option=orjson.OPT_INDENT_2).decode())
