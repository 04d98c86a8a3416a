"""Prompts command - list prompts waiting for an answer as JSON."""

import asyncio

import click
import orjson

from vibesync.commands.config import load_settings
from vibesync.core.directory_store import DirectoryStore
from vibesync.core.prompts import PromptChannel
from vibesync.core.session_id import canonical_session_id
from vibesync.core.store import StoreError


@click.command()
@click.option("--session", "session_id", help="Only prompts from this session")
def prompts(session_id: str | None) -> None:
    """List prompts that are waiting for an answer.

    Output is a JSON array of prompt records, newest first. Answer one with
    'vibesync respond'.

    Examples:

        vibesync prompts

        vibesync prompts --session abc123
    """
    settings = load_settings()
    channel = PromptChannel(DirectoryStore(settings.store_path))
    try:
        pending = asyncio.run(channel.fetch_pending())
    except StoreError as e:
        click.echo(f"Failed to query prompts: {e}", err=True)
        raise SystemExit(1)

    if session_id:
        wanted = canonical_session_id(session_id)
        pending = [p for p in pending if p.session_id == wanted]
    click.echo(orjson.dumps(pending, option=orjson.OPT_INDENT_2).decode())
