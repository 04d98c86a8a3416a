"""Respond command - answer a prompt from this device."""

import asyncio

import click
import orjson

from vibesync.commands.config import load_settings
from vibesync.core.directory_store import DirectoryStore
from vibesync.core.prompts import PromptChannel, PromptNotFound
from vibesync.core.store import StoreError


@click.command()
@click.argument("prompt_id")
@click.argument("text")
def respond(prompt_id: str, text: str) -> None:
    """Answer a waiting prompt.

    PROMPT_ID is the id shown by 'vibesync prompts'. TEXT is typed into the
    session on the source machine as if entered there.

    Examples:

        vibesync respond abc123-1718000000000 "yes, go ahead"
    """
    settings = load_settings()
    channel = PromptChannel(DirectoryStore(settings.store_path))
    try:
        prompt = asyncio.run(channel.submit_response(prompt_id, text, settings.device_name))
    except PromptNotFound:
        click.echo(f"Prompt {prompt_id} not found", err=True)
        raise SystemExit(1)
    except StoreError as e:
        click.echo(f"Failed to submit response: {e}", err=True)
        raise SystemExit(1)

    result = {
        "prompt_id": prompt.id,
        "session_id": prompt.session_id,
        "responded_at": prompt.responded_at,
    }
    click.echo(orjson.dumps(result).decode())
