"""Subscribe command - register push subscriptions on the shared store."""

import asyncio

import click
import orjson

from vibesync.commands.config import load_settings
from vibesync.core.directory_store import DirectoryStore
from vibesync.core.fetch import FetchEngine
from vibesync.core.prompts import PromptChannel
from vibesync.core.remote import RemoteView
from vibesync.core.subscriptions import PushBridge


async def _register(bridge: PushBridge) -> dict:
    registered = await bridge.register()
    return {"registered": sorted(registered), "deferred": sorted(bridge.deferred)}


async def _noop() -> None:
    pass


@click.command()
def subscribe() -> None:
    """Register the session and prompt subscriptions.

    Subscriptions for a record type that has never been written are
    deferred; run this again (or start 'vibesync top') once a source has
    published.

    Examples:

        vibesync subscribe
    """
    settings = load_settings()
    store = DirectoryStore(settings.store_path)
    bridge = PushBridge(
        store,
        FetchEngine(store, session_expiration=settings.session_expiration),
        PromptChannel(store),
        RemoteView(),
        _noop,
    )
    result = asyncio.run(_register(bridge))
    click.echo(orjson.dumps(result).decode())
