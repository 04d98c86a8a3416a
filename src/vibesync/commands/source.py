"""Source command - publish local sessions and deliver remote responses."""

import asyncio

import click

from vibesync.commands.config import load_settings
from vibesync.core.detector import StatusDirectoryDetector
from vibesync.core.directory_store import DirectoryStore
from vibesync.core.source import SourceAgent


async def _run_once(agent: SourceAgent) -> None:
    await agent.tick()
    if agent.sync_enabled:
        await agent.pipeline.drain()
        await agent.responder.check_once()


@click.command()
@click.option("--once", is_flag=True, help="Run a single tick and exit")
def source(once: bool) -> None:
    """Run the source daemon on the machine where Claude Code runs.

    Watches the local status files written by vibesync-hook, publishes
    session state to the shared store, and types remote responses into
    the waiting session.

    Examples:

        vibesync source

        vibesync source --once
    """
    settings = load_settings()

    store = DirectoryStore(settings.store_path)
    detector = StatusDirectoryDetector(status_ttl=settings.status_ttl)
    agent = SourceAgent.from_settings(settings, store, detector)

    if not settings.sync_enabled:
        click.echo("Sync is disabled (vibesync config sync_enabled true to enable)", err=True)

    try:
        asyncio.run(_run_once(agent) if once else agent.run())
    except KeyboardInterrupt:
        pass
