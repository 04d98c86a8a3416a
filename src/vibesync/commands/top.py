"""Top command - launch the vibesync TUI."""

import click

from vibesync.commands.config import load_settings
from vibesync.core.directory_store import DirectoryStore


@click.command()
def top() -> None:
    """Launch the vibesync TUI.

    Shows sessions from every source device sharing the store, refreshed on
    pushes and every few seconds. Select a session that needs input and
    press 'a' to answer it.
    """
    from vibesync.core.fallback import notify
    from vibesync.core.remote import RemoteAgent
    from vibesync.tui.app import VibesyncApp

    settings = load_settings()

    store = DirectoryStore(settings.store_path)
    agent = RemoteAgent.from_settings(settings, store, notifier=notify)
    app = VibesyncApp(agent)
    app.run()
