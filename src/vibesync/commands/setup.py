"""Setup command for vibesync.

Installs hooks and configures Claude Code integration.
"""

import click

from vibesync.commands.config import load_settings
from vibesync.core.config import get_config_path, read_config, write_config
from vibesync.hooks.install import install_hooks, uninstall_hooks


@click.command()
@click.option("--store", "store_path", help="Shared store directory for this device")
def setup(store_path: str | None) -> None:
    """Set up vibesync integration with Claude Code.

    This command:

    \b
    1. Installs hooks into Claude Code's settings so every session writes
       its status (working, ready, needs input) to ~/.vibesync/status
    2. Writes ~/.vibesync/config.json, optionally pointing the shared
       store at a synced folder

    Examples:

        vibesync setup

        vibesync setup --store ~/Dropbox/vibesync
    """
    click.echo("Installing vibesync hooks...")
    install_hooks()
    click.echo("Hooks installed to ~/.claude/settings.json")

    config = read_config()
    if store_path:
        config["store_path"] = store_path
    write_config(config)
    settings = load_settings()
    click.echo(f"Config written to {get_config_path()}")
    click.echo(f"Shared store: {settings.store_path}")

    click.echo()
    click.echo("vibesync is now integrated with Claude Code.")
    click.echo("Run 'vibesync source' on this machine and 'vibesync top' on any other.")


@click.command()
def uninstall() -> None:
    """Remove vibesync hooks from Claude Code's settings.

    Local status files and the shared store are left untouched.
    """
    uninstall_hooks()
    click.echo("vibesync hooks removed from ~/.claude/settings.json")
