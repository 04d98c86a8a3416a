"""CLI entry point for vibesync.

Usage:
    vibesync                  # Launch TUI
    vibesync source           # Publish local sessions (run where Claude Code runs)
    vibesync sessions         # List active sessions as JSON
    vibesync respond <id> TEXT  # Answer a waiting prompt
"""

import logging

import click

from vibesync.commands.config import config
from vibesync.commands.prompts import prompts
from vibesync.commands.respond import respond
from vibesync.commands.sessions import sessions
from vibesync.commands.setup import setup, uninstall
from vibesync.commands.source import source
from vibesync.commands.status import status
from vibesync.commands.subscribe import subscribe
from vibesync.commands.top import top

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


@click.group(invoke_without_command=True)
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr")
@click.version_option()
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """vibesync - Claude Code session status across your devices.

    Publishes the state of local Claude Code sessions to a shared store and
    lets any other device watch them and answer prompts remotely.

    Running 'vibesync' without a subcommand launches the TUI.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )

    if ctx.invoked_subcommand is None:
        ctx.invoke(top)


# Register commands
main.add_command(source)
main.add_command(top)
main.add_command(status)
main.add_command(sessions)
main.add_command(prompts)
main.add_command(respond)
main.add_command(subscribe)
main.add_command(config)
main.add_command(setup)
main.add_command(uninstall)
