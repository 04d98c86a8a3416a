"""Config command - read and write vibesync settings."""

import click
import orjson

from vibesync.core.config import Settings, get_config_path, set_config_value


def load_settings() -> Settings:
    """Load settings for a command, exiting with an error if they are invalid."""
    try:
        return Settings.load()
    except (TypeError, ValueError) as e:
        click.echo(f"Invalid configuration in {get_config_path()}: {e}", err=True)
        raise SystemExit(1)


def parse_value(raw: str):
    """Parse a command-line value as JSON, falling back to a plain string."""
    try:
        return orjson.loads(raw)
    except orjson.JSONDecodeError:
        return raw


@click.command()
@click.argument("key", required=False)
@click.argument("value", required=False)
def config(key: str | None, value: str | None) -> None:
    """Show or change settings.

    With no arguments, prints every setting as JSON. With KEY, prints one
    setting. With KEY and VALUE, stores the new value. VALUE is parsed as
    JSON when possible, so numbers and booleans keep their type.

    Examples:

        vibesync config

        vibesync config device_name

        vibesync config debounce_delay 0.3

        vibesync config store_path ~/Dropbox/vibesync
    """
    if key is not None and key not in Settings.keys():
        click.echo(f"Unknown setting: {key}", err=True)
        raise SystemExit(1)

    if value is not None:
        try:
            set_config_value(key, parse_value(value))
        except (TypeError, ValueError) as e:
            click.echo(f"Invalid value for {key}: {e}", err=True)
            raise SystemExit(1)
        click.echo(f"{key} = {value}")
        return

    settings = load_settings().to_dict()
    if key is None:
        click.echo(orjson.dumps(settings, option=orjson.OPT_INDENT_2).decode())
    else:
        click.echo(orjson.dumps(settings[key]).decode())
