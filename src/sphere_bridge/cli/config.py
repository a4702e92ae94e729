"""CLI: sphere-bridge config show|set"""

import json

import click
import pydantic
from rich.console import Console

from sphere_bridge.config import BridgeSettings

console = Console()

SECRET_KEYS = {"approver_token", "wallet_token"}


def _config_file():
    from sphere_bridge.cli import main
    return main.CONFIG_FILE


@click.group()
def config():
    """Show or change saved settings."""


@config.command("show")
def config_show():
    """Print effective settings (file plus SPHERE_* environment)."""
    from sphere_bridge.config import load_settings
    settings = load_settings(_config_file())
    values = json.loads(settings.model_dump_json())
    for key in SECRET_KEYS:
        if values.get(key):
            values[key] = "***"
    click.echo(json.dumps(values, indent=2))


@config.command("set")
@click.argument("key")
@click.argument("value")
def config_set(key, value):
    """Save one setting to the config file."""
    from sphere_bridge.config import load_raw, save_raw
    if key not in BridgeSettings.model_fields:
        console.print(f"[red]Unknown setting: {key}[/red]")
        raise SystemExit(1)
    path = _config_file()
    values = load_raw(path)
    values[key] = value
    try:
        save_raw(values, path)
    except pydantic.ValidationError as e:
        console.print(f"[red]Invalid value for {key}: {e.errors()[0]['msg']}[/red]")
        raise SystemExit(1)
    console.print(f"[green]Saved {key}.[/green]")
