"""CLI: sphere-bridge serve"""

import logging
from pathlib import Path
from typing import Optional

import click
import pydantic
from rich.console import Console
from rich.logging import RichHandler

from sphere_bridge.config import BridgeSettings

console = Console()


def _settings():
    from sphere_bridge.cli.main import _settings
    return _settings()


def _run(coro):
    from sphere_bridge.cli.main import _run
    return _run(coro)


@click.command()
@click.option("--host", default=None)
@click.option("--port", default=None, type=int)
@click.option("--storage", "storage_path", default=None, type=click.Path(path_type=Path))
@click.option("--wallet-url", default=None, help="Wallet daemon base URL")
@click.option("--pending-ttl", default=None, type=float, help="Expire pending requests after N seconds")
@click.option("-v", "--verbose", is_flag=True)
def serve(host: Optional[str], port: Optional[int], storage_path: Optional[Path],
          wallet_url: Optional[str], pending_ttl: Optional[float], verbose: bool):
    """Run the dispatcher for relays and approvers."""
    from sphere_bridge.server import BridgeServer

    overrides = {
        "host": host, "port": port, "storage_path": storage_path,
        "wallet_url": wallet_url, "pending_ttl": pending_ttl,
    }
    try:
        settings = BridgeSettings.model_validate(
            {**_settings().model_dump(), **{k: v for k, v in overrides.items() if v is not None}}
        )
    except pydantic.ValidationError as e:
        error = e.errors()[0]
        field = ".".join(str(p) for p in error["loc"])
        console.print(f"[red]Invalid setting {field}: {error['msg']}[/red]")
        raise SystemExit(1)
    level = "DEBUG" if verbose else settings.log_level.upper()
    logging.basicConfig(level=level, format="%(message)s", handlers=[RichHandler(console=console)])

    if not settings.approver_token:
        console.print("[yellow]No approver token configured; approver commands will be refused.[/yellow]")
    console.print(f"Listening on [bold]{settings.host}:{settings.port}[/bold], storage {settings.storage_path}")
    server = BridgeServer(settings)
    try:
        _run(server.serve())
    except KeyboardInterrupt:
        pass
