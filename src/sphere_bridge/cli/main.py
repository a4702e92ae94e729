"""
Sphere bridge CLI: `sphere-bridge` command.

Commands:
  sphere-bridge serve                      Run the dispatcher server
  sphere-bridge pending list|approve|reject
  sphere-bridge unlock | lock
  sphere-bridge sites list|revoke
  sphere-bridge config show|set
"""

import asyncio
from contextlib import asynccontextmanager

try:
    import click
    from rich.console import Console
except ImportError:
    raise SystemExit("CLI requires extras: pip install sphere-bridge[cli]")

from sphere_bridge.approver import ApproverClient
from sphere_bridge.config import CONFIG_FILE, BridgeSettings, load_settings
from sphere_bridge.errors import SphereError
from sphere_bridge.transport.socketio import SocketIOPort

console = Console()


def _settings() -> BridgeSettings:
    return load_settings(CONFIG_FILE)


async def _open_approver() -> ApproverClient:
    settings = _settings()
    if not settings.approver_token:
        console.print("[red]No approver token. Run `sphere-bridge config set approver_token <token>`.[/red]")
        raise SystemExit(1)
    port = SocketIOPort(settings.bridge_url, token=settings.approver_token, socketio_path=settings.socketio_path)
    await port.connect()
    return ApproverClient(port)


@asynccontextmanager
async def _approver_session():
    """Connected ApproverClient, closed on exit. Connection failures exit 1."""
    try:
        approver = await _open_approver()
    except SphereError as e:
        console.print(f"[red]Could not reach the bridge: {e.message}[/red]")
        raise SystemExit(1)
    try:
        yield approver
    finally:
        await approver.close()


def _run(coro):
    return asyncio.run(coro)


@click.group()
@click.version_option("0.1.0")
def main():
    """Sphere bridge: approve wallet requests from web pages."""


# Register subcommands from separate modules
from sphere_bridge.cli.config import config
from sphere_bridge.cli.pending import pending
from sphere_bridge.cli.serve import serve
from sphere_bridge.cli.wallet import lock, sites, unlock

main.add_command(config)
main.add_command(pending)
main.add_command(serve)
main.add_command(unlock)
main.add_command(lock)
main.add_command(sites)


if __name__ == "__main__":
    main()
