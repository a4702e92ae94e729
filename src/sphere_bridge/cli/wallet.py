"""CLI: sphere-bridge unlock|lock, sphere-bridge sites list|revoke"""

import click
from rich.console import Console

from sphere_bridge.errors import SphereError

console = Console()


def _approver_session():
    from sphere_bridge.cli.main import _approver_session
    return _approver_session()


def _run(coro):
    from sphere_bridge.cli.main import _run
    return _run(coro)


@click.command("unlock")
@click.option("--password", prompt=True, hide_input=True)
def unlock(password):
    """Unlock the wallet. Waiting connects resume."""

    async def _unlock():
        async with _approver_session() as approver:
            try:
                identity = await approver.unlock(password)
            except SphereError as e:
                console.print(f"[red]Unlock failed: {e.message}[/red]")
                raise SystemExit(1)
        label = identity.get("label") or identity.get("id")
        console.print(f"[green]Unlocked ({label}).[/green]")

    _run(_unlock())


@click.command("lock")
def lock():
    """Lock the wallet."""

    async def _lock():
        async with _approver_session() as approver:
            await approver.lock()
        console.print("[green]Locked.[/green]")

    _run(_lock())


@click.group()
def sites():
    """Connected sites."""


@sites.command("list")
def sites_list():
    """List origins connected to the wallet."""

    async def _list():
        async with _approver_session() as approver:
            origins = await approver.connected_sites()
        if not origins:
            console.print("[dim]No connected sites.[/dim]")
        for origin in origins:
            console.print(origin)

    _run(_list())


@sites.command("revoke")
@click.argument("origin")
def sites_revoke(origin):
    """Disconnect an origin."""

    async def _revoke():
        async with _approver_session() as approver:
            try:
                await approver.revoke_site(origin)
            except SphereError as e:
                console.print(f"[red]{e.message}[/red]")
                raise SystemExit(1)
        console.print(f"[green]Revoked {origin}.[/green]")

    _run(_revoke())
