"""CLI: sphere-bridge pending list|approve|reject"""

import json
import time

import click
from rich.console import Console
from rich.table import Table

from sphere_bridge.errors import SphereError
from sphere_bridge.models.transaction import (
    MintNametagData,
    PendingTransaction,
    SendTransactionData,
    SignMessageData,
    SignNostrData,
)

console = Console()


def _approver_session():
    from sphere_bridge.cli.main import _approver_session
    return _approver_session()


def _run(coro):
    from sphere_bridge.cli.main import _run
    return _run(coro)


def describe(tx: PendingTransaction) -> str:
    data = tx.data
    if isinstance(data, SendTransactionData):
        text = f"send {data.amount} of {data.coin_id[:10]} to {data.recipient}"
        return f"{text} ({data.message})" if data.message else text
    if isinstance(data, SignMessageData):
        return f"sign message: {data.message[:60]}"
    if isinstance(data, SignNostrData):
        return f"sign event {data.event_hash[:16]}"
    if isinstance(data, MintNametagData):
        return f"register @{data.nametag}"
    return tx.type


def _age(timestamp_ms: int) -> str:
    seconds = max(0, int(time.time() - timestamp_ms / 1000))
    if seconds < 120:
        return f"{seconds}s"
    return f"{seconds // 60}m"


@click.group()
def pending():
    """Requests waiting for your approval."""


@pending.command("list")
@click.option("--json-output", "--json", is_flag=True)
def pending_list(json_output):
    """List pending requests, oldest first."""

    async def _list():
        async with _approver_session() as approver:
            transactions = await approver.list_pending()
        if json_output:
            click.echo(json.dumps([tx.to_wire() for tx in transactions], indent=2))
            return
        if not transactions:
            console.print("[dim]Nothing pending.[/dim]")
            return
        table = Table(title=f"Pending ({len(transactions)})")
        table.add_column("Request ID", style="bold")
        table.add_column("Origin")
        table.add_column("Request")
        table.add_column("Age", justify="right")
        for tx in transactions:
            table.add_row(tx.request_id, tx.origin, describe(tx), _age(tx.timestamp))
        console.print(table)

    _run(_list())


@pending.command("approve")
@click.argument("request_id")
def pending_approve(request_id):
    """Approve and execute a pending request."""

    async def _approve():
        async with _approver_session() as approver:
            try:
                with console.status("Approving..."):
                    result = await approver.approve(request_id)
            except SphereError as e:
                console.print(f"[red]Approval failed: {e.message}[/red]")
                raise SystemExit(1)
        console.print(f"[green]Approved {request_id}.[/green]")
        if result:
            click.echo(json.dumps(result, indent=2))

    _run(_approve())


@pending.command("reject")
@click.argument("request_id")
def pending_reject(request_id):
    """Reject a pending request without executing it."""

    async def _reject():
        async with _approver_session() as approver:
            try:
                await approver.reject(request_id)
            except SphereError as e:
                console.print(f"[red]Reject failed: {e.message}[/red]")
                raise SystemExit(1)
        console.print(f"[green]Rejected {request_id}.[/green]")

    _run(_reject())
