"""Maintenance CLI commands."""

import asyncio

import typer
from rich.console import Console

from usersvc.tasks.maintenance import (
    MAINTENANCE_TIMEOUT_SECONDS,
    cleanup_expired_otps,
    cleanup_expired_tokens,
)

console = Console()
app = typer.Typer(help="Maintenance and cleanup commands")


async def _enqueue(name: str) -> None:
    from usersvc.tasks import queue

    job = await queue.enqueue(name, timeout=MAINTENANCE_TIMEOUT_SECONDS)
    console.print(f"[green]Queued {name}:[/green] {job.id if job else 'unknown'}")


@app.command("cleanup-otps")
def cleanup_otps(
    background: bool = typer.Option(False, "--background", "-b", help="Run in background worker"),
):
    """Remove expired OTP records and closed ones past retention."""
    if background:
        asyncio.run(_enqueue("cleanup_expired_otps"))
        return

    result = asyncio.run(cleanup_expired_otps())
    console.print(f"[green]Removed {result['removed']} OTP records[/green]")


@app.command("cleanup-tokens")
def cleanup_tokens(
    background: bool = typer.Option(False, "--background", "-b", help="Run in background worker"),
):
    """Remove expired and long-revoked refresh tokens."""
    if background:
        asyncio.run(_enqueue("cleanup_expired_tokens"))
        return

    result = asyncio.run(cleanup_expired_tokens())
    console.print(f"[green]Removed {result['removed']} refresh tokens[/green]")
