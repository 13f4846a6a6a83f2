"""Role management CLI commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy import func
from sqlmodel import col, select

from usersvc.database import get_session_context
from usersvc.errors import NotFound
from usersvc.models import Role, UserRole
from usersvc.services import accounts

console = Console()
app = typer.Typer(help="Role management commands")


@app.command("list")
def list_roles():
    """List roles with the number of users holding each."""

    async def _list():
        async with get_session_context() as session:
            stmt = (
                select(Role.name, func.count(col(UserRole.id)))
                .outerjoin(UserRole, col(UserRole.role_id) == Role.id)
                .group_by(Role.name)
                .order_by(Role.name)
            )
            result = await session.execute(stmt)

            table = Table(title="Roles")
            table.add_column("Name", style="cyan")
            table.add_column("Users", justify="right")
            for name, count in result.all():
                table.add_row(name, str(count))

            console.print(table)

    asyncio.run(_list())


@app.command("seed")
def seed():
    """Create the default roles if they are missing."""

    async def _seed():
        async with get_session_context() as session:
            created = await accounts.seed_default_roles(session)

        if created:
            console.print(f"[green]Created roles:[/green] {', '.join(created)}")
        else:
            console.print("[dim]All default roles already exist[/dim]")

    asyncio.run(_seed())


@app.command("assign")
def assign(
    user_id: str = typer.Argument(..., help="User ID"),
    role_name: str = typer.Argument(..., help="Role name"),
):
    """Grant a role to a user."""

    async def _assign():
        async with get_session_context() as session:
            if await accounts.get_user_by_id(session, user_id) is None:
                console.print(f"[red]Error:[/red] User {user_id} not found")
                raise typer.Exit(1)
            try:
                granted = await accounts.assign_role(session, user_id, role_name)
            except NotFound as e:
                console.print(f"[red]Error:[/red] {e.message}")
                raise typer.Exit(1) from e

        if granted:
            console.print(f"[green]Assigned {role_name} to {user_id}[/green]")
        else:
            console.print(f"[yellow]Warning:[/yellow] {user_id} already has {role_name}")

    asyncio.run(_assign())
