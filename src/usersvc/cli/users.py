"""User management CLI commands."""

import asyncio

import typer
from rich.console import Console
from rich.table import Table
from sqlmodel import col, select

from usersvc.database import get_session_context
from usersvc.errors import ServiceError
from usersvc.models import ADMIN_ROLE, User, UserStatus
from usersvc.services import accounts
from usersvc.services.phone import format_phone_for_display, is_valid_phone, normalize_phone

console = Console()
app = typer.Typer(help="User management commands")


@app.command("list")
def list_users(
    limit: int = typer.Option(50, "--limit", "-l", help="Number of users to show"),
):
    """List the most recently created users."""

    async def _list():
        async with get_session_context() as session:
            stmt = select(User).order_by(col(User.created_at).desc()).limit(limit)
            result = await session.execute(stmt)
            users = result.scalars().all()

            table = Table(title="Users")
            table.add_column("ID", style="cyan")
            table.add_column("Username")
            table.add_column("Email", style="green")
            table.add_column("Phone", style="green")
            table.add_column("Status", style="magenta")
            table.add_column("Verified")
            table.add_column("Created", style="dim")

            for user in users:
                created = user.created_at.strftime("%Y-%m-%d") if user.created_at else "-"
                table.add_row(
                    user.id,
                    user.username or "-",
                    user.email or "-",
                    format_phone_for_display(user.phone) if user.phone else "-",
                    user.status,
                    "[green]Yes[/green]" if user.is_verified else "No",
                    created,
                )

            console.print(table)

    asyncio.run(_list())


@app.command("create-admin")
def create_admin(
    username: str = typer.Option("admin", help="Admin username"),
    email: str = typer.Option("admin@ethioconnect.com", help="Admin email"),
    phone: str = typer.Option("+251911000000", help="Admin phone"),
    password: str = typer.Option(
        ..., prompt=True, hide_input=True, confirmation_prompt=True, help="Admin password"
    ),
):
    """Create a verified admin account, or grant admin to an existing one."""
    if not is_valid_phone(phone):
        console.print(f"[red]Error:[/red] Invalid phone number: {phone}")
        raise typer.Exit(1)

    async def _create():
        async with get_session_context() as session:
            await accounts.get_or_create_role(session, ADMIN_ROLE)
            await session.commit()

            existing = await accounts.get_user_by_email(session, email)
            if existing:
                granted = await accounts.assign_role(session, existing.id, ADMIN_ROLE)
                if granted:
                    console.print(f"[green]Granted admin to existing user:[/green] {email}")
                else:
                    console.print(f"[yellow]Warning:[/yellow] {email} is already an admin")
                return

            try:
                user = await accounts.create_user(
                    session,
                    username=username,
                    email=email,
                    phone=normalize_phone(phone),
                    password=password,
                    is_verified=True,
                    full_name="System Administrator",
                )
                await accounts.assign_role(session, user.id, ADMIN_ROLE)
            except ServiceError as e:
                console.print(f"[red]Error:[/red] {e.message}")
                raise typer.Exit(1) from e

            console.print(f"[green]Created admin:[/green] {email} ({user.id})")

    asyncio.run(_create())


@app.command("set-status")
def set_status(
    user_id: str = typer.Argument(..., help="User ID"),
    status: UserStatus = typer.Argument(..., help="New account status"),
):
    """Change an account's status."""

    async def _set():
        async with get_session_context() as session:
            user = await accounts.get_user_by_id(session, user_id)
            if not user:
                console.print(f"[red]Error:[/red] User {user_id} not found")
                raise typer.Exit(1)

            user.status = status.value
            session.add(user)
            await session.commit()
            console.print(f"[green]User {user_id} is now {status.value}[/green]")

    asyncio.run(_set())
