"""CLI commands using Typer."""

import typer

from usersvc.cli.db import app as db_app
from usersvc.cli.maintenance import app as maintenance_app
from usersvc.cli.roles import app as roles_app
from usersvc.cli.users import app as users_app

app = typer.Typer(name="usersvc", help="User service CLI")

# Register sub-apps
app.add_typer(db_app, name="db")
app.add_typer(users_app, name="users")
app.add_typer(roles_app, name="roles")
app.add_typer(maintenance_app, name="maintenance")


@app.command()
def version():
    """Show version information."""
    from usersvc import __version__

    typer.echo(f"usersvc v{__version__}")


@app.command()
def serve(
    host: str = typer.Option("0.0.0.0", help="Host to bind to"),
    port: int = typer.Option(8000, help="Port to bind to"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
):
    """Run the API server."""
    import uvicorn

    from usersvc.logging import get_uvicorn_log_config

    uvicorn.run(
        "usersvc.main:app",
        host=host,
        port=port,
        reload=reload,
        log_config=get_uvicorn_log_config(),
    )


@app.command()
def worker():
    """Run the background task worker (OTP and refresh token cleanup)."""
    from usersvc.worker import main

    typer.echo("Starting worker")
    main()


if __name__ == "__main__":
    app()
