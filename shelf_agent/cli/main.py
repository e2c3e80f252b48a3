"""Shelf Agent CLI using Typer."""

import logging
import os
from pathlib import Path

import typer
from dotenv import load_dotenv
from rich.logging import RichHandler

from shelf_agent import __version__
from shelf_agent.cli.scan import scan_app

# Load .env file from current directory or project root
_env_paths = [
    Path.cwd() / ".env",
    Path(__file__).parent.parent.parent / ".env",
]
for _env_path in _env_paths:
    if _env_path.exists():
        load_dotenv(_env_path)
        break

app = typer.Typer(
    name="shelf-agent",
    help="Shelf Agent - turn shelf photos into catalogued collectables",
    add_completion=False,
)
app.add_typer(scan_app, name="scan")


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
) -> None:
    """Configure logging for every command."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            datefmt="[%X]",
            handlers=[RichHandler(rich_tracebacks=True)],
        )
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")


def _check_ai_config() -> None:
    """Check and display AI configuration status."""
    provider = os.environ.get("AI_PROVIDER", "anthropic").lower()
    key_var = "OPENAI_API_KEY" if provider == "openai" else "ANTHROPIC_API_KEY"

    if os.environ.get(key_var):
        typer.echo(f"  AI Provider: {provider} (configured)")
    else:
        typer.echo(f"  AI Provider: {provider} (not configured, extraction unavailable)")
        typer.echo(f"  Tip: Set {key_var} in .env file to enable shelf scanning")


@app.command()
def run(
    host: str = typer.Option("127.0.0.1", "--host", "-h", help="Host to bind to"),
    port: int = typer.Option(8000, "--port", "-p", help="Port to bind to"),
    reload: bool = typer.Option(
        False, "--reload", "-r", help="Enable auto-reload for development"
    ),
) -> None:
    """Start the Shelf Agent API server."""
    import uvicorn

    typer.echo(f"Starting Shelf Agent on http://{host}:{port}")
    _check_ai_config()
    typer.echo("Press Ctrl+C to stop the server")
    typer.echo("")

    uvicorn.run(
        "shelf_agent.web.app:app",
        host=host,
        port=port,
        reload=reload,
    )


@app.command()
def init_db() -> None:
    """Initialize the database (create tables)."""
    from shelf_agent.db.engine import init_db as db_init

    typer.echo("Initializing database...")
    db_init()
    typer.echo("Database initialized successfully!")


@app.command()
def migrate() -> None:
    """Apply Alembic migrations up to the latest revision."""
    from shelf_agent.db.engine import run_migrations

    typer.echo("Running migrations...")
    run_migrations()
    typer.echo("Database is up to date.")


@app.command()
def version() -> None:
    """Show the Shelf Agent version."""
    typer.echo(f"Shelf Agent v{__version__}")


@app.command()
def check_config() -> None:
    """Check the current configuration status."""
    typer.echo("Shelf Agent Configuration")
    typer.echo("=" * 40)

    env_found = False
    for _env_path in _env_paths:
        if _env_path.exists():
            typer.echo(f"  .env file: {_env_path}")
            env_found = True
            break
    if not env_found:
        typer.echo("  .env file: Not found")

    _check_ai_config()

    from shelf_agent.catalog.registry import get_default_registry
    from shelf_agent.db.engine import get_database_url

    registry = get_default_registry()
    typer.echo(f"  Settings: {registry.config_path or 'built-in defaults'}")
    enabled = [p.name for p in registry.list_enabled_providers()]
    typer.echo(f"  Catalog providers: {', '.join(enabled) or 'none'}")
    typer.echo(
        f"  Confidence tiers: max={registry.confidence.max_threshold} "
        f"min={registry.confidence.min_threshold}"
    )
    typer.echo(f"  Database: {get_database_url()}")


if __name__ == "__main__":
    app()
