"""
Scan CLI Commands
=================

Run the shelf pipeline on a local photo and inspect providers and the
review queue.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.table import Table

from shelf_agent.catalog.adapters import get_adapter
from shelf_agent.catalog.registry import get_default_registry
from shelf_agent.core.enums import normalize_kind
from shelf_agent.pipeline.gateways import ExtractionError

console = Console()
scan_app = typer.Typer(help="Shelf scanning commands")
providers_app = typer.Typer(help="Catalog provider commands")
review_app = typer.Typer(help="Review queue commands")

scan_app.add_typer(providers_app, name="providers")
scan_app.add_typer(review_app, name="review")


@scan_app.command("image")
def scan_image(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, help="Shelf photo"),
    kind: str = typer.Option("book", "--kind", "-k", help="Shelf kind (book, game, movie, music)"),
    user: str = typer.Option("local", "--user", "-u", help="User id owning the shelf"),
    shelf: str = typer.Option("default", "--shelf", "-s", help="Shelf id"),
) -> None:
    """
    Process a shelf photo synchronously and print what was added.

    Examples:
        shelf-agent scan image ./shelf.jpg --kind book
        shelf-agent scan image ./games.png -k game -s living-room
    """
    from shelf_agent.db.engine import init_db
    from shelf_agent.pipeline.factory import build_pipeline
    from shelf_agent.pipeline.orchestrator import ShelfTarget

    init_db()
    components = build_pipeline()
    target = ShelfTarget(user_id=user, shelf_id=shelf, kind=normalize_kind(kind))
    image = path.read_bytes()

    rprint(f"\n[bold]Scanning[/bold] {path.name} as a {target.kind.value} shelf")
    try:
        with console.status("[bold blue]Processing...[/bold blue]"):
            result = asyncio.run(components.orchestrator.run(image, target))
    except ExtractionError as e:
        rprint(f"[red]Extraction failed:[/red] {e}")
        raise typer.Exit(1)

    _display_result(result.to_dict())


def _display_result(result: dict[str, Any]) -> None:
    """Display a pipeline result in a formatted way."""
    tiers = result.get("tiers", {})
    rprint(
        f"\n[green]Added:[/green] {result['addedCount']}   "
        f"[yellow]Needs review:[/yellow] {result['needsReviewCount']}   "
        f"[dim]tiers high={tiers.get('high', 0)} medium={tiers.get('medium', 0)} "
        f"low={tiers.get('low', 0)}[/dim]"
    )

    if result["added"]:
        table = Table(title="Added to shelf")
        table.add_column("Title", style="cyan")
        table.add_column("Detected as")
        table.add_column("Source", style="green")
        for entry in result["added"]:
            table.add_row(entry.get("title", ""), entry.get("detectedTitle") or "", entry.get("source", ""))
        console.print(table)

    if result["needsReview"]:
        table = Table(title="Needs review")
        table.add_column("Title", style="yellow")
        table.add_column("Confidence", justify="right")
        table.add_column("Reason")
        for entry in result["needsReview"]:
            confidence = entry.get("confidence")
            table.add_row(
                entry.get("title", ""),
                f"{confidence:.2f}" if isinstance(confidence, (int, float)) else "-",
                entry.get("reason", ""),
            )
        console.print(table)

    if result["warnings"]:
        rprint("\n[yellow]Warnings:[/yellow]")
        for warning in result["warnings"][:10]:
            rprint(f"  • [{warning.get('type')}] {warning.get('message')}")
        if len(result["warnings"]) > 10:
            rprint(f"  ... and {len(result['warnings']) - 10} more")


@providers_app.command("list")
def list_providers_cmd(
    all_providers: bool = typer.Option(False, "--all", "-a", help="Include disabled providers"),
) -> None:
    """List configured catalog providers in priority order."""
    registry = get_default_registry()
    providers = registry.list_providers() if all_providers else registry.list_enabled_providers()

    if not providers:
        rprint("[yellow]No providers configured[/yellow]")
        return

    table = Table(title="Catalog Providers")
    table.add_column("Name", style="cyan")
    table.add_column("Adapter")
    table.add_column("Shelf types")
    table.add_column("Rate limit", justify="right")
    table.add_column("Status")

    for provider in providers:
        adapter = get_adapter(provider.adapter, provider)
        if not provider.enabled or provider.is_disabled_by_env():
            status = "[yellow]disabled[/yellow]"
        elif adapter is None:
            status = "[red]unknown adapter[/red]"
        elif not adapter.is_configured():
            status = "[red]missing credentials[/red]"
        else:
            status = "[green]ready[/green]"
        table.add_row(
            provider.name,
            provider.adapter,
            ", ".join(provider.shelf_types),
            f"{provider.rate_limit.requests_per_second:g}/s x{provider.rate_limit.concurrency}",
            status,
        )

    console.print(table)


@review_app.command("list")
def list_review_cmd(
    user: str = typer.Option("local", "--user", "-u", help="User id"),
    shelf: Optional[str] = typer.Option(None, "--shelf", "-s", help="Filter by shelf id"),
) -> None:
    """List pending review items."""
    from shelf_agent.db.engine import get_session_factory
    from shelf_agent.db.repositories import SqlReviewQueue

    queue = SqlReviewQueue(get_session_factory())
    items = queue.list_pending(user, shelf)
    if not queue.available:
        rprint("[red]Review queue table is missing.[/red] Run: shelf-agent migrate")
        raise typer.Exit(1)

    if not items:
        rprint("[dim]No pending review items[/dim]")
        return

    table = Table(title=f"Pending review ({len(items)})")
    table.add_column("ID", style="dim")
    table.add_column("Shelf")
    table.add_column("Title", style="yellow")
    table.add_column("Confidence", justify="right")
    table.add_column("Created")

    for item in items:
        table.add_row(
            item.id[:8],
            item.shelf_id,
            str(item.raw_data.get("title", "")),
            f"{item.confidence:.2f}" if item.confidence is not None else "-",
            item.created_at.strftime("%Y-%m-%d %H:%M"),
        )

    console.print(table)
