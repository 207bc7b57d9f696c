"""CLI entry point for Canvas to Notion."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

console = Console()


@click.group()
@click.option(
    "--database-url",
    envvar="FIREBASE_DATABASE_URL",
    default=None,
    help="Firebase Realtime Database URL.",
)
@click.pass_context
def main(ctx: click.Context, database_url: str | None) -> None:
    """Canvas to Notion - sync Canvas courses and assignments into Notion."""
    ctx.ensure_object(dict)
    if database_url:
        ctx.obj["firebase_database_url"] = database_url


def _load_payload(path: str):
    from canvas_notion.models import SyncRequest

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    return SyncRequest.model_validate(data)


def _build_service(obj: dict):
    from canvas_notion.config import load_config
    from canvas_notion.service import SyncService

    config = load_config(**obj)
    return SyncService.from_config(config)


@main.command()
@click.option("--host", default=None, help="Host to bind to.")
@click.option("--port", default=None, type=int, help="Port to listen on.")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Start the sync API server."""
    import uvicorn

    from canvas_notion.config import load_config
    from canvas_notion.web.app import create_app

    overrides = dict(ctx.obj)
    if host:
        overrides["web_host"] = host
    if port:
        overrides["web_port"] = port
    config = load_config(**overrides)
    app = create_app(config)

    console.print(
        f"Starting Canvas to Notion at [bold]http://{config.web_host}:{config.web_port}[/bold]"
    )
    console.print("Press Ctrl+C to stop.\n")

    uvicorn.run(app, host=config.web_host, port=config.web_port, log_level="info")


@main.command()
@click.argument("payload", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def sync(ctx: click.Context, payload: str) -> None:
    """Sync a JSON payload of courses and assignments and wait for the result.

    The payload has the same shape as the ``POST /notion/sync`` body:
    ``{"email", "pageId", "courses", "assignments"}``.
    """
    asyncio.run(_sync(ctx.obj, payload))


async def _sync(obj: dict, payload: str) -> None:
    request = _load_payload(payload)
    service = _build_service(obj)

    console.print(
        f"[bold]Syncing[/bold] {len(request.courses)} courses and "
        f"{len(request.assignments)} assignments into page {request.page_id}..."
    )
    try:
        report = await service.run_sync(request)
        status = await service.get_sync_status(request.email)
    except Exception as e:
        console.print(f"[red]Sync failed:[/red] {e}")
        return

    _print_status(status)
    if report is None:
        return

    data = report.to_dict()
    if data["databasesCreated"]:
        console.print(f"  Databases created:   {', '.join(data['databasesCreated'])}")
    failed = [item for item in data["assignments"] if not item["success"]]
    if failed:
        console.print("[red]Failed assignments:[/red]")
        for item in failed:
            console.print(f"  - {item['assignment']} ({item.get('url', '-')}): {item['error']}")


@main.command()
@click.argument("payload", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def compare(ctx: click.Context, payload: str) -> None:
    """Show which assignments in a JSON payload are not yet in Notion."""
    asyncio.run(_compare(ctx.obj, payload))


async def _compare(obj: dict, payload: str) -> None:
    request = _load_payload(payload)
    service = _build_service(obj)

    try:
        comparison = await service.compare(request)
    except Exception as e:
        console.print(f"[red]Compare failed:[/red] {e}")
        return

    if not comparison:
        console.print("[green]Everything is already in Notion.[/green]")
        return

    table = Table(title="Missing from Notion", show_lines=True)
    table.add_column("Course", style="cyan")
    table.add_column("Assignment", max_width=50)
    table.add_column("Due", no_wrap=True)
    table.add_column("Points", justify="right")

    for course_name, group in comparison.items():
        for assignment in group["onlyInCanvas"]:
            points = assignment.get("points_possible")
            table.add_row(
                course_name,
                assignment["name"],
                assignment.get("due_at") or "-",
                f"{points:g}" if points is not None else "-",
            )

    console.print(table)


@main.command()
@click.argument("email")
@click.pass_context
def status(ctx: click.Context, email: str) -> None:
    """Show the latest sync status for a user."""
    asyncio.run(_status(ctx.obj, email))


async def _status(obj: dict, email: str) -> None:
    service = _build_service(obj)
    try:
        payload = await service.get_sync_status(email)
    except Exception as e:
        console.print(f"[red]Error:[/red] {e}")
        return

    _print_status(payload)


def _print_status(payload: dict) -> None:
    state = payload.get("status")
    color = {"complete": "green", "error": "red"}.get(state, "yellow")
    console.print(f"[{color}]{payload['message']}[/{color}]")

    results = payload.get("results")
    if not results:
        return
    console.print(f"  Courses created:     {results['coursesCreated']}")
    console.print(f"  Assignments total:   {results['totalAssignments']}")
    console.print(f"  Created:             {results['newAssignmentsCreated']}")
    console.print(f"  Already in Notion:   {results['skippedAssignments']}")
    console.print(f"  Failed:              {results['failedAssignments']}")
