"""Project CLI commands.

This module provides CLI commands for listing projects and inspecting a
project's phase and status history.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Optional
from uuid import UUID

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agencyflow.database.models.project import ProjectStatus
from agencyflow.database.queries.project import list_projects, require_project
from agencyflow.errors import NotFoundError
from agencyflow.events.log import EventLog
from agencyflow.orchestrator.phase_machine import legal_targets

app = typer.Typer(help="Project commands")
console = Console()

PHASE_COLORS = {
    "intake": "dim",
    "research": "cyan",
    "design": "magenta",
    "development": "blue",
    "qa": "yellow",
    "review": "yellow",
    "completed": "green",
    "on_hold": "dim",
    "cancelled": "red",
}


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError:
        console.print(f"[red]Invalid project UUID:[/red] {value}")
        raise typer.Exit(code=1)


@app.command("list")
def list_command(
    status: Annotated[
        Optional[str],
        typer.Option("--status", "-s", help="Filter by phase"),
    ] = None,
    format: Annotated[
        str,
        typer.Option("--format", "-f", help="Output format (table or json)"),
    ] = "table",
) -> None:
    """List projects, newest first."""
    from agencyflow.main import get_app_context

    ctx = get_app_context()

    status_filter = None
    if status is not None:
        try:
            status_filter = ProjectStatus(status)
        except ValueError:
            console.print(
                f"[red]Invalid status:[/red] {status}. "
                f"Valid values: {', '.join(s.value for s in ProjectStatus)}"
            )
            raise typer.Exit(code=1)

    async def _list():
        try:
            async with ctx.session_factory() as session:
                return await list_projects(session, status_filter=status_filter)
        finally:
            await ctx.engine.dispose()

    projects = asyncio.run(_list())

    if format == "json":
        output = [
            {
                "id": str(p.id),
                "name": p.name,
                "phase": p.current_phase.value,
                "created_at": p.created_at.isoformat(),
            }
            for p in projects
        ]
        console.print(json.dumps(output, indent=2))
        return

    if not projects:
        console.print("[yellow]No projects found[/yellow]")
        return

    table = Table(title="Projects")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="bold")
    table.add_column("Phase")
    table.add_column("Created", style="dim")
    for p in projects:
        color = PHASE_COLORS.get(p.current_phase.value, "white")
        table.add_row(
            str(p.id),
            p.name,
            f"[{color}]{p.current_phase.value}[/{color}]",
            p.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


@app.command()
def phase(
    project_id: Annotated[str, typer.Argument(help="Project UUID")],
) -> None:
    """Show a project's current phase and the phases it can move to."""
    from agencyflow.main import get_app_context

    ctx = get_app_context()
    project_uuid = _parse_uuid(project_id)

    async def _load():
        try:
            async with ctx.session_factory() as session:
                return await require_project(session, project_uuid)
        finally:
            await ctx.engine.dispose()

    try:
        project = asyncio.run(_load())
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    current = project.current_phase.value
    color = PHASE_COLORS.get(current, "white")
    targets = sorted(t.value for t in legal_targets(project.current_phase, project.held_phase))
    lines = [
        f"[bold]Project:[/bold] {project.name}",
        f"[bold]Phase:[/bold] [{color}]{current}[/{color}]",
        f"[bold]Next:[/bold] {', '.join(targets) or '-'}",
    ]
    if project.held_phase is not None:
        lines.append(f"[bold]Held phase:[/bold] {project.held_phase.value}")
    console.print(Panel("\n".join(lines), title="Project Phase", border_style=color))


@app.command()
def history(
    project_id: Annotated[str, typer.Argument(help="Project UUID")],
) -> None:
    """Show a project's status history, replayed from the event log."""
    from agencyflow.main import get_app_context

    ctx = get_app_context()
    project_uuid = _parse_uuid(project_id)

    async def _replay():
        try:
            async with ctx.session_factory() as session:
                await require_project(session, project_uuid)
                return await EventLog().replay_phase_history(session, project_uuid)
        finally:
            await ctx.engine.dispose()

    try:
        entries = asyncio.run(_replay())
    except NotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(code=1)

    table = Table(title=f"Status History: {project_uuid}")
    table.add_column("When", style="dim")
    table.add_column("From")
    table.add_column("To", style="bold")
    table.add_column("Notes")
    for entry in entries:
        color = PHASE_COLORS.get(entry.status, "white")
        table.add_row(
            entry.timestamp.strftime("%Y-%m-%d %H:%M:%S"),
            entry.previous_status or "-",
            f"[{color}]{entry.status}[/{color}]",
            entry.notes or "",
        )
    console.print(table)
