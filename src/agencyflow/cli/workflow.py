"""Workflow CLI commands.

This module provides CLI commands for running, resuming and inspecting
workflow runs. Commands drive runs in-process against the configured
database and specialist provider.
"""

from __future__ import annotations

import asyncio
import json
from typing import Annotated, Any, Optional

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from agencyflow.agents.sdk_wrapper import MessagesApiClient
from agencyflow.errors import AgencyflowError
from agencyflow.orchestrator.context import OrchestratorContext
from agencyflow.orchestrator.engine import WorkflowEngine

app = typer.Typer(help="Workflow commands")
console = Console()

STATUS_COLORS = {
    "running": "cyan",
    "suspended": "yellow",
    "completed": "green",
    "failed": "red",
}


async def _with_engine(action: Any) -> dict[str, Any]:
    """Build a workflow engine, run ``action(engine)`` and wait for late calls."""
    from agencyflow.main import get_app_context

    ctx = get_app_context()
    try:
        async with MessagesApiClient(ctx.config.agent) as client:
            context = OrchestratorContext.build(ctx.config, ctx.session_factory, client)
            try:
                return await action(WorkflowEngine(context))
            finally:
                await context.delegation.drain()
    finally:
        await ctx.engine.dispose()


def _render_summary(summary: dict[str, Any], title: str) -> None:
    color = STATUS_COLORS.get(summary["status"], "white")
    lines = [
        f"[bold]Run ID:[/bold] {summary['run_id']}",
        f"[bold]Workflow:[/bold] {summary['workflow_id']}",
        f"[bold]Status:[/bold] [{color}]{summary['status']}[/{color}]",
        f"[bold]Project:[/bold] {summary.get('project_id') or '-'}",
    ]
    if summary.get("current_step"):
        lines.append(f"[bold]Current step:[/bold] {summary['current_step']}")
    if summary.get("error"):
        lines.append(f"[bold]Error:[/bold] [red]{summary['error']}[/red]")
    console.print(Panel("\n".join(lines), title=title, border_style=color))

    results = summary.get("results") or {}
    if results:
        table = Table(title="Completed Steps")
        table.add_column("Step", style="bold")
        table.add_column("Phase", style="magenta")
        table.add_column("Specialists", style="cyan")
        table.add_column("Completed", style="dim")
        for name, result in results.items():
            table.add_row(
                name,
                result.get("phase") or "-",
                ", ".join(result.get("outputs", {})) or "-",
                result.get("completed_at") or "-",
            )
        console.print(table)

    handoff = summary.get("handoff")
    if handoff:
        _render_summary(handoff, "Hand-off Run")


@app.command()
def run(
    name: Annotated[str, typer.Argument(help="Workflow to run (e.g. project-lifecycle)")],
    data: Annotated[
        Optional[str],
        typer.Option("--data", "-d", help="Trigger data as JSON string"),
    ] = None,
) -> None:
    """Start a workflow run and drive it until it completes, fails or suspends."""
    trigger_data: dict[str, Any] = {}
    if data is not None:
        try:
            trigger_data = json.loads(data)
        except json.JSONDecodeError as e:
            console.print(f"[red]Invalid JSON in trigger data:[/red] {e}")
            raise typer.Exit(code=1)
        if not isinstance(trigger_data, dict):
            console.print("[red]Trigger data must be a JSON object[/red]")
            raise typer.Exit(code=1)

    try:
        summary = asyncio.run(_with_engine(lambda engine: engine.run(name, trigger_data)))
    except AgencyflowError as e:
        console.print(f"[red]Error running workflow:[/red] {e}")
        raise typer.Exit(code=1)

    _render_summary(summary, "Workflow Run")
    if summary["status"] == "failed":
        raise typer.Exit(code=1)


@app.command()
def resume(
    run_id: Annotated[str, typer.Argument(help="Run ID to resume")],
    reject: Annotated[
        bool,
        typer.Option("--reject", help="Resume without approving the pending step"),
    ] = False,
) -> None:
    """Resume a suspended or failed workflow run."""
    try:
        summary = asyncio.run(
            _with_engine(lambda engine: engine.resume(run_id, approve=not reject))
        )
    except AgencyflowError as e:
        console.print(f"[red]Error resuming workflow:[/red] {e}")
        raise typer.Exit(code=1)

    _render_summary(summary, "Workflow Run")
    if summary["status"] == "failed":
        raise typer.Exit(code=1)


@app.command()
def status(
    run_id: Annotated[str, typer.Argument(help="Run ID to inspect")],
) -> None:
    """Show the status of a workflow run."""
    try:
        summary = asyncio.run(_with_engine(lambda engine: engine.get_status(run_id)))
    except AgencyflowError as e:
        console.print(f"[red]Error reading workflow run:[/red] {e}")
        raise typer.Exit(code=1)

    _render_summary(summary, "Workflow Run")
