"""Main CLI entry point for Agencyflow.

This module provides the main Typer application with sub-commands for
running workflows and inspecting projects.

Usage:
    agencyflow init-db
    agencyflow serve --port 8000
    agencyflow workflow run project-lifecycle --data '{"name": "Website"}'
    agencyflow workflow resume <run-id>
    agencyflow project phase <project-id>
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from agencyflow.cli import project as project_cli
from agencyflow.cli import workflow as workflow_cli
from agencyflow.config import AgencyflowConfig, load_config
from agencyflow.database.connection import get_engine, get_session_factory, init_models
from agencyflow.logging import setup_logging

app = typer.Typer(
    name="agencyflow",
    help="Agencyflow: workflow orchestration for a specialist-agent design agency",
    no_args_is_help=True,
)

app.add_typer(workflow_cli.app, name="workflow", help="Run and resume workflows")
app.add_typer(project_cli.app, name="project", help="Inspect projects")

console = Console()


class AppContext:
    """Application context shared across CLI commands.

    Attributes:
        config: Loaded Agencyflow configuration
        engine: Async SQLAlchemy engine
        session_factory: Factory for creating database sessions
    """

    def __init__(self, config: AgencyflowConfig):
        self.config = config
        self.engine = get_engine(config.database)
        self.session_factory = get_session_factory(self.engine)


_app_context: AppContext | None = None


def get_app_context() -> AppContext:
    """Get the shared application context.

    Raises:
        RuntimeError: If context has not been initialized
    """
    if _app_context is None:
        raise RuntimeError("Application context not initialized. Call initialize_context first.")
    return _app_context


def initialize_context(config: AgencyflowConfig) -> AppContext:
    """Initialize the global application context."""
    global _app_context
    _app_context = AppContext(config)
    return _app_context


@app.command()
def serve(
    host: Annotated[
        Optional[str],
        typer.Option("--host", "-h", help="Host to bind to (default: from config)"),
    ] = None,
    port: Annotated[
        Optional[int],
        typer.Option("--port", "-p", help="Port to bind to (default: from config)"),
    ] = None,
) -> None:
    """Start the Agencyflow web server."""
    import uvicorn

    from agencyflow.web.app import create_app

    ctx = get_app_context()
    host = host or ctx.config.web.host
    port = port or ctx.config.web.port

    console.print("[bold cyan]Starting Agencyflow Web Server[/bold cyan]")
    console.print(f"[dim]Host:[/dim] {host}")
    console.print(f"[dim]Port:[/dim] {port}")
    console.print()

    uvicorn.run(create_app(ctx.config), host=host, port=port, log_level="info")


@app.command("init-db")
def init_db() -> None:
    """Create the database tables that do not exist yet."""
    ctx = get_app_context()

    async def _init() -> None:
        try:
            await init_models(ctx.engine)
        finally:
            await ctx.engine.dispose()

    try:
        asyncio.run(_init())
    except Exception as e:
        console.print(f"[red]Error initializing database:[/red] {e}")
        raise typer.Exit(code=1)

    console.print("[green]Database initialized[/green]")


@app.callback()
def main_callback(
    config_path: Annotated[
        Optional[Path],
        typer.Option(
            "--config",
            "-c",
            help="Path to configuration file (TOML format)",
            exists=True,
            dir_okay=False,
            readable=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Load configuration, configure logging and initialize the context."""
    try:
        config = load_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading configuration:[/red] {e}")
        raise typer.Exit(code=1)

    logging_config = config.logging
    if verbose:
        logging_config = logging_config.model_copy(update={"level": "DEBUG"})
    setup_logging(logging_config)

    initialize_context(config)

    if verbose:
        console.print("[dim]Debug logging enabled[/dim]")


if __name__ == "__main__":
    app()
