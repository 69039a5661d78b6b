"""Integration tests for CLI commands.

This module tests the Typer-based CLI against a SQLite database configured
through a TOML file.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from uuid import uuid4

import pytest
from typer.testing import CliRunner

from agencyflow.config import DatabaseConfig
from agencyflow.database.connection import get_engine, get_session_factory, init_models
from agencyflow.database.queries.project import create_project
from agencyflow.main import app


@pytest.fixture
def cli_runner() -> CliRunner:
    """Create a Typer CLI runner."""
    return CliRunner()


@pytest.fixture
def database_file(tmp_path: Path) -> Path:
    return tmp_path / "cli.db"


@pytest.fixture
def config_file(tmp_path: Path, database_file: Path) -> Path:
    """TOML configuration pointing at a per-test SQLite database."""
    path = tmp_path / "agencyflow.toml"
    path.write_text(
        f'[database]\nurl = "sqlite+aiosqlite:///{database_file}"\n\n'
        '[logging]\nlevel = "WARNING"\n'
    )
    return path


def _seed_project(database_file: Path, name: str) -> str:
    async def _seed() -> str:
        engine = get_engine(DatabaseConfig(url=f"sqlite+aiosqlite:///{database_file}"))
        try:
            await init_models(engine)
            async with get_session_factory(engine)() as session:
                project = await create_project(session, name=name)
                await session.commit()
                return str(project.id)
        finally:
            await engine.dispose()

    return asyncio.run(_seed())


class TestDatabaseCLI:
    """Tests for database commands."""

    def test_init_db(self, cli_runner: CliRunner, config_file: Path, database_file: Path) -> None:
        result = cli_runner.invoke(app, ["--config", str(config_file), "init-db"])

        assert result.exit_code == 0
        assert "Database initialized" in result.stdout
        assert database_file.exists()

    def test_missing_config_file(self, cli_runner: CliRunner, tmp_path: Path) -> None:
        result = cli_runner.invoke(app, ["--config", str(tmp_path / "nope.toml"), "init-db"])
        assert result.exit_code != 0


class TestProjectCLI:
    """Tests for project commands."""

    def test_list_json(
        self, cli_runner: CliRunner, config_file: Path, database_file: Path
    ) -> None:
        _seed_project(database_file, "Bakery website")

        result = cli_runner.invoke(
            app, ["--config", str(config_file), "project", "list", "--format", "json"]
        )

        assert result.exit_code == 0
        assert "Bakery website" in result.stdout
        assert '"phase": "intake"' in result.stdout

    def test_list_invalid_status(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(
            app, ["--config", str(config_file), "project", "list", "--status", "shipping"]
        )

        assert result.exit_code == 1
        assert "Invalid status" in result.stdout

    def test_phase(self, cli_runner: CliRunner, config_file: Path, database_file: Path) -> None:
        project_id = _seed_project(database_file, "Bakery website")

        result = cli_runner.invoke(
            app, ["--config", str(config_file), "project", "phase", project_id]
        )

        assert result.exit_code == 0
        assert "intake" in result.stdout
        assert "research" in result.stdout

    def test_phase_unknown_project(
        self, cli_runner: CliRunner, config_file: Path, database_file: Path
    ) -> None:
        _seed_project(database_file, "Bakery website")

        result = cli_runner.invoke(
            app, ["--config", str(config_file), "project", "phase", str(uuid4())]
        )

        assert result.exit_code == 1
        assert "not found" in result.stdout

    def test_phase_invalid_uuid(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(
            app, ["--config", str(config_file), "project", "phase", "not-a-uuid"]
        )

        assert result.exit_code == 1
        assert "Invalid project UUID" in result.stdout

    def test_history(self, cli_runner: CliRunner, config_file: Path, database_file: Path) -> None:
        project_id = _seed_project(database_file, "Bakery website")

        result = cli_runner.invoke(
            app, ["--config", str(config_file), "project", "history", project_id]
        )

        assert result.exit_code == 0
        assert "Status History" in result.stdout


class TestWorkflowCLI:
    """Tests for workflow commands that fail before any specialist is called."""

    def test_run_invalid_json(self, cli_runner: CliRunner, config_file: Path) -> None:
        result = cli_runner.invoke(
            app,
            ["--config", str(config_file), "workflow", "run", "project-lifecycle", "-d", "{bad"],
        )

        assert result.exit_code == 1
        assert "Invalid JSON" in result.stdout

    def test_run_unknown_workflow(
        self, cli_runner: CliRunner, config_file: Path, database_file: Path
    ) -> None:
        _seed_project(database_file, "Bakery website")

        result = cli_runner.invoke(
            app, ["--config", str(config_file), "workflow", "run", "deploy"]
        )

        assert result.exit_code == 1
        assert "Error running workflow" in result.stdout

    def test_run_rejected_trigger_fails_run(
        self, cli_runner: CliRunner, config_file: Path, database_file: Path
    ) -> None:
        _seed_project(database_file, "Bakery website")

        result = cli_runner.invoke(
            app,
            [
                "--config",
                str(config_file),
                "workflow",
                "run",
                "client-onboarding",
                "-d",
                '{"name": "Jane"}',
            ],
        )

        assert result.exit_code == 1
        assert "failed" in result.stdout
