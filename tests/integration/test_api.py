"""Integration tests for the FastAPI surface.

Tests cover:
- Health and readiness endpoints
- Project phase, status change and listing endpoints
- Workflow execute, status, suspend and resume endpoints
- Domain error to HTTP status mapping
"""

from __future__ import annotations

import uuid

import pytest
from httpx import AsyncClient

from agencyflow.database.models.project import Project


class TestHealth:
    """Test health endpoints."""

    @pytest.mark.asyncio
    async def test_liveness(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health/")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    @pytest.mark.asyncio
    async def test_readiness(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health/ready")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "database": "connected", "late_calls": 0}

    @pytest.mark.asyncio
    async def test_correlation_id_echoed(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/health/", headers={"X-Correlation-ID": "req-7"})
        assert response.headers["X-Correlation-ID"] == "req-7"


class TestProjects:
    """Test project endpoints."""

    @pytest.mark.asyncio
    async def test_get_phase(self, api_client: AsyncClient, project: Project) -> None:
        response = await api_client.get(f"/projects/{project.id}/phase")

        assert response.status_code == 200
        data = response.json()
        assert data["phase"] == "intake"
        assert data["held_phase"] is None
        assert data["legal_targets"] == ["cancelled", "on_hold", "research"]
        assert [r["status"] for r in data["phases"]] == ["intake"]

    @pytest.mark.asyncio
    async def test_unknown_project_is_404(self, api_client: AsyncClient) -> None:
        response = await api_client.get(f"/projects/{uuid.uuid4()}/phase")

        assert response.status_code == 404
        assert response.json()["error"]["type"] == "NotFoundError"

    @pytest.mark.asyncio
    async def test_status_change(self, api_client: AsyncClient, project: Project) -> None:
        response = await api_client.post(
            f"/projects/{project.id}/status",
            json={"status": "research", "notes": "kickoff done"},
        )

        assert response.status_code == 200
        assert response.json()["phase"] == "research"

        history = await api_client.get(f"/projects/{project.id}/history")
        assert [h["status"] for h in history.json()] == ["intake", "research"]
        assert history.json()[-1]["notes"] == "kickoff done"

    @pytest.mark.asyncio
    async def test_illegal_status_change_is_409(
        self, api_client: AsyncClient, project: Project
    ) -> None:
        response = await api_client.post(
            f"/projects/{project.id}/status", json={"status": "completed"}
        )

        assert response.status_code == 409
        error = response.json()["error"]
        assert error["type"] == "InvalidTransitionError"
        assert (error["current"], error["target"]) == ("intake", "completed")

    @pytest.mark.asyncio
    async def test_unknown_status_is_422(
        self, api_client: AsyncClient, project: Project
    ) -> None:
        response = await api_client.post(
            f"/projects/{project.id}/status", json={"status": "shipping"}
        )
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_invalid_filter_is_400(
        self, api_client: AsyncClient, project: Project
    ) -> None:
        response = await api_client.get(f"/projects/{project.id}/tasks?status=stuck")
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_events(self, api_client: AsyncClient, project: Project) -> None:
        await api_client.post(f"/projects/{project.id}/status", json={"status": "research"})

        response = await api_client.get(
            f"/projects/{project.id}/events", params={"types": ["project_status_changed"]}
        )

        assert response.status_code == 200
        [event] = response.json()
        assert event["payload"]["new_status"] == "research"

        since = await api_client.get(
            f"/projects/{project.id}/events", params={"since_id": event["id"]}
        )
        assert since.json() == []


class TestWorkflows:
    """Test workflow endpoints."""

    @pytest.mark.asyncio
    async def test_execute_until_approval(self, api_client: AsyncClient) -> None:
        response = await api_client.post(
            "/workflows/execute",
            json={"workflowName": "project-lifecycle", "triggerData": {"name": "Bakery site"}},
        )

        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "suspended"
        assert run["currentStep"] == "completed"
        assert list(run["results"]) == [
            "intake",
            "research",
            "design",
            "development",
            "qa",
            "review",
        ]

        project_id = run["projectId"]
        phase = await api_client.get(f"/projects/{project_id}/phase")
        assert phase.json()["phase"] == "review"

        tasks = await api_client.get(f"/projects/{project_id}/tasks")
        assert len(tasks.json()) == 7
        assert {t["status"] for t in tasks.json()} == {"completed"}

        artifacts = await api_client.get(f"/projects/{project_id}/artifacts")
        assert {a["type"] for a in artifacts.json()} == {
            "report",
            "research",
            "design",
            "component",
            "api",
        }

        resumed = await api_client.post(f"/workflows/{run['runId']}/resume", json={"approve": True})
        assert resumed.json()["status"] == "completed"

        status = await api_client.get(f"/workflows/{run['runId']}")
        assert status.json()["status"] == "completed"

        runs = await api_client.get(f"/projects/{project_id}/workflows")
        assert [r["run_id"] for r in runs.json()] == [run["runId"]]

    @pytest.mark.asyncio
    async def test_unknown_workflow_is_404(self, api_client: AsyncClient) -> None:
        response = await api_client.post(
            "/workflows/execute", json={"workflowName": "deploy", "triggerData": {}}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_invalid_trigger_fails_run(self, api_client: AsyncClient) -> None:
        """Test that a bad trigger is reported on the run, not as a request error."""
        response = await api_client.post(
            "/workflows/execute",
            json={"workflowName": "client-onboarding", "triggerData": {"name": "Jane"}},
        )

        assert response.status_code == 200
        run = response.json()
        assert run["status"] == "failed"
        assert run["errorDetail"]["type"] == "ValidationError"

    @pytest.mark.asyncio
    async def test_suspend_requires_running_run(self, api_client: AsyncClient) -> None:
        response = await api_client.post(
            "/workflows/execute",
            json={"workflowName": "project-lifecycle", "triggerData": {"name": "Bakery site"}},
        )
        run_id = response.json()["runId"]

        suspended = await api_client.post(f"/workflows/{run_id}/suspend")
        assert suspended.status_code == 409

    @pytest.mark.asyncio
    async def test_unknown_run_is_404(self, api_client: AsyncClient) -> None:
        response = await api_client.get("/workflows/project-lifecycle-missing")
        assert response.status_code == 404
