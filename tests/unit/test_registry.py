"""Unit tests for the specialist catalogue."""

from __future__ import annotations

import json

import pytest

from agencyflow.agents.registry import SpecialistRegistry, SpecialistSpec
from agencyflow.agents.result_schema import (
    BackendInput,
    BackendOutput,
    ClientAcquisitionInput,
    ClientAcquisitionOutput,
    FrontendInput,
    FrontendOutput,
    ProjectManagerInput,
    ProjectManagerOutput,
    QAInput,
    QAIssue,
    QAOutput,
    ResearchInput,
    ResearchOutput,
)
from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.artifact import ArtifactType
from agencyflow.errors import NotFoundError


@pytest.fixture
def registry() -> SpecialistRegistry:
    return SpecialistRegistry()


class TestCatalogue:
    """Test registration and lookup."""

    def test_all_specialists_registered(self, registry: SpecialistRegistry) -> None:
        assert set(registry.agents()) == set(AgentType)
        assert len(registry.agents()) == 7

    def test_lookup(self, registry: SpecialistRegistry) -> None:
        spec = registry.get(AgentType.qa)
        assert spec.name == "QA"
        assert spec.input_model is QAInput
        assert spec.output_model is QAOutput

    def test_unknown_specialist(self) -> None:
        registry = SpecialistRegistry(specs=[])
        assert AgentType.design not in registry
        with pytest.raises(NotFoundError) as exc_info:
            registry.get(AgentType.design)
        assert exc_info.value.entity == "Specialist"

    def test_register_replaces(self, registry: SpecialistRegistry) -> None:
        custom = SpecialistSpec(
            agent=AgentType.project_manager,
            name="Delivery Lead",
            system_prompt="You lead delivery.",
            input_model=ProjectManagerInput,
            output_model=ProjectManagerOutput,
        )
        registry.register(custom)
        assert registry.get(AgentType.project_manager).name == "Delivery Lead"
        assert len(registry.agents()) == 7


class TestArtifactExtraction:
    """Test how outputs become artifact drafts."""

    def test_research_findings(self, registry: SpecialistRegistry) -> None:
        draft = registry.get(AgentType.deep_research).extract_artifact(
            ResearchInput(task="Research local bakeries", depth="deep"),
            ResearchOutput(findings="Most sell online", sources=["survey"]),
        )
        assert draft is not None
        assert draft.type == ArtifactType.research
        assert draft.name == "Research: Research local bakeries"
        assert draft.content == "Most sell online"
        assert draft.metadata == {"sources": ["survey"], "depth": "deep"}

    def test_frontend_named_by_file_path(self, registry: SpecialistRegistry) -> None:
        draft = registry.get(AgentType.frontend).extract_artifact(
            FrontendInput(task="Build the hero section"),
            FrontendOutput(code="export const Hero = () => null", file_path="src/Hero.tsx"),
        )
        assert draft is not None
        assert draft.type == ArtifactType.component
        assert draft.name == "src/Hero.tsx"
        assert draft.content.startswith("export const Hero")

    def test_backend_tests_kept_in_metadata(self, registry: SpecialistRegistry) -> None:
        draft = registry.get(AgentType.backend).extract_artifact(
            BackendInput(task="Orders endpoint"),
            BackendOutput(code="def orders(): ...", file_path="api/orders.py", tests="ok"),
        )
        assert draft is not None
        assert draft.type == ArtifactType.api
        assert draft.metadata["tests"] == "ok"
        assert draft.metadata["endpoint_type"] == "api-route"

    def test_qa_report_is_json(self, registry: SpecialistRegistry) -> None:
        output = QAOutput(
            score=74,
            issues=[
                QAIssue(
                    severity="medium",
                    category="security",
                    description="No CSRF token",
                    suggestion="Add one",
                )
            ],
        )
        draft = registry.get(AgentType.qa).extract_artifact(
            QAInput(task="Review checkout", code="x = 1"), output
        )
        assert draft is not None
        assert draft.type == ArtifactType.report
        assert json.loads(draft.content)["score"] == 74
        assert draft.metadata["issue_count"] == 1

    def test_only_proposals_are_client_artifacts(self, registry: SpecialistRegistry) -> None:
        spec = registry.get(AgentType.client_acquisition)
        output = ClientAcquisitionOutput(content="Fit is strong", qualification_score=80)

        qualification = spec.extract_artifact(
            ClientAcquisitionInput(task="Qualify", task_type="qualification"), output
        )
        proposal = spec.extract_artifact(
            ClientAcquisitionInput(task="Write proposal", task_type="proposal"), output
        )

        assert qualification is None
        assert proposal is not None
        assert proposal.type == ArtifactType.documentation

    def test_long_task_is_truncated_in_name(self, registry: SpecialistRegistry) -> None:
        draft = registry.get(AgentType.project_manager).extract_artifact(
            ProjectManagerInput(task="word " * 40),
            ProjectManagerOutput(summary="fine"),
        )
        assert draft is not None
        assert len(draft.name) == len("Project report: ") + 80


class TestBuildPrompt:
    """Test prompt rendering."""

    def test_prompt_carries_input_and_schema(self, registry: SpecialistRegistry) -> None:
        spec = registry.get(AgentType.deep_research)
        prompt = registry.build_prompt(spec, ResearchInput(task="Research bakeries"))

        assert prompt.startswith("Task: Research bakeries")
        assert '"depth": "standard"' in prompt
        assert '"context"' not in prompt.split("matching this schema")[0]
        assert '"findings"' in prompt
