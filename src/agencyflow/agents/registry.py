"""Specialist catalogue for Agencyflow.

Each specialist is described by a SpecialistSpec: its role prompt, its
input and output schemas, and how a successful output becomes an artifact
(if it represents a work product at all). The catalogue is an explicit
SpecialistRegistry object built at process start and passed to the
delegation layer; there is no module-level registry.
"""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

from agencyflow.agents.result_schema import (
    BackendInput,
    BackendOutput,
    ClientAcquisitionInput,
    ClientAcquisitionOutput,
    DesignInput,
    DesignOutput,
    FrontendInput,
    FrontendOutput,
    ProjectManagerInput,
    ProjectManagerOutput,
    QAInput,
    QAOutput,
    ResearchInput,
    ResearchOutput,
    SpecialistInput,
    SpecialistOutput,
)
from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.artifact import ArtifactType
from agencyflow.errors import NotFoundError


@dataclass(frozen=True)
class ArtifactDraft:
    """Work product extracted from a specialist output, not yet stored.

    Attributes:
        type: Artifact type.
        name: Document name.
        content: Textual content.
        description: Optional short description.
        metadata: Free-form metadata.
    """

    type: ArtifactType
    name: str
    content: str
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


ArtifactExtractor = Callable[[Any, Any], ArtifactDraft | None]


@dataclass(frozen=True)
class SpecialistSpec:
    """Declaration of one specialist.

    Attributes:
        agent: Specialist identifier.
        name: Display name.
        system_prompt: Role instructions sent with every call.
        input_model: Schema delegation inputs are validated against.
        output_model: Schema outputs are validated against.
        artifact: Maps (input, output) to an artifact draft, or None when
            the specialist never produces a work product.
    """

    agent: AgentType
    name: str
    system_prompt: str
    input_model: type[SpecialistInput]
    output_model: type[SpecialistOutput]
    artifact: ArtifactExtractor | None = None

    def extract_artifact(
        self,
        validated_input: SpecialistInput,
        output: SpecialistOutput,
    ) -> ArtifactDraft | None:
        """Return the artifact draft for an output, if it is a work product."""
        if self.artifact is None:
            return None
        return self.artifact(validated_input, output)


def _title(prefix: str, task: str) -> str:
    task = " ".join(task.split())
    return f"{prefix}: {task[:80]}"


def _research_artifact(inp: ResearchInput, out: ResearchOutput) -> ArtifactDraft:
    return ArtifactDraft(
        type=ArtifactType.research,
        name=_title("Research", inp.task),
        content=out.findings,
        description=out.recommendations,
        metadata={"sources": out.sources, "depth": inp.depth},
    )


def _design_artifact(inp: DesignInput, out: DesignOutput) -> ArtifactDraft:
    return ArtifactDraft(
        type=ArtifactType.design,
        name=_title("Design", inp.task),
        content=out.design_spec,
        metadata={
            "components": out.components,
            "guidelines": out.guidelines,
            "target_platform": inp.target_platform,
        },
    )


def _frontend_artifact(inp: FrontendInput, out: FrontendOutput) -> ArtifactDraft:
    return ArtifactDraft(
        type=ArtifactType.component,
        name=out.file_path,
        content=out.code,
        description=out.notes,
        metadata={
            "file_path": out.file_path,
            "dependencies": out.dependencies,
            "component_type": inp.component_type,
        },
    )


def _backend_artifact(inp: BackendInput, out: BackendOutput) -> ArtifactDraft:
    metadata: dict[str, Any] = {
        "file_path": out.file_path,
        "dependencies": out.dependencies,
        "endpoint_type": inp.endpoint_type,
    }
    if out.tests:
        metadata["tests"] = out.tests
    return ArtifactDraft(
        type=ArtifactType.api,
        name=out.file_path,
        content=out.code,
        metadata=metadata,
    )


def _qa_artifact(inp: QAInput, out: QAOutput) -> ArtifactDraft:
    return ArtifactDraft(
        type=ArtifactType.report,
        name=_title("QA report", inp.task),
        content=json.dumps(out.model_dump(mode="json"), indent=2),
        metadata={
            "score": out.score,
            "issue_count": len(out.issues),
            "file_path": inp.file_path,
        },
    )


def _client_artifact(
    inp: ClientAcquisitionInput,
    out: ClientAcquisitionOutput,
) -> ArtifactDraft | None:
    if inp.task_type != "proposal":
        return None
    return ArtifactDraft(
        type=ArtifactType.documentation,
        name=_title("Proposal", inp.task),
        content=out.content,
        metadata={"next_steps": out.next_steps, "materials": out.materials},
    )


def _project_manager_artifact(
    inp: ProjectManagerInput,
    out: ProjectManagerOutput,
) -> ArtifactDraft:
    return ArtifactDraft(
        type=ArtifactType.report,
        name=_title("Project report", inp.task),
        content=json.dumps(out.model_dump(mode="json"), indent=2),
        metadata={"risk_count": len(out.risks)},
    )


def default_specialists() -> list[SpecialistSpec]:
    """Return the standard catalogue of seven specialists."""
    return [
        SpecialistSpec(
            agent=AgentType.project_manager,
            name="Project Manager",
            system_prompt=(
                "You are the Project Manager of a design and development agency. "
                "You plan projects, track progress across phases, identify risks "
                "and decide next steps for the team."
            ),
            input_model=ProjectManagerInput,
            output_model=ProjectManagerOutput,
            artifact=_project_manager_artifact,
        ),
        SpecialistSpec(
            agent=AgentType.deep_research,
            name="Deep Research",
            system_prompt=(
                "You are the Deep Research specialist. You investigate markets, "
                "competitors, users and technologies, and report findings with "
                "their sources and actionable recommendations."
            ),
            input_model=ResearchInput,
            output_model=ResearchOutput,
            artifact=_research_artifact,
        ),
        SpecialistSpec(
            agent=AgentType.design,
            name="Design",
            system_prompt=(
                "You are the Design specialist. You turn requirements into design "
                "specifications: layout, component inventory, typography, colour "
                "and accessibility guidelines."
            ),
            input_model=DesignInput,
            output_model=DesignOutput,
            artifact=_design_artifact,
        ),
        SpecialistSpec(
            agent=AgentType.frontend,
            name="Frontend",
            system_prompt=(
                "You are the Frontend specialist. You implement accessible, "
                "responsive user interface code from design specifications."
            ),
            input_model=FrontendInput,
            output_model=FrontendOutput,
            artifact=_frontend_artifact,
        ),
        SpecialistSpec(
            agent=AgentType.backend,
            name="Backend",
            system_prompt=(
                "You are the Backend specialist. You implement API routes, server "
                "actions and utilities with validation and error handling."
            ),
            input_model=BackendInput,
            output_model=BackendOutput,
            artifact=_backend_artifact,
        ),
        SpecialistSpec(
            agent=AgentType.qa,
            name="QA",
            system_prompt=(
                "You are the QA specialist. You review code for quality, security, "
                "performance and accessibility, and rank issues by severity."
            ),
            input_model=QAInput,
            output_model=QAOutput,
            artifact=_qa_artifact,
        ),
        SpecialistSpec(
            agent=AgentType.client_acquisition,
            name="Client Acquisition",
            system_prompt=(
                "You are the Client Acquisition specialist. You research prospects, "
                "qualify leads, write proposals and prepare client onboarding."
            ),
            input_model=ClientAcquisitionInput,
            output_model=ClientAcquisitionOutput,
            artifact=_client_artifact,
        ),
    ]


class SpecialistRegistry:
    """Lookup of specialist declarations by AgentType."""

    def __init__(self, specs: Iterable[SpecialistSpec] | None = None) -> None:
        """Initialize the registry.

        Args:
            specs: Specialists to register (defaults to the standard catalogue).
        """
        self._specs: dict[AgentType, SpecialistSpec] = {}
        for spec in default_specialists() if specs is None else specs:
            self.register(spec)

    def register(self, spec: SpecialistSpec) -> None:
        """Add or replace a specialist declaration."""
        self._specs[spec.agent] = spec

    def get(self, agent: AgentType) -> SpecialistSpec:
        """Return a specialist declaration.

        Raises:
            NotFoundError: If the specialist is not registered.
        """
        try:
            return self._specs[agent]
        except KeyError:
            raise NotFoundError("Specialist", agent.value) from None

    def __contains__(self, agent: object) -> bool:
        return agent in self._specs

    def agents(self) -> list[AgentType]:
        """Return the registered specialist identifiers."""
        return list(self._specs)

    @staticmethod
    def build_prompt(spec: SpecialistSpec, validated_input: SpecialistInput) -> str:
        """Render the prompt for a validated delegation input.

        The prompt carries the input as JSON and the output schema the
        response must satisfy.
        """
        payload = validated_input.model_dump(mode="json", exclude_none=True)
        schema = spec.output_model.model_json_schema()
        return (
            f"Task: {validated_input.task}\n\n"
            f"Input:\n```json\n{json.dumps(payload, indent=2)}\n```\n\n"
            "Respond with a single JSON object, in a ```json code block, "
            f"matching this schema:\n```json\n{json.dumps(schema, indent=2)}\n```"
        )
