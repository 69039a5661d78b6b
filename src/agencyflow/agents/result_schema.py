"""Specialist input/output schemas and output parsing for Agencyflow.

Every specialist has a concrete input model and output model. Inputs are
validated before a delegation is dispatched; outputs are extracted from
the specialist's text response and validated before any result is applied.
"""

from __future__ import annotations

import json
import re
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SpecialistInput(BaseModel):
    """Base for delegation inputs. Unknown fields are rejected.

    Attributes:
        task: What the specialist is asked to do
    """

    model_config = ConfigDict(extra="forbid")

    task: str = Field(..., min_length=1, description="Task for the specialist")


class SpecialistOutput(BaseModel):
    """Base for specialist outputs. Extra fields in a response are ignored."""

    model_config = ConfigDict(extra="ignore")


# --- deep_research ---------------------------------------------------------


class ResearchInput(SpecialistInput):
    context: str | None = Field(None, description="Additional context")
    depth: Literal["quick", "standard", "deep"] = Field(
        "standard", description="Research depth"
    )


class ResearchOutput(SpecialistOutput):
    findings: str = Field(..., description="Research findings")
    sources: list[str] = Field(default_factory=list, description="Sources consulted")
    recommendations: str | None = Field(None, description="Recommendations")


# --- design ----------------------------------------------------------------


class DesignInput(SpecialistInput):
    requirements: str | None = Field(None, description="Design requirements")
    target_platform: Literal["web", "mobile", "desktop"] = Field(
        "web", description="Target platform"
    )


class DesignOutput(SpecialistOutput):
    design_spec: str = Field(..., description="Design specification")
    components: list[str] = Field(default_factory=list, description="Components to build")
    guidelines: str = Field("", description="Design guidelines")


# --- frontend --------------------------------------------------------------


class FrontendInput(SpecialistInput):
    design_spec: str | None = Field(None, description="Design specification to implement")
    component_type: Literal["page", "component", "layout", "hook"] = Field(
        "component", description="Kind of frontend unit"
    )


class FrontendOutput(SpecialistOutput):
    code: str = Field(..., description="Generated code")
    file_path: str = Field(..., description="Suggested file path")
    dependencies: list[str] = Field(default_factory=list, description="Required packages")
    notes: str | None = Field(None, description="Implementation notes")


# --- backend ---------------------------------------------------------------


class BackendInput(SpecialistInput):
    requirements: str | None = Field(None, description="Functional requirements")
    endpoint_type: Literal["api-route", "server-action", "utility", "middleware"] = Field(
        "api-route", description="Kind of backend unit"
    )


class BackendOutput(SpecialistOutput):
    code: str = Field(..., description="Generated code")
    file_path: str = Field(..., description="Suggested file path")
    dependencies: list[str] = Field(default_factory=list, description="Required packages")
    tests: str | None = Field(None, description="Accompanying tests")


# --- qa --------------------------------------------------------------------


class QAInput(SpecialistInput):
    code: str = Field(..., min_length=1, description="Code to review")
    file_path: str | None = Field(None, description="File path for context")
    focus_areas: list[
        Literal["performance", "security", "maintainability", "patterns", "accessibility"]
    ] = Field(default_factory=list, description="Areas to focus on")


class QAIssue(BaseModel):
    """Issue found during review.

    Attributes:
        severity: Issue severity (low, medium, high, critical)
        category: Issue category
        description: What is wrong
        suggestion: How to fix it
    """

    severity: str = Field(..., description="Issue severity: low, medium, high, critical")
    category: str
    description: str
    suggestion: str

    @field_validator("severity")
    @classmethod
    def validate_severity(cls, v: str) -> str:
        """Validate severity level is recognized."""
        valid_severities = {"critical", "high", "medium", "low"}
        v_lower = v.lower()
        if v_lower not in valid_severities:
            raise ValueError(
                f"Invalid severity: {v}. Must be one of {valid_severities}"
            )
        return v_lower


class QAOutput(SpecialistOutput):
    issues: list[QAIssue] = Field(default_factory=list, description="Identified issues")
    score: float = Field(..., ge=0, le=100, description="Overall quality score")
    recommendations: str = Field("", description="General recommendations")


# --- client_acquisition ----------------------------------------------------


class ClientAcquisitionInput(SpecialistInput):
    task_type: Literal[
        "prospect-research", "proposal", "onboarding", "presentation", "qualification"
    ] = Field(..., description="Kind of client work")
    client_info: dict[str, Any] | None = Field(None, description="Known client details")


class ClientAcquisitionOutput(SpecialistOutput):
    content: str = Field(..., description="Generated document or assessment")
    next_steps: list[str] = Field(default_factory=list)
    materials: list[str] = Field(default_factory=list)
    qualification_score: int | None = Field(None, ge=0, le=100)


# --- project_manager -------------------------------------------------------


class ProjectManagerInput(SpecialistInput):
    project_context: dict[str, Any] | None = Field(None, description="Project state")


class ProjectManagerOutput(SpecialistOutput):
    summary: str = Field(..., description="Status summary")
    decisions: list[str] = Field(default_factory=list)
    next_steps: list[str] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)


def parse_specialist_output(
    raw_output: str,
    output_model: type[SpecialistOutput],
) -> SpecialistOutput:
    """Extract JSON from a specialist response and validate it.

    The response may embed the JSON in a markdown code block or surround
    it with explanatory text.

    Args:
        raw_output: Raw text returned by the specialist
        output_model: Output schema of the specialist

    Returns:
        Validated output model instance

    Raises:
        ValueError: If no valid JSON object can be extracted
        pydantic.ValidationError: If the JSON doesn't match the schema

    Example:
        >>> text = 'Done.\\n```json\\n{"summary": "On track"}\\n```'
        >>> parse_specialist_output(text, ProjectManagerOutput).summary
        'On track'
    """
    json_str = extract_json(raw_output)

    if json_str is None:
        raise ValueError("No JSON found in specialist output")

    try:
        data = json.loads(json_str)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in specialist output: {e}") from e

    if not isinstance(data, dict):
        raise ValueError("Specialist output must be a JSON object")

    return output_model.model_validate(data)


def extract_json(text: str) -> str | None:
    """Extract a JSON object from text that may contain markdown or prose.

    Strategies, in order:
    1. A markdown code block tagged ``json``
    2. Any markdown code block whose body is a braced object
    3. The first balanced ``{...}`` in the text

    Args:
        text: Text that may contain JSON

    Returns:
        Extracted JSON string or None if not found
    """
    markdown_match = re.search(r"```json\s*\n(.*?)\n\s*```", text, re.DOTALL | re.IGNORECASE)
    if markdown_match:
        return markdown_match.group(1).strip()

    code_block_match = re.search(r"```\s*\n(.*?)\n\s*```", text, re.DOTALL)
    if code_block_match:
        potential_json = code_block_match.group(1).strip()
        if potential_json.startswith("{") and potential_json.endswith("}"):
            return potential_json

    first_brace = text.find("{")
    if first_brace == -1:
        return None

    brace_count = 0
    in_string = False
    escape_next = False

    for i in range(first_brace, len(text)):
        char = text[i]

        if escape_next:
            escape_next = False
            continue

        if char == "\\":
            escape_next = True
            continue

        if char == '"':
            in_string = not in_string
            continue

        if not in_string:
            if char == "{":
                brace_count += 1
            elif char == "}":
                brace_count -= 1
                if brace_count == 0:
                    return text[first_brace : i + 1]

    return None
