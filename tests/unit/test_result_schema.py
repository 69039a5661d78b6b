"""Unit tests for specialist schemas and output parsing."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from agencyflow.agents.result_schema import (
    ClientAcquisitionInput,
    DesignOutput,
    ProjectManagerOutput,
    QAInput,
    QAIssue,
    QAOutput,
    ResearchInput,
    extract_json,
    parse_specialist_output,
)


class TestExtractJson:
    """Test JSON extraction from specialist text."""

    def test_json_code_block(self) -> None:
        text = 'Done.\n```json\n{"summary": "On track"}\n```\nLet me know.'
        assert extract_json(text) == '{"summary": "On track"}'

    def test_untagged_code_block(self) -> None:
        text = 'Result:\n```\n{"score": 90}\n```'
        assert extract_json(text) == '{"score": 90}'

    def test_bare_object_in_prose(self) -> None:
        text = 'The answer is {"summary": "a {nested} brace", "risks": []} as requested.'
        assert extract_json(text) == '{"summary": "a {nested} brace", "risks": []}'

    def test_escaped_quotes_do_not_end_string(self) -> None:
        text = '{"code": "const s = \\"}\\";"}'
        assert extract_json(text) == text

    def test_no_json(self) -> None:
        assert extract_json("I could not complete the task.") is None

    def test_unbalanced_braces(self) -> None:
        assert extract_json('{"summary": "cut off') is None


class TestParseSpecialistOutput:
    """Test validated output parsing."""

    def test_valid_output(self) -> None:
        text = '```json\n{"summary": "On track", "risks": ["scope creep"]}\n```'
        output = parse_specialist_output(text, ProjectManagerOutput)
        assert isinstance(output, ProjectManagerOutput)
        assert output.summary == "On track"
        assert output.risks == ["scope creep"]
        assert output.decisions == []

    def test_extra_fields_ignored(self) -> None:
        text = '{"design_spec": "grid", "mood": "calm"}'
        output = parse_specialist_output(text, DesignOutput)
        assert output.design_spec == "grid"
        assert not hasattr(output, "mood")

    def test_missing_required_field(self) -> None:
        with pytest.raises(ValidationError):
            parse_specialist_output('{"decisions": []}', ProjectManagerOutput)

    def test_no_json_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="No JSON found"):
            parse_specialist_output("Sorry, no.", ProjectManagerOutput)

    def test_invalid_json_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="Invalid JSON"):
            parse_specialist_output("```json\n{summary: nope}\n```", ProjectManagerOutput)

    def test_non_object_json_rejected(self) -> None:
        with pytest.raises(ValueError):
            parse_specialist_output('```json\n["a", "b"]\n```', ProjectManagerOutput)


class TestInputSchemas:
    """Test delegation input validation."""

    def test_task_is_required(self) -> None:
        with pytest.raises(ValidationError):
            ResearchInput(task="")

    def test_unknown_fields_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ResearchInput(task="Research bakeries", audience="locals")

    def test_defaults(self) -> None:
        assert ResearchInput(task="Research bakeries").depth == "standard"

    def test_qa_requires_code(self) -> None:
        with pytest.raises(ValidationError):
            QAInput(task="Review")

    def test_qa_focus_areas_are_constrained(self) -> None:
        with pytest.raises(ValidationError):
            QAInput(task="Review", code="x = 1", focus_areas=["style"])

    def test_client_acquisition_task_type(self) -> None:
        inp = ClientAcquisitionInput(task="Qualify", task_type="qualification")
        assert inp.task_type == "qualification"
        with pytest.raises(ValidationError):
            ClientAcquisitionInput(task="Qualify", task_type="cold-call")


class TestQAOutput:
    """Test QA report validation."""

    def test_severity_normalized(self) -> None:
        issue = QAIssue(severity="HIGH", category="security", description="x", suggestion="y")
        assert issue.severity == "high"

    def test_unknown_severity_rejected(self) -> None:
        with pytest.raises(ValidationError, match="Invalid severity"):
            QAIssue(severity="blocker", category="security", description="x", suggestion="y")

    @pytest.mark.parametrize("score", [-1, 100.5])
    def test_score_range(self, score: float) -> None:
        with pytest.raises(ValidationError):
            QAOutput(score=score)
