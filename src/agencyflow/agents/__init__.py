"""Specialist agents for Agencyflow.

This package provides the specialist invocation client, the per-specialist
input/output schemas, the specialist catalogue and the delegation protocol
used by the workflow engine.
"""

from __future__ import annotations

from agencyflow.agents.delegation import (
    DelegationProtocol,
    DelegationRequest,
    DelegationResult,
)
from agencyflow.agents.registry import (
    ArtifactDraft,
    SpecialistRegistry,
    SpecialistSpec,
    default_specialists,
)
from agencyflow.agents.result_schema import (
    SpecialistInput,
    SpecialistOutput,
    extract_json,
    parse_specialist_output,
)
from agencyflow.agents.sdk_wrapper import (
    MessagesApiClient,
    SpecialistAPIError,
    SpecialistClient,
    SpecialistClientError,
    SpecialistConnectionError,
    SpecialistResponse,
    SpecialistTimeoutError,
    ToolCall,
)

__all__ = [
    "ArtifactDraft",
    "DelegationProtocol",
    "DelegationRequest",
    "DelegationResult",
    "MessagesApiClient",
    "SpecialistAPIError",
    "SpecialistClient",
    "SpecialistClientError",
    "SpecialistConnectionError",
    "SpecialistInput",
    "SpecialistOutput",
    "SpecialistRegistry",
    "SpecialistResponse",
    "SpecialistSpec",
    "SpecialistTimeoutError",
    "ToolCall",
    "default_specialists",
    "extract_json",
    "parse_specialist_output",
]
