"""Specialist agent identifiers shared across Agencyflow models."""

from __future__ import annotations

import enum


class AgentType(enum.Enum):
    """Specialist agents that can be delegated work.

    Members:
        project_manager: Coordinating agent that plans and reviews phases.
        deep_research: Market, competitor and requirements research.
        design: Wireframes, design systems and component specifications.
        frontend: Client-side implementation.
        backend: API, schema and server-side implementation.
        qa: Code review, accessibility and quality reports.
        client_acquisition: Lead qualification and proposals.
    """

    project_manager = "project_manager"
    deep_research = "deep_research"
    design = "design"
    frontend = "frontend"
    backend = "backend"
    qa = "qa"
    client_acquisition = "client_acquisition"
