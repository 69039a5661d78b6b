"""Client model for Agencyflow.

A client enters as a lead through the onboarding workflow, is qualified
by the client-acquisition specialist, and owns the projects created for it.
"""

from __future__ import annotations

import enum
from typing import Any

from sqlalchemy import Integer, Text
from sqlalchemy.orm import Mapped, mapped_column

from agencyflow.database.models.base import Base, JSONType, TimestampMixin


class ClientStatus(enum.Enum):
    """Relationship status for a client.

    States:
        lead: Contact received, not yet evaluated.
        qualified: Lead scored and accepted for a proposal.
        active: At least one project is underway.
        inactive: No current work.
        archived: Kept for reference only.
    """

    lead = "lead"
    qualified = "qualified"
    active = "active"
    inactive = "inactive"
    archived = "archived"


class Client(TimestampMixin, Base):
    """A prospective or active agency client.

    Attributes:
        name: Client or contact name.
        contact_info: Email, phone, company, website, address.
        status: Relationship status.
        industry: Optional industry label.
        preferences: Communication, design and budget preferences.
        project_ids: Projects created for this client (UUID strings).
        lead_source: Where the lead came from.
        qualification_score: 0-100 score assigned during qualification.
        notes: Free-form notes.
    """

    __tablename__ = "clients"

    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_info: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    status: Mapped[ClientStatus] = mapped_column(
        default=ClientStatus.lead,
        nullable=False,
    )
    industry: Mapped[str | None] = mapped_column(Text, nullable=True)
    preferences: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )
    project_ids: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )
    lead_source: Mapped[str | None] = mapped_column(Text, nullable=True)
    qualification_score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
