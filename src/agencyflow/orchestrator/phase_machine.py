"""Project phase state machine for the Agencyflow orchestrator.

This module governs legal project status changes. A project walks the
canonical sequence intake, research, design, development, qa, review,
completed. It may be put on hold or cancelled from any non-terminal phase,
and a held project resumes only into the phase it was in when it was held.

Planning a transition is pure: ``plan_transition`` computes the new phase
list and the ``project_status_changed`` event without touching the
database. ``PhaseStateMachine.transition`` loads the project, applies the
plan and commits it, refusing to interleave with another transition of the
same project.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from agencyflow.database.models.agent import AgentType
from agencyflow.database.models.base import utcnow
from agencyflow.database.models.event import EventType
from agencyflow.database.models.project import Project, ProjectStatus
from agencyflow.database.queries.project import phase_record, require_project
from agencyflow.errors import ConcurrentTransitionError, InvalidTransitionError
from agencyflow.events.effects import Effects
from agencyflow.events.log import build_event

logger = structlog.get_logger(__name__)

PHASE_SEQUENCE: list[ProjectStatus] = [
    ProjectStatus.intake,
    ProjectStatus.research,
    ProjectStatus.design,
    ProjectStatus.development,
    ProjectStatus.qa,
    ProjectStatus.review,
    ProjectStatus.completed,
]

TERMINAL_PHASES: frozenset[ProjectStatus] = frozenset(
    {ProjectStatus.completed, ProjectStatus.cancelled}
)

# Specialists that work a project while it sits in each phase
PHASE_AGENTS: dict[ProjectStatus, list[AgentType]] = {
    ProjectStatus.intake: [AgentType.project_manager],
    ProjectStatus.research: [AgentType.deep_research],
    ProjectStatus.design: [AgentType.design],
    ProjectStatus.development: [AgentType.frontend, AgentType.backend],
    ProjectStatus.qa: [AgentType.qa],
    ProjectStatus.review: [AgentType.project_manager],
    ProjectStatus.completed: [],
    ProjectStatus.cancelled: [],
    ProjectStatus.on_hold: [],
}


def next_phase(current: ProjectStatus) -> ProjectStatus | None:
    """Return the canonical successor of a phase, or None if it has none."""
    if current not in PHASE_SEQUENCE:
        return None
    index = PHASE_SEQUENCE.index(current)
    if index + 1 >= len(PHASE_SEQUENCE):
        return None
    return PHASE_SEQUENCE[index + 1]


def legal_targets(
    current: ProjectStatus,
    held_phase: ProjectStatus | None = None,
) -> set[ProjectStatus]:
    """Return every phase reachable in one transition from ``current``.

    Args:
        current: The project's current phase.
        held_phase: Phase held before suspension, when ``current`` is on_hold.

    Returns:
        The set of legal target phases (empty for terminal phases).
    """
    if current in TERMINAL_PHASES:
        return set()

    if current == ProjectStatus.on_hold:
        targets = {ProjectStatus.cancelled}
        if held_phase is not None:
            targets.add(held_phase)
        return targets

    targets = {ProjectStatus.on_hold, ProjectStatus.cancelled}
    successor = next_phase(current)
    if successor is not None:
        targets.add(successor)
    return targets


def validate_phase_transition(
    current: ProjectStatus,
    target: ProjectStatus,
    held_phase: ProjectStatus | None = None,
) -> bool:
    """Return True if ``current -> target`` is a legal phase change."""
    return target in legal_targets(current, held_phase)


@dataclass(frozen=True)
class PhaseTransition:
    """A computed, not yet applied, phase change.

    Attributes:
        project_id: Project being transitioned.
        previous: Phase before the change.
        target: Phase after the change.
        phases: Complete replacement phase list.
        held_phase: New value for the project's held phase.
        assigned_agents: Specialists assigned in the target phase.
        effects: Rows to persist with the change.
    """

    project_id: uuid.UUID
    previous: ProjectStatus
    target: ProjectStatus
    phases: list[dict[str, Any]]
    held_phase: ProjectStatus | None
    assigned_agents: list[str]
    effects: Effects = field(default_factory=Effects)


def plan_transition(
    project: Project,
    target: ProjectStatus,
    notes: str | None = None,
) -> PhaseTransition:
    """Compute the result of moving a project to ``target``.

    The open phase record is closed. A new record is appended for the
    target, except on resume from on_hold, where the held record is
    reactivated at the end of the list with its original start time.

    Args:
        project: The project as currently stored.
        target: Requested phase.
        notes: Optional notes carried on the status-change event.

    Returns:
        The planned transition.

    Raises:
        InvalidTransitionError: If ``target`` is not reachable from the
            project's current phase.
    """
    current = project.current_phase
    if not validate_phase_transition(current, target, project.held_phase):
        raise InvalidTransitionError(current.value, target.value, str(project.id))

    now = utcnow().isoformat()
    phases = [dict(record) for record in project.phases or []]
    if phases and phases[-1].get("completed_at") is None:
        phases[-1]["completed_at"] = now

    agents = [agent.value for agent in PHASE_AGENTS[target]]
    resumed = current == ProjectStatus.on_hold and target == project.held_phase

    if resumed:
        held_record = next(
            (r for r in reversed(phases[:-1]) if r.get("status") == target.value),
            None,
        )
        record = phase_record(target, agents)
        if held_record is not None:
            record["started_at"] = held_record["started_at"]
            record["assigned_agents"] = list(held_record.get("assigned_agents", agents))
        record["resumed_at"] = now
        phases.append(record)
    else:
        phases.append(phase_record(target, agents))

    if target in TERMINAL_PHASES:
        phases[-1]["completed_at"] = now

    if target == ProjectStatus.on_hold:
        held_phase: ProjectStatus | None = current
    else:
        held_phase = None

    event = build_event(
        EventType.project_status_changed,
        {
            "previous_status": current.value,
            "new_status": target.value,
            "notes": notes,
        },
        project_id=project.id,
    )

    return PhaseTransition(
        project_id=project.id,
        previous=current,
        target=target,
        phases=phases,
        held_phase=held_phase,
        assigned_agents=list(phases[-1]["assigned_agents"]),
        effects=Effects().add(event),
    )


class PhaseStateMachine:
    """Applies phase transitions one at a time per project.

    A transition is committed before ``transition`` returns. While it is
    uncommitted, any other transition request for the same project in this
    process fails immediately with ConcurrentTransitionError; a request
    racing from another process is detected by the project's version
    counter when its update is flushed.
    """

    def __init__(self) -> None:
        self._in_flight: set[uuid.UUID] = set()
        self._logger = logger.bind(component="PhaseStateMachine")

    def in_flight(self, project_id: uuid.UUID) -> bool:
        """Return True if a transition for the project is uncommitted."""
        return project_id in self._in_flight

    async def can_transition(
        self,
        session: AsyncSession,
        project_id: uuid.UUID,
        target: ProjectStatus,
    ) -> bool:
        """Check whether ``target`` is currently a legal next phase.

        Raises:
            NotFoundError: If the project does not exist.
        """
        project = await require_project(session, project_id, refresh=True)
        return validate_phase_transition(
            project.current_phase, target, project.held_phase
        )

    async def transition(
        self,
        session: AsyncSession,
        project_id: uuid.UUID,
        target: ProjectStatus,
        notes: str | None = None,
    ) -> Project:
        """Move a project to a new phase and commit.

        Args:
            session: Database session; committed on success, rolled back
                     on a detected race.
            project_id: Project to transition.
            target: Requested phase.
            notes: Optional notes for the status-change event.

        Returns:
            The updated Project.

        Raises:
            InvalidTransitionError: If the transition is not legal.
            ConcurrentTransitionError: If another transition of the same
                project is in flight or committed first.
            NotFoundError: If the project does not exist.
        """
        # Checked and claimed before the first await
        if project_id in self._in_flight:
            raise ConcurrentTransitionError(str(project_id))
        self._in_flight.add(project_id)

        try:
            project = await require_project(session, project_id, refresh=True)
            plan = plan_transition(project, target, notes)

            project.status = plan.target
            project.current_phase = plan.target
            project.held_phase = plan.held_phase
            project.phases = plan.phases
            project.assigned_agents = plan.assigned_agents
            project.updated_at = utcnow()

            try:
                await plan.effects.apply(session)
                await session.commit()
            except StaleDataError as e:
                await session.rollback()
                self._logger.warning(
                    "phase_transition_conflict",
                    project_id=str(project_id),
                    target=target.value,
                )
                raise ConcurrentTransitionError(str(project_id)) from e
        finally:
            self._in_flight.discard(project_id)

        self._logger.info(
            "phase_transition",
            project_id=str(project_id),
            from_phase=plan.previous.value,
            to_phase=plan.target.value,
            notes=notes,
        )
        return project
