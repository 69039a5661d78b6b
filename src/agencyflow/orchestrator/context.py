"""Orchestrator wiring for Agencyflow.

Builds the collaborating services once per process from configuration and
hands them around explicitly. Nothing here is a module-level singleton.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agencyflow.agents.delegation import DelegationProtocol
from agencyflow.agents.registry import SpecialistRegistry
from agencyflow.agents.sdk_wrapper import SpecialistClient
from agencyflow.config import AgencyflowConfig
from agencyflow.events.log import EventLog
from agencyflow.orchestrator.phase_machine import PhaseStateMachine
from agencyflow.orchestrator.recorder import ExecutionRecorder
from agencyflow.orchestrator.task_registry import TaskRegistry


@dataclass
class OrchestratorContext:
    """Services shared by the workflow engine and the outer surfaces.

    Attributes:
        config: Application configuration.
        session_factory: Factory for database sessions.
        client: Specialist invocation client.
        registry: Specialist catalogue.
        event_log: Event log reader/writer.
        phase_machine: Project phase state machine.
        tasks: Task registry.
        recorder: Execution recorder.
        delegation: Delegation protocol.
    """

    config: AgencyflowConfig
    session_factory: async_sessionmaker[AsyncSession]
    client: SpecialistClient
    registry: SpecialistRegistry
    event_log: EventLog
    phase_machine: PhaseStateMachine
    tasks: TaskRegistry
    recorder: ExecutionRecorder
    delegation: DelegationProtocol

    @classmethod
    def build(
        cls,
        config: AgencyflowConfig,
        session_factory: async_sessionmaker[AsyncSession],
        client: SpecialistClient,
        registry: SpecialistRegistry | None = None,
    ) -> OrchestratorContext:
        """Wire the orchestrator services.

        Args:
            config: Application configuration.
            session_factory: Factory for database sessions.
            client: Specialist invocation client.
            registry: Specialist catalogue (defaults to the standard one).

        Returns:
            A ready OrchestratorContext.
        """
        registry = registry or SpecialistRegistry()
        tasks = TaskRegistry(config.agent)
        recorder = ExecutionRecorder(session_factory)
        return cls(
            config=config,
            session_factory=session_factory,
            client=client,
            registry=registry,
            event_log=EventLog(),
            phase_machine=PhaseStateMachine(),
            tasks=tasks,
            recorder=recorder,
            delegation=DelegationProtocol(
                session_factory,
                registry,
                client,
                recorder,
                tasks,
                config.agent,
            ),
        )
