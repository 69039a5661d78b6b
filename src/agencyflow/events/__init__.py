"""Event-sourced audit log for Agencyflow.

Public API:
    EventLog: Append and query domain events, replay phase history.
    build_event: Validate a payload and build a transient Event.
    EVENT_PAYLOADS: Payload schema for each EventType.
"""

from agencyflow.events.log import EventLog, PhaseHistoryEntry, build_event
from agencyflow.events.schema import EVENT_PAYLOADS, EventPayload

__all__ = [
    "EventLog",
    "PhaseHistoryEntry",
    "build_event",
    "EVENT_PAYLOADS",
    "EventPayload",
]
