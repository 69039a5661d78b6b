"""Explicit side-effect lists for orchestration operations.

Operations in the orchestration core compute the rows they want written
(events, artifacts, execution records) and return them as an ``Effects``
list instead of writing them as they go. The caller applies the list in
one transaction, which is what makes "log then apply" ordering a contract:
an execution record is committed by its own ``Effects`` before the
``Effects`` that apply its result are built.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession

from agencyflow.database.models.base import Base
from agencyflow.database.models.event import Event


@dataclass
class Effects:
    """Ordered rows to insert, applied atomically by the caller.

    Attributes:
        records: New ORM instances in insertion order.
    """

    records: list[Base] = field(default_factory=list)

    def add(self, *records: Base) -> Effects:
        """Append rows, preserving order. Returns self for chaining."""
        self.records.extend(records)
        return self

    def extend(self, other: Effects) -> Effects:
        """Append every row of another effects list."""
        self.records.extend(other.records)
        return self

    @property
    def events(self) -> list[Event]:
        """The events contained in this list."""
        return [r for r in self.records if isinstance(r, Event)]

    def __iter__(self) -> Iterator[Base]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    async def apply(self, session: AsyncSession) -> None:
        """Add every row to the session and flush.

        Commit is handled by caller, so the rows land together with any
        pending changes to already-loaded instances.

        Args:
            session: Active database session.
        """
        for record in self.records:
            session.add(record)
        await session.flush()
