"""Interfaces the core consumes from its hosting environment."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Protocol, runtime_checkable
from uuid import UUID

from edubill.dates import utcnow
from edubill.tenancy import Identity


@runtime_checkable
class Clock(Protocol):
    def now(self) -> datetime: ...


@runtime_checkable
class EntityStore(Protocol):
    """Versioned entity storage with compare-and-swap writes."""

    def read(self, entity_type: str, entity_id: UUID) -> tuple[Any, int]:
        """Return ``(entity, revision)`` or raise NotFoundError."""
        ...

    def compare_and_swap(
        self, entity_type: str, entity_id: UUID, expected_revision: int, entity: Any
    ) -> int:
        """Write if the revision is unchanged; raise ConcurrentModificationError otherwise."""
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    def current_caller(self) -> Identity: ...


class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return utcnow()


class FixedClock:
    """Clock frozen at a given instant; can be moved forward explicitly."""

    def __init__(self, instant: datetime):
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = instant

    def advance(self, **kwargs: float) -> datetime:
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant


class StaticIdentityProvider:
    """Returns whatever identity it was last given."""

    def __init__(self, identity: Identity):
        self.identity = identity

    def current_caller(self) -> Identity:
        return self.identity


@dataclass(frozen=True)
class Write:
    """One entry of an all-or-nothing commit.

    ``expected_revision`` of ``None`` means the entity must not exist yet.
    """

    entity_type: str
    entity_id: UUID
    entity: Any
    expected_revision: int | None = None


@runtime_checkable
class TransactionalStore(EntityStore, Protocol):
    """EntityStore with the extra guarantees the hosting service relies on."""

    def insert(self, entity_type: str, entity_id: UUID, entity: Any) -> int: ...

    def commit(self, writes: list[Write]) -> list[int]:
        """Apply every write or none of them."""
        ...

    def list_entities(self, entity_type: str) -> list[Any]: ...

    def reserve_period(self, template_id: UUID, period_index: int, transaction_id: UUID) -> bool:
        """Uniqueness constraint on (template_id, period_index)."""
        ...

    def reserved_periods(self, template_id: UUID) -> set[int]: ...
