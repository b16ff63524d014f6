"""In-memory reference implementation of the EntityStore port."""

from __future__ import annotations

import threading
from typing import Any
from uuid import UUID

from edubill.errors import ConcurrentModificationError, NotFoundError
from edubill.ports import Write


class InMemoryEntityStore:
    """Thread-safe dict-backed store with per-entity revision counters.

    Also enforces the ``(template_id, period_index)`` uniqueness constraint
    used by schedule generation.
    """

    def __init__(self) -> None:
        self._rows: dict[tuple[str, UUID], tuple[Any, int]] = {}
        self._periods: dict[tuple[UUID, int], UUID] = {}
        self._lock = threading.Lock()

    def read(self, entity_type: str, entity_id: UUID) -> tuple[Any, int]:
        with self._lock:
            row = self._rows.get((entity_type, entity_id))
        if row is None:
            raise NotFoundError(f"{entity_type} {entity_id} not found")
        return row

    def list_entities(self, entity_type: str) -> list[Any]:
        with self._lock:
            return [entity for (kind, _), (entity, _) in self._rows.items() if kind == entity_type]

    def insert(self, entity_type: str, entity_id: UUID, entity: Any) -> int:
        return self.commit([Write(entity_type, entity_id, entity)])[0]

    def compare_and_swap(
        self, entity_type: str, entity_id: UUID, expected_revision: int, entity: Any
    ) -> int:
        return self.commit([Write(entity_type, entity_id, entity, expected_revision)])[0]

    def commit(self, writes: list[Write]) -> list[int]:
        """Apply every write or none of them. Returns the new revisions."""
        with self._lock:
            for write in writes:
                key = (write.entity_type, write.entity_id)
                current = self._rows.get(key)
                if write.expected_revision is None:
                    if current is not None:
                        raise ConcurrentModificationError(
                            f"{write.entity_type} {write.entity_id} already exists"
                        )
                elif current is None:
                    raise NotFoundError(f"{write.entity_type} {write.entity_id} not found")
                elif current[1] != write.expected_revision:
                    raise ConcurrentModificationError(
                        f"{write.entity_type} {write.entity_id} changed since it was read",
                        details={"expected": write.expected_revision, "actual": current[1]},
                    )

            revisions = []
            for write in writes:
                key = (write.entity_type, write.entity_id)
                revision = 1 if write.expected_revision is None else write.expected_revision + 1
                self._rows[key] = (write.entity, revision)
                revisions.append(revision)
            return revisions

    def reserve_period(self, template_id: UUID, period_index: int, transaction_id: UUID) -> bool:
        """Claim a generation slot. False if another run already holds it."""
        with self._lock:
            key = (template_id, period_index)
            if key in self._periods:
                return False
            self._periods[key] = transaction_id
            return True

    def reserved_periods(self, template_id: UUID) -> set[int]:
        with self._lock:
            return {index for (tid, index) in self._periods if tid == template_id}
