"""Scope resolution: which account/agency ids a caller may touch.

The resolver's output is the only filter downstream readers may use. A
caller-supplied filter is intersected with it, so it can narrow the scope but
never widen it; disjoint filters collapse to a scope matching nothing.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any, TypeVar
from uuid import UUID

from edubill.tenancy import Identity, PortalType

T = TypeVar("T")


@dataclass(frozen=True)
class ScopeFilter:
    """Conjunctive filter over account_id and agency_id.

    ``None`` means "unconstrained" for that dimension. ``empty`` marks a
    filter that matches no record at all.
    """

    account_id: UUID | None = None
    agency_id: UUID | None = None
    empty: bool = False

    @classmethod
    def unrestricted(cls) -> ScopeFilter:
        return cls()

    @classmethod
    def nothing(cls) -> ScopeFilter:
        return cls(empty=True)

    @classmethod
    def of(cls, entity: Any) -> ScopeFilter:
        """Scope that a stored entity belongs to."""
        return cls(
            account_id=getattr(entity, "account_id", None),
            agency_id=getattr(entity, "agency_id", None),
        )

    @property
    def is_unrestricted(self) -> bool:
        return not self.empty and self.account_id is None and self.agency_id is None

    def intersect(self, other: ScopeFilter | None) -> ScopeFilter:
        """Narrow this filter by another; disjoint values match nothing."""
        if other is None:
            return self
        if self.empty or other.empty:
            return ScopeFilter.nothing()

        account_id = _meet(self.account_id, other.account_id)
        agency_id = _meet(self.agency_id, other.agency_id)
        if account_id is _DISJOINT or agency_id is _DISJOINT:
            return ScopeFilter.nothing()
        return ScopeFilter(account_id=account_id, agency_id=agency_id)  # type: ignore[arg-type]

    def permits(self, target: ScopeFilter) -> bool:
        """Whether a record living at ``target`` falls inside this scope."""
        if self.empty or target.empty:
            return False
        if self.account_id is not None and target.account_id != self.account_id:
            return False
        if self.agency_id is not None and target.agency_id != self.agency_id:
            return False
        return True

    def matches(self, entity: Any) -> bool:
        return self.permits(ScopeFilter.of(entity))

    def apply(self, entities: Iterable[T]) -> list[T]:
        """Keep only the entities inside this scope."""
        return [entity for entity in entities if self.matches(entity)]

    def to_dict(self) -> dict[str, Any]:
        if self.empty:
            return {"empty": True}
        result: dict[str, Any] = {}
        if self.account_id is not None:
            result["account_id"] = str(self.account_id)
        if self.agency_id is not None:
            result["agency_id"] = str(self.agency_id)
        return result


_DISJOINT = object()


def _meet(left: UUID | None, right: UUID | None) -> Any:
    if left is None:
        return right
    if right is None or right == left:
        return left
    return _DISJOINT


def forced_scope(identity: Identity) -> ScopeFilter:
    """Scope implied by the portal alone, before any caller filter."""
    if identity.portal_type is PortalType.PLATFORM:
        return ScopeFilter.unrestricted()
    if identity.portal_type is PortalType.ACCOUNT:
        return ScopeFilter(account_id=identity.account_id)
    if identity.portal_type is PortalType.AGENCY:
        return ScopeFilter(account_id=identity.account_id, agency_id=identity.agency_id)
    raise ValueError(f"Unhandled portal type: {identity.portal_type!r}")


def resolve_scope(identity: Identity, requested: ScopeFilter | None = None) -> ScopeFilter:
    """Resolve the effective read/write scope for a caller.

    Args:
        identity: Authenticated caller.
        requested: Optional filter supplied with the request.

    Returns:
        The forced scope intersected with ``requested``. Platform callers get
        ``requested`` unchanged; Account and Agency callers can only narrow
        their own scope. An agency id from another account yields a filter
        that matches nothing because both dimensions must hold.
    """
    return forced_scope(identity).intersect(requested)
