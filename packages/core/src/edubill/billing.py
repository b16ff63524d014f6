"""Billing transaction state machine and due-date classification.

Transitions::

    draft                      --submit-->     pending
    pending                    --claim-->      claimed      (claimed_by)
    pending|claimed|processing --approve-->    approved     (approved_by)
    any open except disputed   --dispute-->    disputed     (dispute_reason)
    disputed                   --resolve-->    resolved     (resolution_notes)
    approved|resolved          --reconcile-->  reconciled   (terminal, immutable)
    any open except processing --processing--> processing   (admin override)
    draft|pending|claimed|processing --cancel--> cancelled  (terminal)

"Open" means any status other than reconciled or cancelled. Overdue and
upcoming are read-time predicates, never stored statuses.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from edubill.dates import as_utc, utcnow
from edubill.errors import (
    ImmutableEntityError,
    InvalidPayloadError,
    InvalidTransitionError,
)
from edubill.tenancy import Agency, ensure_agency_in_account


class BillingStatus(str, Enum):
    DRAFT = "draft"
    PENDING = "pending"
    CLAIMED = "claimed"
    APPROVED = "approved"
    DISPUTED = "disputed"
    RESOLVED = "resolved"
    RECONCILED = "reconciled"
    PROCESSING = "processing"
    CANCELLED = "cancelled"


class BillingAction(str, Enum):
    SUBMIT = "submit"
    CLAIM = "claim"
    APPROVE = "approve"
    DISPUTE = "dispute"
    RESOLVE = "resolve"
    RECONCILE = "reconcile"
    MARK_PROCESSING = "processing"
    CANCEL = "cancel"


CLOSED_STATUSES = frozenset({BillingStatus.RECONCILED, BillingStatus.CANCELLED})
OPEN_STATUSES = frozenset(set(BillingStatus) - CLOSED_STATUSES)


@dataclass(frozen=True)
class _Rule:
    sources: frozenset[BillingStatus]
    target: BillingStatus
    required: str | None = None  # payload key that must be a non-blank string


RULES: dict[BillingAction, _Rule] = {
    BillingAction.SUBMIT: _Rule(frozenset({BillingStatus.DRAFT}), BillingStatus.PENDING),
    BillingAction.CLAIM: _Rule(
        frozenset({BillingStatus.PENDING}), BillingStatus.CLAIMED, "claimed_by"
    ),
    BillingAction.APPROVE: _Rule(
        frozenset({BillingStatus.PENDING, BillingStatus.CLAIMED, BillingStatus.PROCESSING}),
        BillingStatus.APPROVED,
        "approved_by",
    ),
    BillingAction.DISPUTE: _Rule(
        OPEN_STATUSES - {BillingStatus.DISPUTED}, BillingStatus.DISPUTED, "dispute_reason"
    ),
    BillingAction.RESOLVE: _Rule(
        frozenset({BillingStatus.DISPUTED}), BillingStatus.RESOLVED, "resolution_notes"
    ),
    BillingAction.RECONCILE: _Rule(
        frozenset({BillingStatus.APPROVED, BillingStatus.RESOLVED}), BillingStatus.RECONCILED
    ),
    BillingAction.MARK_PROCESSING: _Rule(
        OPEN_STATUSES - {BillingStatus.PROCESSING}, BillingStatus.PROCESSING
    ),
    BillingAction.CANCEL: _Rule(
        frozenset(
            {
                BillingStatus.DRAFT,
                BillingStatus.PENDING,
                BillingStatus.CLAIMED,
                BillingStatus.PROCESSING,
            }
        ),
        BillingStatus.CANCELLED,
    ),
}

ACTION_FOR_STATUS: dict[BillingStatus, BillingAction] = {
    rule.target: action for action, rule in RULES.items()
}

AMENDABLE_FIELDS = frozenset({"amount", "currency", "due_date", "notes"})


@dataclass(frozen=True)
class BillingTransaction:
    """Snapshot of a billing transaction. Status moves only via transitions."""

    account_id: UUID
    amount: Decimal
    id: UUID = field(default_factory=uuid4)
    agency_id: UUID | None = None
    currency: str = "USD"
    status: BillingStatus = BillingStatus.PENDING
    due_date: datetime | None = None
    claimed_by: str | None = None
    claimed_at: datetime | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None
    dispute_reason: str | None = None
    disputed_at: datetime | None = None
    resolution_notes: str | None = None
    resolved_at: datetime | None = None
    reconciled_at: datetime | None = None
    cancelled_at: datetime | None = None
    offer_letter_id: UUID | None = None
    template_id: UUID | None = None
    period_index: int | None = None
    notes: str = ""

    def __post_init__(self) -> None:
        if not isinstance(self.amount, Decimal):
            object.__setattr__(self, "amount", Decimal(str(self.amount)))
        object.__setattr__(self, "due_date", as_utc(self.due_date))
        if self.amount <= 0:
            raise InvalidPayloadError("Billing transaction amount must be positive")

    @property
    def is_closed(self) -> bool:
        return self.status in CLOSED_STATUSES


def create_billing_transaction(
    account_id: UUID,
    amount: Decimal,
    *,
    agency: Agency | None = None,
    due_date: datetime | None = None,
    currency: str = "USD",
    draft: bool = False,
    offer_letter_id: UUID | None = None,
    template_id: UUID | None = None,
    period_index: int | None = None,
    notes: str = "",
) -> BillingTransaction:
    """Create a transaction in ``pending`` (or ``draft`` when asked)."""
    ensure_agency_in_account(agency, account_id)
    return BillingTransaction(
        account_id=account_id,
        agency_id=agency.id if agency else None,
        amount=amount,
        currency=currency,
        status=BillingStatus.DRAFT if draft else BillingStatus.PENDING,
        due_date=due_date,
        offer_letter_id=offer_letter_id,
        template_id=template_id,
        period_index=period_index,
        notes=notes,
    )


def allowed_actions(entity: BillingTransaction) -> frozenset[BillingAction]:
    return frozenset(action for action, rule in RULES.items() if entity.status in rule.sources)


def _required_text(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if value is None or not str(value).strip():
        raise InvalidPayloadError(f"{key} is required", details={"field": key})
    return str(value).strip()


def transition_billing_transaction(
    entity: BillingTransaction,
    action: BillingAction | str,
    payload: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> BillingTransaction:
    """Apply one action to a billing transaction.

    Raises:
        ImmutableEntityError: The transaction is reconciled.
        InvalidTransitionError: The action is not allowed from the status.
        InvalidPayloadError: A required payload field is missing or blank.
    """
    now = now or utcnow()
    payload = payload or {}
    if entity.status is BillingStatus.RECONCILED:
        raise ImmutableEntityError("Reconciled billing transactions are immutable")

    try:
        action = BillingAction(action)
    except ValueError as exc:
        raise InvalidTransitionError(f"Unknown billing action: {action!r}") from exc

    rule = RULES[action]
    if entity.status not in rule.sources:
        raise InvalidTransitionError(
            f"Cannot {action.value} a billing transaction in status {entity.status.value}",
            details={"status": entity.status.value, "action": action.value},
        )

    changes: dict[str, Any] = {"status": rule.target}
    if rule.required:
        changes[rule.required] = _required_text(payload, rule.required)

    if action is BillingAction.CLAIM:
        changes["claimed_at"] = payload.get("claimed_at") or now
    elif action is BillingAction.APPROVE:
        changes["approved_at"] = now
    elif action is BillingAction.DISPUTE:
        changes["disputed_at"] = payload.get("disputed_at") or now
    elif action is BillingAction.RESOLVE:
        changes["resolved_at"] = now
    elif action is BillingAction.RECONCILE:
        changes["reconciled_at"] = now
    elif action is BillingAction.CANCEL:
        changes["cancelled_at"] = now

    return dataclasses.replace(entity, **changes)


def transition_to_status(
    entity: BillingTransaction,
    status: BillingStatus | str,
    payload: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> BillingTransaction:
    """Generic status patch, mapped onto the single action reaching ``status``."""
    if entity.status is BillingStatus.RECONCILED:
        raise ImmutableEntityError("Reconciled billing transactions are immutable")
    try:
        target = BillingStatus(status)
    except ValueError as exc:
        raise InvalidTransitionError(f"Unknown billing status: {status!r}") from exc
    action = ACTION_FOR_STATUS.get(target)
    if action is None:
        raise InvalidTransitionError(f"No transition leads to status {target.value}")
    return transition_billing_transaction(entity, action, payload, now)


def amend_billing_transaction(
    entity: BillingTransaction, changes: dict[str, Any]
) -> BillingTransaction:
    """Edit non-status fields of an open transaction."""
    if entity.status is BillingStatus.RECONCILED:
        raise ImmutableEntityError("Reconciled billing transactions are immutable")
    if entity.status is BillingStatus.CANCELLED:
        raise ImmutableEntityError("Cancelled billing transactions cannot be amended")
    if "status" in changes:
        raise InvalidTransitionError("Status changes must go through a transition")
    unknown = set(changes) - AMENDABLE_FIELDS
    if unknown:
        raise InvalidPayloadError(f"Fields cannot be amended: {sorted(unknown)}")
    return dataclasses.replace(entity, **changes)


# =============================================================================
# DUE-DATE CLASSIFICATION
# =============================================================================


class DueClassification(str, Enum):
    OVERDUE = "overdue"
    UPCOMING = "upcoming"
    NONE = "none"


def is_overdue(entity: BillingTransaction, now: datetime) -> bool:
    """Open and past due. Recomputed on every read."""
    if entity.status in CLOSED_STATUSES or entity.due_date is None:
        return False
    return entity.due_date < now


def is_upcoming(entity: BillingTransaction, now: datetime, days: int = 30) -> bool:
    """Open and due within the next ``days`` days."""
    if entity.status in CLOSED_STATUSES or entity.due_date is None:
        return False
    return now <= entity.due_date <= now + timedelta(days=days)


def classify(entity: BillingTransaction, now: datetime, days: int = 30) -> DueClassification:
    if is_overdue(entity, now):
        return DueClassification.OVERDUE
    if is_upcoming(entity, now, days):
        return DueClassification.UPCOMING
    return DueClassification.NONE


def filter_by_due(
    entities: Iterable[BillingTransaction],
    now: datetime,
    *,
    overdue: bool | None = None,
    upcoming: bool | None = None,
    days: int = 30,
) -> list[BillingTransaction]:
    """Filter by the derived overdue/upcoming predicates; ``None`` ignores one."""
    result = []
    for entity in entities:
        if overdue is not None and is_overdue(entity, now) != overdue:
            continue
        if upcoming is not None and is_upcoming(entity, now, days) != upcoming:
            continue
        result.append(entity)
    return result
