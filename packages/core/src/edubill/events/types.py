"""Event type definitions for billing and offer letter history.

Every applied transition yields one event. The hosting layer stores them as
the billing event history and may forward them to notification channels.
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventType(str, Enum):
    """Types of events recorded by the core."""

    # Billing transactions
    TRANSACTION_CREATED = "transaction.created"
    TRANSACTION_UPDATED = "transaction.updated"
    TRANSACTION_CLAIMED = "transaction.claimed"
    TRANSACTION_APPROVED = "transaction.approved"
    TRANSACTION_DISPUTED = "transaction.disputed"
    TRANSACTION_DISPUTE_RESOLVED = "transaction.dispute_resolved"
    TRANSACTION_RECONCILED = "transaction.reconciled"
    TRANSACTION_STATUS_CHANGED = "transaction.status_changed"
    TRANSACTION_CANCELLED = "transaction.cancelled"

    # Offer letters
    OFFER_LETTER_CREATED = "offer_letter.created"
    OFFER_LETTER_ISSUED = "offer_letter.issued"
    OFFER_LETTER_ACCEPTED = "offer_letter.accepted"
    OFFER_LETTER_REJECTED = "offer_letter.rejected"
    OFFER_LETTER_CANCELLED = "offer_letter.cancelled"
    OFFER_LETTER_REPLACED = "offer_letter.replaced"
    OFFER_LETTER_EXPIRED = "offer_letter.expired"
    OFFER_LETTER_DOCUMENT_ADDED = "offer_letter.document_added"

    # Schedules
    SCHEDULE_GENERATED = "schedule.generated"


@dataclass
class HistoryEvent:
    """Base event structure."""

    event_type: EventType
    account_id: UUID | None = None
    agency_id: UUID | None = None
    actor: str = ""
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    event_id: UUID = field(default_factory=uuid4)
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to a plain dictionary."""
        return {
            "id": str(self.event_id),
            "type": self.event_type.value,
            "timestamp": self.timestamp.isoformat(),
            "account_id": str(self.account_id) if self.account_id else None,
            "agency_id": str(self.agency_id) if self.agency_id else None,
            "actor": self.actor,
            "data": self.data,
        }


@dataclass
class BillingEvent(HistoryEvent):
    """Event on a billing transaction."""

    transaction_id: UUID | None = None
    previous_status: str = ""
    new_status: str = ""

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["transaction"] = {
            "id": str(self.transaction_id) if self.transaction_id else None,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
        }
        return base


@dataclass
class OfferLetterEvent(HistoryEvent):
    """Event on an offer letter."""

    offer_letter_id: UUID | None = None
    version: int = 1
    previous_status: str = ""
    new_status: str = ""

    def to_dict(self) -> dict[str, Any]:
        base = super().to_dict()
        base["offer_letter"] = {
            "id": str(self.offer_letter_id) if self.offer_letter_id else None,
            "version": self.version,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
        }
        return base


# Convenience constructors

_BILLING_EVENT_FOR_ACTION: dict[str, EventType] = {
    "claim": EventType.TRANSACTION_CLAIMED,
    "approve": EventType.TRANSACTION_APPROVED,
    "dispute": EventType.TRANSACTION_DISPUTED,
    "resolve": EventType.TRANSACTION_DISPUTE_RESOLVED,
    "reconcile": EventType.TRANSACTION_RECONCILED,
    "cancel": EventType.TRANSACTION_CANCELLED,
}


def transaction_created(transaction: Any, actor: str = "") -> BillingEvent:
    """Create a transaction created event."""
    return BillingEvent(
        event_type=EventType.TRANSACTION_CREATED,
        account_id=transaction.account_id,
        agency_id=transaction.agency_id,
        actor=actor,
        transaction_id=transaction.id,
        new_status=transaction.status.value,
        data={
            "amount": str(transaction.amount),
            "currency": transaction.currency,
            "due_date": transaction.due_date.isoformat() if transaction.due_date else None,
            "template_id": str(transaction.template_id) if transaction.template_id else None,
            "period_index": transaction.period_index,
        },
    )


def transaction_transitioned(
    before: Any, after: Any, action: str, actor: str = ""
) -> BillingEvent:
    """Create the event for an applied billing action."""
    data: dict[str, Any] = {"action": action}
    if after.dispute_reason and action == "dispute":
        data["dispute_reason"] = after.dispute_reason
    if after.resolution_notes and action == "resolve":
        data["resolution_notes"] = after.resolution_notes
    return BillingEvent(
        event_type=_BILLING_EVENT_FOR_ACTION.get(action, EventType.TRANSACTION_STATUS_CHANGED),
        account_id=after.account_id,
        agency_id=after.agency_id,
        actor=actor,
        transaction_id=after.id,
        previous_status=before.status.value,
        new_status=after.status.value,
        data=data,
    )


def transaction_updated(before: Any, after: Any, fields: list[str], actor: str = "") -> BillingEvent:
    """Create a transaction updated event."""
    return BillingEvent(
        event_type=EventType.TRANSACTION_UPDATED,
        account_id=after.account_id,
        agency_id=after.agency_id,
        actor=actor,
        transaction_id=after.id,
        previous_status=before.status.value,
        new_status=after.status.value,
        data={
            "original": {name: str(getattr(before, name)) for name in fields},
            "updated": {name: str(getattr(after, name)) for name in fields},
        },
    )


def offer_letter_event(
    event_type: EventType, before: Any | None, after: Any, actor: str = "", **data: Any
) -> OfferLetterEvent:
    """Create an offer letter event."""
    return OfferLetterEvent(
        event_type=event_type,
        account_id=after.account_id,
        agency_id=after.agency_id,
        actor=actor,
        offer_letter_id=after.id,
        version=after.version,
        previous_status=before.status.value if before is not None else "",
        new_status=after.status.value,
        data=data,
    )


def schedule_generated(template: Any, transaction_ids: list[UUID], actor: str = "") -> HistoryEvent:
    """Create a schedule generation event."""
    return HistoryEvent(
        event_type=EventType.SCHEDULE_GENERATED,
        account_id=template.account_id,
        agency_id=template.agency_id,
        actor=actor,
        data={
            "template_id": str(template.id),
            "transaction_ids": [str(tid) for tid in transaction_ids],
        },
    )
