"""Transition history events."""

from edubill.events.log import EventLog
from edubill.events.types import (
    BillingEvent,
    EventType,
    HistoryEvent,
    OfferLetterEvent,
    offer_letter_event,
    schedule_generated,
    transaction_created,
    transaction_transitioned,
    transaction_updated,
)

__all__ = [
    "EventLog",
    "EventType",
    "HistoryEvent",
    "BillingEvent",
    "OfferLetterEvent",
    "offer_letter_event",
    "schedule_generated",
    "transaction_created",
    "transaction_transitioned",
    "transaction_updated",
]
