"""Recurring schedule generator.

A payment schedule template describes a cadence; ``generate_due`` turns every
cadence boundary up to a point in time into a pending billing transaction,
exactly once per ``(template_id, period_index)``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

import structlog

from edubill.billing import BillingStatus, BillingTransaction
from edubill.dates import add_months, as_utc
from edubill.errors import InvalidScheduleError

logger = structlog.get_logger(__name__)


class Frequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"


_MONTHS_PER_UNIT: dict[Frequency, int] = {
    Frequency.MONTHLY: 1,
    Frequency.QUARTERLY: 3,
    Frequency.ANNUALLY: 12,
}


@dataclass
class PaymentScheduleTemplate:
    """Recurring cadence from which billing transactions are emitted.

    ``generated`` maps period index to the id of the transaction emitted for
    it. It is a non-owning back-reference: transactions outlive the template.
    """

    account_id: UUID
    amount: Decimal
    start_date: datetime
    frequency: Frequency = Frequency.MONTHLY
    interval: int = 1
    end_date: datetime | None = None
    occurrences: int | None = None
    id: UUID = field(default_factory=uuid4)
    agency_id: UUID | None = None
    currency: str = "USD"
    escalation_percent: Decimal = Decimal("0")
    offer_letter_id: UUID | None = None
    description: str = ""
    generated: dict[int, UUID] = field(default_factory=dict)

    def __post_init__(self) -> None:
        try:
            self.frequency = Frequency(self.frequency)
        except ValueError as exc:
            raise InvalidScheduleError(f"Unknown frequency: {self.frequency!r}") from exc
        if not isinstance(self.amount, Decimal):
            self.amount = Decimal(str(self.amount))
        if not isinstance(self.escalation_percent, Decimal):
            self.escalation_percent = Decimal(str(self.escalation_percent))
        self.start_date = as_utc(self.start_date)
        self.end_date = as_utc(self.end_date)

        if self.interval <= 0:
            raise InvalidScheduleError("Schedule interval must be positive")
        if self.end_date is not None and self.start_date > self.end_date:
            raise InvalidScheduleError("Schedule start_date is after end_date")
        if self.occurrences is not None and self.occurrences <= 0:
            raise InvalidScheduleError("Schedule occurrences must be positive")
        if self.amount <= 0:
            raise InvalidScheduleError("Schedule amount must be positive")

    def period_boundary(self, index: int) -> datetime:
        """Due date of period ``index`` (0 is the start date)."""
        if self.frequency is Frequency.WEEKLY:
            return self.start_date + timedelta(weeks=self.interval * index)
        return add_months(self.start_date, _MONTHS_PER_UNIT[self.frequency] * self.interval * index)

    def amount_for(self, index: int) -> Decimal:
        """Amount for a period, compounding ``escalation_percent`` per period."""
        if not self.escalation_percent:
            return self.amount
        factor = (Decimal("1") + self.escalation_percent / Decimal("100")) ** index
        return (self.amount * factor).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def is_finished(self, as_of: datetime) -> bool:
        if self.end_date is not None and as_of > self.end_date:
            return True
        return self.occurrences is not None and len(self.generated) >= self.occurrences


def due_periods(template: PaymentScheduleTemplate, as_of: datetime) -> list[tuple[int, datetime]]:
    """All (index, boundary) pairs with boundary <= as_of inside the template window."""
    periods: list[tuple[int, datetime]] = []
    index = 0
    while template.occurrences is None or index < template.occurrences:
        boundary = template.period_boundary(index)
        if boundary > as_of:
            break
        if template.end_date is not None and boundary > template.end_date:
            break
        periods.append((index, boundary))
        index += 1
    return periods


def generate_due(
    template: PaymentScheduleTemplate,
    as_of: datetime,
    existing_periods: set[int] | frozenset[int] | None = None,
) -> list[BillingTransaction]:
    """Emit pending transactions for every due period not generated yet.

    Args:
        template: The schedule; its ``generated`` map is updated in place.
        as_of: Generation cut-off.
        existing_periods: Period indexes already persisted elsewhere, used
            when the template was reloaded without its back-references.

    Returns:
        Newly created transactions; empty when re-run with the same ``as_of``.
    """
    skip = set(template.generated) | set(existing_periods or ())
    emitted: list[BillingTransaction] = []
    for index, boundary in due_periods(template, as_of):
        if index in skip:
            continue
        transaction = BillingTransaction(
            account_id=template.account_id,
            agency_id=template.agency_id,
            amount=template.amount_for(index),
            currency=template.currency,
            status=BillingStatus.PENDING,
            due_date=boundary,
            offer_letter_id=template.offer_letter_id,
            template_id=template.id,
            period_index=index,
            notes=template.description,
        )
        template.generated[index] = transaction.id
        emitted.append(transaction)

    if emitted:
        logger.debug(
            "periods_generated",
            template_id=str(template.id),
            count=len(emitted),
            as_of=as_of.isoformat(),
        )
    return emitted


def template_from_dict(data: dict[str, Any]) -> PaymentScheduleTemplate:
    """Build a template from a normalized mapping (see ``templates_loader``)."""
    kwargs: dict[str, Any] = {
        "account_id": UUID(str(data["account_id"])),
        "amount": Decimal(str(data["amount"])),
        "start_date": data["start_date"],
        "frequency": data.get("frequency", Frequency.MONTHLY.value),
        "interval": int(data.get("interval", 1)),
        "end_date": data.get("end_date"),
        "occurrences": data.get("occurrences"),
        "currency": data.get("currency", "USD"),
        "escalation_percent": Decimal(str(data.get("escalation_percent", "0"))),
        "description": data.get("description", ""),
    }
    if data.get("id"):
        kwargs["id"] = UUID(str(data["id"]))
    if data.get("agency_id"):
        kwargs["agency_id"] = UUID(str(data["agency_id"]))
    if data.get("offer_letter_id"):
        kwargs["offer_letter_id"] = UUID(str(data["offer_letter_id"]))
    return PaymentScheduleTemplate(**kwargs)
