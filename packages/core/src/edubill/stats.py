"""Aggregate summaries over records a caller can already see.

Every function here takes records that have been through the scope
resolver. None of them filter by tenant themselves.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from edubill import billing, offer_letters
from edubill.billing import BillingStatus, BillingTransaction
from edubill.dates import as_utc
from edubill.offer_letters import OfferLetter, OfferLetterStatus
from edubill.schedules import PaymentScheduleTemplate

_CENTS = Decimal("0.01")


def billing_summary(
    transactions: Iterable[BillingTransaction],
    now: datetime,
    upcoming_days: int = 30,
) -> dict[str, Any]:
    """Counts and per-currency amounts by status, plus due-state counts."""
    by_status: dict[str, dict[str, Any]] = {}
    totals: dict[str, Decimal] = {}
    count = 0
    overdue = 0
    upcoming = 0

    for txn in transactions:
        count += 1
        bucket = by_status.setdefault(txn.status.value, {"count": 0, "amounts": {}})
        bucket["count"] += 1
        bucket["amounts"][txn.currency] = (
            bucket["amounts"].get(txn.currency, Decimal("0")) + txn.amount
        )
        totals[txn.currency] = totals.get(txn.currency, Decimal("0")) + txn.amount
        if billing.is_overdue(txn, now):
            overdue += 1
        elif billing.is_upcoming(txn, now, upcoming_days):
            upcoming += 1

    return {
        "count": count,
        "by_status": by_status,
        "total_amounts": totals,
        "overdue": overdue,
        "upcoming": upcoming,
    }


def revenue_summary(
    transactions: Iterable[BillingTransaction],
    start: datetime | None = None,
    end: datetime | None = None,
) -> dict[str, dict[str, Any]]:
    """Reconciled revenue per currency, optionally bounded by reconcile time.

    Bounds are inclusive. Returns ``{currency: {total_revenue,
    transaction_count, average_amount}}``.
    """
    start, end = as_utc(start), as_utc(end)
    grouped: dict[str, list[Decimal]] = {}
    for txn in transactions:
        if txn.status is not BillingStatus.RECONCILED or txn.reconciled_at is None:
            continue
        if start is not None and txn.reconciled_at < start:
            continue
        if end is not None and txn.reconciled_at > end:
            continue
        grouped.setdefault(txn.currency, []).append(txn.amount)

    summary = {}
    for currency, amounts in grouped.items():
        total = sum(amounts, Decimal("0"))
        summary[currency] = {
            "total_revenue": total,
            "transaction_count": len(amounts),
            "average_amount": (total / len(amounts)).quantize(_CENTS, rounding=ROUND_HALF_UP),
        }
    return summary


def offer_letter_summary(letters: Iterable[OfferLetter], now: datetime) -> dict[str, Any]:
    """Counts by effective status and by version, and replacement reasons."""
    by_status: dict[str, int] = {}
    by_version: dict[int, int] = {}
    replacement_reasons: dict[str, int] = {}
    count = 0

    for letter in letters:
        count += 1
        status = offer_letters.effective_status(letter, now).value
        by_status[status] = by_status.get(status, 0) + 1
        by_version[letter.version] = by_version.get(letter.version, 0) + 1
        if letter.status is OfferLetterStatus.REPLACED and letter.replacement_reason:
            reason = letter.replacement_reason.value
            replacement_reasons[reason] = replacement_reasons.get(reason, 0) + 1

    return {
        "count": count,
        "by_status": by_status,
        "by_version": dict(sorted(by_version.items())),
        "replacement_reasons": replacement_reasons,
    }


def schedule_summary(
    templates: Iterable[PaymentScheduleTemplate], as_of: datetime
) -> dict[str, Any]:
    """Template counts by frequency, how many are still running, periods emitted."""
    by_frequency: dict[str, int] = {}
    count = 0
    active = 0
    generated = 0

    for template in templates:
        count += 1
        frequency = template.frequency.value
        by_frequency[frequency] = by_frequency.get(frequency, 0) + 1
        if not template.is_finished(as_of):
            active += 1
        generated += len(template.generated)

    return {
        "count": count,
        "active": active,
        "by_frequency": by_frequency,
        "generated_periods": generated,
    }
