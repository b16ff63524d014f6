"""Tests for aggregate summaries."""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

from edubill.billing import BillingStatus, create_billing_transaction
from edubill.offer_letters import draft_offer_letter, transition_offer_letter
from edubill.schedules import PaymentScheduleTemplate
from edubill.stats import billing_summary, offer_letter_summary, revenue_summary, schedule_summary


class TestBillingSummary:
    """Tests for billing_summary."""

    def test_empty(self, now):
        assert billing_summary([], now) == {
            "count": 0,
            "by_status": {},
            "total_amounts": {},
            "overdue": 0,
            "upcoming": 0,
        }

    def test_amounts_are_kept_per_currency(self, account, now):
        transactions = [
            create_billing_transaction(account.id, Decimal("100"), currency="USD"),
            create_billing_transaction(account.id, Decimal("80"), currency="GBP"),
            create_billing_transaction(account.id, Decimal("20"), currency="USD"),
        ]

        summary = billing_summary(transactions, now)

        assert summary["total_amounts"] == {"USD": Decimal("120"), "GBP": Decimal("80")}
        assert summary["by_status"]["pending"]["amounts"] == {
            "USD": Decimal("120"),
            "GBP": Decimal("80"),
        }

    def test_closed_transactions_are_never_overdue(self, account, now):
        late = create_billing_transaction(
            account.id, Decimal("10"), due_date=now - timedelta(days=3)
        )
        cancelled = replace(late, status=BillingStatus.CANCELLED)

        summary = billing_summary([late, cancelled], now)

        assert summary["overdue"] == 1
        assert summary["by_status"]["cancelled"]["count"] == 1


class TestRevenueSummary:
    """Tests for revenue_summary."""

    def test_bounds_are_inclusive(self, account, now):
        txn = replace(
            create_billing_transaction(account.id, Decimal("99.99")),
            status=BillingStatus.RECONCILED,
            reconciled_at=now,
        )

        assert revenue_summary([txn], start=now, end=now)["USD"]["transaction_count"] == 1
        assert revenue_summary([txn], start=now + timedelta(seconds=1)) == {}

    def test_naive_bounds_are_utc(self, account, now):
        txn = replace(
            create_billing_transaction(account.id, Decimal("10")),
            status=BillingStatus.RECONCILED,
            reconciled_at=now,
        )
        naive = now.replace(tzinfo=None)

        assert revenue_summary([txn], start=naive, end=naive)["USD"]["total_revenue"] == Decimal(
            "10"
        )

    def test_approved_is_not_revenue(self, account, now):
        approved = replace(
            create_billing_transaction(account.id, Decimal("50")), status=BillingStatus.APPROVED
        )

        assert revenue_summary([approved]) == {}


def test_offer_letter_summary_counts_replacements(account, now):
    issued = transition_offer_letter(draft_offer_letter(account.id, now=now), "issue", now=now)
    result = transition_offer_letter(issued.letter, "replace", {"reason": "intake_change"}, now)

    summary = offer_letter_summary([result.letter, result.successor], now)

    assert summary["by_status"] == {"replaced": 1, "issued": 1}
    assert summary["replacement_reasons"] == {"intake_change": 1}


def test_schedule_summary_counts_finished_templates(account, now):
    finished = PaymentScheduleTemplate(
        account.id, Decimal("10"), now - timedelta(days=60), end_date=now - timedelta(days=1)
    )
    running = PaymentScheduleTemplate(account.id, Decimal("10"), now, frequency="quarterly")

    summary = schedule_summary([finished, running], now)

    assert summary["active"] == 1
    assert summary["by_frequency"] == {"monthly": 1, "quarterly": 1}
