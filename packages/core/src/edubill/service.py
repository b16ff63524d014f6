"""Billing service - hosts the core against a store, a clock and an identity.

The service is the only place where authorization, the pure state machines
and persistence meet. Each operation:

1. Resolves the caller from the identity provider.
2. Reads the current snapshot and its revision.
3. Asks the capability evaluator, then the state machine.
4. Writes back with compare-and-swap, re-reading on conflict.
5. Records a history event.

Usage:
    service = BillingService(InMemoryEntityStore(), StaticIdentityProvider(identity))
    txn = service.create_billing_transaction(Decimal("250.00"), due_date=due)
    service.transition_billing_transaction(txn.id, "claim")
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, TypeVar
from uuid import UUID

import structlog

from edubill import billing, offer_letters, schedules, stats
from edubill.billing import BillingAction, BillingStatus, BillingTransaction
from edubill.capabilities import (
    Decision,
    Operation,
    ResourceType,
    authorize,
    authorize_account_update,
    authorize_billing_action,
    authorize_offer_letter_action,
    target_scope_for,
)
from edubill.config import Settings, get_settings, load_schedule_templates
from edubill.errors import (
    ConcurrentModificationError,
    InvalidPayloadError,
    InvalidTransitionError,
)
from edubill.events import (
    EventLog,
    EventType,
    offer_letter_event,
    schedule_generated,
    transaction_created,
    transaction_transitioned,
    transaction_updated,
)
from edubill.offer_letters import OfferLetter, OfferLetterAction, OfferLetterTransition
from edubill.ports import Clock, IdentityProvider, SystemClock, TransactionalStore, Write
from edubill.schedules import PaymentScheduleTemplate
from edubill.scope import ScopeFilter, resolve_scope
from edubill.tenancy import (
    Account,
    Agency,
    Identity,
    PortalType,
    deactivate_account,
    deactivate_agency,
    ensure_agency_in_account,
    update_account,
    update_agency,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")

_OFFER_LETTER_EVENT: dict[OfferLetterAction, EventType] = {
    OfferLetterAction.ISSUE: EventType.OFFER_LETTER_ISSUED,
    OfferLetterAction.ACCEPT: EventType.OFFER_LETTER_ACCEPTED,
    OfferLetterAction.REJECT: EventType.OFFER_LETTER_REJECTED,
    OfferLetterAction.CANCEL: EventType.OFFER_LETTER_CANCELLED,
    OfferLetterAction.REPLACE: EventType.OFFER_LETTER_REPLACED,
    OfferLetterAction.EXPIRE: EventType.OFFER_LETTER_EXPIRED,
}


class BillingService:
    """Tenant-aware entry point for every mutation and read."""

    def __init__(
        self,
        store: TransactionalStore,
        identity_provider: IdentityProvider,
        clock: Clock | None = None,
        events: EventLog | None = None,
        settings: Settings | None = None,
    ):
        self._settings = settings or get_settings()
        self._store = store
        self._identity_provider = identity_provider
        self._clock = clock or SystemClock()
        self._events = events or EventLog()
        self._logger = logger.bind(component="billing_service")

    @property
    def events(self) -> EventLog:
        return self._events

    @property
    def settings(self) -> Settings:
        return self._settings

    # =========================================================================
    # HELPERS
    # =========================================================================

    def _caller(self) -> Identity:
        return self._identity_provider.current_caller()

    def _enforce(self, decision: Decision, identity: Identity, **context: Any) -> None:
        if not decision:
            self._logger.info(
                "access_denied",
                actor=identity.actor,
                reason=decision.reason.value if decision.reason else None,
                **context,
            )
            decision.raise_for_denial()

    def _read_authorized(
        self,
        identity: Identity,
        resource_type: ResourceType,
        entity_id: UUID,
        operation: Operation = Operation.VIEW,
    ) -> tuple[Any, int]:
        entity, revision = self._store.read(resource_type.value, entity_id)
        decision = authorize(identity, resource_type, operation, target_scope_for(entity))
        self._enforce(
            decision,
            identity,
            resource=resource_type.value,
            entity_id=str(entity_id),
            operation=operation.value,
        )
        return entity, revision

    def _with_retries(self, operation: str, entity_id: UUID, attempt_fn: Callable[[], T]) -> T:
        """Run a read-check-write attempt, retrying on a lost compare-and-swap."""
        attempts = self._settings.transition_max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                return attempt_fn()
            except ConcurrentModificationError:
                self._logger.warning(
                    "transition_conflict",
                    operation=operation,
                    entity_id=str(entity_id),
                    attempt=attempt,
                    max_attempts=attempts,
                )
                if attempt == attempts:
                    raise
        raise AssertionError("unreachable")

    def _owner(
        self, identity: Identity, account_id: UUID | None, agency_id: UUID | None
    ) -> tuple[UUID, Agency | None]:
        """Fill in the caller's own tenant when a create leaves it implicit."""
        if account_id is None:
            account_id = identity.account_id
        if agency_id is None and identity.portal_type is PortalType.AGENCY:
            agency_id = identity.agency_id
        if account_id is None:
            raise InvalidPayloadError("Platform callers must name the owning account")
        agency = None
        if agency_id is not None:
            agency, _ = self._read_authorized(identity, ResourceType.AGENCY, agency_id)
        return account_id, agency

    # =========================================================================
    # TENANTS
    # =========================================================================

    def create_account(self, name: str, **fields: Any) -> Account:
        identity = self._caller()
        account = Account(name=name, **fields)
        decision = authorize(
            identity, ResourceType.ACCOUNT, Operation.CREATE, target_scope_for(account)
        )
        self._enforce(decision, identity, resource="account")
        self._store.insert(ResourceType.ACCOUNT.value, account.id, account)
        self._logger.info("account_created", account_id=str(account.id), actor=identity.actor)
        return account

    def get_account(self, account_id: UUID) -> Account:
        account, _ = self._read_authorized(self._caller(), ResourceType.ACCOUNT, account_id)
        return account

    def update_account(self, account_id: UUID, changes: dict[str, Any]) -> Account:
        def attempt() -> Account:
            identity = self._caller()
            account, revision = self._store.read(ResourceType.ACCOUNT.value, account_id)
            self._enforce(
                authorize_account_update(identity, account, changes),
                identity,
                resource="account",
                entity_id=str(account_id),
            )
            updated = update_account(account, changes)
            self._store.compare_and_swap(
                ResourceType.ACCOUNT.value, account_id, revision, updated
            )
            return updated

        return self._with_retries("update_account", account_id, attempt)

    def deactivate_account(self, account_id: UUID) -> Account:
        """Soft delete. Platform only."""

        def attempt() -> tuple[Account, Identity]:
            identity = self._caller()
            account, revision = self._read_authorized(
                identity, ResourceType.ACCOUNT, account_id, Operation.DELETE
            )
            updated = deactivate_account(account)
            self._store.compare_and_swap(
                ResourceType.ACCOUNT.value, account_id, revision, updated
            )
            return updated, identity

        updated, identity = self._with_retries("deactivate_account", account_id, attempt)
        self._logger.info("account_deactivated", account_id=str(account_id), actor=identity.actor)
        return updated

    def create_agency(
        self,
        name: str,
        account_id: UUID | None = None,
        commission_split_percent: Decimal | str = Decimal("0"),
    ) -> Agency:
        identity = self._caller()
        agency = Agency(
            account_id=account_id or identity.account_id,
            name=name,
            commission_split_percent=Decimal(str(commission_split_percent)),
        )
        decision = authorize(
            identity,
            ResourceType.AGENCY,
            Operation.CREATE,
            ScopeFilter(account_id=agency.account_id),
        )
        self._enforce(decision, identity, resource="agency")
        self._store.insert(ResourceType.AGENCY.value, agency.id, agency)
        self._logger.info(
            "agency_created",
            agency_id=str(agency.id),
            account_id=str(agency.account_id),
            actor=identity.actor,
        )
        return agency

    def get_agency(self, agency_id: UUID) -> Agency:
        agency, _ = self._read_authorized(self._caller(), ResourceType.AGENCY, agency_id)
        return agency

    def update_agency(self, agency_id: UUID, changes: dict[str, Any]) -> Agency:
        def attempt() -> Agency:
            identity = self._caller()
            agency, revision = self._read_authorized(
                identity, ResourceType.AGENCY, agency_id, Operation.EDIT
            )
            updated = update_agency(agency, changes)
            self._store.compare_and_swap(ResourceType.AGENCY.value, agency_id, revision, updated)
            return updated

        return self._with_retries("update_agency", agency_id, attempt)

    def deactivate_agency(self, agency_id: UUID) -> Agency:
        """Soft delete by platform or the owning account's admin."""

        def attempt() -> tuple[Agency, Identity]:
            identity = self._caller()
            agency, revision = self._read_authorized(
                identity, ResourceType.AGENCY, agency_id, Operation.DELETE
            )
            updated = deactivate_agency(agency)
            self._store.compare_and_swap(ResourceType.AGENCY.value, agency_id, revision, updated)
            return updated, identity

        updated, identity = self._with_retries("deactivate_agency", agency_id, attempt)
        self._logger.info(
            "agency_deactivated",
            agency_id=str(agency_id),
            account_id=str(updated.account_id),
            actor=identity.actor,
        )
        return updated

    # =========================================================================
    # OFFER LETTERS
    # =========================================================================

    def create_offer_letter(
        self,
        account_id: UUID | None = None,
        agency_id: UUID | None = None,
        **fields: Any,
    ) -> OfferLetter:
        identity = self._caller()
        now = self._clock.now()
        account_id, agency = self._owner(identity, account_id, agency_id)
        decision = authorize(
            identity,
            ResourceType.OFFER_LETTER,
            Operation.CREATE,
            ScopeFilter(account_id=account_id, agency_id=agency.id if agency else None),
        )
        self._enforce(decision, identity, resource="offer_letter")

        fields.setdefault("validity_months", self._settings.offer_letter_validity_months)
        fields.setdefault("currency", self._settings.default_currency)
        letter = offer_letters.draft_offer_letter(account_id, agency=agency, now=now, **fields)
        self._store.insert(ResourceType.OFFER_LETTER.value, letter.id, letter)
        self._events.record(
            offer_letter_event(EventType.OFFER_LETTER_CREATED, None, letter, identity.actor)
        )
        return letter

    def get_offer_letter(self, letter_id: UUID) -> OfferLetter:
        """Read a letter with lazy expiry applied."""
        letter, _ = self._read_authorized(self._caller(), ResourceType.OFFER_LETTER, letter_id)
        return offer_letters.present(letter, self._clock.now())

    def list_offer_letters(
        self,
        requested: ScopeFilter | None = None,
        status: offer_letters.OfferLetterStatus | str | None = None,
    ) -> list[OfferLetter]:
        identity = self._caller()
        now = self._clock.now()
        scope = resolve_scope(identity, requested)
        letters = [
            offer_letters.present(letter, now)
            for letter in scope.apply(self._store.list_entities(ResourceType.OFFER_LETTER.value))
        ]
        if status is not None:
            wanted = offer_letters.OfferLetterStatus(status)
            letters = [letter for letter in letters if letter.status is wanted]
        return letters

    def transition_offer_letter(
        self,
        letter_id: UUID,
        action: OfferLetterAction | str,
        payload: dict[str, Any] | None = None,
    ) -> OfferLetterTransition:
        """Apply an action; ``replace`` commits predecessor and successor together."""

        def attempt() -> tuple[OfferLetter, OfferLetterTransition, Identity]:
            identity = self._caller()
            now = self._clock.now()
            letter, revision = self._store.read(ResourceType.OFFER_LETTER.value, letter_id)
            self._enforce(
                authorize_offer_letter_action(identity, letter, action, now),
                identity,
                resource="offer_letter",
                entity_id=str(letter_id),
                action=str(action),
            )
            result = offer_letters.transition_offer_letter(letter, action, payload, now)
            writes = [
                Write(ResourceType.OFFER_LETTER.value, letter.id, result.letter, revision)
            ]
            if result.successor is not None:
                writes.append(
                    Write(ResourceType.OFFER_LETTER.value, result.successor.id, result.successor)
                )
            self._store.commit(writes)
            return letter, result, identity

        before, result, identity = self._with_retries("transition_offer_letter", letter_id, attempt)
        action = OfferLetterAction(action)
        self._events.record(
            offer_letter_event(_OFFER_LETTER_EVENT[action], before, result.letter, identity.actor)
        )
        if result.successor is not None:
            self._events.record(
                offer_letter_event(
                    EventType.OFFER_LETTER_CREATED,
                    None,
                    result.successor,
                    identity.actor,
                    original_offer_letter_id=str(before.id),
                    replacement_reason=result.letter.replacement_reason.value
                    if result.letter.replacement_reason
                    else None,
                )
            )
        self._logger.info(
            "transition_applied",
            entity="offer_letter",
            entity_id=str(letter_id),
            action=action.value,
            previous_status=before.status.value,
            new_status=result.letter.status.value,
            actor=identity.actor,
        )
        return result

    def append_offer_letter_document(self, letter_id: UUID, name: str, url: str) -> OfferLetter:
        def attempt() -> tuple[OfferLetter, Identity]:
            identity = self._caller()
            letter, revision = self._read_authorized(
                identity, ResourceType.OFFER_LETTER, letter_id, Operation.EDIT
            )
            updated = offer_letters.append_document(letter, name, url, self._clock.now())
            self._store.compare_and_swap(
                ResourceType.OFFER_LETTER.value, letter_id, revision, updated
            )
            return updated, identity

        updated, identity = self._with_retries("append_document", letter_id, attempt)
        self._events.record(
            offer_letter_event(
                EventType.OFFER_LETTER_DOCUMENT_ADDED,
                updated,
                updated,
                identity.actor,
                document=name,
            )
        )
        return updated

    # =========================================================================
    # BILLING TRANSACTIONS
    # =========================================================================

    def create_billing_transaction(
        self,
        amount: Decimal | str,
        account_id: UUID | None = None,
        agency_id: UUID | None = None,
        **fields: Any,
    ) -> BillingTransaction:
        identity = self._caller()
        account_id, agency = self._owner(identity, account_id, agency_id)
        decision = authorize(
            identity,
            ResourceType.BILLING_TRANSACTION,
            Operation.CREATE,
            ScopeFilter(account_id=account_id, agency_id=agency.id if agency else None),
        )
        self._enforce(decision, identity, resource="billing_transaction")

        fields.setdefault("currency", self._settings.default_currency)
        transaction = billing.create_billing_transaction(
            account_id, Decimal(str(amount)), agency=agency, **fields
        )
        self._store.insert(ResourceType.BILLING_TRANSACTION.value, transaction.id, transaction)
        self._events.record(transaction_created(transaction, identity.actor))
        return transaction

    def get_billing_transaction(self, transaction_id: UUID) -> BillingTransaction:
        transaction, _ = self._read_authorized(
            self._caller(), ResourceType.BILLING_TRANSACTION, transaction_id
        )
        return transaction

    def transition_billing_transaction(
        self,
        transaction_id: UUID,
        action: BillingAction | str,
        payload: dict[str, Any] | None = None,
    ) -> BillingTransaction:
        """Apply an action. ``claimed_by``/``approved_by`` default to the caller."""

        def attempt() -> tuple[BillingTransaction, BillingTransaction, Identity]:
            identity = self._caller()
            entity, revision = self._store.read(
                ResourceType.BILLING_TRANSACTION.value, transaction_id
            )
            self._enforce(
                authorize_billing_action(identity, entity, action),
                identity,
                resource="billing_transaction",
                entity_id=str(transaction_id),
                action=str(action),
            )
            data = dict(payload or {})
            if BillingAction(action) is BillingAction.CLAIM:
                data.setdefault("claimed_by", identity.actor)
            elif BillingAction(action) is BillingAction.APPROVE:
                data.setdefault("approved_by", identity.actor)
            updated = billing.transition_billing_transaction(
                entity, action, data, self._clock.now()
            )
            self._store.compare_and_swap(
                ResourceType.BILLING_TRANSACTION.value, transaction_id, revision, updated
            )
            return entity, updated, identity

        before, after, identity = self._with_retries(
            "transition_billing_transaction", transaction_id, attempt
        )
        action = BillingAction(action)
        self._events.record(transaction_transitioned(before, after, action.value, identity.actor))
        self._logger.info(
            "transition_applied",
            entity="billing_transaction",
            entity_id=str(transaction_id),
            action=action.value,
            previous_status=before.status.value,
            new_status=after.status.value,
            actor=identity.actor,
        )
        return after

    def set_billing_status(
        self,
        transaction_id: UUID,
        status: BillingStatus | str,
        payload: dict[str, Any] | None = None,
    ) -> BillingTransaction:
        """Generic status patch; resolved onto the one action reaching ``status``."""
        try:
            target = BillingStatus(status)
        except ValueError as exc:
            raise InvalidTransitionError(f"Unknown billing status: {status!r}") from exc
        action = billing.ACTION_FOR_STATUS.get(target)
        if action is None:
            raise InvalidTransitionError(f"No transition leads to status {target.value}")
        return self.transition_billing_transaction(transaction_id, action, payload)

    def amend_billing_transaction(
        self, transaction_id: UUID, changes: dict[str, Any]
    ) -> BillingTransaction:
        def attempt() -> tuple[BillingTransaction, BillingTransaction, Identity]:
            identity = self._caller()
            entity, revision = self._read_authorized(
                identity, ResourceType.BILLING_TRANSACTION, transaction_id, Operation.EDIT
            )
            updated = billing.amend_billing_transaction(entity, changes)
            self._store.compare_and_swap(
                ResourceType.BILLING_TRANSACTION.value, transaction_id, revision, updated
            )
            return entity, updated, identity

        before, after, identity = self._with_retries(
            "amend_billing_transaction", transaction_id, attempt
        )
        self._events.record(
            transaction_updated(before, after, sorted(changes), identity.actor)
        )
        return after

    def list_billing_transactions(
        self,
        requested: ScopeFilter | None = None,
        status: BillingStatus | str | None = None,
        overdue: bool | None = None,
        upcoming: bool | None = None,
    ) -> list[BillingTransaction]:
        """Transactions visible to the caller, optionally filtered by due state."""
        identity = self._caller()
        scope = resolve_scope(identity, requested)
        transactions = scope.apply(
            self._store.list_entities(ResourceType.BILLING_TRANSACTION.value)
        )
        if status is not None:
            wanted = BillingStatus(status)
            transactions = [txn for txn in transactions if txn.status is wanted]
        return billing.filter_by_due(
            transactions,
            self._clock.now(),
            overdue=overdue,
            upcoming=upcoming,
            days=self._settings.upcoming_window_days,
        )

    # =========================================================================
    # SCHEDULES
    # =========================================================================

    def register_template(self, template: PaymentScheduleTemplate) -> PaymentScheduleTemplate:
        identity = self._caller()
        if template.agency_id is not None:
            agency, _ = self._read_authorized(identity, ResourceType.AGENCY, template.agency_id)
            ensure_agency_in_account(agency, template.account_id)
        decision = authorize(
            identity, ResourceType.PAYMENT_SCHEDULE, Operation.CREATE, target_scope_for(template)
        )
        self._enforce(decision, identity, resource="payment_schedule")
        self._store.insert(ResourceType.PAYMENT_SCHEDULE.value, template.id, template)
        self._logger.info(
            "template_registered",
            template_id=str(template.id),
            frequency=template.frequency.value,
            actor=identity.actor,
        )
        return template

    def load_templates(self, path: Path | None = None) -> list[PaymentScheduleTemplate]:
        """Register every template from a YAML file (defaults to settings)."""
        path = path or self._settings.schedule_templates_path
        if path is None:
            return []
        return [
            self.register_template(schedules.template_from_dict(data))
            for data in load_schedule_templates(path)
        ]

    def get_template(self, template_id: UUID) -> PaymentScheduleTemplate:
        template, _ = self._read_authorized(
            self._caller(), ResourceType.PAYMENT_SCHEDULE, template_id
        )
        return template

    def list_templates(self, requested: ScopeFilter | None = None) -> list[PaymentScheduleTemplate]:
        scope = resolve_scope(self._caller(), requested)
        return scope.apply(self._store.list_entities(ResourceType.PAYMENT_SCHEDULE.value))

    def generate_due(
        self, template_id: UUID, as_of: datetime | None = None
    ) -> list[BillingTransaction]:
        """Emit pending transactions for every due period, exactly once each."""
        identity = self._caller()
        template, _ = self._read_authorized(
            identity, ResourceType.PAYMENT_SCHEDULE, template_id, Operation.GENERATE
        )
        working = replace(template, generated=dict(template.generated))
        candidates = schedules.generate_due(
            working,
            as_of or self._clock.now(),
            existing_periods=self._store.reserved_periods(template_id),
        )

        emitted: list[BillingTransaction] = []
        for transaction in candidates:
            # A concurrent run may have claimed the period since we listed them.
            if not self._store.reserve_period(
                template_id, transaction.period_index, transaction.id
            ):
                continue
            self._store.insert(ResourceType.BILLING_TRANSACTION.value, transaction.id, transaction)
            self._events.record(transaction_created(transaction, identity.actor))
            emitted.append(transaction)

        if emitted:
            self._with_retries(
                "record_generated", template_id, lambda: self._record_generated(template_id, emitted)
            )
            self._events.record(
                schedule_generated(template, [txn.id for txn in emitted], identity.actor)
            )
        self._logger.info(
            "generation_completed",
            template_id=str(template_id),
            generated=len(emitted),
            actor=identity.actor,
        )
        return emitted

    def _record_generated(
        self, template_id: UUID, emitted: list[BillingTransaction]
    ) -> PaymentScheduleTemplate:
        template, revision = self._store.read(ResourceType.PAYMENT_SCHEDULE.value, template_id)
        generated = dict(template.generated)
        generated.update({txn.period_index: txn.id for txn in emitted})
        updated = replace(template, generated=generated)
        self._store.compare_and_swap(
            ResourceType.PAYMENT_SCHEDULE.value, template_id, revision, updated
        )
        return updated

    # =========================================================================
    # SUMMARIES
    # =========================================================================

    def billing_summary(self, requested: ScopeFilter | None = None) -> dict[str, Any]:
        """Counts by status, amount totals and overdue/upcoming counts."""
        return stats.billing_summary(
            self.list_billing_transactions(requested),
            self._clock.now(),
            upcoming_days=self._settings.upcoming_window_days,
        )

    def revenue_summary(
        self,
        requested: ScopeFilter | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> dict[str, dict[str, Any]]:
        return stats.revenue_summary(self.list_billing_transactions(requested), start, end)

    def offer_letter_summary(self, requested: ScopeFilter | None = None) -> dict[str, Any]:
        return stats.offer_letter_summary(self.list_offer_letters(requested), self._clock.now())

    def schedule_summary(self, requested: ScopeFilter | None = None) -> dict[str, Any]:
        return stats.schedule_summary(self.list_templates(requested), self._clock.now())
