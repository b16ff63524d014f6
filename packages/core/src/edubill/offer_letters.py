"""Offer letter state machine.

Transitions::

    draft   --issue-->   issued
    draft   --cancel-->  cancelled
    issued  --accept-->  accepted
    issued  --reject-->  rejected
    issued  --cancel-->  cancelled
    issued  --replace--> replaced   (+ successor at version + 1, issued)
    issued  --expire-->  expired    (only once expiry_date has passed)
    accepted --cancel--> cancelled

An issued letter past its expiry date reads as expired even if nothing has
been written yet; every transition is evaluated against that effective
status.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from edubill.dates import add_months, as_utc, utcnow
from edubill.errors import (
    ImmutableEntityError,
    InvalidPayloadError,
    InvalidTransitionError,
)
from edubill.tenancy import Agency, ensure_agency_in_account


class OfferLetterStatus(str, Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"
    REPLACED = "replaced"
    CANCELLED = "cancelled"


class OfferLetterAction(str, Enum):
    ISSUE = "issue"
    ACCEPT = "accept"
    REJECT = "reject"
    CANCEL = "cancel"
    REPLACE = "replace"
    EXPIRE = "expire"


class ReplacementReason(str, Enum):
    COURSE_CHANGE = "course_change"
    FEE_UPDATE = "fee_update"
    INTAKE_CHANGE = "intake_change"
    CORRECTION = "correction"
    UPGRADE = "upgrade"
    OTHER = "other"


TRANSITIONS: dict[tuple[OfferLetterStatus, OfferLetterAction], OfferLetterStatus] = {
    (OfferLetterStatus.DRAFT, OfferLetterAction.ISSUE): OfferLetterStatus.ISSUED,
    (OfferLetterStatus.DRAFT, OfferLetterAction.CANCEL): OfferLetterStatus.CANCELLED,
    (OfferLetterStatus.ISSUED, OfferLetterAction.ACCEPT): OfferLetterStatus.ACCEPTED,
    (OfferLetterStatus.ISSUED, OfferLetterAction.REJECT): OfferLetterStatus.REJECTED,
    (OfferLetterStatus.ISSUED, OfferLetterAction.CANCEL): OfferLetterStatus.CANCELLED,
    (OfferLetterStatus.ISSUED, OfferLetterAction.REPLACE): OfferLetterStatus.REPLACED,
    (OfferLetterStatus.ISSUED, OfferLetterAction.EXPIRE): OfferLetterStatus.EXPIRED,
    (OfferLetterStatus.ACCEPTED, OfferLetterAction.CANCEL): OfferLetterStatus.CANCELLED,
}

TERMINAL_STATUSES = frozenset(
    {
        OfferLetterStatus.REJECTED,
        OfferLetterStatus.EXPIRED,
        OfferLetterStatus.REPLACED,
        OfferLetterStatus.CANCELLED,
    }
)

# Statuses that refuse new documents.
SEALED_STATUSES = frozenset({OfferLetterStatus.REPLACED, OfferLetterStatus.CANCELLED})


@dataclass(frozen=True)
class Document:
    """Attached file; documents are never removed."""

    name: str
    url: str
    uploaded_at: datetime | None = None


@dataclass(frozen=True)
class Lifecycle:
    drafted_at: datetime | None = None
    issued_at: datetime | None = None
    accepted_at: datetime | None = None
    rejected_at: datetime | None = None
    expired_at: datetime | None = None
    replaced_at: datetime | None = None
    cancelled_at: datetime | None = None


_LIFECYCLE_FIELD: dict[OfferLetterStatus, str] = {
    OfferLetterStatus.ISSUED: "issued_at",
    OfferLetterStatus.ACCEPTED: "accepted_at",
    OfferLetterStatus.REJECTED: "rejected_at",
    OfferLetterStatus.EXPIRED: "expired_at",
    OfferLetterStatus.REPLACED: "replaced_at",
    OfferLetterStatus.CANCELLED: "cancelled_at",
}


@dataclass(frozen=True)
class OfferLetter:
    """Snapshot of an offer letter. Mutated only through transitions."""

    account_id: UUID
    issue_date: datetime
    expiry_date: datetime
    id: UUID = field(default_factory=uuid4)
    agency_id: UUID | None = None
    student_id: UUID | None = None
    status: OfferLetterStatus = OfferLetterStatus.DRAFT
    version: int = 1
    documents: tuple[Document, ...] = ()
    lifecycle: Lifecycle = field(default_factory=Lifecycle)
    original_offer_letter_id: UUID | None = None
    replaced_by_id: UUID | None = None
    replacement_reason: ReplacementReason | None = None
    tuition_fee: Decimal | None = None
    currency: str = "USD"
    commission_rate: Decimal | None = None
    commission_fixed: Decimal | None = None
    notes: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "issue_date", as_utc(self.issue_date))
        object.__setattr__(self, "expiry_date", as_utc(self.expiry_date))
        if self.version < 1:
            raise InvalidPayloadError("Offer letter version starts at 1")
        if self.expiry_date < self.issue_date:
            raise InvalidPayloadError("expiry_date must not precede issue_date")
        if self.commission_rate is not None and not (
            Decimal("0") <= self.commission_rate <= Decimal("100")
        ):
            raise InvalidPayloadError("commission_rate must be between 0 and 100")


@dataclass(frozen=True)
class OfferLetterTransition:
    """Outcome of a transition.

    ``successor`` is set only for ``replace``; the hosting layer must persist
    both snapshots in one all-or-nothing commit.
    """

    letter: OfferLetter
    successor: OfferLetter | None = None


def draft_offer_letter(
    account_id: UUID,
    *,
    agency: Agency | None = None,
    student_id: UUID | None = None,
    issue_date: datetime | None = None,
    expiry_date: datetime | None = None,
    validity_months: int = 6,
    documents: tuple[Document, ...] = (),
    tuition_fee: Decimal | None = None,
    currency: str = "USD",
    commission_rate: Decimal | None = None,
    commission_fixed: Decimal | None = None,
    notes: str = "",
    now: datetime | None = None,
) -> OfferLetter:
    """Create a new offer letter in ``draft``.

    Without an explicit expiry the letter is valid for ``validity_months``
    from its issue date.
    """
    now = now or utcnow()
    ensure_agency_in_account(agency, account_id)
    issue = issue_date or now
    return OfferLetter(
        account_id=account_id,
        agency_id=agency.id if agency else None,
        student_id=student_id,
        issue_date=issue,
        expiry_date=expiry_date or add_months(issue, validity_months),
        documents=tuple(documents),
        lifecycle=Lifecycle(drafted_at=now),
        tuition_fee=tuition_fee,
        currency=currency,
        commission_rate=commission_rate,
        commission_fixed=commission_fixed,
        notes=notes,
    )


def is_expired(letter: OfferLetter, now: datetime) -> bool:
    """Issued and past its expiry date, whether or not that was written."""
    return letter.status is OfferLetterStatus.ISSUED and now > letter.expiry_date


def effective_status(letter: OfferLetter, now: datetime) -> OfferLetterStatus:
    if is_expired(letter, now):
        return OfferLetterStatus.EXPIRED
    return letter.status


def present(letter: OfferLetter, now: datetime) -> OfferLetter:
    """Read view of a letter with lazy expiry applied."""
    if not is_expired(letter, now):
        return letter
    return dataclasses.replace(
        letter,
        status=OfferLetterStatus.EXPIRED,
        lifecycle=dataclasses.replace(letter.lifecycle, expired_at=letter.expiry_date),
    )


def allowed_actions(letter: OfferLetter, now: datetime) -> frozenset[OfferLetterAction]:
    """Actions the letter accepts at ``now``."""
    status = effective_status(letter, now)
    actions = {action for (source, action) in TRANSITIONS if source is status}
    if is_expired(letter, now):
        actions.add(OfferLetterAction.EXPIRE)
    else:
        actions.discard(OfferLetterAction.EXPIRE)
    return frozenset(actions)


def transition_offer_letter(
    letter: OfferLetter,
    action: OfferLetterAction | str,
    payload: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> OfferLetterTransition:
    """Apply one action to an offer letter.

    Args:
        letter: Current snapshot.
        action: Requested action.
        payload: Action data. ``replace`` requires ``reason`` and accepts
            ``expiry_date``, ``issue_date``, ``documents`` and ``notes`` for
            the successor.
        now: Evaluation time, defaults to the current UTC time.

    Returns:
        The new snapshot, plus the successor for ``replace``.

    Raises:
        InvalidTransitionError: The action is not allowed from the effective
            status.
        InvalidPayloadError: A required payload field is missing.
    """
    now = now or utcnow()
    payload = payload or {}
    try:
        action = OfferLetterAction(action)
    except ValueError as exc:
        raise InvalidTransitionError(f"Unknown offer letter action: {action!r}") from exc

    if action not in allowed_actions(letter, now):
        raise InvalidTransitionError(
            f"Cannot {action.value} an offer letter in status "
            f"{effective_status(letter, now).value}",
            details={"status": letter.status.value, "action": action.value},
        )

    target = TRANSITIONS[(letter.status, action)]

    if action is OfferLetterAction.REPLACE:
        return _replace(letter, payload, now)

    stamp = letter.expiry_date if target is OfferLetterStatus.EXPIRED else now
    updated = dataclasses.replace(
        letter,
        status=target,
        lifecycle=dataclasses.replace(letter.lifecycle, **{_LIFECYCLE_FIELD[target]: stamp}),
    )
    return OfferLetterTransition(letter=updated)


def _replace(letter: OfferLetter, payload: dict[str, Any], now: datetime) -> OfferLetterTransition:
    raw_reason = payload.get("reason")
    if not raw_reason:
        raise InvalidPayloadError("A replacement reason is required")
    try:
        reason = ReplacementReason(raw_reason)
    except ValueError as exc:
        raise InvalidPayloadError(f"Invalid replacement reason: {raw_reason!r}") from exc

    extra_docs = tuple(_coerce_document(doc, now) for doc in payload.get("documents", ()))
    issue_date = payload.get("issue_date") or now
    successor = OfferLetter(
        id=payload.get("new_id") or uuid4(),
        account_id=letter.account_id,
        agency_id=letter.agency_id,
        student_id=letter.student_id,
        issue_date=issue_date,
        expiry_date=payload.get("expiry_date") or letter.expiry_date,
        status=OfferLetterStatus.ISSUED,
        version=letter.version + 1,
        documents=letter.documents + extra_docs,
        lifecycle=Lifecycle(drafted_at=now, issued_at=now),
        original_offer_letter_id=letter.original_offer_letter_id or letter.id,
        tuition_fee=letter.tuition_fee,
        currency=letter.currency,
        commission_rate=letter.commission_rate,
        commission_fixed=letter.commission_fixed,
        notes=payload.get("notes", letter.notes),
    )
    predecessor = dataclasses.replace(
        letter,
        status=OfferLetterStatus.REPLACED,
        replaced_by_id=successor.id,
        replacement_reason=reason,
        lifecycle=dataclasses.replace(letter.lifecycle, replaced_at=now),
    )
    return OfferLetterTransition(letter=predecessor, successor=successor)


def _coerce_document(raw: Document | dict[str, Any], now: datetime) -> Document:
    if isinstance(raw, Document):
        return raw
    name = raw.get("name")
    url = raw.get("url")
    if not name or not url:
        raise InvalidPayloadError("Documents need both a name and a url")
    return Document(name=str(name), url=str(url), uploaded_at=now)


def append_document(
    letter: OfferLetter,
    name: str,
    url: str,
    now: datetime | None = None,
) -> OfferLetter:
    """Attach a document. Replaced and cancelled letters are sealed."""
    now = now or utcnow()
    if letter.status in SEALED_STATUSES:
        raise ImmutableEntityError(
            f"Cannot attach documents to a {letter.status.value} offer letter"
        )
    document = _coerce_document({"name": name, "url": url}, now)
    return dataclasses.replace(letter, documents=letter.documents + (document,))


def commission_amount(letter: OfferLetter) -> Decimal:
    """Commission owed on the letter: rate x tuition, else the fixed amount."""
    if letter.commission_rate and letter.tuition_fee:
        amount = letter.tuition_fee * letter.commission_rate / Decimal("100")
        return amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    return letter.commission_fixed or Decimal("0")
