"""Tenant hierarchy model: Platform -> Account -> Agency -> User.

The types here are pure data carrying containment invariants. Validation
happens once, at construction time, so every downstream reader can rely on
the portal/tenant combination being coherent.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from edubill.errors import InvalidHierarchyError, InvalidPayloadError


class PortalType(str, Enum):
    """Tenant tier a caller signs in through."""

    PLATFORM = "platform"
    ACCOUNT = "account"
    AGENCY = "agency"


class Role(str, Enum):
    """Role inside a portal."""

    ADMIN = "admin"
    MANAGER = "manager"
    USER = "user"


ROLE_RANK: dict[Role, int] = {
    Role.ADMIN: 3,
    Role.MANAGER: 2,
    Role.USER: 1,
}


def _check_portal_ids(
    portal_type: PortalType, account_id: UUID | None, agency_id: UUID | None
) -> None:
    if portal_type is PortalType.ACCOUNT and account_id is None:
        raise InvalidHierarchyError("Account portal requires an account_id")
    if portal_type is PortalType.AGENCY and (account_id is None or agency_id is None):
        raise InvalidHierarchyError("Agency portal requires both account_id and agency_id")


@dataclass(frozen=True)
class Identity:
    """Caller context threaded explicitly into every core call."""

    portal_type: PortalType
    role: Role
    account_id: UUID | None = None
    agency_id: UUID | None = None
    user_id: UUID | None = None

    def __post_init__(self) -> None:
        _check_portal_ids(self.portal_type, self.account_id, self.agency_id)

    @classmethod
    def platform(cls, role: Role = Role.ADMIN, user_id: UUID | None = None) -> Identity:
        return cls(PortalType.PLATFORM, role, user_id=user_id)

    @classmethod
    def account(
        cls, account_id: UUID, role: Role = Role.ADMIN, user_id: UUID | None = None
    ) -> Identity:
        return cls(PortalType.ACCOUNT, role, account_id=account_id, user_id=user_id)

    @classmethod
    def agency(
        cls,
        account_id: UUID,
        agency_id: UUID,
        role: Role = Role.ADMIN,
        user_id: UUID | None = None,
    ) -> Identity:
        return cls(
            PortalType.AGENCY,
            role,
            account_id=account_id,
            agency_id=agency_id,
            user_id=user_id,
        )

    @property
    def is_platform(self) -> bool:
        return self.portal_type is PortalType.PLATFORM

    @property
    def actor(self) -> str:
        """Stable label used for claimed_by / approved_by audit fields."""
        return str(self.user_id) if self.user_id else f"{self.portal_type.value}:{self.role.value}"


# =============================================================================
# ACCOUNT
# =============================================================================


class SubscriptionPlan(str, Enum):
    TRIAL = "trial"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class AccountBillingStatus(str, Enum):
    CURRENT = "current"
    OVERDUE = "overdue"
    SUSPENDED = "suspended"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ContactInfo:
    email: str = ""
    phone: str = ""
    address: str = ""


@dataclass(frozen=True)
class Subscription:
    plan: SubscriptionPlan = SubscriptionPlan.TRIAL
    status: SubscriptionStatus = SubscriptionStatus.TRIAL
    max_users: int = 5
    max_agencies: int = 1
    trial_end_date: datetime | None = None
    auto_renew: bool = True


@dataclass(frozen=True)
class BillingProfile:
    cycle: BillingCycle = BillingCycle.MONTHLY
    status: AccountBillingStatus = AccountBillingStatus.CURRENT
    next_billing_date: datetime | None = None
    outstanding_balance: Decimal = Decimal("0")


@dataclass(frozen=True)
class AccountSettings:
    timezone: str = "UTC"
    currency: str = "USD"


# Fields an Account-portal admin may edit on its own account.
SELF_SERVICE_ACCOUNT_FIELDS = frozenset({"name", "contact", "settings"})
# Fields only a Platform caller may touch.
PLATFORM_ONLY_ACCOUNT_FIELDS = frozenset({"subscription", "billing", "is_active"})
# Nested groups; updates merge into them field by field.
_ACCOUNT_GROUPS = ("contact", "subscription", "billing", "settings")


@dataclass(frozen=True)
class Account:
    """Tenant root."""

    name: str
    id: UUID = field(default_factory=uuid4)
    contact: ContactInfo = field(default_factory=ContactInfo)
    subscription: Subscription = field(default_factory=Subscription)
    billing: BillingProfile = field(default_factory=BillingProfile)
    settings: AccountSettings = field(default_factory=AccountSettings)
    is_active: bool = True

    def __post_init__(self) -> None:
        if not self.name or not self.name.strip():
            raise InvalidPayloadError("Account name is required")


def update_account(account: Account, changes: dict[str, Any]) -> Account:
    """Apply a field-level change set to an account.

    Callers must have been authorized for the field set beforehand; see
    ``capabilities.authorize_account_update``.
    """
    unknown = set(changes) - SELF_SERVICE_ACCOUNT_FIELDS - PLATFORM_ONLY_ACCOUNT_FIELDS
    if unknown:
        raise InvalidPayloadError(f"Unknown account fields: {sorted(unknown)}")
    merged = dict(changes)
    for group in _ACCOUNT_GROUPS:
        if group in merged:
            merged[group] = _merge_group(group, getattr(account, group), merged[group])
    return dataclasses.replace(account, **merged)


def _merge_group(group: str, current: Any, value: Any) -> Any:
    """Merge a partial mapping into one of the account's nested groups."""
    if isinstance(value, type(current)):
        return value
    if not isinstance(value, dict):
        raise InvalidPayloadError(f"Account {group} must be a mapping")
    known = {f.name for f in dataclasses.fields(current)}
    unknown = set(value) - known
    if unknown:
        raise InvalidPayloadError(f"Unknown account {group} fields: {sorted(unknown)}")

    coerced: dict[str, Any] = {}
    for key, item in value.items():
        existing = getattr(current, key)
        try:
            if isinstance(existing, Enum) and item is not None:
                item = type(existing)(item)
            elif isinstance(existing, Decimal) and item is not None:
                item = Decimal(str(item))
        except (ValueError, ArithmeticError) as exc:
            raise InvalidPayloadError(f"Invalid account {group}.{key}: {item!r}") from exc
        coerced[key] = item
    return dataclasses.replace(current, **coerced)


def deactivate_account(account: Account) -> Account:
    """Soft delete."""
    return dataclasses.replace(account, is_active=False)


# =============================================================================
# AGENCY / USER
# =============================================================================


@dataclass(frozen=True)
class Agency:
    """Partner agency, owned by exactly one account."""

    account_id: UUID
    name: str
    id: UUID = field(default_factory=uuid4)
    commission_split_percent: Decimal = Decimal("0")
    is_active: bool = True

    def __post_init__(self) -> None:
        if self.account_id is None:
            raise InvalidHierarchyError("Agency requires an account_id")
        if not Decimal("0") <= self.commission_split_percent <= Decimal("100"):
            raise InvalidPayloadError("commission_split_percent must be between 0 and 100")


def update_agency(agency: Agency, changes: dict[str, Any]) -> Agency:
    """Edit an agency. The owning account is fixed at creation."""
    if "account_id" in changes and changes["account_id"] != agency.account_id:
        raise InvalidHierarchyError("Agency account_id is immutable")
    if "id" in changes:
        raise InvalidPayloadError("Agency id is immutable")
    unknown = set(changes) - {f.name for f in dataclasses.fields(Agency)}
    if unknown:
        raise InvalidPayloadError(f"Unknown agency fields: {sorted(unknown)}")
    merged = dict(changes)
    if "commission_split_percent" in merged:
        try:
            merged["commission_split_percent"] = Decimal(str(merged["commission_split_percent"]))
        except ArithmeticError as exc:
            raise InvalidPayloadError("commission_split_percent must be a number") from exc
    return dataclasses.replace(agency, **merged)


def deactivate_agency(agency: Agency) -> Agency:
    """Soft delete; records already billed to the agency keep pointing at it."""
    return dataclasses.replace(agency, is_active=False)


def ensure_agency_in_account(agency: Agency | None, account_id: UUID) -> None:
    """Reject an entity whose agency belongs to another account."""
    if agency is not None and agency.account_id != account_id:
        raise InvalidHierarchyError(
            "Agency must belong to the same account",
            details={"agency_id": str(agency.id), "account_id": str(account_id)},
        )


@dataclass(frozen=True)
class User:
    """A person who signs in through one portal."""

    email: str
    portal_type: PortalType
    role: Role
    id: UUID = field(default_factory=uuid4)
    account_id: UUID | None = None
    agency_id: UUID | None = None
    is_active: bool = True

    def __post_init__(self) -> None:
        _check_portal_ids(self.portal_type, self.account_id, self.agency_id)

    def identity(self) -> Identity:
        return Identity(
            portal_type=self.portal_type,
            role=self.role,
            account_id=self.account_id,
            agency_id=self.agency_id,
            user_id=self.id,
        )


def can_manage_user(actor: Identity, target: User) -> bool:
    """Whether ``actor`` may create, edit or delete ``target``.

    Platform callers manage anyone. Everyone else must share the target's
    tenant and strictly outrank it.
    """
    if actor.is_platform:
        return True
    if target.account_id != actor.account_id:
        return False
    if actor.portal_type is PortalType.AGENCY and target.agency_id != actor.agency_id:
        return False
    return ROLE_RANK[actor.role] > ROLE_RANK[target.role]

