"""Capability evaluator.

Policies answer "may this caller perform this operation on this target?".
They never perform the operation. The scope check always runs first: a
caller with full capability inside its own tenant is still denied
``OUT_OF_SCOPE`` for anybody else's data.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any

from edubill import billing, offer_letters
from edubill.billing import BillingAction, BillingStatus, BillingTransaction
from edubill.errors import ErrorKind, error_for
from edubill.offer_letters import OfferLetter, OfferLetterAction
from edubill.scope import ScopeFilter, resolve_scope
from edubill.tenancy import (
    PLATFORM_ONLY_ACCOUNT_FIELDS,
    Account,
    Agency,
    Identity,
    PortalType,
    Role,
    User,
    can_manage_user,
)


class ResourceType(str, Enum):
    ACCOUNT = "account"
    ACCOUNT_BILLING = "account_billing"
    AGENCY = "agency"
    USER = "user"
    OFFER_LETTER = "offer_letter"
    BILLING_TRANSACTION = "billing_transaction"
    PAYMENT_SCHEDULE = "payment_schedule"
    BILLING_EVENT = "billing_event"


class Operation(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    MANAGE_USERS = "manage_users"
    MANAGE_SETTINGS = "manage_settings"
    TRANSITION = "transition"
    APPROVE = "approve"
    RECONCILE = "reconcile"
    GENERATE = "generate"


USER_CAPABILITIES = frozenset({Operation.VIEW})
MANAGER_CAPABILITIES = USER_CAPABILITIES | {
    Operation.CREATE,
    Operation.EDIT,
    Operation.TRANSITION,
}
ADMIN_CAPABILITIES = MANAGER_CAPABILITIES | {
    Operation.DELETE,
    Operation.MANAGE_USERS,
    Operation.MANAGE_SETTINGS,
    Operation.APPROVE,
    Operation.RECONCILE,
    Operation.GENERATE,
}
PLATFORM_CAPABILITIES = frozenset(Operation)

_STRUCTURAL_WRITES = frozenset({Operation.CREATE, Operation.EDIT, Operation.DELETE})


@dataclass(frozen=True)
class Decision:
    """Allow, or Deny with a reason."""

    allowed: bool
    reason: ErrorKind | None = None
    message: str = ""

    @classmethod
    def allow(cls) -> Decision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: ErrorKind, message: str) -> Decision:
        return cls(allowed=False, reason=reason, message=message)

    def __bool__(self) -> bool:
        return self.allowed

    def raise_for_denial(self) -> None:
        """Raise the error matching the denial reason; no-op when allowed."""
        if not self.allowed:
            raise error_for(self.reason or ErrorKind.FORBIDDEN, self.message)


def base_capabilities(identity: Identity) -> frozenset[Operation]:
    """Capability set from portal and role alone."""
    if identity.portal_type is PortalType.PLATFORM:
        return PLATFORM_CAPABILITIES
    if identity.role is Role.ADMIN:
        return ADMIN_CAPABILITIES
    if identity.role is Role.MANAGER:
        return MANAGER_CAPABILITIES
    if identity.role is Role.USER:
        return USER_CAPABILITIES
    raise ValueError(f"Unhandled role: {identity.role!r}")


def target_scope_for(entity: Any) -> ScopeFilter:
    """Where a stored entity lives in the tenant hierarchy."""
    if isinstance(entity, Account):
        return ScopeFilter(account_id=entity.id)
    if isinstance(entity, Agency):
        return ScopeFilter(account_id=entity.account_id, agency_id=entity.id)
    return ScopeFilter.of(entity)


def _resource_rule(
    identity: Identity, resource_type: ResourceType, operation: Operation
) -> Decision:
    """Resource-specific narrowing on top of the base capability set."""
    if identity.is_platform:
        return Decision.allow()

    is_account_admin = (
        identity.portal_type is PortalType.ACCOUNT and identity.role is Role.ADMIN
    )

    if resource_type is ResourceType.ACCOUNT:
        if operation is Operation.VIEW:
            return Decision.allow()
        if operation in (Operation.EDIT, Operation.MANAGE_SETTINGS) and is_account_admin:
            return Decision.allow()
        return Decision.deny(ErrorKind.FORBIDDEN, f"Only platform may {operation.value} accounts")

    if resource_type is ResourceType.ACCOUNT_BILLING:
        if operation is Operation.VIEW and is_account_admin:
            return Decision.allow()
        return Decision.deny(
            ErrorKind.FORBIDDEN, "Account billing and subscription are platform-managed"
        )

    if resource_type is ResourceType.AGENCY:
        if operation in _STRUCTURAL_WRITES and not is_account_admin:
            return Decision.deny(
                ErrorKind.FORBIDDEN, "Agencies are managed by platform or account admins"
            )
        if operation not in _STRUCTURAL_WRITES and operation is not Operation.VIEW:
            return Decision.deny(ErrorKind.FORBIDDEN, f"Cannot {operation.value} an agency")
        return Decision.allow()

    if resource_type is ResourceType.USER:
        if operation in _STRUCTURAL_WRITES and Operation.MANAGE_USERS not in base_capabilities(
            identity
        ):
            return Decision.deny(ErrorKind.FORBIDDEN, "Managing users requires an admin")
        return Decision.allow()

    if resource_type is ResourceType.OFFER_LETTER:
        if operation in (Operation.APPROVE, Operation.RECONCILE, Operation.GENERATE):
            return Decision.deny(ErrorKind.FORBIDDEN, f"Cannot {operation.value} an offer letter")
        return Decision.allow()

    if resource_type is ResourceType.BILLING_TRANSACTION:
        if operation is Operation.GENERATE:
            return Decision.deny(
                ErrorKind.FORBIDDEN, "Transactions are generated from payment schedules"
            )
        return Decision.allow()

    if resource_type is ResourceType.PAYMENT_SCHEDULE:
        if operation in (Operation.APPROVE, Operation.RECONCILE):
            return Decision.deny(
                ErrorKind.FORBIDDEN, f"Cannot {operation.value} a payment schedule"
            )
        return Decision.allow()

    if resource_type is ResourceType.BILLING_EVENT:
        if operation is not Operation.VIEW:
            return Decision.deny(ErrorKind.FORBIDDEN, "Billing history is read-only")
        return Decision.allow()

    raise ValueError(f"Unhandled resource type: {resource_type!r}")


def authorize(
    identity: Identity,
    resource_type: ResourceType | str,
    operation: Operation | str,
    target_scope: ScopeFilter,
) -> Decision:
    """Decide whether ``identity`` may perform ``operation`` on a target.

    Args:
        identity: Caller.
        resource_type: Kind of resource addressed.
        operation: Requested operation.
        target_scope: Account/agency the target lives in (for creates, the
            intended owner).

    Returns:
        ``Decision.allow()`` or a denial carrying ``OUT_OF_SCOPE`` or
        ``FORBIDDEN``.
    """
    resource_type = ResourceType(resource_type)
    operation = Operation(operation)

    if not resolve_scope(identity).permits(target_scope):
        return Decision.deny(ErrorKind.OUT_OF_SCOPE, f"{resource_type.value} not found")

    if operation not in base_capabilities(identity):
        return Decision.deny(
            ErrorKind.FORBIDDEN,
            f"Role {identity.role.value} cannot {operation.value} {resource_type.value}",
        )

    return _resource_rule(identity, resource_type, operation)


def authorize_account_update(
    identity: Identity, account: Account, fields: Iterable[str]
) -> Decision:
    """Field-level check for account edits."""
    decision = authorize(identity, ResourceType.ACCOUNT, Operation.EDIT, target_scope_for(account))
    if not decision or identity.is_platform:
        return decision
    restricted = sorted(set(fields) & PLATFORM_ONLY_ACCOUNT_FIELDS)
    if restricted:
        return Decision.deny(
            ErrorKind.FORBIDDEN, f"Only platform may change account fields: {restricted}"
        )
    return decision


def authorize_user_management(
    identity: Identity, target: User, operation: Operation | str = Operation.EDIT
) -> Decision:
    """Scope, admin capability and role hierarchy for acting on another user."""
    decision = authorize(identity, ResourceType.USER, operation, target_scope_for(target))
    if not decision or Operation(operation) is Operation.VIEW:
        return decision
    if not can_manage_user(identity, target):
        return Decision.deny(ErrorKind.FORBIDDEN, "Cannot manage a user of equal or higher role")
    return decision


def authorize_offer_letter_action(
    identity: Identity,
    letter: OfferLetter,
    action: OfferLetterAction | str,
    now: datetime,
) -> Decision:
    """Authorization plus the state machine's view of the current status."""
    decision = authorize(
        identity, ResourceType.OFFER_LETTER, Operation.TRANSITION, target_scope_for(letter)
    )
    if not decision:
        return decision
    try:
        action = OfferLetterAction(action)
    except ValueError:
        return Decision.deny(
            ErrorKind.INVALID_TRANSITION, f"Unknown offer letter action: {action!r}"
        )
    if action not in offer_letters.allowed_actions(letter, now):
        status = offer_letters.effective_status(letter, now)
        return Decision.deny(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot {action.value} an offer letter in status {status.value}",
        )
    return decision


_BILLING_OPERATION: dict[BillingAction, Operation] = {
    BillingAction.APPROVE: Operation.APPROVE,
    BillingAction.RECONCILE: Operation.RECONCILE,
}


def authorize_billing_action(
    identity: Identity,
    entity: BillingTransaction,
    action: BillingAction | str,
) -> Decision:
    """Authorization plus the state machine's view of the current status."""
    try:
        action = BillingAction(action)
    except ValueError:
        # Scope is checked before the action name.
        decision = authorize(
            identity,
            ResourceType.BILLING_TRANSACTION,
            Operation.TRANSITION,
            target_scope_for(entity),
        )
        if not decision:
            return decision
        return Decision.deny(ErrorKind.INVALID_TRANSITION, f"Unknown billing action: {action!r}")
    operation = _BILLING_OPERATION.get(action, Operation.TRANSITION)
    decision = authorize(
        identity, ResourceType.BILLING_TRANSACTION, operation, target_scope_for(entity)
    )
    if not decision:
        return decision
    if entity.status is BillingStatus.RECONCILED:
        return Decision.deny(
            ErrorKind.IMMUTABLE_ENTITY, "Reconciled billing transactions are immutable"
        )
    if action not in billing.allowed_actions(entity):
        return Decision.deny(
            ErrorKind.INVALID_TRANSITION,
            f"Cannot {action.value} a billing transaction in status {entity.status.value}",
        )
    return decision
