"""Edubill - multi-tenant billing core for education agencies."""

__version__ = "0.1.0"

from edubill.billing import (
    BillingAction,
    BillingStatus,
    BillingTransaction,
    create_billing_transaction,
    transition_billing_transaction,
)
from edubill.capabilities import Decision, Operation, ResourceType, authorize
from edubill.config import configure_logging, get_settings
from edubill.errors import EdubillError, ErrorKind
from edubill.offer_letters import (
    OfferLetter,
    OfferLetterAction,
    OfferLetterStatus,
    transition_offer_letter,
)
from edubill.ports import FixedClock, StaticIdentityProvider, SystemClock
from edubill.schedules import Frequency, PaymentScheduleTemplate, generate_due
from edubill.scope import ScopeFilter, resolve_scope
from edubill.service import BillingService
from edubill.store import InMemoryEntityStore
from edubill.tenancy import Account, Agency, Identity, PortalType, Role, User

__all__ = [
    # Version
    "__version__",
    # Tenancy & scope
    "Account",
    "Agency",
    "User",
    "Identity",
    "PortalType",
    "Role",
    "ScopeFilter",
    "resolve_scope",
    # Capabilities
    "Decision",
    "Operation",
    "ResourceType",
    "authorize",
    # State machines
    "OfferLetter",
    "OfferLetterAction",
    "OfferLetterStatus",
    "transition_offer_letter",
    "BillingTransaction",
    "BillingAction",
    "BillingStatus",
    "create_billing_transaction",
    "transition_billing_transaction",
    # Schedules
    "Frequency",
    "PaymentScheduleTemplate",
    "generate_due",
    # Hosting
    "BillingService",
    "InMemoryEntityStore",
    "SystemClock",
    "FixedClock",
    "StaticIdentityProvider",
    # Errors
    "EdubillError",
    "ErrorKind",
    # Config
    "get_settings",
    "configure_logging",
]
