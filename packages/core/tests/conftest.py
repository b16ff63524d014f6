"""Pytest configuration and fixtures."""

import os
from datetime import UTC, datetime
from decimal import Decimal
from uuid import uuid4

import pytest

# Set test environment variables before importing settings
os.environ.setdefault("LOG_LEVEL", "DEBUG")
os.environ.setdefault("LOG_FORMAT", "console")

from edubill.config import Settings  # noqa: E402
from edubill.ports import FixedClock, StaticIdentityProvider  # noqa: E402
from edubill.service import BillingService  # noqa: E402
from edubill.store import InMemoryEntityStore  # noqa: E402
from edubill.tenancy import Account, Agency, Identity, Role  # noqa: E402

NOW = datetime(2025, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    """Clock frozen at a fixed instant."""
    return FixedClock(NOW)


@pytest.fixture
def account():
    return Account(name="Northbridge Education")


@pytest.fixture
def other_account():
    return Account(name="Harbour Study Abroad")


@pytest.fixture
def agency(account):
    return Agency(
        account_id=account.id,
        name="Lagos Pathways",
        commission_split_percent=Decimal("40"),
    )


@pytest.fixture
def other_agency(other_account):
    return Agency(account_id=other_account.id, name="Manila Gateways")


@pytest.fixture
def platform_admin():
    return Identity.platform(user_id=uuid4())


@pytest.fixture
def account_admin(account):
    return Identity.account(account.id, Role.ADMIN, user_id=uuid4())


@pytest.fixture
def account_manager(account):
    return Identity.account(account.id, Role.MANAGER, user_id=uuid4())


@pytest.fixture
def account_user(account):
    return Identity.account(account.id, Role.USER, user_id=uuid4())


@pytest.fixture
def agency_admin(account, agency):
    return Identity.agency(account.id, agency.id, Role.ADMIN, user_id=uuid4())


@pytest.fixture
def agency_user(account, agency):
    return Identity.agency(account.id, agency.id, Role.USER, user_id=uuid4())


@pytest.fixture
def store(account, other_account, agency, other_agency):
    """Store seeded with two accounts, each owning one agency."""
    store = InMemoryEntityStore()
    store.insert("account", account.id, account)
    store.insert("account", other_account.id, other_account)
    store.insert("agency", agency.id, agency)
    store.insert("agency", other_agency.id, other_agency)
    return store


@pytest.fixture
def identity_provider(account_admin):
    """Identity provider that tests can switch between callers."""
    return StaticIdentityProvider(account_admin)


@pytest.fixture
def settings():
    return Settings(
        LOG_LEVEL="INFO",
        UPCOMING_WINDOW_DAYS=30,
        OFFER_LETTER_VALIDITY_MONTHS=6,
        TRANSITION_MAX_RETRIES=3,
        DEFAULT_CURRENCY="USD",
    )


@pytest.fixture
def service(store, identity_provider, clock, settings):
    return BillingService(store, identity_provider, clock=clock, settings=settings)
