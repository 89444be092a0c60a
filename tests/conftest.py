"""
Shared fixtures.

Every collaborator is an in-memory fake: no network, no Google Sheets,
no real email.
"""

from datetime import datetime

import pytest

from duofinance.accounts import AccountService
from duofinance.audit import AuditLogger
from duofinance.billing import LedgerService
from duofinance.config import AppSettings
from duofinance.linking import InvitationService
from duofinance.models import PlanType, SubscriptionStatus
from duofinance.services.email import RecordingEmailDispatcher
from duofinance.services.identity import InMemoryIdentityProvider
from duofinance.services.kv import InMemoryKeyValueStore
from duofinance.services.storage import InMemoryGateway


NOW = datetime(2024, 3, 10, 12, 0, 0)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def app_settings():
    return AppSettings(
        app_url="https://finance.example.com",
        admin_emails="admin@example.com",
        invitation_expiry_days=7,
        free_monthly_transaction_limit=5,
    )


@pytest.fixture
def gateway():
    return InMemoryGateway()


@pytest.fixture
def identity():
    return InMemoryIdentityProvider()


@pytest.fixture
def emails():
    return RecordingEmailDispatcher()


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def audit_logger(gateway):
    return AuditLogger(gateway)


@pytest.fixture
def accounts(gateway, identity, audit_logger, app_settings):
    return AccountService(gateway, identity, audit_logger, app_settings)


@pytest.fixture
def ledger(gateway, accounts, audit_logger):
    return LedgerService(gateway, accounts, audit_logger)


@pytest.fixture
def linking(gateway, accounts, emails, audit_logger, app_settings):
    return InvitationService(gateway, accounts, emails, audit_logger, app_settings)


@pytest.fixture
def sign_up(accounts, identity):
    """Register an identity and bootstrap its profile, like a first sign-in."""
    async def _sign_up(email):
        user_id, _ = await identity.create_user(email)
        return await accounts.ensure_profile(user_id, email)
    return _sign_up


@pytest.fixture
async def alice(sign_up):
    return await sign_up("alice@example.com")


@pytest.fixture
async def bob(sign_up):
    return await sign_up("bob@example.com")


@pytest.fixture
async def premium_alice(accounts, alice):
    return await accounts.change_plan(alice.id, PlanType.PREMIUM, SubscriptionStatus.ACTIVE)
