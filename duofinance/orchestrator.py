"""
Component wiring for duofinance.

This module builds every service with its collaborators:
1. Persistence gateway (in-memory or Google Sheets)
2. Identity provider, email dispatcher, local key-value store
3. Accounts, ledger, linking and notification services sharing one audit logger

DESIGN DECISION: Every collaborator can be injected. Production callers
pass nothing and get the configured backends; tests pass in-memory fakes.
A backend that fails to configure falls back to a local one with a warning
instead of preventing startup.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import structlog

from duofinance.accounts import AccountService
from duofinance.audit import AuditLogger, configure_logging
from duofinance.billing import LedgerService
from duofinance.config import AppSettings, get_settings
from duofinance.linking import InvitationService
from duofinance.notifications import (
    AdminNotificationService,
    BillReminder,
    NotificationSettingsStore,
)
from duofinance.services.email import EmailDispatcherInterface, ResendEmailDispatcher
from duofinance.services.identity import IdentityProviderInterface, InMemoryIdentityProvider
from duofinance.services.kv import (
    InMemoryKeyValueStore,
    JsonFileKeyValueStore,
    KeyValueStoreInterface,
)
from duofinance.services.storage import (
    GatewayInterface,
    GoogleSheetsClient,
    GoogleSheetsGateway,
    InMemoryGateway,
)


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything an application shell needs, wired together."""

    settings: AppSettings
    gateway: GatewayInterface
    identity: IdentityProviderInterface
    email_dispatcher: Optional[EmailDispatcherInterface]
    kv: KeyValueStoreInterface
    audit_logger: AuditLogger
    accounts: AccountService
    ledger: LedgerService
    linking: InvitationService
    notification_settings: NotificationSettingsStore
    reminders: BillReminder
    admin_notifications: AdminNotificationService


def _build_gateway(settings: AppSettings) -> GatewayInterface:
    if settings.storage_backend != "google_sheets":
        return InMemoryGateway()
    try:
        return GoogleSheetsGateway(GoogleSheetsClient())
    except Exception as e:
        # Storage not configured - continue with process-local tables
        logger.warning("storage_not_configured", backend="google_sheets", error=str(e))
        return InMemoryGateway()


def _build_email_dispatcher() -> Optional[EmailDispatcherInterface]:
    try:
        return ResendEmailDispatcher()
    except Exception as e:
        logger.warning("email_not_configured", error=str(e))
        return None


def _build_kv(settings: AppSettings) -> KeyValueStoreInterface:
    if settings.local_store_path:
        return JsonFileKeyValueStore(settings.local_store_path)
    return InMemoryKeyValueStore()


def create_app_components(
    gateway: Optional[GatewayInterface] = None,
    identity: Optional[IdentityProviderInterface] = None,
    email_dispatcher: Optional[EmailDispatcherInterface] = None,
    kv: Optional[KeyValueStoreInterface] = None,
    settings: Optional[AppSettings] = None,
    use_email: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        gateway: Persistence backend. Defaults to ``storage_backend``.
        identity: Identity provider. Defaults to the in-memory provider.
        email_dispatcher: Email backend. Defaults to Resend when configured.
        kv: Device-local store. Defaults to ``local_store_path`` or memory.
        settings: Application settings. Defaults to the environment.
        use_email: Set to False to run without sending any email.

    Returns:
        AppComponents
    """
    settings = settings or get_settings().app
    if settings.debug_mode:
        configure_logging(logging.DEBUG)

    gateway = gateway or _build_gateway(settings)
    identity = identity or InMemoryIdentityProvider()
    if email_dispatcher is None and use_email:
        email_dispatcher = _build_email_dispatcher()
    kv = kv or _build_kv(settings)

    audit_logger = AuditLogger(gateway)
    accounts = AccountService(gateway, identity, audit_logger, settings)
    notification_settings = NotificationSettingsStore(kv, settings.default_notification_days)

    components = AppComponents(
        settings=settings,
        gateway=gateway,
        identity=identity,
        email_dispatcher=email_dispatcher,
        kv=kv,
        audit_logger=audit_logger,
        accounts=accounts,
        ledger=LedgerService(gateway, accounts, audit_logger),
        linking=InvitationService(gateway, accounts, email_dispatcher, audit_logger, settings),
        notification_settings=notification_settings,
        reminders=BillReminder(kv, notification_settings, email_dispatcher, audit_logger),
        admin_notifications=AdminNotificationService(
            gateway, accounts, kv, email_dispatcher, audit_logger, settings
        ),
    )
    logger.info(
        "components_created",
        environment=settings.app_environment,
        gateway=type(gateway).__name__,
        email=type(email_dispatcher).__name__ if email_dispatcher else None,
    )
    return components
