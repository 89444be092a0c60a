"""
Admin broadcast notifications.

Admins post short messages targeted at all users, free users or premium
users. Each device remembers which messages it dismissed.
"""

import json
from html import escape
from typing import Optional
from uuid import UUID

import structlog

from duofinance import errors
from duofinance.accounts import AccountService
from duofinance.audit import AuditLogger
from duofinance.config import AppSettings, get_settings
from duofinance.guards import build, gateway_call
from duofinance.models import (
    AdminNotification,
    AuditEventBuilder,
    AuditEventType,
    NotificationTarget,
    Profile,
)
from duofinance.services.email import EmailDispatcherInterface, wrap_admin_notification
from duofinance.services.kv import KeyValueStoreInterface
from duofinance.services.storage import GatewayInterface


logger = structlog.get_logger(__name__)

NOTIFICATIONS = "notifications"
DISMISSED_KEY = "dismissedNotifications"


class AdminNotificationService:
    """Create, list and dismiss admin notifications."""

    def __init__(
        self,
        gateway: GatewayInterface,
        accounts: AccountService,
        kv: KeyValueStoreInterface,
        email_dispatcher: Optional[EmailDispatcherInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._gateway = gateway
        self._accounts = accounts
        self._kv = kv
        self._email = email_dispatcher
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app

    async def _require_admin(self, caller_id: UUID) -> Profile:
        caller = await self._accounts.get_profile(caller_id)
        if not caller.is_admin:
            raise errors.Forbidden("Admin access required", entity_id=str(caller_id))
        return caller

    async def _load(self, notification_id: UUID) -> AdminNotification:
        with gateway_call("load notification"):
            row = await self._gateway.select_one(NOTIFICATIONS, {"id": str(notification_id)})
        if row is None:
            raise errors.NotFound(
                f"Notification {notification_id} not found", entity_id=str(notification_id)
            )
        return AdminNotification.from_row(row)

    async def create(
        self,
        caller_id: UUID,
        title: str,
        message: str,
        target_users: NotificationTarget = NotificationTarget.ALL,
        send_email: bool = False,
    ) -> AdminNotification:
        """
        Publish a notification.

        With ``send_email`` every targeted profile is also emailed; failed
        emails are logged and skipped.
        """
        await self._require_admin(caller_id)
        notification = build(
            AdminNotification,
            title=title,
            message=message,
            target_users=target_users,
            created_by=caller_id,
        )
        with gateway_call("insert notification"):
            await self._gateway.insert(NOTIFICATIONS, notification.to_row())

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.ledger_change(
                event_type=AuditEventType.ADMIN_NOTIFICATION_CREATED,
                entity_type="notification",
                entity_id=notification.id,
                actor_id=caller_id,
                description=f"Notification published: {notification.title}",
            ))

        if send_email:
            await self._email_targets(notification)
        return notification

    async def _email_targets(self, notification: AdminNotification) -> int:
        if self._email is None:
            return 0

        content = f"<h2>{escape(notification.title)}</h2><p>{escape(notification.message)}</p>"
        html = wrap_admin_notification(content, self._settings.app_url)
        sent = 0
        for profile in await self._accounts.list_profiles():
            if profile.is_placeholder or not notification.targets(profile):
                continue
            try:
                await self._email.send_email(profile.email, notification.title, html)
                sent += 1
            except Exception as e:
                logger.warning(
                    "admin_notification_email_failed",
                    recipient=profile.email,
                    error=str(e),
                )
                if self._audit_logger:
                    await self._audit_logger.log_email_failed(
                        profile.email, "admin_notification", str(e)
                    )
        logger.info("admin_notification_emailed", notification_id=str(notification.id), sent=sent)
        return sent

    async def toggle(self, notification_id: UUID, caller_id: UUID) -> AdminNotification:
        await self._require_admin(caller_id)
        notification = await self._load(notification_id)
        updated = notification.model_copy(update={"is_active": not notification.is_active})
        with gateway_call("update notification"):
            await self._gateway.update(
                NOTIFICATIONS, {"id": str(notification_id)}, {"is_active": updated.is_active}
            )
        return updated

    async def delete(self, notification_id: UUID, caller_id: UUID) -> None:
        await self._require_admin(caller_id)
        with gateway_call("delete notification"):
            deleted = await self._gateway.delete(NOTIFICATIONS, {"id": str(notification_id)})
        if not deleted:
            raise errors.NotFound(
                f"Notification {notification_id} not found", entity_id=str(notification_id)
            )

    async def list_all(self, caller_id: UUID) -> list[AdminNotification]:
        """Every notification, newest first (admin panel)."""
        await self._require_admin(caller_id)
        with gateway_call("list notifications"):
            rows = await self._gateway.select(NOTIFICATIONS, order_by="-created_at")
        return [AdminNotification.from_row(row) for row in rows]

    async def active_for(self, profile: Profile) -> list[AdminNotification]:
        """Active notifications whose audience includes the profile, newest first."""
        with gateway_call("list notifications"):
            rows = await self._gateway.select(
                NOTIFICATIONS, {"is_active": True}, order_by="-created_at"
            )
        notifications = [AdminNotification.from_row(row) for row in rows]
        return [n for n in notifications if n.targets(profile)]

    def _dismissed(self) -> set[str]:
        raw = self._kv.get(DISMISSED_KEY)
        if not raw:
            return set()
        try:
            return set(json.loads(raw))
        except (ValueError, TypeError):
            logger.warning("dismissed_notifications_invalid")
            return set()

    async def unread_for(self, profile: Profile) -> list[AdminNotification]:
        dismissed = self._dismissed()
        return [n for n in await self.active_for(profile) if str(n.id) not in dismissed]

    def dismiss(self, notification_id: UUID) -> None:
        dismissed = self._dismissed() | {str(notification_id)}
        self._kv.set(DISMISSED_KEY, json.dumps(sorted(dismissed)))
