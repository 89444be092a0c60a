"""
Bill reminders.

Turns the recurring items of a household into reminder entries for the
notification badge and, when the user opted in, a reminder email.
Reminders already shown on this device are remembered in the local
key-value store so the badge only counts new ones.
"""

import json
from datetime import date, datetime
from typing import Iterable, Optional, Union

import pydantic
import structlog

from duofinance.audit import AuditLogger
from duofinance.billing.calculator import days_until_due
from duofinance.models import (
    DueStatus,
    NotificationSettings,
    PersonTag,
    RecurringExpense,
    Reminder,
    SummaryView,
)
from duofinance.services.email import (
    EmailDispatcherInterface,
    render_reminder_content,
    wrap_expense_due,
)
from duofinance.services.email.templates import REMINDER_SUBJECT
from duofinance.services.kv import KeyValueStoreInterface


logger = structlog.get_logger(__name__)

SETTINGS_KEY = "notificationSettings"
SHOWN_KEY = "shownNotifications"


class NotificationSettingsStore:
    """Reminder preferences persisted as JSON in the key-value store."""

    def __init__(self, kv: KeyValueStoreInterface, default_days_before_due: int = 3):
        self._kv = kv
        self._default_days = default_days_before_due

    def defaults(self) -> NotificationSettings:
        return NotificationSettings(days_before_due=self._default_days)

    def load(self) -> NotificationSettings:
        raw = self._kv.get(SETTINGS_KEY)
        if raw is None:
            return self.defaults()
        try:
            return NotificationSettings.model_validate_json(raw)
        except pydantic.ValidationError as e:
            logger.warning("notification_settings_invalid", error=str(e))
            self._kv.delete(SETTINGS_KEY)
            return self.defaults()

    def save(self, settings: NotificationSettings) -> NotificationSettings:
        self._kv.set(SETTINGS_KEY, settings.model_dump_json())
        return settings


class BillReminder:
    """
    Overdue and upcoming bill reminders.

    Usage:
        reminder = BillReminder(kv, settings_store)
        fresh = reminder.pending_reminders(items, now)
        reminder.mark_shown(r.key for r in fresh)
    """

    def __init__(
        self,
        kv: KeyValueStoreInterface,
        settings_store: NotificationSettingsStore,
        email_dispatcher: Optional[EmailDispatcherInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._kv = kv
        self._settings_store = settings_store
        self._email = email_dispatcher
        self._audit_logger = audit_logger

    def _shown(self) -> set[str]:
        raw = self._kv.get(SHOWN_KEY)
        if not raw:
            return set()
        try:
            return set(json.loads(raw))
        except (ValueError, TypeError):
            logger.warning("shown_notifications_invalid")
            return set()

    def reminders_for(
        self,
        items: Iterable[RecurringExpense],
        now: Union[date, datetime],
        days_before_due: int,
        view: SummaryView = SummaryView.COUPLE,
        current_person: Optional[PersonTag] = None,
    ) -> list[Reminder]:
        """
        Reminders for active items, overdue first.

        An item due today is not yet a reminder; upcoming means due within
        ``days_before_due`` days, starting tomorrow.
        """
        reminders = []
        for item in items:
            if not item.is_active:
                continue
            if view == SummaryView.INDIVIDUAL and item.person not in (current_person, PersonTag.SHARED):
                continue

            days = days_until_due(item, now)
            if days < 0:
                status = DueStatus.OVERDUE
            elif 0 < days <= days_before_due:
                status = DueStatus.UPCOMING
            else:
                continue

            reminders.append(Reminder(
                recurring_id=item.id,
                status=status,
                days=days,
                description=item.description,
                amount=item.amount,
                due_date=item.next_due_date,
            ))
        return sorted(reminders, key=lambda r: r.days)

    def pending_reminders(
        self,
        items: Iterable[RecurringExpense],
        now: Union[date, datetime],
        view: SummaryView = SummaryView.COUPLE,
        current_person: Optional[PersonTag] = None,
    ) -> list[Reminder]:
        """Reminders not shown yet. Empty when notifications are disabled."""
        settings = self._settings_store.load()
        if not settings.enabled:
            return []
        shown = self._shown()
        return [
            r for r in self.reminders_for(items, now, settings.days_before_due, view, current_person)
            if r.key not in shown
        ]

    def badge_count(
        self,
        items: Iterable[RecurringExpense],
        now: Union[date, datetime],
        view: SummaryView = SummaryView.COUPLE,
        current_person: Optional[PersonTag] = None,
    ) -> int:
        return len(self.pending_reminders(items, now, view, current_person))

    def mark_shown(self, keys: Iterable[str]) -> None:
        shown = self._shown() | set(keys)
        self._kv.set(SHOWN_KEY, json.dumps(sorted(shown)))

    async def send_reminder_email(
        self,
        to: str,
        items: Iterable[RecurringExpense],
        now: Union[date, datetime],
    ) -> bool:
        """
        Email every current reminder to ``to`` if the user opted in.

        Returns True if an email was sent. Failures are logged, never raised.
        """
        settings = self._settings_store.load()
        if not (settings.enabled and settings.email_notifications) or self._email is None:
            return False

        reminders = self.reminders_for(items, now, settings.days_before_due)
        if not reminders:
            return False

        html = wrap_expense_due(render_reminder_content(reminders))
        try:
            await self._email.send_email(to, REMINDER_SUBJECT, html)
        except Exception as e:
            logger.warning("reminder_email_failed", recipient=to, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_email_failed(to, "expense_due", str(e))
            return False

        logger.info("reminder_email_sent", recipient=to, reminders=len(reminders))
        return True
