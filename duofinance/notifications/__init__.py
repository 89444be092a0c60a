"""Notifications package: bill reminders and admin broadcasts."""

from duofinance.notifications.admin import AdminNotificationService
from duofinance.notifications.reminders import BillReminder, NotificationSettingsStore

__all__ = ["AdminNotificationService", "BillReminder", "NotificationSettingsStore"]
