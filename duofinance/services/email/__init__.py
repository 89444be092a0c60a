"""Email dispatch package."""

from duofinance.services.email.dispatcher import (
    EmailDispatchError,
    EmailDispatcherInterface,
    RecordingEmailDispatcher,
    ResendEmailDispatcher,
    SentEmail,
)
from duofinance.services.email.templates import (
    build_set_password_link,
    render_invitation_email,
    render_reminder_content,
    wrap_admin_notification,
    wrap_expense_due,
)

__all__ = [
    "EmailDispatchError",
    "EmailDispatcherInterface",
    "RecordingEmailDispatcher",
    "ResendEmailDispatcher",
    "SentEmail",
    "build_set_password_link",
    "render_invitation_email",
    "render_reminder_content",
    "wrap_admin_notification",
    "wrap_expense_due",
]
