"""
HTML email templates.

Three layouts: the partner invitation, the bill-reminder wrapper and the
admin-notification wrapper. Every interpolated value is HTML-escaped.
"""

from decimal import Decimal
from html import escape
from urllib.parse import quote

from duofinance.models.finance import DueStatus, Reminder


INVITATION_SUBJECT = "You've been invited to FinanceApp!"
REMINDER_SUBJECT = "FinanceApp - bill reminder"

_STYLE = """
    body { font-family: Arial, sans-serif; line-height: 1.6; color: #333; }
    .container { max-width: 600px; margin: 0 auto; padding: 20px; }
    .header { background: linear-gradient(135deg, #3b82f6, #8b5cf6); color: white; padding: 30px; text-align: center; border-radius: 10px 10px 0 0; }
    .content { background: white; padding: 30px; border: 1px solid #e5e7eb; }
    .footer { background: #f9fafb; padding: 20px; text-align: center; border-radius: 0 0 10px 10px; border: 1px solid #e5e7eb; border-top: none; }
    .button { display: inline-block; background: #3b82f6; color: white; padding: 12px 24px; text-decoration: none; border-radius: 6px; margin: 20px 0; }
"""


def build_set_password_link(base_url: str, email: str) -> str:
    """Password-setup link keyed by the recipient's email."""
    return f"{base_url}?email={quote(email, safe='')}"


def render_invitation_email(
    sender_name: str,
    sender_email: str,
    set_password_link: str,
) -> tuple[str, str]:
    """Return (subject, html) for a partner invitation."""
    html = f"""
<div style="font-family: Arial, sans-serif; max-width: 480px; margin: 0 auto;">
  <h2>You've been invited to FinanceApp!</h2>
  <p>Hello,</p>
  <p><b>{escape(sender_name)}</b> ({escape(sender_email)}) invited you to share
  your household finances on <b>FinanceApp</b>.</p>
  <p>To get started, set your password:</p>
  <p style="text-align: center; margin: 32px 0;">
    <a href="{escape(set_password_link)}" style="background: #2563eb; color: #fff; padding: 12px 32px; border-radius: 6px; text-decoration: none; font-size: 18px;">Set password</a>
  </p>
  <p>If you already have an account, just sign in as usual.</p>
  <hr style="margin: 32px 0;" />
  <p style="font-size: 13px; color: #888;">If you don't recognize this invitation, ignore this email.</p>
</div>
"""
    return INVITATION_SUBJECT, html


def _wrap(title: str, tagline: str, content: str, footer: str) -> str:
    return f"""<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
  <title>{escape(title)}</title>
  <style>{_STYLE}</style>
</head>
<body>
  <div class="container">
    <div class="header">
      <h1>FinanceApp</h1>
      <p>{escape(tagline)}</p>
    </div>
    <div class="content">
      {content}
    </div>
    <div class="footer">
      {footer}
    </div>
  </div>
</body>
</html>
"""


def wrap_expense_due(content: str) -> str:
    """Layout for bill reminders. ``content`` is trusted HTML."""
    return _wrap(
        "FinanceApp - Bill reminder",
        "Bill reminder",
        content,
        "<p>This is an automatic email from FinanceApp.</p>"
        "<p>You can change your notification preferences in the app settings.</p>",
    )


def wrap_admin_notification(content: str, app_url: str) -> str:
    """Layout for admin broadcasts, with a call-to-action back to the app."""
    button = f'<a href="{escape(app_url)}" class="button">Open FinanceApp</a>'
    return _wrap(
        "FinanceApp - Notification",
        "Important notification",
        content + button,
        "<p>This is an official FinanceApp notification.</p>",
    )


def format_amount(amount: Decimal) -> str:
    return f"{amount:,.2f}"


def render_reminder_content(reminders: list[Reminder]) -> str:
    """Bulleted reminder body: overdue items first, then upcoming."""
    lines = []
    for reminder in sorted(reminders, key=lambda r: r.days):
        description = escape(reminder.description)
        amount = format_amount(reminder.amount)
        if reminder.status == DueStatus.OVERDUE:
            lines.append(
                f"<li><b>{description}</b> is {abs(reminder.days)} day(s) overdue. Amount: {amount}</li>"
            )
        else:
            lines.append(
                f"<li><b>{description}</b> is due in {reminder.days} day(s). Amount: {amount}</li>"
            )
    return "<ul>" + "".join(lines) + "</ul>"
