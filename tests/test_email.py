"""
Tests for the email dispatcher and templates.

The Resend API is never contacted: the requests session is a mock.
"""

import threading
from datetime import date
from decimal import Decimal
from unittest.mock import MagicMock
from uuid import uuid4

import pytest
import requests

from duofinance.config import EmailSettings
from duofinance.models import DueStatus, Reminder
from duofinance.services.email import (
    EmailDispatchError,
    ResendEmailDispatcher,
    build_set_password_link,
    render_invitation_email,
    render_reminder_content,
    wrap_admin_notification,
    wrap_expense_due,
)


@pytest.fixture
def email_settings():
    return EmailSettings(api_key="re_test_key", from_address="FinanceApp <app@example.com>")


def response(status_code, text=""):
    mock = MagicMock()
    mock.status_code = status_code
    mock.text = text
    return mock


class TestResendEmailDispatcher:
    """HTTP dispatch through a mocked session."""

    async def test_posts_message(self, email_settings):
        session = MagicMock()
        session.post.return_value = response(200)
        dispatcher = ResendEmailDispatcher(email_settings, session)

        assert await dispatcher.send_email("bob@example.com", "Hello", "<p>Hi</p>")

        args, kwargs = session.post.call_args
        assert args[0] == "https://api.resend.com/emails"
        assert kwargs["json"] == {
            "from": "FinanceApp <app@example.com>",
            "to": "bob@example.com",
            "subject": "Hello",
            "html": "<p>Hi</p>",
        }
        assert kwargs["headers"]["Authorization"] == "Bearer re_test_key"
        assert kwargs["timeout"] == email_settings.timeout_seconds

    async def test_provider_rejection(self, email_settings):
        session = MagicMock()
        session.post.return_value = response(422, "invalid recipient")
        dispatcher = ResendEmailDispatcher(email_settings, session)

        with pytest.raises(EmailDispatchError, match="422"):
            await dispatcher.send_email("bad", "Hello", "<p>Hi</p>")

    async def test_timeout_is_not_retried(self, email_settings):
        session = MagicMock()
        session.post.side_effect = requests.Timeout("slow")
        dispatcher = ResendEmailDispatcher(email_settings, session)

        with pytest.raises(EmailDispatchError):
            await dispatcher.send_email("bob@example.com", "Hello", "<p>Hi</p>")

        assert session.post.call_count == 1

    async def test_post_runs_off_the_event_loop(self, email_settings):
        """The blocking HTTP call happens in a worker thread."""
        threads = []

        def post(*args, **kwargs):
            threads.append(threading.current_thread())
            return response(200)

        session = MagicMock()
        session.post.side_effect = post
        dispatcher = ResendEmailDispatcher(email_settings, session)

        await dispatcher.send_email("bob@example.com", "Hello", "<p>Hi</p>")

        assert len(threads) == 1
        assert threads[0] is not threading.main_thread()


class TestTemplates:
    """HTML templates."""

    def test_set_password_link_encodes_email(self):
        link = build_set_password_link("https://app.test/auth/set-password", "a+b@example.com")
        assert link == "https://app.test/auth/set-password?email=a%2Bb%40example.com"

    def test_invitation_escapes_sender(self):
        subject, html = render_invitation_email(
            "<script>", "alice@example.com", "https://app.test/auth/set-password?email=x"
        )

        assert subject == "You've been invited to FinanceApp!"
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "https://app.test/auth/set-password?email=x" in html

    def test_expense_due_wrapper(self):
        html = wrap_expense_due("<ul><li>Rent</li></ul>")
        assert "<ul><li>Rent</li></ul>" in html
        assert "Bill reminder" in html

    def test_admin_wrapper_links_app(self):
        html = wrap_admin_notification("<p>News</p>", "https://app.test")
        assert 'href="https://app.test"' in html

    def test_reminder_content_orders_overdue_first(self):
        reminders = [
            Reminder(
                recurring_id=uuid4(), status=DueStatus.UPCOMING, days=2,
                description="Internet", amount=Decimal("99.90"), due_date=date(2024, 3, 12),
            ),
            Reminder(
                recurring_id=uuid4(), status=DueStatus.OVERDUE, days=-3,
                description="Rent", amount=Decimal("1200.00"), due_date=date(2024, 3, 7),
            ),
        ]

        html = render_reminder_content(reminders)

        assert html.index("Rent") < html.index("Internet")
        assert "3 day(s) overdue. Amount: 1,200.00" in html
        assert "due in 2 day(s)" in html
