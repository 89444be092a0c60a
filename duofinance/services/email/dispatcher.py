"""
Email Dispatch Service

Outgoing mail (partner invitations, bill reminders, admin broadcasts) is
sent through the Resend HTTP API.

CRITICAL: Email is fire-and-forget from the caller's point of view.
The dispatcher raises EmailDispatchError on failure, and every caller
catches it, logs it and carries on. A failed email never rolls back the
invitation or reminder that triggered it.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import requests
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from duofinance.config import EmailSettings, get_settings
from duofinance.models.finance import utcnow


class EmailDispatchError(Exception):
    """The email could not be handed to the provider."""
    pass


class EmailDispatcherInterface(ABC):
    """Abstract interface for sending a single HTML email."""

    @abstractmethod
    async def send_email(self, to: str, subject: str, html: str) -> bool:
        """
        Send one email.

        Returns:
            True if the provider accepted the message

        Raises:
            EmailDispatchError: If the message could not be sent
        """
        pass


class ResendEmailDispatcher(EmailDispatcherInterface):
    """
    Resend API implementation (POST {api_url} with a bearer key).

    The blocking HTTP call and its retry back-off run in a worker thread.
    """

    def __init__(
        self,
        settings: Optional[EmailSettings] = None,
        session: Optional[requests.Session] = None,
    ):
        self._settings = settings or get_settings().email
        self._session = session or requests.Session()

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(requests.ConnectionError),
        reraise=True,
    )
    def _post(self, payload: dict) -> requests.Response:
        return self._session.post(
            self._settings.api_url,
            json=payload,
            headers={
                "Authorization": f"Bearer {self._settings.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self._settings.timeout_seconds,
        )

    async def send_email(self, to: str, subject: str, html: str) -> bool:
        payload = {
            "from": self._settings.from_address,
            "to": to,
            "subject": subject,
            "html": html,
        }
        try:
            response = await asyncio.to_thread(self._post, payload)
        except requests.RequestException as e:
            raise EmailDispatchError(f"Email provider unreachable: {e}")

        if response.status_code >= 400:
            raise EmailDispatchError(
                f"Email provider rejected message ({response.status_code}): {response.text[:200]}"
            )
        return True


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str
    sent_at: datetime = field(default_factory=utcnow)


class RecordingEmailDispatcher(EmailDispatcherInterface):
    """
    Keeps messages in memory instead of sending them.

    Used in development and tests. Set ``fail`` to simulate a provider outage.
    """

    def __init__(self, fail: bool = False):
        self.sent: list[SentEmail] = []
        self.fail = fail

    async def send_email(self, to: str, subject: str, html: str) -> bool:
        if self.fail:
            raise EmailDispatchError("Simulated email provider failure")
        self.sent.append(SentEmail(to=to, subject=subject, html=html))
        return True
