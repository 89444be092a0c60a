"""
Identity Provider

The hosted auth service owns credentials. This package needs it to create
a user for an email without sending the provider's own invite mail, look
a user up by email, set a password, tell whether a password was ever set,
and delete a user that was never activated.

``create_user`` is idempotent: creating an email that already exists
returns the existing user id instead of failing.
"""

import hashlib
import hmac
import os
from abc import ABC, abstractmethod
from typing import Optional
from uuid import UUID, uuid4

from duofinance.models.finance import normalize_email


class IdentityError(Exception):
    """Base exception for identity provider operations."""
    pass


class UnknownUserError(IdentityError):
    """No user is registered for this email or id."""
    pass


class IdentityProviderInterface(ABC):
    """Abstract interface for the hosted identity service."""

    @abstractmethod
    async def create_user(self, email: str) -> tuple[UUID, bool]:
        """
        Create a user for ``email`` or return the existing one.

        Returns:
            (user_id, created) - created is False when the user already existed
        """
        pass

    @abstractmethod
    async def find_user(self, email: str) -> Optional[UUID]:
        """Return the user id registered for ``email``, or None."""
        pass

    @abstractmethod
    async def set_password(self, user_id: UUID, password: str) -> None:
        """
        Set or replace the user's password.

        Raises:
            UnknownUserError: If the user does not exist
        """
        pass

    @abstractmethod
    async def delete_user(self, user_id: UUID) -> bool:
        """Delete a user. Returns False if it did not exist."""
        pass

    @abstractmethod
    async def has_password(self, user_id: UUID) -> bool:
        """True once a password has been set for the user."""
        pass


class InMemoryIdentityProvider(IdentityProviderInterface):
    """
    Process-local identity store.

    Passwords are kept as salted PBKDF2 hashes so the store can double as a
    development login backend.
    """

    ITERATIONS = 100_000

    def __init__(self):
        self._ids_by_email: dict[str, UUID] = {}
        self._passwords: dict[UUID, tuple[bytes, bytes]] = {}

    def _hash(self, password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, self.ITERATIONS)

    async def create_user(self, email: str) -> tuple[UUID, bool]:
        email = normalize_email(email)
        if email in self._ids_by_email:
            return self._ids_by_email[email], False
        user_id = uuid4()
        self._ids_by_email[email] = user_id
        return user_id, True

    async def find_user(self, email: str) -> Optional[UUID]:
        return self._ids_by_email.get(normalize_email(email))

    async def set_password(self, user_id: UUID, password: str) -> None:
        if user_id not in self._ids_by_email.values():
            raise UnknownUserError(f"Unknown user: {user_id}")
        salt = os.urandom(16)
        self._passwords[user_id] = (salt, self._hash(password, salt))

    async def delete_user(self, user_id: UUID) -> bool:
        for email, existing in list(self._ids_by_email.items()):
            if existing == user_id:
                del self._ids_by_email[email]
                self._passwords.pop(user_id, None)
                return True
        return False

    async def has_password(self, user_id: UUID) -> bool:
        return user_id in self._passwords

    def verify_password(self, user_id: UUID, password: str) -> bool:
        stored = self._passwords.get(user_id)
        if stored is None:
            return False
        salt, digest = stored
        return hmac.compare_digest(digest, self._hash(password, salt))
