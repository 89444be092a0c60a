"""Accounts package: profiles, placeholders and plan usage."""

from duofinance.accounts.service import EDITABLE_PROFILE_FIELDS, AccountService

__all__ = ["AccountService", "EDITABLE_PROFILE_FIELDS"]
