"""Linking package: partner invitations and couples."""

from duofinance.linking.service import InvitationService

__all__ = ["InvitationService"]
