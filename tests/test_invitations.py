"""
Tests for the invitation / linking workflow.

Uses the in-memory gateway and identity provider and records outgoing
email instead of sending it.
"""

import asyncio
from collections import Counter
from datetime import timedelta
from uuid import uuid4

import pytest

from duofinance import errors
from duofinance.linking import InvitationService
from duofinance.models import (
    AccountState,
    AuditEventType,
    InvitationStatus,
    PlanType,
    SubscriptionStatus,
)
from duofinance.services.email import RecordingEmailDispatcher
from duofinance.services.storage import InMemoryGateway, StorageError


class TestSendInvitation:
    """Sending an invitation."""

    async def test_creates_pending_invitation(self, linking, alice, now):
        """A fresh invitation is pending and expires after the configured window."""
        invitation = await linking.send_invitation(alice.id, "Partner@Example.com ", now=now)

        assert invitation.status == InvitationStatus.PENDING
        assert invitation.recipient_email == "partner@example.com"
        assert invitation.expires_at == now + timedelta(days=7)

    async def test_creates_placeholder_account(self, linking, accounts, alice, now):
        """The invited email gets a placeholder profile tied to the sender."""
        await linking.send_invitation(alice.id, "partner@example.com", now=now)

        placeholder = await accounts.find_by_email("partner@example.com")
        assert placeholder is not None
        assert placeholder.account_state == AccountState.PLACEHOLDER
        assert placeholder.invited_by == alice.id
        assert placeholder.plan_type == PlanType.FREE

    async def test_placeholder_inherits_premium(self, linking, accounts, premium_alice, now):
        """A premium sender's partner starts on the premium plan."""
        await linking.send_invitation(premium_alice.id, "partner@example.com", now=now)

        placeholder = await accounts.find_by_email("partner@example.com")
        assert placeholder.plan_type == PlanType.PREMIUM
        assert placeholder.subscription_status == SubscriptionStatus.ACTIVE

    async def test_existing_account_is_reused(self, linking, accounts, alice, bob, now):
        """Inviting a registered user never recreates their profile."""
        await linking.send_invitation(alice.id, bob.email, now=now)

        profile = await accounts.find_by_email(bob.email)
        assert profile.id == bob.id
        assert profile.account_state == AccountState.ACTIVE

    async def test_sends_set_password_email(self, linking, emails, alice, now):
        """The email carries the sender and a URL-encoded set-password link."""
        await linking.send_invitation(alice.id, "partner+home@example.com", now=now)

        assert len(emails.sent) == 1
        message = emails.sent[0]
        assert message.to == "partner+home@example.com"
        assert "alice@example.com" in message.html
        assert "https://finance.example.com/auth/set-password?email=partner%2Bhome%40example.com" in message.html

    async def test_duplicate_invitation_rejected(self, linking, gateway, alice, now):
        """A second live invitation to the same email fails and adds no row."""
        await linking.send_invitation(alice.id, "partner@example.com", now=now)

        with pytest.raises(errors.DuplicateInvitation):
            await linking.send_invitation(alice.id, "partner@example.com", now=now + timedelta(hours=1))

        assert gateway.count("invitations") == 1

    async def test_expired_invitation_is_not_a_duplicate(self, linking, gateway, alice, now):
        """Once the first invitation expired, a new one can be sent."""
        await linking.send_invitation(alice.id, "partner@example.com", now=now)
        await linking.send_invitation(alice.id, "partner@example.com", now=now + timedelta(days=8))

        assert gateway.count("invitations") == 2

    async def test_self_invitation_rejected(self, linking, alice, now):
        with pytest.raises(errors.ValidationError):
            await linking.send_invitation(alice.id, "ALICE@example.com", now=now)

    async def test_malformed_email_rejected(self, linking, alice, now):
        with pytest.raises(errors.ValidationError):
            await linking.send_invitation(alice.id, "not-an-email", now=now)

    async def test_unknown_sender(self, linking, now):
        with pytest.raises(errors.NotFound):
            await linking.send_invitation(uuid4(), "partner@example.com", now=now)

    async def test_coupled_sender_cannot_invite(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        await linking.accept_invitation(invitation.id, now=now)

        with pytest.raises(errors.AlreadyCoupled):
            await linking.send_invitation(alice.id, "other@example.com", now=now)

    async def test_email_failure_does_not_fail_invitation(
        self, gateway, accounts, audit_logger, app_settings, alice, now
    ):
        """A provider outage is logged and audited; the invitation stands."""
        service = InvitationService(
            gateway, accounts, RecordingEmailDispatcher(fail=True), audit_logger, app_settings
        )

        invitation = await service.send_invitation(alice.id, "partner@example.com", now=now)

        assert await gateway.exists("invitations", {"id": str(invitation.id)})
        failures = await gateway.select(
            "audit_log", {"event_type": AuditEventType.EMAIL_FAILED.value}
        )
        assert len(failures) == 1


class TestAcceptInvitation:
    """Accepting an invitation links the couple."""

    async def test_accept_creates_couple(self, linking, accounts, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)

        couple = await linking.accept_invitation(invitation.id, now=now + timedelta(days=1))

        assert couple.includes(alice.id)
        assert couple.includes(bob.id)
        assert (await accounts.get_profile(alice.id)).couple_id == couple.id
        assert (await accounts.get_profile(bob.id)).couple_id == couple.id

        sent = await linking.list_sent_invitations(alice.id)
        assert sent[0].status == InvitationStatus.ACCEPTED
        assert sent[0].accepted_at == now + timedelta(days=1)

    async def test_second_accept_fails(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        await linking.accept_invitation(invitation.id, now=now)

        with pytest.raises(errors.AlreadyResolved):
            await linking.accept_invitation(invitation.id, now=now)

    async def test_accept_rejected_invitation(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        await linking.reject_invitation(invitation.id, now=now)

        with pytest.raises(errors.AlreadyResolved):
            await linking.accept_invitation(invitation.id, now=now)

    async def test_accept_expired_invitation(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)

        with pytest.raises(errors.Expired):
            await linking.accept_invitation(invitation.id, now=invitation.expires_at)

    async def test_accept_unknown_invitation(self, linking, now):
        with pytest.raises(errors.NotFound):
            await linking.accept_invitation(uuid4(), now=now)

    async def test_only_recipient_can_accept(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)

        with pytest.raises(errors.Forbidden):
            await linking.accept_invitation(invitation.id, now=now, caller_id=alice.id)

    async def test_profile_never_in_two_couples(self, linking, sign_up, alice, bob, now):
        """Two invitations to the same person: only the first accept wins."""
        carol = await sign_up("carol@example.com")
        from_alice = await linking.send_invitation(alice.id, carol.email, now=now)
        from_bob = await linking.send_invitation(bob.id, carol.email, now=now)

        await linking.accept_invitation(from_alice.id, now=now)
        with pytest.raises(errors.AlreadyCoupled):
            await linking.accept_invitation(from_bob.id, now=now)

        assert (await linking.get_couple_for(bob.id)) is None

    async def test_concurrent_accepts_link_once(self, linking, sign_up, alice, bob, now):
        """Racing accepts for the same recipient produce exactly one couple."""
        carol = await sign_up("carol@example.com")
        from_alice = await linking.send_invitation(alice.id, carol.email, now=now)
        from_bob = await linking.send_invitation(bob.id, carol.email, now=now)

        results = await asyncio.gather(
            linking.accept_invitation(from_alice.id, now=now),
            linking.accept_invitation(from_bob.id, now=now),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], errors.AlreadyCoupled)


class TestRejectAndCancel:
    """Rejecting and cancelling invitations."""

    async def test_reject_sets_status(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)

        rejected = await linking.reject_invitation(invitation.id, now=now + timedelta(hours=2))

        assert rejected.status == InvitationStatus.REJECTED
        assert rejected.responded_at == now + timedelta(hours=2)

    async def test_reject_expired(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)

        with pytest.raises(errors.Expired):
            await linking.reject_invitation(invitation.id, now=now + timedelta(days=30))

    async def test_cancel_deletes_row_and_placeholder(
        self, linking, accounts, identity, gateway, alice, now
    ):
        """Cancelling removes the orphaned placeholder and its identity."""
        invitation = await linking.send_invitation(alice.id, "partner@example.com", now=now)

        await linking.cancel_invitation(invitation.id, alice.id)

        assert gateway.count("invitations") == 0
        assert await accounts.find_by_email("partner@example.com") is None
        assert await identity.find_user("partner@example.com") is None

    async def test_cancel_keeps_active_account(self, linking, accounts, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)

        await linking.cancel_invitation(invitation.id, alice.id)

        assert await accounts.find_by_email(bob.email) is not None

    async def test_cancel_keeps_placeholder_with_other_invitation(
        self, linking, accounts, alice, bob, now
    ):
        """Another pending invitation still needs the placeholder."""
        first = await linking.send_invitation(alice.id, "partner@example.com", now=now)
        await linking.send_invitation(bob.id, "partner@example.com", now=now)

        await linking.cancel_invitation(first.id, alice.id)

        assert await accounts.find_by_email("partner@example.com") is not None

    async def test_only_sender_can_cancel(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, "partner@example.com", now=now)

        with pytest.raises(errors.Forbidden):
            await linking.cancel_invitation(invitation.id, bob.id)

    async def test_cannot_cancel_accepted(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        await linking.accept_invitation(invitation.id, now=now)

        with pytest.raises(errors.AlreadyResolved):
            await linking.cancel_invitation(invitation.id, alice.id)

    async def test_cancel_keeps_registered_account_without_profile(
        self, linking, accounts, identity, alice, now
    ):
        """A signed-up user with no profile yet is never treated as a placeholder."""
        user_id, _ = await identity.create_user("carol@example.com")
        await identity.set_password(user_id, "secret1")

        invitation = await linking.send_invitation(alice.id, "carol@example.com", now=now)
        profile = await accounts.find_by_email("carol@example.com")
        assert profile.id == user_id
        assert profile.account_state == AccountState.ACTIVE
        assert profile.invited_by is None

        await linking.cancel_invitation(invitation.id, alice.id)

        assert await identity.find_user("carol@example.com") == user_id
        assert await accounts.find_by_email("carol@example.com") is not None

    async def test_cancel_succeeds_when_cleanup_fails(
        self, linking, accounts, gateway, alice, now, monkeypatch
    ):
        """A storage error during cleanup is audited; the cancel still stands."""
        invitation = await linking.send_invitation(alice.id, "partner@example.com", now=now)

        async def broken_exists(table, filters):
            raise StorageError("sheet unavailable")

        monkeypatch.setattr(gateway, "exists", broken_exists)

        await linking.cancel_invitation(invitation.id, alice.id)

        assert gateway.count("invitations") == 0
        assert await accounts.find_by_email("partner@example.com") is not None
        failures = await gateway.select(
            "audit_log", {"event_type": AuditEventType.CLEANUP_FAILED.value}
        )
        assert len(failures) == 1


class TestCouples:
    """Couple queries and unlinking."""

    async def test_get_partner(self, linking, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        await linking.accept_invitation(invitation.id, now=now)

        assert (await linking.get_partner(alice.id)).id == bob.id
        assert (await linking.get_partner(bob.id)).id == alice.id

    async def test_no_partner(self, linking, alice):
        assert await linking.get_partner(alice.id) is None

    async def test_break_couple(self, linking, accounts, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        couple = await linking.accept_invitation(invitation.id, now=now)

        await linking.break_couple(couple.id, caller_id=bob.id)

        assert await linking.get_couple_for(alice.id) is None
        assert (await accounts.get_profile(alice.id)).couple_id is None
        assert (await accounts.get_profile(bob.id)).couple_id is None

    async def test_break_unknown_couple(self, linking):
        with pytest.raises(errors.NotFound):
            await linking.break_couple(uuid4())

    async def test_outsider_cannot_break_couple(self, linking, sign_up, alice, bob, now):
        carol = await sign_up("carol@example.com")
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        couple = await linking.accept_invitation(invitation.id, now=now)

        with pytest.raises(errors.Forbidden):
            await linking.break_couple(couple.id, caller_id=carol.id)

    async def test_relink_after_break(self, linking, alice, bob, now):
        first = await linking.send_invitation(alice.id, bob.email, now=now)
        couple = await linking.accept_invitation(first.id, now=now)
        await linking.break_couple(couple.id)

        second = await linking.send_invitation(bob.id, alice.email, now=now)
        relinked = await linking.accept_invitation(second.id, now=now)

        assert relinked.id != couple.id


class TestInvitationQueries:
    """Listing sent and received invitations."""

    async def test_received_lists_only_actionable(self, linking, alice, bob, now):
        live = await linking.send_invitation(alice.id, "partner@example.com", now=now)
        old = await linking.send_invitation(bob.id, "partner@example.com", now=now - timedelta(days=10))

        received = await linking.list_received_invitations("partner@example.com", now=now)

        ids = [i.id for i in received]
        assert live.id in ids
        assert old.id not in ids

    async def test_sent_newest_first(self, linking, alice, now):
        first = await linking.send_invitation(alice.id, "one@example.com", now=now)
        second = await linking.send_invitation(alice.id, "two@example.com", now=now + timedelta(minutes=5))

        sent = await linking.list_sent_invitations(alice.id)

        assert [i.id for i in sent] == [second.id, first.id]


class FlakyGateway(InMemoryGateway):
    """In-memory gateway whose next writes to chosen tables fail.

    Updates also yield to the event loop once, so concurrent operations
    interleave the way they would against a remote backend.
    """

    def __init__(self):
        super().__init__()
        self.failures = Counter()

    def fail_next(self, operation, table, times=1):
        self.failures[(operation, table)] += times

    def _maybe_fail(self, operation, table):
        if self.failures[(operation, table)] > 0:
            self.failures[(operation, table)] -= 1
            raise StorageError(f"{operation} on {table} failed")

    async def update(self, table, filters, patch):
        self._maybe_fail("update", table)
        await asyncio.sleep(0)
        return await super().update(table, filters, patch)

    async def delete(self, table, filters):
        self._maybe_fail("delete", table)
        return await super().delete(table, filters)


class TestInterruptedLinking:
    """Accepts and rejects that fail or race half-way through."""

    @pytest.fixture
    def gateway(self):
        return FlakyGateway()

    async def _status(self, gateway, invitation):
        row = await gateway.select_one("invitations", {"id": str(invitation.id)})
        return row["status"]

    async def test_failed_accept_is_rolled_back(self, linking, accounts, gateway, alice, bob, now):
        """An invitation write failure leaves no couple and a pending invitation."""
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        gateway.fail_next("update", "invitations")

        with pytest.raises(errors.GatewayUnavailable):
            await linking.accept_invitation(invitation.id, now=now)

        assert gateway.count("couples") == 0
        assert await self._status(gateway, invitation) == InvitationStatus.PENDING.value
        assert (await accounts.get_profile(alice.id)).couple_id is None
        assert (await accounts.get_profile(bob.id)).couple_id is None

        couple = await linking.accept_invitation(invitation.id, now=now)

        assert couple.includes(bob.id)
        assert gateway.count("couples") == 1

    async def test_failed_profile_write_is_rolled_back(
        self, linking, accounts, gateway, alice, bob, now
    ):
        """A profile write failure also puts the accepted invitation back."""
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        gateway.fail_next("update", "profiles")

        with pytest.raises(errors.GatewayUnavailable):
            await linking.accept_invitation(invitation.id, now=now)

        assert gateway.count("couples") == 0
        assert await self._status(gateway, invitation) == InvitationStatus.PENDING.value
        assert (await accounts.get_profile(alice.id)).couple_id is None

        couple = await linking.accept_invitation(invitation.id, now=now)
        assert (await accounts.get_profile(alice.id)).couple_id == couple.id

    async def test_retry_finishes_link_left_by_failed_rollback(
        self, linking, accounts, gateway, alice, bob, now
    ):
        """When the couple row survives the rollback, the next accept reuses it."""
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)
        gateway.fail_next("update", "invitations")
        gateway.fail_next("delete", "couples")

        with pytest.raises(errors.GatewayUnavailable):
            await linking.accept_invitation(invitation.id, now=now)

        leftover = await gateway.select("couples")
        assert len(leftover) == 1
        errors_logged = await gateway.select(
            "audit_log", {"event_type": AuditEventType.SYSTEM_ERROR.value}
        )
        assert len(errors_logged) == 1

        couple = await linking.accept_invitation(invitation.id, now=now)

        assert str(couple.id) == leftover[0]["id"]
        assert gateway.count("couples") == 1
        assert (await accounts.get_profile(alice.id)).couple_id == couple.id
        assert (await accounts.get_profile(bob.id)).couple_id == couple.id
        assert await self._status(gateway, invitation) == InvitationStatus.ACCEPTED.value

    async def test_reject_waits_for_running_accept(self, linking, gateway, alice, bob, now):
        """A reject racing an accept sees the accepted invitation and fails."""
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)

        accepted, rejected = await asyncio.gather(
            linking.accept_invitation(invitation.id, now=now),
            linking.reject_invitation(invitation.id, now=now),
            return_exceptions=True,
        )

        assert not isinstance(accepted, Exception)
        assert isinstance(rejected, errors.AlreadyResolved)
        assert await self._status(gateway, invitation) == InvitationStatus.ACCEPTED.value

    async def test_cancel_waits_for_running_accept(self, linking, gateway, alice, bob, now):
        invitation = await linking.send_invitation(alice.id, bob.email, now=now)

        accepted, cancelled = await asyncio.gather(
            linking.accept_invitation(invitation.id, now=now),
            linking.cancel_invitation(invitation.id, alice.id),
            return_exceptions=True,
        )

        assert not isinstance(accepted, Exception)
        assert isinstance(cancelled, errors.AlreadyResolved)
        assert gateway.count("invitations") == 1
