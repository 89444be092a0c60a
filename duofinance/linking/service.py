"""
Invitation / Linking Service

Pairs two profiles into a couple through an email invitation.

State machine of an invitation:
    pending -> accepted   (creates the couple)
    pending -> rejected
    pending -> cancelled  (row deleted, orphaned placeholder cleaned up)
    pending -> expired    (derived from expires_at, never stored)

CRITICAL: A profile belongs to at most one couple. Every write that
resolves an invitation or a couple runs under one lock, and accept
re-checks both parties inside it, so two concurrent accepts can never
link the same profile twice and a reject or cancel can never overwrite
an accept. An accept that fails halfway puts back what it wrote.

DESIGN DECISION: Sending the invitation email is best-effort. The
invitation row is the source of truth; a failed email is logged and
audited, and the sender can resend by cancelling and inviting again.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from duofinance import errors
from duofinance.accounts import AccountService
from duofinance.audit import AuditLogger, create_correlation_id
from duofinance.config import AppSettings, get_settings
from duofinance.guards import build, gateway_call
from duofinance.models import (
    AuditEventBuilder,
    Couple,
    Invitation,
    InvitationStatus,
    Profile,
    normalize_email,
    utcnow,
)
from duofinance.services.email import (
    EmailDispatcherInterface,
    build_set_password_link,
    render_invitation_email,
)
from duofinance.services.storage import GatewayInterface, StorageError


logger = structlog.get_logger(__name__)

INVITATIONS = "invitations"
COUPLES = "couples"
PROFILES = "profiles"


class InvitationService:
    """
    Invitations and couples.

    Usage:
        linking = InvitationService(gateway, accounts, email_dispatcher)
        invitation = await linking.send_invitation(sender_id, "partner@example.com")
        couple = await linking.accept_invitation(invitation.id)
    """

    def __init__(
        self,
        gateway: GatewayInterface,
        accounts: AccountService,
        email_dispatcher: Optional[EmailDispatcherInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._gateway = gateway
        self._accounts = accounts
        self._email = email_dispatcher
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app
        self._couple_lock = asyncio.Lock()

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _load_invitation(self, invitation_id: UUID) -> Invitation:
        with gateway_call("load invitation"):
            row = await self._gateway.select_one(INVITATIONS, {"id": str(invitation_id)})
        if row is None:
            raise errors.NotFound(
                f"Invitation {invitation_id} not found", entity_id=str(invitation_id)
            )
        return Invitation.from_row(row)

    def _ensure_actionable(self, invitation: Invitation, now: datetime) -> None:
        if invitation.status != InvitationStatus.PENDING:
            raise errors.AlreadyResolved(
                f"Invitation is already {invitation.status.value}",
                entity_id=str(invitation.id),
            )
        if invitation.is_expired(now):
            raise errors.Expired(
                f"Invitation expired at {invitation.expires_at.isoformat()}",
                entity_id=str(invitation.id),
            )

    async def _set_invitation_status(
        self,
        invitation: Invitation,
        status: InvitationStatus,
        now: datetime,
    ) -> Invitation:
        patch = {"status": status, "responded_at": now}
        if status == InvitationStatus.ACCEPTED:
            patch["accepted_at"] = now
        updated = invitation.model_copy(update=patch)
        with gateway_call("update invitation"):
            await self._gateway.update(INVITATIONS, {"id": str(invitation.id)}, updated.to_row())
        return updated

    async def _couple_rows_for(self, profile_id: UUID) -> list[Couple]:
        rows = []
        with gateway_call("load couple"):
            for column in ("user1_id", "user2_id"):
                rows.extend(await self._gateway.select(COUPLES, {column: str(profile_id)}))
        return [Couple.from_row(row) for row in rows]

    async def _is_coupled(self, profile: Profile) -> bool:
        return profile.couple_id is not None or bool(await self._couple_rows_for(profile.id))

    async def _unfinished_couple(self, sender: Profile, recipient: Profile) -> Optional[Couple]:
        """
        A couple row for exactly this pair whose accept never completed.

        Left behind when an accept failed and its rollback failed too; the
        next accept of the pending invitation finishes the link.
        """
        for couple in await self._couple_rows_for(sender.id):
            if not couple.includes(recipient.id):
                continue
            if sender.couple_id == couple.id and recipient.couple_id == couple.id:
                return None
            return couple
        return None

    async def _undo_accept(
        self,
        couple: Couple,
        invitation: Invitation,
        parties: tuple[Profile, Profile],
        cause: Exception,
        correlation_id: UUID,
    ) -> None:
        """
        Put back the rows an accept wrote before it failed.

        Every step is attempted; a step that fails is logged and audited.
        """
        logger.warning(
            "accept_failed",
            invitation_id=str(invitation.id),
            error=str(cause),
            correlation_id=str(correlation_id),
        )
        steps = [
            (f"restore profile {party.id}", PROFILES, party.to_row())
            for party in parties
        ]
        steps.append(("restore invitation", INVITATIONS, invitation.to_row()))
        steps.append(("delete couple", COUPLES, None))

        for step, table, row in steps:
            try:
                if row is None:
                    await self._gateway.delete(table, {"id": str(couple.id)})
                else:
                    await self._gateway.update(table, {"id": row["id"]}, row)
            except StorageError as e:
                logger.error(
                    "accept_rollback_failed",
                    step=step,
                    error=str(e),
                    correlation_id=str(correlation_id),
                )
                if self._audit_logger:
                    await self._audit_logger.log_error(
                        "accept_rollback_failed",
                        str(e),
                        details={"step": step, "invitation_id": str(invitation.id)},
                        correlation_id=correlation_id,
                    )

    async def _send_invitation_email(
        self,
        sender: Profile,
        recipient_email: str,
        correlation_id: UUID,
    ) -> bool:
        if self._email is None:
            return False

        link = build_set_password_link(self._settings.set_password_url, recipient_email)
        subject, html = render_invitation_email(sender.display_name, sender.email, link)
        try:
            await self._email.send_email(recipient_email, subject, html)
        except Exception as e:
            logger.warning(
                "invitation_email_failed",
                recipient=recipient_email,
                error=str(e),
                correlation_id=str(correlation_id),
            )
            if self._audit_logger:
                await self._audit_logger.log_email_failed(
                    recipient_email, "invitation", str(e), correlation_id
                )
            return False
        return True

    # =========================================================================
    # INVITATIONS
    # =========================================================================

    async def send_invitation(
        self,
        sender_id: UUID,
        recipient_email: str,
        now: Optional[datetime] = None,
    ) -> Invitation:
        """
        Invite a partner by email.

        Creates the partner's placeholder account if needed, stores a
        pending invitation and emails the password-setup link.

        Raises:
            NotFound: Unknown sender
            ValidationError: Malformed email or self-invitation
            AlreadyCoupled: The sender already has a partner
            DuplicateInvitation: A live invitation to this email already exists
        """
        now = now or utcnow()
        correlation_id = create_correlation_id()

        try:
            email = normalize_email(recipient_email)
        except ValueError as e:
            raise errors.ValidationError(str(e)) from e

        sender = await self._accounts.get_profile(sender_id)
        if email == sender.email:
            raise errors.ValidationError("You cannot invite yourself", entity_id=str(sender_id))
        if await self._is_coupled(sender):
            raise errors.AlreadyCoupled(
                "You are already linked to a partner", entity_id=str(sender_id)
            )

        with gateway_call("check duplicate invitation"):
            rows = await self._gateway.select(INVITATIONS, {
                "sender_id": str(sender_id),
                "recipient_email": email,
                "status": InvitationStatus.PENDING.value,
            })
        for row in rows:
            existing = Invitation.from_row(row)
            if existing.is_actionable(now):
                raise errors.DuplicateInvitation(
                    f"An invitation to {email} is already pending",
                    entity_id=str(existing.id),
                )

        await self._accounts.ensure_placeholder(email, sender, correlation_id)

        invitation = Invitation.create(
            sender_id, email, self._settings.invitation_expiry_days, now
        )
        with gateway_call("insert invitation"):
            await self._gateway.insert(INVITATIONS, invitation.to_row())

        logger.info(
            "invitation_sent",
            invitation_id=str(invitation.id),
            sender_id=str(sender_id),
            correlation_id=str(correlation_id),
        )
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.invitation_sent(
                invitation.id, sender_id, email, correlation_id
            ))

        await self._send_invitation_email(sender, email, correlation_id)
        return invitation

    async def accept_invitation(
        self,
        invitation_id: UUID,
        now: Optional[datetime] = None,
        caller_id: Optional[UUID] = None,
    ) -> Couple:
        """
        Accept a pending invitation and link both profiles.

        When ``caller_id`` is given it must be the invited profile.

        Raises:
            NotFound: Unknown invitation, or the recipient has no profile
            AlreadyResolved: The invitation is no longer pending
            Expired: The invitation is past its expiry
            AlreadyCoupled: Either party already has a partner
            Forbidden: The caller is not the recipient
        """
        now = now or utcnow()
        correlation_id = create_correlation_id()

        async with self._couple_lock:
            invitation = await self._load_invitation(invitation_id)
            self._ensure_actionable(invitation, now)

            recipient = await self._accounts.find_by_email(invitation.recipient_email)
            if recipient is None:
                raise errors.NotFound(
                    f"No profile for {invitation.recipient_email}",
                    entity_id=str(invitation_id),
                )
            if caller_id is not None and caller_id != recipient.id:
                raise errors.Forbidden(
                    "Only the invited profile can accept", entity_id=str(invitation_id)
                )
            sender = await self._accounts.get_profile(invitation.sender_id)

            couple = await self._unfinished_couple(sender, recipient)
            if couple is None:
                for party in (sender, recipient):
                    if await self._is_coupled(party):
                        raise errors.AlreadyCoupled(
                            f"{party.email} is already linked to a partner",
                            entity_id=str(party.id),
                        )
                couple = build(Couple, user1_id=sender.id, user2_id=recipient.id, created_at=now)
                with gateway_call("insert couple"):
                    await self._gateway.insert(COUPLES, couple.to_row())
            else:
                logger.info(
                    "accept_resumed",
                    invitation_id=str(invitation_id),
                    couple_id=str(couple.id),
                )

            try:
                await self._set_invitation_status(invitation, InvitationStatus.ACCEPTED, now)
                for party in (sender, recipient):
                    await self._accounts.save_profile(
                        party.model_copy(update={"couple_id": couple.id})
                    )
            except Exception as e:
                await self._undo_accept(couple, invitation, (sender, recipient), e, correlation_id)
                raise

        logger.info(
            "invitation_accepted",
            invitation_id=str(invitation_id),
            couple_id=str(couple.id),
        )
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.invitation_resolved(
                invitation_id, "accepted", recipient.id, correlation_id
            ))
            await self._audit_logger.log(AuditEventBuilder.couple_created(
                couple.id, sender.id, recipient.id, correlation_id
            ))
        return couple

    async def reject_invitation(
        self,
        invitation_id: UUID,
        now: Optional[datetime] = None,
    ) -> Invitation:
        """
        Decline a pending invitation.

        Raises:
            NotFound, AlreadyResolved, Expired
        """
        now = now or utcnow()
        async with self._couple_lock:
            invitation = await self._load_invitation(invitation_id)
            self._ensure_actionable(invitation, now)
            updated = await self._set_invitation_status(
                invitation, InvitationStatus.REJECTED, now
            )

        logger.info("invitation_rejected", invitation_id=str(invitation_id))
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.invitation_resolved(invitation_id, "rejected")
            )
        return updated

    async def cancel_invitation(self, invitation_id: UUID, caller_id: UUID) -> None:
        """
        Withdraw a pending invitation (sender only).

        The row is deleted and the recipient's placeholder account is removed
        when nothing else refers to it.

        Raises:
            NotFound, Forbidden, AlreadyResolved
        """
        correlation_id = create_correlation_id()
        async with self._couple_lock:
            invitation = await self._load_invitation(invitation_id)
            if invitation.sender_id != caller_id:
                raise errors.Forbidden(
                    "Only the sender can cancel an invitation", entity_id=str(invitation_id)
                )
            if invitation.status != InvitationStatus.PENDING:
                raise errors.AlreadyResolved(
                    f"Invitation is already {invitation.status.value}",
                    entity_id=str(invitation_id),
                )

            with gateway_call("delete invitation"):
                await self._gateway.delete(INVITATIONS, {"id": str(invitation_id)})

        logger.info("invitation_cancelled", invitation_id=str(invitation_id))
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.invitation_resolved(
                invitation_id, "cancelled", caller_id, correlation_id
            ))

        await self._accounts.cleanup_orphaned_account(invitation.recipient_email, correlation_id)

    async def list_sent_invitations(self, sender_id: UUID) -> list[Invitation]:
        """Every invitation the profile sent, newest first."""
        with gateway_call("list sent invitations"):
            rows = await self._gateway.select(
                INVITATIONS, {"sender_id": str(sender_id)}, order_by="-created_at"
            )
        return [Invitation.from_row(row) for row in rows]

    async def list_received_invitations(
        self,
        email: str,
        now: Optional[datetime] = None,
    ) -> list[Invitation]:
        """Pending, unexpired invitations addressed to ``email``."""
        now = now or utcnow()
        try:
            email = normalize_email(email)
        except ValueError as e:
            raise errors.ValidationError(str(e)) from e

        with gateway_call("list received invitations"):
            rows = await self._gateway.select(
                INVITATIONS,
                {"recipient_email": email, "status": InvitationStatus.PENDING.value},
                order_by="-created_at",
            )
        invitations = [Invitation.from_row(row) for row in rows]
        return [i for i in invitations if i.is_actionable(now)]

    # =========================================================================
    # COUPLES
    # =========================================================================

    async def get_couple_for(self, profile_id: UUID) -> Optional[Couple]:
        couples = await self._couple_rows_for(profile_id)
        return couples[0] if couples else None

    async def get_partner(self, profile_id: UUID) -> Optional[Profile]:
        couple = await self.get_couple_for(profile_id)
        if couple is None:
            return None
        return await self._accounts.find_profile(couple.partner_of(profile_id))

    async def break_couple(self, couple_id: UUID, caller_id: Optional[UUID] = None) -> None:
        """
        Unlink a couple.

        Both profiles are left without a partner. Rows that were shared stay
        with the profile that owns them.

        Raises:
            NotFound: Unknown couple
            Forbidden: The caller is not a member
        """
        async with self._couple_lock:
            with gateway_call("load couple"):
                row = await self._gateway.select_one(COUPLES, {"id": str(couple_id)})
            if row is None:
                raise errors.NotFound(f"Couple {couple_id} not found", entity_id=str(couple_id))
            couple = Couple.from_row(row)
            if caller_id is not None and not couple.includes(caller_id):
                raise errors.Forbidden(
                    "Only a member can break the couple", entity_id=str(couple_id)
                )

            with gateway_call("delete couple"):
                await self._gateway.delete(COUPLES, {"id": str(couple_id)})
            for member_id in couple.members:
                member = await self._accounts.find_profile(member_id)
                if member is not None and member.couple_id == couple_id:
                    await self._accounts.save_profile(member.model_copy(update={"couple_id": None}))

        logger.info("couple_broken", couple_id=str(couple_id))
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.couple_broken(
                couple_id, couple.user1_id, couple.user2_id
            ))
