"""
Account Service

Profile bootstrap, the placeholder -> active transition and free-plan
usage limits.

DESIGN DECISION: A partner who is invited before they have an account gets
a placeholder profile straight away, keyed by the identity provider's user
id. The placeholder is what lets the invitation, the couple and the
partner's shared rows point at a real profile before the partner has ever
signed in. Setting a password through the invitation link activates it.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from duofinance import errors
from duofinance.audit import AuditLogger
from duofinance.config import AppSettings, get_settings
from duofinance.guards import build, gateway_call, rebuild
from duofinance.models import (
    AccountState,
    AuditEventBuilder,
    AuditEventType,
    InvitationStatus,
    PlanStats,
    PlanType,
    Profile,
    SubscriptionStatus,
    normalize_email,
    utcnow,
)
from duofinance.services.identity import IdentityProviderInterface
from duofinance.services.storage import DuplicateError, GatewayInterface


logger = structlog.get_logger(__name__)

PROFILES = "profiles"

EDITABLE_PROFILE_FIELDS = frozenset({"full_name", "gender"})


def _validated_email(email: str) -> str:
    try:
        return normalize_email(email)
    except ValueError as e:
        raise errors.ValidationError(str(e)) from e


def _same_month(a: datetime, b: datetime) -> bool:
    return (a.year, a.month) == (b.year, b.month)


class AccountService:
    """
    Owns the profiles table.

    Usage:
        accounts = AccountService(gateway, identity)
        profile = await accounts.ensure_profile(user_id, "ana@example.com")
        if await accounts.check_transaction_limit(profile.id):
            ...
    """

    def __init__(
        self,
        gateway: GatewayInterface,
        identity: IdentityProviderInterface,
        audit_logger: Optional[AuditLogger] = None,
        settings: Optional[AppSettings] = None,
    ):
        self._gateway = gateway
        self._identity = identity
        self._audit_logger = audit_logger
        self._settings = settings or get_settings().app

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def find_profile(self, profile_id: UUID) -> Optional[Profile]:
        with gateway_call("load profile"):
            row = await self._gateway.select_one(PROFILES, {"id": str(profile_id)})
        return Profile.from_row(row) if row else None

    async def get_profile(self, profile_id: UUID) -> Profile:
        """Load a profile or raise NotFound."""
        profile = await self.find_profile(profile_id)
        if profile is None:
            raise errors.NotFound(f"Profile {profile_id} not found", entity_id=str(profile_id))
        return profile

    async def find_by_email(self, email: str) -> Optional[Profile]:
        email = _validated_email(email)
        with gateway_call("load profile by email"):
            row = await self._gateway.select_one(PROFILES, {"email": email})
        return Profile.from_row(row) if row else None

    async def save_profile(self, profile: Profile) -> Profile:
        """Write every column of an existing profile."""
        profile = profile.model_copy(update={"updated_at": utcnow()})
        with gateway_call("update profile"):
            updated = await self._gateway.update(
                PROFILES, {"id": str(profile.id)}, profile.to_row()
            )
        if not updated:
            raise errors.NotFound(f"Profile {profile.id} not found", entity_id=str(profile.id))
        return profile

    # =========================================================================
    # BOOTSTRAP
    # =========================================================================

    async def ensure_profile(self, user_id: UUID, email: str) -> Profile:
        """
        Fetch the profile of a signed-in user, creating it on first sign-in.

        Emails listed in ``admin_emails`` are created as premium admins.
        """
        existing = await self.find_profile(user_id)
        if existing:
            return existing

        email = _validated_email(email)
        is_admin = email in self._settings.admin_emails_list
        profile = build(
            Profile,
            id=user_id,
            email=email,
            is_admin=is_admin,
            plan_type=PlanType.PREMIUM if is_admin else PlanType.FREE,
            subscription_status=(
                SubscriptionStatus.ACTIVE if is_admin else SubscriptionStatus.INACTIVE
            ),
        )
        with gateway_call("create profile"):
            await self._gateway.insert(PROFILES, profile.to_row())

        logger.info("profile_created", profile_id=str(user_id), is_admin=is_admin)
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.ledger_change(
                event_type=AuditEventType.PROFILE_CREATED,
                entity_type="profile",
                entity_id=user_id,
                actor_id=user_id,
                description=f"Profile created for {email}",
            ))
        return profile

    async def ensure_placeholder(
        self,
        email: str,
        inviter: Profile,
        correlation_id: Optional[UUID] = None,
    ) -> tuple[Profile, bool]:
        """
        Make sure an account exists for an invited email.

        An existing profile is returned untouched. A new placeholder inherits
        the inviter's premium plan, otherwise it starts on the free plan.

        An identity user that already has a password but no profile (signed
        up, never signed in) is a real account: it gets an ordinary active
        profile, never a placeholder.

        Returns:
            (profile, created) - created is True only for a new placeholder
        """
        email = _validated_email(email)
        existing = await self.find_by_email(email)
        if existing:
            return existing, False

        user_id, created = await self._identity.create_user(email)
        if not created and await self._identity.has_password(user_id):
            logger.info("invited_registered_user", profile_id=str(user_id))
            return await self.ensure_profile(user_id, email), False

        premium = inviter.is_premium
        placeholder = build(
            Profile,
            id=user_id,
            email=email,
            plan_type=PlanType.PREMIUM if premium else PlanType.FREE,
            subscription_status=(
                SubscriptionStatus.ACTIVE if premium else SubscriptionStatus.INACTIVE
            ),
            invited_by=inviter.id,
            account_state=AccountState.PLACEHOLDER,
        )

        winner = None
        with gateway_call("create placeholder"):
            try:
                await self._gateway.insert(PROFILES, placeholder.to_row())
            except DuplicateError:
                # Lost a race with another invite for the same email
                row = await self._gateway.select_one(PROFILES, {"email": email})
                if row is None:
                    raise
                winner = Profile.from_row(row)
        if winner is not None:
            if created and winner.id != user_id:
                await self._identity.delete_user(user_id)
            return winner, False

        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.placeholder_created(
                profile_id=placeholder.id,
                email=email,
                inviter_id=inviter.id,
                plan_type=placeholder.plan_type.value,
                correlation_id=correlation_id,
            ))
        return placeholder, True

    async def complete_registration(
        self,
        email: str,
        password: str,
        full_name: Optional[str] = None,
    ) -> Profile:
        """
        Set the password of an invited account and activate it.

        An already active account only gets its password replaced.

        Raises:
            ValidationError: Password shorter than ``min_password_length``
            NotFound: No account for this email
        """
        email = _validated_email(email)
        if len(password or "") < self._settings.min_password_length:
            raise errors.ValidationError(
                f"Password must be at least {self._settings.min_password_length} characters"
            )

        profile = await self.find_by_email(email)
        user_id = await self._identity.find_user(email)
        if profile is None or user_id is None:
            raise errors.NotFound(f"No account for {email}")

        await self._identity.set_password(user_id, password)

        if not profile.is_placeholder:
            logger.info("password_updated", profile_id=str(profile.id))
            return profile

        profile = await self.save_profile(profile.activate(full_name))
        logger.info("account_activated", profile_id=str(profile.id))
        if self._audit_logger:
            await self._audit_logger.log(
                AuditEventBuilder.account_activated(profile.id, email)
            )
        return profile

    # =========================================================================
    # PROFILE AND PLAN
    # =========================================================================

    async def update_profile(self, profile_id: UUID, **changes) -> Profile:
        """Edit the user-editable fields (name, gender)."""
        unknown = set(changes) - EDITABLE_PROFILE_FIELDS
        if unknown:
            raise errors.ValidationError(
                f"Fields cannot be edited: {', '.join(sorted(unknown))}",
                entity_id=str(profile_id),
            )
        profile = await self.get_profile(profile_id)
        return await self.save_profile(rebuild(profile, **changes))

    async def change_plan(
        self,
        profile_id: UUID,
        plan_type: PlanType,
        subscription_status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
        expires_at: Optional[datetime] = None,
    ) -> Profile:
        profile = await self.get_profile(profile_id)
        updated = await self.save_profile(rebuild(
            profile,
            plan_type=plan_type,
            subscription_status=subscription_status,
            subscription_expires_at=expires_at,
        ))
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.ledger_change(
                event_type=AuditEventType.PLAN_CHANGED,
                entity_type="profile",
                entity_id=profile_id,
                actor_id=profile_id,
                description=f"Plan changed to {updated.plan_type.value} ({updated.subscription_status.value})",
            ))
        return updated

    # =========================================================================
    # USAGE LIMITS
    # =========================================================================

    def _with_monthly_reset(self, profile: Profile, now: datetime) -> Profile:
        last = profile.last_transaction_reset
        if last is not None and _same_month(last, now):
            return profile
        return profile.model_copy(update={
            "monthly_transactions_used": 0,
            "last_transaction_reset": now,
        })

    async def check_transaction_limit(
        self,
        profile_id: UUID,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Can this profile add another transaction this month?

        Active premium profiles are unlimited.
        """
        profile = self._with_monthly_reset(await self.get_profile(profile_id), now or utcnow())
        if profile.is_premium:
            return True

        limit = self._settings.free_monthly_transaction_limit
        if profile.monthly_transactions_used < limit:
            return True

        logger.info(
            "transaction_limit_reached",
            profile_id=str(profile_id),
            used=profile.monthly_transactions_used,
        )
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.limit_reached(
                profile_id, profile.monthly_transactions_used, limit
            ))
        return False

    async def increment_transaction_count(
        self,
        profile_id: UUID,
        now: Optional[datetime] = None,
    ) -> int:
        """Count one transaction, resetting the counter on a new month. Returns the new count."""
        profile = self._with_monthly_reset(await self.get_profile(profile_id), now or utcnow())
        profile = await self.save_profile(profile.model_copy(update={
            "monthly_transactions_used": profile.monthly_transactions_used + 1,
        }))
        return profile.monthly_transactions_used

    # =========================================================================
    # CLEANUP
    # =========================================================================

    async def cleanup_orphaned_account(
        self,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> bool:
        """
        Remove a placeholder account nobody is waiting on any more.

        Only deletes when the account was never activated, has no password,
        and has no accepted or pending invitations and no expenses. Failures
        are logged, never raised.

        Returns True if the account was removed.
        """
        try:
            profile = await self.find_by_email(email)
            if profile is None or not profile.is_placeholder:
                return False
            if await self._identity.has_password(profile.id):
                logger.warning("placeholder_has_password", profile_id=str(profile.id))
                return False

            with gateway_call("check orphaned account"):
                for status in (InvitationStatus.ACCEPTED, InvitationStatus.PENDING):
                    if await self._gateway.exists(
                        "invitations",
                        {"recipient_email": profile.email, "status": status.value},
                    ):
                        return False
                if await self._gateway.exists("expenses", {"user_id": str(profile.id)}):
                    return False

                await self._gateway.delete(PROFILES, {"id": str(profile.id)})
            await self._identity.delete_user(profile.id)

        except Exception as e:
            logger.warning("cleanup_failed", email=email, error=str(e))
            if self._audit_logger:
                await self._audit_logger.log_cleanup_failed(email, str(e), correlation_id)
            return False

        logger.info("placeholder_cleaned_up", profile_id=str(profile.id))
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.ledger_change(
                event_type=AuditEventType.PLACEHOLDER_CLEANED_UP,
                entity_type="profile",
                entity_id=profile.id,
                actor_id=profile.invited_by or profile.id,
                description=f"Placeholder account {profile.email} removed",
                correlation_id=correlation_id,
            ))
        return True

    # =========================================================================
    # ADMIN
    # =========================================================================

    async def list_profiles(self) -> list[Profile]:
        """All profiles, newest first."""
        with gateway_call("list profiles"):
            rows = await self._gateway.select(PROFILES, order_by="-created_at")
        return [Profile.from_row(row) for row in rows]

    async def plan_stats(self) -> PlanStats:
        profiles = await self.list_profiles()
        premium = sum(1 for p in profiles if p.plan_type == PlanType.PREMIUM)
        return PlanStats(
            total_users=len(profiles),
            premium_users=premium,
            free_users=len(profiles) - premium,
            active_users=sum(
                1 for p in profiles if p.subscription_status == SubscriptionStatus.ACTIVE
            ),
        )
