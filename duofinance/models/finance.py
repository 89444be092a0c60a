"""
Core Data Models for duofinance

These models define the strict schemas for every table the services touch:
profiles, couples, invitations, expenses, recurring_expenses, categories
and notifications. They are designed to:
1. Enforce type safety at runtime
2. Provide clear validation error messages
3. Round-trip through the persistence gateway as flat rows

DESIGN DECISION: A placeholder account (created when a partner is invited,
before they set a password) is an explicit variant of Profile
(``AccountState.PLACEHOLDER``) with a single ``activate`` transition,
not an implicit "no password yet" flag.
"""

import re
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)

from duofinance.errors import ValidationError


EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def utcnow() -> datetime:
    """Naive UTC timestamp, the single clock used by all models."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def normalize_email(value: str) -> str:
    """Lower-case and strip an email, raising ValueError when malformed."""
    email = (value or "").strip().lower()
    if not EMAIL_PATTERN.match(email):
        raise ValueError(f"Invalid email address: {value!r}")
    return email


Money = Annotated[
    Decimal,
    Field(ge=0, decimal_places=2, description="Non-negative amount, two decimal places")
]


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    UNSPECIFIED = "unspecified"


class PlanType(str, Enum):
    """Subscription tier. Free profiles have a monthly transaction limit."""
    FREE = "free"
    PREMIUM = "premium"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    CANCELLED = "cancelled"


class AccountState(str, Enum):
    """
    Account variant.

    PLACEHOLDER accounts are created for invited partners and become
    ACTIVE once the partner sets a password.
    """
    PLACEHOLDER = "placeholder"
    ACTIVE = "active"


class PersonTag(str, Enum):
    """Which member of the couple a record belongs to."""
    PERSON1 = "person1"
    PERSON2 = "person2"
    SHARED = "shared"


class TransactionType(str, Enum):
    EXPENSE = "expense"
    INCOME = "income"


class Frequency(str, Enum):
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class InvitationStatus(str, Enum):
    """
    Invitation status.

    Only PENDING, ACCEPTED and REJECTED are ever stored. EXPIRED is derived
    from the expiry timestamp; a cancelled invitation is deleted.
    """
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


class DueStatus(str, Enum):
    """Classification of a recurring item relative to the current time."""
    OVERDUE = "overdue"
    UPCOMING = "upcoming"
    SCHEDULED = "scheduled"
    INACTIVE = "inactive"


class NotificationTarget(str, Enum):
    """Audience of an admin notification."""
    ALL = "all"
    FREE = "free"
    PREMIUM = "premium"


class SummaryView(str, Enum):
    INDIVIDUAL = "individual"
    COUPLE = "couple"


# =============================================================================
# BASE
# =============================================================================

class RowModel(BaseModel):
    """Model that converts to and from a flat gateway row."""

    model_config = ConfigDict(str_strip_whitespace=True)

    def to_row(self) -> dict[str, Any]:
        """JSON-compatible dict: UUIDs, dates and decimals become strings."""
        return self.model_dump(mode="json")

    @classmethod
    def from_row(cls, row: dict[str, Any]):
        return cls.model_validate(row)


# =============================================================================
# PROFILES AND COUPLES
# =============================================================================

class Profile(RowModel):
    """
    Identity record.

    Created on first sign-in or, for an invited partner, as a placeholder
    when the invitation is sent. Mutated by profile edits, plan changes and
    usage increments.
    """

    id: UUID = Field(default_factory=uuid4)
    email: str = Field(..., description="Login email (normalized)")
    full_name: Optional[str] = Field(default=None, max_length=200)
    gender: Gender = Gender.UNSPECIFIED

    # Plan and usage
    plan_type: PlanType = PlanType.FREE
    subscription_status: SubscriptionStatus = SubscriptionStatus.INACTIVE
    subscription_expires_at: Optional[datetime] = None
    monthly_transactions_used: int = Field(default=0, ge=0)
    last_transaction_reset: Optional[datetime] = None

    is_admin: bool = False
    invited_by: Optional[UUID] = None
    couple_id: Optional[UUID] = None
    account_state: AccountState = AccountState.ACTIVE

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator('email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator('gender', mode='before')
    @classmethod
    def default_gender(cls, v):
        """The profiles table stores NULL for an unanswered gender."""
        return Gender.UNSPECIFIED if v in (None, "") else v

    @property
    def is_premium(self) -> bool:
        return (
            self.plan_type == PlanType.PREMIUM
            and self.subscription_status == SubscriptionStatus.ACTIVE
        )

    @property
    def is_placeholder(self) -> bool:
        return self.account_state == AccountState.PLACEHOLDER

    @property
    def display_name(self) -> str:
        return self.full_name or self.email.split("@")[0]

    def activate(self, full_name: Optional[str] = None) -> "Profile":
        """
        Placeholder -> Active transition.

        Raises ValidationError if the account is already active.
        """
        if not self.is_placeholder:
            raise ValidationError(
                f"Account {self.email} is already active",
                entity_id=str(self.id),
            )
        return self.model_copy(update={
            "account_state": AccountState.ACTIVE,
            "full_name": full_name or self.full_name,
            "updated_at": utcnow(),
        })


class Couple(RowModel):
    """Unordered pairing of two profiles."""

    id: UUID = Field(default_factory=uuid4)
    user1_id: UUID
    user2_id: UUID
    created_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_members(self) -> 'Couple':
        if self.user1_id == self.user2_id:
            raise ValueError("A couple needs two different profiles")
        return self

    @property
    def members(self) -> tuple[UUID, UUID]:
        return self.user1_id, self.user2_id

    def includes(self, profile_id: UUID) -> bool:
        return profile_id in self.members

    def partner_of(self, profile_id: UUID) -> UUID:
        if profile_id == self.user1_id:
            return self.user2_id
        if profile_id == self.user2_id:
            return self.user1_id
        raise ValueError(f"Profile {profile_id} is not part of couple {self.id}")


class Invitation(RowModel):
    """
    Partner invitation.

    State machine:
        pending -> accepted   (terminal)
        pending -> rejected   (terminal)
        pending -> cancelled  (terminal, row deleted)
        pending -> expired    (terminal, derived from expires_at)
    """

    id: UUID = Field(default_factory=uuid4)
    sender_id: UUID
    recipient_email: str
    status: InvitationStatus = InvitationStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime
    accepted_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None

    @field_validator('recipient_email')
    @classmethod
    def validate_email(cls, v: str) -> str:
        return normalize_email(v)

    @field_validator('status')
    @classmethod
    def status_is_stored(cls, v: InvitationStatus) -> InvitationStatus:
        if v == InvitationStatus.EXPIRED:
            raise ValueError("Expired is derived from expires_at and never stored")
        return v

    @model_validator(mode='after')
    def validate_dates(self) -> 'Invitation':
        if self.expires_at <= self.created_at:
            raise ValueError("Invitation must expire after it is created")
        return self

    @classmethod
    def create(
        cls,
        sender_id: UUID,
        recipient_email: str,
        expiry_days: int,
        now: Optional[datetime] = None,
    ) -> "Invitation":
        now = now or utcnow()
        return cls(
            sender_id=sender_id,
            recipient_email=recipient_email,
            created_at=now,
            expires_at=now + timedelta(days=expiry_days),
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def effective_status(self, now: datetime) -> InvitationStatus:
        if self.status == InvitationStatus.PENDING and self.is_expired(now):
            return InvitationStatus.EXPIRED
        return self.status

    def is_actionable(self, now: datetime) -> bool:
        return self.effective_status(now) == InvitationStatus.PENDING


# =============================================================================
# LEDGER
# =============================================================================

class Expense(RowModel):
    """A one-off expense or income record."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID = Field(..., description="Owning profile")
    description: str = Field(..., min_length=1, max_length=200)
    amount: Money
    category: str = Field(..., min_length=1, description="Category id")
    date: date
    person: PersonTag = PersonTag.PERSON1
    type: TransactionType = TransactionType.EXPENSE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class RecurringExpense(RowModel):
    """
    Template for a bill or income that repeats on a fixed cadence.

    ``due_day`` means:
    - weekly: day of week, 0=Sunday .. 6=Saturday
    - monthly: day of month, 1..31 (clamped to the month length)
    - yearly: day of year, 1..366 (1 = January 1st)

    ``next_due_date`` is always the earliest occurrence not yet paid.
    """

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    description: str = Field(..., min_length=1, max_length=200)
    amount: Money
    category: str = Field(..., min_length=1)
    person: PersonTag = PersonTag.PERSON1
    type: TransactionType = TransactionType.EXPENSE

    frequency: Frequency
    due_day: int
    is_active: bool = True
    next_due_date: date
    last_paid_date: Optional[date] = None
    notification_days: int = Field(default=3, ge=0, le=60)

    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode='after')
    def validate_due_day(self) -> 'RecurringExpense':
        low, high = DUE_DAY_RANGES[self.frequency]
        if not low <= self.due_day <= high:
            raise ValueError(
                f"due_day for {self.frequency.value} items must be between {low} and {high}"
            )
        return self


DUE_DAY_RANGES: dict[Frequency, tuple[int, int]] = {
    Frequency.WEEKLY: (0, 6),
    Frequency.MONTHLY: (1, 31),
    Frequency.YEARLY: (1, 366),
}


class Category(RowModel):
    """User-defined category. Not shared across profiles."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    name: str = Field(..., min_length=1, max_length=50)
    color: str = Field(default="#64748b", pattern=r"^#[0-9a-fA-F]{6}$")
    icon: str = Field(default="tag", max_length=50)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class PaymentResult(BaseModel):
    """Both outputs of a mark-as-paid transition."""

    transaction: Expense
    updated: RecurringExpense


class Summary(BaseModel):
    total_expenses: Decimal = Decimal("0")
    total_income: Decimal = Decimal("0")
    balance: Decimal = Decimal("0")
    monthly_expenses: Decimal = Decimal("0")
    monthly_income: Decimal = Decimal("0")


class CategoryTotal(BaseModel):
    name: str
    value: Decimal
    color: str


# =============================================================================
# NOTIFICATIONS
# =============================================================================

class NotificationSettings(BaseModel):
    """Per-device reminder preferences, kept in the local key-value store."""

    enabled: bool = True
    days_before_due: int = Field(default=3, ge=0, le=60)
    email_notifications: bool = False
    browser_notifications: bool = True


class Reminder(BaseModel):
    """A bill reminder surfaced on the notification badge."""

    recurring_id: UUID
    status: DueStatus
    days: int = Field(..., description="Days until due (negative when overdue)")
    description: str
    amount: Decimal
    due_date: date

    @property
    def key(self) -> str:
        """Stable id used to remember that the reminder was shown."""
        return f"{self.status.value}-{self.recurring_id}-{self.due_date.isoformat()}"


class AdminNotification(RowModel):
    """Broadcast message written by an admin."""

    id: UUID = Field(default_factory=uuid4)
    title: str = Field(..., min_length=1, max_length=120)
    message: str = Field(..., min_length=1, max_length=2000)
    target_users: NotificationTarget = NotificationTarget.ALL
    created_by: UUID
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)

    def targets(self, profile: Profile) -> bool:
        if self.target_users == NotificationTarget.ALL:
            return True
        return self.target_users.value == profile.plan_type.value


class PlanStats(BaseModel):
    total_users: int = 0
    premium_users: int = 0
    free_users: int = 0
    active_users: int = 0
