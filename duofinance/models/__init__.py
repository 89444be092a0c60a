"""
Data Models Package

This package contains all Pydantic models used in duofinance.
All data flowing through the services must conform to these schemas.
"""

from duofinance.models.finance import (
    DUE_DAY_RANGES,
    AccountState,
    AdminNotification,
    Category,
    CategoryTotal,
    Couple,
    DueStatus,
    Expense,
    Frequency,
    Gender,
    Invitation,
    InvitationStatus,
    NotificationSettings,
    NotificationTarget,
    PaymentResult,
    PersonTag,
    PlanStats,
    PlanType,
    Profile,
    RecurringExpense,
    Reminder,
    SubscriptionStatus,
    Summary,
    SummaryView,
    TransactionType,
    normalize_email,
    utcnow,
)
from duofinance.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Finance models
    "DUE_DAY_RANGES",
    "AccountState",
    "AdminNotification",
    "Category",
    "CategoryTotal",
    "Couple",
    "DueStatus",
    "Expense",
    "Frequency",
    "Gender",
    "Invitation",
    "InvitationStatus",
    "NotificationSettings",
    "NotificationTarget",
    "PaymentResult",
    "PersonTag",
    "PlanStats",
    "PlanType",
    "Profile",
    "RecurringExpense",
    "Reminder",
    "SubscriptionStatus",
    "Summary",
    "SummaryView",
    "TransactionType",
    "normalize_email",
    "utcnow",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
