"""
Audit Models for duofinance

Every state transition of an invitation, a couple, an account or a
recurring item is logged for audit purposes. This provides:
1. Traceability of who linked with whom and when
2. Debugging information when a non-fatal step (email, cleanup) fails
3. Ability to reconstruct the history of a shared ledger

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from duofinance.models.finance import utcnow


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Accounts
    PROFILE_CREATED = "profile_created"
    PLACEHOLDER_CREATED = "placeholder_created"
    ACCOUNT_ACTIVATED = "account_activated"
    PLACEHOLDER_CLEANED_UP = "placeholder_cleaned_up"
    CLEANUP_FAILED = "cleanup_failed"
    PLAN_CHANGED = "plan_changed"
    TRANSACTION_LIMIT_REACHED = "transaction_limit_reached"

    # Invitations
    INVITATION_SENT = "invitation_sent"
    INVITATION_ACCEPTED = "invitation_accepted"
    INVITATION_REJECTED = "invitation_rejected"
    INVITATION_CANCELLED = "invitation_cancelled"

    # Couples
    COUPLE_CREATED = "couple_created"
    COUPLE_BROKEN = "couple_broken"

    # Ledger
    EXPENSE_SAVED = "expense_saved"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    RECURRING_SAVED = "recurring_saved"
    RECURRING_UPDATED = "recurring_updated"
    RECURRING_DELETED = "recurring_deleted"
    RECURRING_PAID = "recurring_paid"

    # Notifications
    EMAIL_SENT = "email_sent"
    EMAIL_FAILED = "email_failed"
    ADMIN_NOTIFICATION_CREATED = "admin_notification_created"

    # System events
    SYSTEM_ERROR = "system_error"
    EXTERNAL_SERVICE_ERROR = "external_service_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utcnow,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'invitation', 'couple', 'profile')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )
    actor_id: Optional[UUID] = Field(
        default=None,
        description="Profile that triggered the event, if any"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all steps of one invite)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "actor_id": str(self.actor_id) if self.actor_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> dict:
        """
        Convert to a flat row for the audit_log table.

        ``details`` is JSON-encoded so every backend can store it in one cell.
        """
        row = self.to_log_dict()
        row["details"] = json.dumps(self.details, default=str) if self.details else ""
        return row

    @classmethod
    def from_row(cls, row: dict) -> "AuditEvent":
        data = dict(row)
        details = data.get("details")
        data["details"] = json.loads(details) if details else {}
        return cls.model_validate(data)


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.invitation_sent(invitation_id, sender_id, email, correlation_id)
        event = AuditEventBuilder.couple_created(couple_id, user1_id, user2_id, correlation_id)
    """

    @staticmethod
    def placeholder_created(
        profile_id: UUID,
        email: str,
        inviter_id: UUID,
        plan_type: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PLACEHOLDER_CREATED,
            entity_type="profile",
            entity_id=profile_id,
            actor_id=inviter_id,
            correlation_id=correlation_id,
            description=f"Placeholder account created for {email}",
            details={
                "email": email,
                "plan_type": plan_type,
            },
        )

    @staticmethod
    def account_activated(
        profile_id: UUID,
        email: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.ACCOUNT_ACTIVATED,
            entity_type="profile",
            entity_id=profile_id,
            actor_id=profile_id,
            correlation_id=correlation_id,
            description=f"Account activated: {email}",
            details={"email": email},
            is_user_action=True,
        )

    @staticmethod
    def invitation_sent(
        invitation_id: UUID,
        sender_id: UUID,
        recipient_email: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVITATION_SENT,
            entity_type="invitation",
            entity_id=invitation_id,
            actor_id=sender_id,
            correlation_id=correlation_id,
            description=f"Invitation sent to {recipient_email}",
            details={"recipient_email": recipient_email},
            is_user_action=True,
        )

    @staticmethod
    def invitation_resolved(
        invitation_id: UUID,
        status: str,
        actor_id: Optional[UUID] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        event_type = {
            "accepted": AuditEventType.INVITATION_ACCEPTED,
            "rejected": AuditEventType.INVITATION_REJECTED,
            "cancelled": AuditEventType.INVITATION_CANCELLED,
        }[status]
        return AuditEvent(
            event_type=event_type,
            entity_type="invitation",
            entity_id=invitation_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Invitation {status}",
            details={"status": status},
            is_user_action=True,
        )

    @staticmethod
    def couple_created(
        couple_id: UUID,
        user1_id: UUID,
        user2_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COUPLE_CREATED,
            entity_type="couple",
            entity_id=couple_id,
            correlation_id=correlation_id,
            description="Couple linked",
            details={
                "user1_id": str(user1_id),
                "user2_id": str(user2_id),
            },
        )

    @staticmethod
    def couple_broken(
        couple_id: UUID,
        user1_id: UUID,
        user2_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.COUPLE_BROKEN,
            entity_type="couple",
            entity_id=couple_id,
            correlation_id=correlation_id,
            description="Couple relationship removed",
            details={
                "user1_id": str(user1_id),
                "user2_id": str(user2_id),
            },
            is_user_action=True,
        )

    @staticmethod
    def recurring_paid(
        recurring_id: UUID,
        transaction_id: UUID,
        next_due_date: str,
        actor_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.RECURRING_PAID,
            entity_type="recurring_expense",
            entity_id=recurring_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=f"Recurring item paid, next due {next_due_date}",
            details={
                "transaction_id": str(transaction_id),
                "next_due_date": next_due_date,
            },
            is_user_action=True,
        )

    @staticmethod
    def ledger_change(
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        description: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            actor_id=actor_id,
            correlation_id=correlation_id,
            description=description,
            is_user_action=True,
        )

    @staticmethod
    def limit_reached(
        profile_id: UUID,
        used: int,
        limit: int,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_LIMIT_REACHED,
            severity=AuditSeverity.WARNING,
            entity_type="profile",
            entity_id=profile_id,
            actor_id=profile_id,
            description=f"Free plan limit reached ({used}/{limit})",
            details={"used": used, "limit": limit},
        )

    @staticmethod
    def email_failed(
        recipient: str,
        purpose: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EMAIL_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="email",
            correlation_id=correlation_id,
            description=f"Email to {recipient} failed ({purpose})",
            error_message=error_message,
            details={"recipient": recipient, "purpose": purpose},
        )

    @staticmethod
    def cleanup_failed(
        email: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLEANUP_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="profile",
            correlation_id=correlation_id,
            description=f"Could not clean up placeholder account {email}",
            error_message=error_message,
            details={"email": email},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
