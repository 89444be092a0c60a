"""
Audit Logger

DESIGN DECISION: Every state transition in the system is logged.
This provides:
1. Complete traceability of invitations, couples and payments
2. Debugging capability for the non-fatal steps (email, cleanup)
3. A history a couple can review

The audit logger:
- Always writes a structured local log line
- Appends to the gateway's audit_log table when a gateway is configured
- Gracefully handles failures (a failed audit write never fails the operation)
- Supports correlation IDs to trace related events
"""

import logging
from typing import Optional
from uuid import UUID, uuid4

import structlog

from duofinance.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from duofinance.services.storage import GatewayInterface


AUDIT_TABLE = "audit_log"


def configure_logging(level: int = logging.INFO) -> None:
    """Configure structlog (JSON lines on top of stdlib logging)."""
    logging.basicConfig(format="%(message)s", level=level)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


configure_logging()


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. The persistence gateway (for history)
    """

    def __init__(
        self,
        gateway: Optional[GatewayInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            gateway: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._gateway = gateway
        self._logger = structlog.get_logger("duofinance.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity in (AuditSeverity.ERROR, AuditSeverity.CRITICAL):
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._gateway:
            try:
                await self._gateway.insert(AUDIT_TABLE, event.to_row())
                return True
            except Exception as e:
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def history(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Persisted events for one entity, oldest first."""
        if not self._gateway:
            return []
        rows = await self._gateway.select(
            AUDIT_TABLE,
            {"entity_type": entity_type, "entity_id": str(entity_id)},
            order_by="timestamp",
        )
        return [AuditEvent.from_row(row) for row in rows]

    async def log_email_failed(
        self,
        recipient: str,
        purpose: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed (non-fatal) email dispatch."""
        await self.log(AuditEventBuilder.email_failed(
            recipient=recipient,
            purpose=purpose,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_cleanup_failed(
        self,
        email: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a failed (non-fatal) orphan cleanup."""
        await self.log(AuditEventBuilder.cleanup_failed(
            email=email,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., sending an invite).
    Pass it through all subsequent operations.
    """
    return uuid4()
