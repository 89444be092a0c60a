"""Audit logging package."""

from duofinance.audit.logger import (
    AUDIT_TABLE,
    AuditLogger,
    configure_logging,
    create_correlation_id,
)

__all__ = ["AUDIT_TABLE", "AuditLogger", "configure_logging", "create_correlation_id"]
