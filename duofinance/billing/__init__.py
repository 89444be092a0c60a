"""Billing package: recurring schedule math and the ledger service."""

from duofinance.billing.calculator import (
    classify,
    compute_next_due_date,
    days_until_due,
    initial_due_date,
    mark_as_paid,
    partition_due,
    set_active,
)
from duofinance.billing.ledger import LedgerService

__all__ = [
    "LedgerService",
    "classify",
    "compute_next_due_date",
    "days_until_due",
    "initial_due_date",
    "mark_as_paid",
    "partition_due",
    "set_active",
]
