"""
Recurring Billing Calculator

Pure scheduling math for recurring bills and incomes: next due date per
frequency, due-status classification and the mark-as-paid transition.
Nothing here performs I/O; the ledger service persists the results.

DESIGN DECISION: The schedule is always recomputed from ``due_day`` and
never by adding a month to the previous date. A monthly item due on the
31st therefore lands on Feb 28 (or 29) and returns to Mar 31, instead of
drifting to the 28th for the rest of the year.

DESIGN DECISION: mark_as_paid advances from the previous ``next_due_date``,
not from the payment date, so paying late or early keeps the cadence.
"""

import calendar
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Union

from duofinance.models.finance import (
    DueStatus,
    Expense,
    Frequency,
    PaymentResult,
    RecurringExpense,
    utcnow,
)


DateLike = Union[date, datetime]


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _day_in_month(year: int, month: int, due_day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(due_day, last_day))


def _day_in_year(year: int, due_day: int) -> date:
    days_in_year = 366 if calendar.isleap(year) else 365
    return date(year, 1, 1) + timedelta(days=min(due_day, days_in_year) - 1)


def compute_next_due_date(
    frequency: Frequency,
    due_day: int,
    from_date: DateLike,
) -> date:
    """
    Next occurrence of ``due_day`` strictly after ``from_date``.

    Args:
        frequency: Cadence of the item
        due_day: Weekday (0=Sunday), day of month or day of year
        from_date: Reference date; never returned itself

    Returns:
        The next due date
    """
    start = _as_date(from_date)

    if frequency == Frequency.WEEKLY:
        # date.weekday() is Monday=0; due_day is Sunday=0
        current = (start.weekday() + 1) % 7
        delta = (due_day - current) % 7
        return start + timedelta(days=delta or 7)

    if frequency == Frequency.MONTHLY:
        candidate = _day_in_month(start.year, start.month, due_day)
        if candidate > start:
            return candidate
        year, month = (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
        return _day_in_month(year, month, due_day)

    if frequency == Frequency.YEARLY:
        candidate = _day_in_year(start.year, due_day)
        if candidate > start:
            return candidate
        return _day_in_year(start.year + 1, due_day)

    raise ValueError(f"Unknown frequency: {frequency!r}")


def initial_due_date(frequency: Frequency, due_day: int, today: DateLike) -> date:
    """First due date of a newly created item."""
    return compute_next_due_date(frequency, due_day, today)


def days_until_due(item: RecurringExpense, now: DateLike) -> int:
    """Whole days from ``now`` to the item's next due date (negative when overdue)."""
    return (item.next_due_date - _as_date(now)).days


def classify(
    item: RecurringExpense,
    now: DateLike,
    notification_days: Optional[int] = None,
) -> DueStatus:
    """
    Due status of an item relative to ``now``.

    ``notification_days`` overrides the item's own lead time.
    Inactive items are never overdue or upcoming.
    """
    if not item.is_active:
        return DueStatus.INACTIVE

    lead_time = item.notification_days if notification_days is None else notification_days
    days = days_until_due(item, now)

    if days < 0:
        return DueStatus.OVERDUE
    if days <= lead_time:
        return DueStatus.UPCOMING
    return DueStatus.SCHEDULED


def mark_as_paid(item: RecurringExpense, now: Optional[DateLike] = None) -> PaymentResult:
    """
    Pay one cycle of a recurring item.

    Returns the one-off transaction to record and the item advanced by
    exactly one cycle.
    """
    paid_at = now or utcnow()
    paid_on = _as_date(paid_at)
    stamp = paid_at if isinstance(paid_at, datetime) else utcnow()

    transaction = Expense(
        user_id=item.user_id,
        description=item.description,
        amount=item.amount,
        category=item.category,
        date=paid_on,
        person=item.person,
        type=item.type,
        created_at=stamp,
        updated_at=stamp,
    )
    updated = item.model_copy(update={
        "last_paid_date": paid_on,
        "next_due_date": compute_next_due_date(item.frequency, item.due_day, item.next_due_date),
        "updated_at": stamp,
    })
    return PaymentResult(transaction=transaction, updated=updated)


def set_active(item: RecurringExpense, is_active: bool) -> RecurringExpense:
    """Pause or resume an item. The schedule is left untouched."""
    return item.model_copy(update={"is_active": is_active, "updated_at": utcnow()})


def partition_due(
    items: Iterable[RecurringExpense],
    now: DateLike,
    notification_days: Optional[int] = None,
) -> tuple[list[RecurringExpense], list[RecurringExpense]]:
    """Split items into (overdue, upcoming), each sorted by due date."""
    overdue = []
    upcoming = []
    for item in items:
        status = classify(item, now, notification_days)
        if status == DueStatus.OVERDUE:
            overdue.append(item)
        elif status == DueStatus.UPCOMING:
            upcoming.append(item)
    overdue.sort(key=lambda i: i.next_due_date)
    upcoming.sort(key=lambda i: i.next_due_date)
    return overdue, upcoming
