"""
Ledger Service

CRUD for expenses, categories and recurring items, plus dashboard summaries.

Couples read each other's expenses and recurring items, but a row is only
ever changed by the profile that owns it (``user_id``). Two partners
editing different rows never conflict; the last write to a row wins.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, Optional
from uuid import UUID

import structlog

from duofinance import errors
from duofinance.accounts import AccountService
from duofinance.audit import AuditLogger, create_correlation_id
from duofinance.billing import calculator
from duofinance.guards import build, gateway_call, rebuild
from duofinance.models import (
    AuditEventBuilder,
    AuditEventType,
    Category,
    CategoryTotal,
    Couple,
    Expense,
    Frequency,
    PaymentResult,
    PersonTag,
    RecurringExpense,
    Summary,
    SummaryView,
    TransactionType,
    utcnow,
)
from duofinance.services.storage import GatewayInterface


logger = structlog.get_logger(__name__)

EXPENSES = "expenses"
RECURRING = "recurring_expenses"
CATEGORIES = "categories"

EXPENSE_FIELDS = frozenset({"description", "amount", "category", "date", "person", "type"})
RECURRING_FIELDS = EXPENSE_FIELDS - {"date"} | {
    "frequency", "due_day", "next_due_date", "notification_days", "is_active",
}
CATEGORY_FIELDS = frozenset({"name", "color", "icon"})


def _check_fields(changes: dict, allowed: frozenset, entity_id: UUID) -> None:
    unknown = set(changes) - allowed
    if unknown:
        raise errors.ValidationError(
            f"Fields cannot be edited: {', '.join(sorted(unknown))}",
            entity_id=str(entity_id),
        )


def _visible_rows(rows: Iterable, view: SummaryView, current_person: Optional[PersonTag]):
    if view == SummaryView.INDIVIDUAL:
        return [r for r in rows if r.person in (current_person, PersonTag.SHARED)]
    return list(rows)


class LedgerService:
    """
    Expenses, categories and recurring items of a profile and its partner.

    Usage:
        ledger = LedgerService(gateway, accounts)
        expense = await ledger.add_expense(user_id, "Rent", Decimal("1200"), category_id, today)
        result = await ledger.pay_recurring_expense(bill_id, user_id)
    """

    def __init__(
        self,
        gateway: GatewayInterface,
        accounts: AccountService,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._gateway = gateway
        self._accounts = accounts
        self._audit_logger = audit_logger

    async def _audit_change(
        self,
        event_type: AuditEventType,
        entity_type: str,
        entity_id: UUID,
        actor_id: UUID,
        description: str,
    ) -> None:
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.ledger_change(
                event_type=event_type,
                entity_type=entity_type,
                entity_id=entity_id,
                actor_id=actor_id,
                description=description,
            ))

    async def _household(self, profile_id: UUID) -> list[UUID]:
        """The profile itself, followed by its partner when coupled."""
        profile = await self._accounts.get_profile(profile_id)
        if profile.couple_id is None:
            return [profile_id]
        with gateway_call("load couple"):
            row = await self._gateway.select_one("couples", {"id": str(profile.couple_id)})
        if row is None:
            return [profile_id]
        return [profile_id, Couple.from_row(row).partner_of(profile_id)]

    async def _select_household(self, table: str, profile_id: UUID) -> list[dict]:
        rows = []
        with gateway_call(f"list {table}"):
            for user_id in await self._household(profile_id):
                rows.extend(await self._gateway.select(table, {"user_id": str(user_id)}))
        return rows

    async def _load_owned(self, table: str, model, entity_id: UUID, caller_id: UUID):
        with gateway_call(f"load {table}"):
            row = await self._gateway.select_one(table, {"id": str(entity_id)})
        if row is None:
            raise errors.NotFound(f"{table} row {entity_id} not found", entity_id=str(entity_id))
        item = model.from_row(row)
        if item.user_id != caller_id:
            raise errors.Forbidden(
                f"Only the owner can change {table} row {entity_id}",
                entity_id=str(entity_id),
            )
        return item

    async def _save(self, table: str, item) -> None:
        with gateway_call(f"update {table}"):
            await self._gateway.update(table, {"id": str(item.id)}, item.to_row())

    async def _delete(self, table: str, entity_id: UUID) -> None:
        with gateway_call(f"delete {table}"):
            await self._gateway.delete(table, {"id": str(entity_id)})

    # =========================================================================
    # EXPENSES
    # =========================================================================

    async def add_expense(
        self,
        caller_id: UUID,
        description: str,
        amount: Decimal,
        category: str,
        expense_date: date,
        person: PersonTag = PersonTag.PERSON1,
        type: TransactionType = TransactionType.EXPENSE,
        now: Optional[datetime] = None,
    ) -> Expense:
        """
        Record a one-off expense or income.

        Raises:
            Forbidden: The free plan's monthly limit is used up
            ValidationError: Bad amount, description or date
        """
        now = now or utcnow()
        if not await self._accounts.check_transaction_limit(caller_id, now):
            raise errors.Forbidden(
                "Monthly transaction limit reached for the free plan",
                entity_id=str(caller_id),
            )

        expense = build(
            Expense,
            user_id=caller_id,
            description=description,
            amount=amount,
            category=category,
            date=expense_date,
            person=person,
            type=type,
            created_at=now,
            updated_at=now,
        )
        with gateway_call("insert expense"):
            await self._gateway.insert(EXPENSES, expense.to_row())
        await self._accounts.increment_transaction_count(caller_id, now)

        await self._audit_change(
            AuditEventType.EXPENSE_SAVED, "expense", expense.id, caller_id,
            f"{expense.type.value.capitalize()} recorded: {expense.description}",
        )
        return expense

    async def update_expense(self, expense_id: UUID, caller_id: UUID, **changes) -> Expense:
        _check_fields(changes, EXPENSE_FIELDS, expense_id)
        expense = await self._load_owned(EXPENSES, Expense, expense_id, caller_id)
        updated = rebuild(expense, **changes, updated_at=utcnow())
        await self._save(EXPENSES, updated)
        await self._audit_change(
            AuditEventType.EXPENSE_UPDATED, "expense", expense_id, caller_id,
            f"Expense updated: {updated.description}",
        )
        return updated

    async def delete_expense(self, expense_id: UUID, caller_id: UUID) -> None:
        expense = await self._load_owned(EXPENSES, Expense, expense_id, caller_id)
        await self._delete(EXPENSES, expense_id)
        await self._audit_change(
            AuditEventType.EXPENSE_DELETED, "expense", expense_id, caller_id,
            f"Expense deleted: {expense.description}",
        )

    async def list_expenses(self, profile_id: UUID) -> list[Expense]:
        """Own and partner expenses, newest first."""
        expenses = [Expense.from_row(row) for row in await self._select_household(EXPENSES, profile_id)]
        return sorted(expenses, key=lambda e: (e.date, e.created_at), reverse=True)

    # =========================================================================
    # CATEGORIES
    # =========================================================================

    async def list_categories(self, profile_id: UUID) -> list[Category]:
        with gateway_call("list categories"):
            rows = await self._gateway.select(CATEGORIES, {"user_id": str(profile_id)})
        return sorted((Category.from_row(row) for row in rows), key=lambda c: c.name.lower())

    async def _check_category_name(
        self,
        profile_id: UUID,
        name: str,
        skip_id: Optional[UUID] = None,
    ) -> None:
        wanted = name.strip().lower()
        for category in await self.list_categories(profile_id):
            if category.id != skip_id and category.name.lower() == wanted:
                raise errors.ValidationError(
                    f"Category '{name}' already exists",
                    entity_id=str(category.id),
                )

    async def add_category(
        self,
        caller_id: UUID,
        name: str,
        color: Optional[str] = None,
        icon: Optional[str] = None,
    ) -> Category:
        extras = {k: v for k, v in (("color", color), ("icon", icon)) if v is not None}
        category = build(Category, user_id=caller_id, name=name, **extras)
        await self._check_category_name(caller_id, category.name)
        with gateway_call("insert category"):
            await self._gateway.insert(CATEGORIES, category.to_row())
        return category

    async def update_category(self, category_id: UUID, caller_id: UUID, **changes) -> Category:
        _check_fields(changes, CATEGORY_FIELDS, category_id)
        category = await self._load_owned(CATEGORIES, Category, category_id, caller_id)
        updated = rebuild(category, **changes, updated_at=utcnow())
        if "name" in changes:
            await self._check_category_name(caller_id, updated.name, skip_id=category_id)
        await self._save(CATEGORIES, updated)
        return updated

    async def delete_category(self, category_id: UUID, caller_id: UUID) -> None:
        """Delete a category. Expenses keep the dangling category id."""
        await self._load_owned(CATEGORIES, Category, category_id, caller_id)
        await self._delete(CATEGORIES, category_id)

    # =========================================================================
    # RECURRING ITEMS
    # =========================================================================

    async def add_recurring_expense(
        self,
        caller_id: UUID,
        description: str,
        amount: Decimal,
        category: str,
        frequency: Frequency,
        due_day: int,
        person: PersonTag = PersonTag.PERSON1,
        type: TransactionType = TransactionType.EXPENSE,
        notification_days: int = 3,
        next_due_date: Optional[date] = None,
        today: Optional[date] = None,
    ) -> RecurringExpense:
        """
        Create a recurring item.

        Without an explicit ``next_due_date`` the first occurrence after
        ``today`` is scheduled.
        """
        if next_due_date is None:
            try:
                next_due_date = calculator.initial_due_date(
                    Frequency(frequency), due_day, today or utcnow().date()
                )
            except (ValueError, OverflowError) as e:
                raise errors.ValidationError(str(e)) from e

        item = build(
            RecurringExpense,
            user_id=caller_id,
            description=description,
            amount=amount,
            category=category,
            person=person,
            type=type,
            frequency=frequency,
            due_day=due_day,
            notification_days=notification_days,
            next_due_date=next_due_date,
        )

        with gateway_call("insert recurring expense"):
            await self._gateway.insert(RECURRING, item.to_row())
        await self._audit_change(
            AuditEventType.RECURRING_SAVED, "recurring_expense", item.id, caller_id,
            f"Recurring {item.frequency.value} item created: {item.description}",
        )
        return item

    async def update_recurring_expense(
        self,
        recurring_id: UUID,
        caller_id: UUID,
        today: Optional[date] = None,
        **changes,
    ) -> RecurringExpense:
        """
        Edit a recurring item.

        Changing the cadence (frequency or due day) without an explicit
        ``next_due_date`` reschedules from ``today``.
        """
        _check_fields(changes, RECURRING_FIELDS, recurring_id)
        item = await self._load_owned(RECURRING, RecurringExpense, recurring_id, caller_id)
        updated = rebuild(item, **changes, updated_at=utcnow())

        cadence_changed = (updated.frequency, updated.due_day) != (item.frequency, item.due_day)
        if cadence_changed and "next_due_date" not in changes:
            updated = updated.model_copy(update={
                "next_due_date": calculator.initial_due_date(
                    updated.frequency, updated.due_day, today or utcnow().date()
                ),
            })

        await self._save(RECURRING, updated)
        await self._audit_change(
            AuditEventType.RECURRING_UPDATED, "recurring_expense", recurring_id, caller_id,
            f"Recurring item updated: {updated.description}",
        )
        return updated

    async def toggle_recurring_expense(self, recurring_id: UUID, caller_id: UUID) -> RecurringExpense:
        """Pause an active item or resume a paused one."""
        item = await self._load_owned(RECURRING, RecurringExpense, recurring_id, caller_id)
        updated = calculator.set_active(item, not item.is_active)
        await self._save(RECURRING, updated)
        await self._audit_change(
            AuditEventType.RECURRING_UPDATED, "recurring_expense", recurring_id, caller_id,
            f"Recurring item {'resumed' if updated.is_active else 'paused'}: {updated.description}",
        )
        return updated

    async def delete_recurring_expense(self, recurring_id: UUID, caller_id: UUID) -> None:
        item = await self._load_owned(RECURRING, RecurringExpense, recurring_id, caller_id)
        await self._delete(RECURRING, recurring_id)
        await self._audit_change(
            AuditEventType.RECURRING_DELETED, "recurring_expense", recurring_id, caller_id,
            f"Recurring item deleted: {item.description}",
        )

    async def list_recurring_expenses(self, profile_id: UUID) -> list[RecurringExpense]:
        """Own and partner recurring items, soonest due first."""
        rows = await self._select_household(RECURRING, profile_id)
        return sorted((RecurringExpense.from_row(row) for row in rows), key=lambda r: r.next_due_date)

    async def pay_recurring_expense(
        self,
        recurring_id: UUID,
        caller_id: UUID,
        now: Optional[datetime] = None,
    ) -> PaymentResult:
        """
        Mark one cycle as paid.

        Records the one-off transaction and advances the schedule. The
        transaction does not count against the free plan's monthly limit.
        """
        correlation_id = create_correlation_id()
        item = await self._load_owned(RECURRING, RecurringExpense, recurring_id, caller_id)
        result = calculator.mark_as_paid(item, now or utcnow())

        with gateway_call("pay recurring expense"):
            await self._gateway.insert(EXPENSES, result.transaction.to_row())
            await self._gateway.update(RECURRING, {"id": str(item.id)}, result.updated.to_row())

        logger.info(
            "recurring_paid",
            recurring_id=str(recurring_id),
            next_due_date=result.updated.next_due_date.isoformat(),
        )
        if self._audit_logger:
            await self._audit_logger.log(AuditEventBuilder.recurring_paid(
                recurring_id=recurring_id,
                transaction_id=result.transaction.id,
                next_due_date=result.updated.next_due_date.isoformat(),
                actor_id=caller_id,
                correlation_id=correlation_id,
            ))
        return result

    # =========================================================================
    # SUMMARIES
    # =========================================================================

    @staticmethod
    def calculate_summary(
        expenses: Iterable[Expense],
        view: SummaryView = SummaryView.COUPLE,
        current_person: Optional[PersonTag] = None,
        today: Optional[date] = None,
    ) -> Summary:
        """
        Dashboard totals.

        The ``individual`` view keeps the current person's and shared rows;
        monthly totals cover the calendar month of ``today``.
        """
        today = today or utcnow().date()
        rows = _visible_rows(expenses, view, current_person)

        def total(kind: TransactionType, this_month: bool = False) -> Decimal:
            return sum(
                (
                    e.amount for e in rows
                    if e.type == kind
                    and (not this_month or (e.date.year, e.date.month) == (today.year, today.month))
                ),
                Decimal("0"),
            )

        total_expenses = total(TransactionType.EXPENSE)
        total_income = total(TransactionType.INCOME)
        return Summary(
            total_expenses=total_expenses,
            total_income=total_income,
            balance=total_income - total_expenses,
            monthly_expenses=total(TransactionType.EXPENSE, this_month=True),
            monthly_income=total(TransactionType.INCOME, this_month=True),
        )

    @staticmethod
    def category_breakdown(
        expenses: Iterable[Expense],
        categories: Iterable[Category],
        view: SummaryView = SummaryView.COUPLE,
        current_person: Optional[PersonTag] = None,
    ) -> list[CategoryTotal]:
        """Expense totals per category, in category order, omitting empty ones."""
        by_category: dict[str, Decimal] = {}
        for expense in _visible_rows(expenses, view, current_person):
            if expense.type == TransactionType.EXPENSE:
                by_category[expense.category] = by_category.get(expense.category, Decimal("0")) + expense.amount

        totals = []
        for category in categories:
            value = by_category.get(str(category.id), Decimal("0"))
            if value > 0:
                totals.append(CategoryTotal(name=category.name, value=value, color=category.color))
        return totals
