"""
In-Memory Gateway

Used by the test suite and by local development (``storage_backend=memory``).
Rows are deep-copied on the way in and out so callers can never mutate
stored state by accident.
"""

import copy
from typing import Optional

from duofinance.services.storage.interface import (
    DuplicateError,
    Filters,
    GatewayInterface,
    Row,
    matches,
    sort_rows,
)


# Columns whose values must be unique within a table
DEFAULT_UNIQUE_COLUMNS: dict[str, tuple[str, ...]] = {
    "profiles": ("id", "email"),
    "couples": ("id",),
    "invitations": ("id",),
    "expenses": ("id",),
    "recurring_expenses": ("id",),
    "categories": ("id",),
    "notifications": ("id",),
}


class InMemoryGateway(GatewayInterface):
    """Dict-of-lists implementation of the gateway."""

    def __init__(self, unique_columns: Optional[dict[str, tuple[str, ...]]] = None):
        self._tables: dict[str, list[Row]] = {}
        self._unique = DEFAULT_UNIQUE_COLUMNS if unique_columns is None else unique_columns

    def _table(self, table: str) -> list[Row]:
        return self._tables.setdefault(table, [])

    def _check_unique(self, table: str, candidate: Row, skip: Optional[Row] = None) -> None:
        for column in self._unique.get(table, ()):
            value = candidate.get(column)
            if value is None:
                continue
            for row in self._table(table):
                if row is skip:
                    continue
                if row.get(column) == value:
                    raise DuplicateError(
                        f"Duplicate value for {table}.{column}: {value}"
                    )

    async def insert(self, table: str, row: Row) -> Row:
        stored = copy.deepcopy(row)
        self._check_unique(table, stored)
        self._table(table).append(stored)
        return copy.deepcopy(stored)

    async def update(self, table: str, filters: Filters, patch: Row) -> int:
        targets = [row for row in self._table(table) if matches(row, filters)]
        # Validate every target first so a violation leaves the table untouched
        for row in targets:
            self._check_unique(table, {**row, **patch}, skip=row)
        for row in targets:
            row.update(copy.deepcopy(patch))
        return len(targets)

    async def delete(self, table: str, filters: Filters) -> int:
        rows = self._table(table)
        kept = [row for row in rows if not matches(row, filters)]
        deleted = len(rows) - len(kept)
        self._tables[table] = kept
        return deleted

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Row]:
        rows = [copy.deepcopy(row) for row in self._table(table) if matches(row, filters)]
        rows = sort_rows(rows, order_by)
        if limit is not None:
            rows = rows[:limit]
        return rows

    def count(self, table: str) -> int:
        """Number of rows in a table (test helper)."""
        return len(self._table(table))
