"""
Abstract Persistence Gateway

DESIGN DECISION: Services talk to storage through a small, generic table
gateway instead of one repository class per entity. This allows us to:
1. Swap Google Sheets for a hosted database later
2. Use in-memory storage for testing
3. Keep business rules (linking, billing) decoupled from the backend

The interface is intentionally simple - we're not building a full ORM.
Rows are flat dicts of JSON-compatible values, filters are equality
matches, ordering is a single column.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional


Row = dict[str, Any]
Filters = dict[str, Any]


class GatewayInterface(ABC):
    """
    Abstract interface for table storage operations.

    Any backend (Google Sheets, in-memory, a hosted database)
    must implement these methods.
    """

    @abstractmethod
    async def insert(self, table: str, row: Row) -> Row:
        """
        Insert a row.

        Returns:
            The stored row

        Raises:
            DuplicateError: If the row violates a unique column
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def update(self, table: str, filters: Filters, patch: Row) -> int:
        """
        Apply ``patch`` to every row matching ``filters``.

        Returns:
            Number of rows updated (0 when nothing matched)
        """
        pass

    @abstractmethod
    async def delete(self, table: str, filters: Filters) -> int:
        """
        Delete every row matching ``filters``.

        Returns:
            Number of rows deleted
        """
        pass

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Row]:
        """
        List rows matching ``filters``.

        Args:
            table: Table name
            filters: Column -> value equality matches (all must hold)
            order_by: Column to sort on, "-column" for descending
            limit: Maximum number of rows

        Returns:
            Matching rows (copies - mutating them does not touch storage)
        """
        pass

    async def select_one(self, table: str, filters: Filters) -> Optional[Row]:
        """First row matching ``filters`` or None."""
        rows = await self.select(table, filters, limit=1)
        return rows[0] if rows else None

    async def exists(self, table: str, filters: Filters) -> bool:
        return await self.select_one(table, filters) is not None


def matches(row: Row, filters: Optional[Filters]) -> bool:
    """Equality filter shared by the Python-side backends."""
    if not filters:
        return True
    return all(row.get(column) == value for column, value in filters.items())


def sort_rows(rows: list[Row], order_by: Optional[str]) -> list[Row]:
    """Sort on one column, ``-`` prefix for descending. None sorts first."""
    if not order_by:
        return rows
    reverse = order_by.startswith("-")
    column = order_by.lstrip("-")

    def key(row: Row):
        value = row.get(column)
        return (value is not None, value if value is not None else "")

    return sorted(rows, key=key, reverse=reverse)


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class DuplicateError(StorageError):
    """Attempted to insert a duplicate entity."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
