"""
Google Sheets Gateway Implementation

DESIGN DECISION: Google Sheets can back the persistence gateway because:
1. A couple can inspect their shared ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)
4. Easy to export/migrate later

TRADEOFFS:
- Not suitable for high-volume data (we're fine for a household)
- No transactions (the services order their writes carefully)
- Limited query capabilities (we filter in Python)

Each table is one worksheet. Row 1 holds the column names; every cell
holds the JSON encoding of its value so booleans and numbers survive
the round trip. Empty cells read back as None.
"""

import json
from typing import Any, Optional

import gspread
from google.oauth2.service_account import Credentials
from tenacity import (
    retry,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from duofinance.config import get_settings
from duofinance.models.finance import (
    AdminNotification,
    Category,
    Couple,
    Expense,
    Invitation,
    Profile,
    RecurringExpense,
)
from duofinance.services.storage.interface import (
    ConnectionError,
    DuplicateError,
    Filters,
    GatewayInterface,
    NotFoundError,
    Row,
    StorageError,
    matches,
    sort_rows,
)


AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "actor_id",
    "correlation_id",
    "description",
    "details",
    "error_code",
    "error_message",
    "is_user_action",
]

# Column order for every worksheet
TABLE_COLUMNS: dict[str, list[str]] = {
    "profiles": list(Profile.model_fields),
    "couples": list(Couple.model_fields),
    "invitations": list(Invitation.model_fields),
    "expenses": list(Expense.model_fields),
    "recurring_expenses": list(RecurringExpense.model_fields),
    "categories": list(Category.model_fields),
    "notifications": list(AdminNotification.model_fields),
    "audit_log": AUDIT_COLUMNS,
}

UNIQUE_COLUMNS: dict[str, tuple[str, ...]] = {
    "profiles": ("id", "email"),
}


def columns_for(table: str) -> list[str]:
    """Column order of a table's worksheet. Raises NotFoundError for an unknown table."""
    try:
        return TABLE_COLUMNS[table]
    except KeyError:
        raise NotFoundError(f"Unknown table: {table}")


def encode_cell(value: Any) -> str:
    return "" if value is None else json.dumps(value)


def decode_cell(cell: str) -> Any:
    if cell == "":
        return None
    try:
        return json.loads(cell)
    except ValueError:
        # Cells edited by hand in the Sheets UI are plain text
        return cell


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._worksheets: dict[str, gspread.Worksheet] = {}
        self._settings = get_settings().google_sheets

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def connect(self) -> gspread.Client:
        """
        Establish connection to Google Sheets.

        Uses service account credentials for authentication.
        """
        if self._client is None:
            try:
                scopes = [
                    "https://www.googleapis.com/auth/spreadsheets",
                    "https://www.googleapis.com/auth/drive",
                ]
                credentials = Credentials.from_service_account_file(
                    self._settings.credentials_path,
                    scopes=scopes,
                )
                self._client = gspread.authorize(credentials)
            except FileNotFoundError:
                raise ConnectionError(
                    f"Google credentials file not found: {self._settings.credentials_path}"
                )
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Google Sheets: {e}")

        return self._client

    def get_spreadsheet(self) -> gspread.Spreadsheet:
        """Get the configured spreadsheet."""
        if self._spreadsheet is None:
            client = self.connect()
            try:
                self._spreadsheet = client.open_by_key(
                    self._settings.spreadsheet_id
                )
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_table_sheet(self, table: str) -> gspread.Worksheet:
        """Get or create the worksheet backing ``table``."""
        if table in self._worksheets:
            return self._worksheets[table]
        columns_for(table)

        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(table)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(
                title=table,
                rows=self._settings.default_sheet_rows,
                cols=len(TABLE_COLUMNS[table]),
            )
            sheet.append_row(TABLE_COLUMNS[table])
        self._worksheets[table] = sheet
        return sheet


class GoogleSheetsGateway(GatewayInterface):
    """
    Google Sheets implementation of the persistence gateway.

    Reads fetch the whole worksheet and filter in Python; writes address
    rows by their 1-based sheet index (row 1 is the header).
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_cells(self, table: str, row: Row) -> list[str]:
        return [encode_cell(row.get(column)) for column in columns_for(table)]

    def _cells_to_row(self, header: list[str], cells: list[str]) -> Row:
        def safe_get(index: int) -> str:
            try:
                return cells[index]
            except IndexError:
                return ""

        return {column: decode_cell(safe_get(i)) for i, column in enumerate(header)}

    def _read_table(self, table: str) -> tuple[gspread.Worksheet, list[tuple[int, Row]]]:
        """Return the sheet and (sheet_row_index, row) pairs, header skipped."""
        columns_for(table)
        sheet = self._client.get_table_sheet(table)
        values = sheet.get_all_values()
        if not values:
            return sheet, []
        header = values[0]
        rows = []
        for idx, cells in enumerate(values[1:], start=2):
            if not cells or not any(cells):
                continue
            rows.append((idx, self._cells_to_row(header, cells)))
        return sheet, rows

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        retry=retry_if_not_exception_type(DuplicateError),
        reraise=True,
    )
    async def insert(self, table: str, row: Row) -> Row:
        try:
            sheet, existing = self._read_table(table)
            for column in UNIQUE_COLUMNS.get(table, ()):
                value = row.get(column)
                if value is not None and any(r.get(column) == value for _, r in existing):
                    raise DuplicateError(f"Duplicate value for {table}.{column}: {value}")
            sheet.append_row(self._row_to_cells(table, row), value_input_option="RAW")
            return dict(row)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert into {table}: {e}")

    async def update(self, table: str, filters: Filters, patch: Row) -> int:
        try:
            sheet, existing = self._read_table(table)
            updated = 0
            for idx, row in existing:
                if not matches(row, filters):
                    continue
                new_cells = self._row_to_cells(table, {**row, **patch})
                for col_idx, value in enumerate(new_cells, start=1):
                    sheet.update_cell(idx, col_idx, value)
                updated += 1
            return updated
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update {table}: {e}")

    async def delete(self, table: str, filters: Filters) -> int:
        try:
            sheet, existing = self._read_table(table)
            targets = [idx for idx, row in existing if matches(row, filters)]
            # Bottom-up so earlier deletions don't shift later indices
            for idx in sorted(targets, reverse=True):
                sheet.delete_rows(idx)
            return len(targets)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to delete from {table}: {e}")

    async def select(
        self,
        table: str,
        filters: Optional[Filters] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> list[Row]:
        try:
            _, existing = self._read_table(table)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read {table}: {e}")

        rows = sort_rows([row for _, row in existing if matches(row, filters)], order_by)
        if limit is not None:
            rows = rows[:limit]
        return rows
