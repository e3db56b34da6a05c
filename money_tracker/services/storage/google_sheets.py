"""
Google Sheets Storage Implementation

DESIGN DECISION: Google Sheets is offered as a storage backend because:
1. Users can inspect their ledger directly in Sheets
2. No database setup required
3. Built-in backup (Google's infrastructure)

TRADEOFFS:
- Not suitable for high-volume data (fine for a personal ledger)
- No transactions (a series delete is one batch of row deletions)
- Limited query capabilities (we filter in Python)

One worksheet per entity. Every cell is a string; models are rebuilt
through pydantic so Decimal, UUID and datetime parsing stays in one place.
"""

import json
from typing import Any, Iterable, Optional
from uuid import UUID

import gspread
import structlog
from google.oauth2.service_account import Credentials
from tenacity import retry, stop_after_attempt, wait_exponential

from money_tracker.config import get_settings
from money_tracker.models.account import Account
from money_tracker.models.audit import AuditEvent
from money_tracker.models.currency import Currency, ExchangeRate
from money_tracker.models.transaction import Transaction, TransactionStatus
from money_tracker.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    LedgerStorageInterface,
    StorageError,
)

logger = structlog.get_logger(__name__)


ACCOUNT_COLUMNS = [
    "id",
    "name",
    "account_type",
    "currency",
    "initial_balance",
    "credit_limit",
    "description",
    "created_at",
]

TRANSACTION_COLUMNS = [
    "id",
    "transaction_type",
    "created_at",
    "amount",
    "currency",
    "destination_amount",
    "exchange_rate_snapshot",
    "is_custom_rate",
    "interest_amount",
    "account_id",
    "destination_account_id",
    "category_id",
    "notes",
    "date",
    "status",
    "is_scheduled",
    "is_automatic",
    "scheduled_date",
    "is_recurring",
    "parent_recurring_transaction_id",
    "recurrence_rule",
    "recurrence_end_date",
    "adjust_to_working_day",
    "include_start_day_in_count",
]

CURRENCY_COLUMNS = ["code", "symbol", "display_name"]

EXCHANGE_RATE_COLUMNS = ["id", "from_code", "to_code", "rate", "source", "updated_at"]

# Column mappings for Audit sheet
AUDIT_COLUMNS = [
    "event_id",
    "timestamp",
    "event_type",
    "severity",
    "entity_type",
    "entity_id",
    "correlation_id",
    "description",
    "details_json",
    "error_message",
    "is_user_action",
]

_sheets_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=2, max=10),
    reraise=True,
)


def _to_cell(value: Any) -> str:
    """Serialize one model value to a sheet cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if hasattr(value, "value"):  # Enum
        return str(value.value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "model_dump"):
        return json.dumps(value.model_dump(mode="json"))
    return str(value)


def _model_to_row(model: Any, columns: list[str]) -> list[str]:
    return [_to_cell(getattr(model, column)) for column in columns]


def _row_to_record(row: list, columns: list[str]) -> dict[str, str]:
    """Map a row onto its columns, dropping empty cells so model defaults apply."""
    def safe_get(index: int, default: str = "") -> str:
        try:
            return row[index] if row[index] else default
        except IndexError:
            return default

    return {
        column: safe_get(idx)
        for idx, column in enumerate(columns)
        if safe_get(idx)
    }


def _row_to_transaction(row: list) -> Transaction:
    record: dict[str, Any] = _row_to_record(row, TRANSACTION_COLUMNS)
    if "recurrence_rule" in record:
        record["recurrence_rule"] = json.loads(record["recurrence_rule"])
    return Transaction.model_validate(record)


class GoogleSheetsClient:
    """
    Low-level Google Sheets client wrapper.

    Handles authentication and provides retry logic for API calls.
    """

    def __init__(self):
        self._client: Optional[gspread.Client] = None
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._settings = get_settings().google_sheets

    @_sheets_retry
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
                self._spreadsheet = client.open_by_key(self._settings.spreadsheet_id)
            except gspread.SpreadsheetNotFound:
                raise ConnectionError(
                    f"Spreadsheet not found: {self._settings.spreadsheet_id}"
                )
        return self._spreadsheet

    def get_sheet(self, title: str, columns: list[str], rows: int = 1000) -> gspread.Worksheet:
        """Get a worksheet, creating it with a header row if missing."""
        spreadsheet = self.get_spreadsheet()
        try:
            sheet = spreadsheet.worksheet(title)
        except gspread.WorksheetNotFound:
            sheet = spreadsheet.add_worksheet(title=title, rows=rows, cols=len(columns))
            sheet.append_row(columns)
        return sheet

    def get_accounts_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.accounts_sheet_name, ACCOUNT_COLUMNS)

    def get_transactions_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(
            self._settings.transactions_sheet_name, TRANSACTION_COLUMNS, rows=5000
        )

    def get_currencies_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.currencies_sheet_name, CURRENCY_COLUMNS)

    def get_exchange_rates_sheet(self) -> gspread.Worksheet:
        return self.get_sheet(self._settings.exchange_rates_sheet_name, EXCHANGE_RATE_COLUMNS)

    def get_audit_sheet(self) -> gspread.Worksheet:
        # More rows for audit log
        return self.get_sheet(self._settings.audit_sheet_name, AUDIT_COLUMNS, rows=5000)


def _upsert_row(sheet: gspread.Worksheet, key: str, row: list[str], key_column: int = 0) -> None:
    """Overwrite the row whose key column matches, or append a new one."""
    all_rows = sheet.get_all_values()
    for idx, existing in enumerate(all_rows[1:], start=2):  # Row 1 is the header
        if len(existing) > key_column and existing[key_column] == key:
            sheet.update(range_name=f"A{idx}", values=[row])
            return
    sheet.append_row(row, value_input_option="RAW")


class GoogleSheetsLedgerStorage(LedgerStorageInterface):
    """
    Google Sheets implementation of ledger storage.

    Each entity is one row. The recurrence rule is JSON-serialized.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @_sheets_retry
    async def save_account(self, account: Account) -> bool:
        try:
            sheet = self._client.get_accounts_sheet()
            _upsert_row(sheet, str(account.id), _model_to_row(account, ACCOUNT_COLUMNS))
            return True
        except Exception as e:
            raise StorageError(f"Failed to save account: {e}")

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        for account in await self.list_accounts():
            if account.id == account_id:
                return account
        return None

    async def list_accounts(self) -> list[Account]:
        try:
            sheet = self._client.get_accounts_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list accounts: {e}")

        accounts = []
        for row in all_rows:
            if not row or not row[0]:
                continue
            try:
                accounts.append(Account.model_validate(_row_to_record(row, ACCOUNT_COLUMNS)))
            except ValueError as e:
                logger.warning("malformed_account_row", row_id=row[0], error=str(e))
        accounts.sort(key=lambda a: a.created_at)
        return accounts

    @_sheets_retry
    async def delete_account(self, account_id: UUID) -> bool:
        try:
            sheet = self._client.get_accounts_sheet()
            all_rows = sheet.get_all_values()
            target = None
            for idx, row in enumerate(all_rows[1:], start=2):
                if row and row[0] == str(account_id):
                    target = idx
                    break
            if target is None:
                return False
        except Exception as e:
            raise StorageError(f"Failed to delete account: {e}")

        owned = await self.list_transactions(account_id=account_id)
        await self.delete_transactions(t.id for t in owned)

        try:
            sheet.delete_rows(target)
        except Exception as e:
            raise StorageError(f"Failed to delete account: {e}")
        return True

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @_sheets_retry
    async def save_transaction(self, transaction: Transaction) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            _upsert_row(
                sheet,
                str(transaction.id),
                _model_to_row(transaction, TRANSACTION_COLUMNS),
            )
            return True
        except Exception as e:
            raise StorageError(f"Failed to save transaction: {e}")

    @_sheets_retry
    async def save_transactions(self, transactions: Iterable[Transaction]) -> int:
        transactions = list(transactions)
        if not transactions:
            return 0
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()
            row_index = {
                row[0]: idx
                for idx, row in enumerate(all_rows[1:], start=2)
                if row and row[0]
            }
            new_rows = []
            for tx in transactions:
                row = _model_to_row(tx, TRANSACTION_COLUMNS)
                if str(tx.id) in row_index:
                    sheet.update(range_name=f"A{row_index[str(tx.id)]}", values=[row])
                else:
                    new_rows.append(row)
            if new_rows:
                sheet.append_rows(new_rows, value_input_option="RAW")
            return len(transactions)
        except Exception as e:
            raise StorageError(f"Failed to save transactions: {e}")

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get transaction: {e}")

        for row in all_rows:
            if row and row[0] == str(transaction_id):
                return _row_to_transaction(row)
        return None

    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        destination_account_id: Optional[UUID] = None,
        status: Optional[TransactionStatus] = None,
        parent_id: Optional[UUID] = None,
        is_recurring: Optional[bool] = None,
        is_scheduled: Optional[bool] = None,
    ) -> list[Transaction]:
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()[1:]  # Skip header
        except Exception as e:
            raise StorageError(f"Failed to list transactions: {e}")

        transactions = []
        for row in all_rows:
            if not row or not row[0]:  # Skip empty rows
                continue
            try:
                tx = _row_to_transaction(row)
            except ValueError as e:
                logger.warning("malformed_transaction_row", row_id=row[0], error=str(e))
                continue

            if account_id is not None and tx.account_id != account_id:
                continue
            if destination_account_id is not None and tx.destination_account_id != destination_account_id:
                continue
            if status is not None and tx.status != status:
                continue
            if parent_id is not None and tx.parent_recurring_transaction_id != parent_id:
                continue
            if is_recurring is not None and tx.is_recurring != is_recurring:
                continue
            if is_scheduled is not None and tx.is_scheduled != is_scheduled:
                continue
            transactions.append(tx)

        transactions.sort(key=lambda t: (t.date, t.created_at))
        return transactions

    @_sheets_retry
    async def delete_transactions(self, transaction_ids: Iterable[UUID]) -> int:
        wanted = {str(tx_id) for tx_id in transaction_ids}
        if not wanted:
            return 0
        try:
            sheet = self._client.get_transactions_sheet()
            all_rows = sheet.get_all_values()
            indexes = [
                idx for idx, row in enumerate(all_rows[1:], start=2)
                if row and row[0] in wanted
            ]
            # Bottom-up so earlier deletions don't shift later row numbers
            for idx in sorted(indexes, reverse=True):
                sheet.delete_rows(idx)
            return len(indexes)
        except Exception as e:
            raise StorageError(f"Failed to delete transactions: {e}")

    async def transaction_exists(self, transaction_id: UUID) -> bool:
        try:
            sheet = self._client.get_transactions_sheet()
            ids = sheet.col_values(1)[1:]
        except Exception as e:
            raise StorageError(f"Failed to check transaction: {e}")
        return str(transaction_id) in ids

    # -------------------------------------------------------------------------
    # Currencies and exchange rates
    # -------------------------------------------------------------------------

    @_sheets_retry
    async def save_currency(self, currency: Currency) -> bool:
        try:
            sheet = self._client.get_currencies_sheet()
            _upsert_row(sheet, currency.code, _model_to_row(currency, CURRENCY_COLUMNS))
            return True
        except Exception as e:
            raise StorageError(f"Failed to save currency: {e}")

    async def list_currencies(self) -> list[Currency]:
        try:
            sheet = self._client.get_currencies_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list currencies: {e}")
        return [
            Currency.model_validate(_row_to_record(row, CURRENCY_COLUMNS))
            for row in all_rows
            if row and row[0]
        ]

    @_sheets_retry
    async def save_exchange_rate(self, rate: ExchangeRate) -> bool:
        try:
            sheet = self._client.get_exchange_rates_sheet()
            all_rows = sheet.get_all_values()
            row = _model_to_row(rate, EXCHANGE_RATE_COLUMNS)
            for idx, existing in enumerate(all_rows[1:], start=2):
                if len(existing) > 2 and (existing[1], existing[2]) == rate.pair:
                    sheet.update(range_name=f"A{idx}", values=[row])
                    return True
            sheet.append_row(row, value_input_option="RAW")
            return True
        except Exception as e:
            raise StorageError(f"Failed to save exchange rate: {e}")

    async def list_exchange_rates(self) -> list[ExchangeRate]:
        try:
            sheet = self._client.get_exchange_rates_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to list exchange rates: {e}")
        return [
            ExchangeRate.model_validate(_row_to_record(row, EXCHANGE_RATE_COLUMNS))
            for row in all_rows
            if row and row[0]
        ]


class GoogleSheetsAuditStorage(AuditStorageInterface):
    """
    Google Sheets implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[GoogleSheetsClient] = None):
        self._client = client or GoogleSheetsClient()

    def _row_to_event(self, row: list) -> AuditEvent:
        """Convert a spreadsheet row to an AuditEvent."""
        record: dict[str, Any] = _row_to_record(row, AUDIT_COLUMNS)
        record["details"] = json.loads(record.pop("details_json", "{}"))
        record["is_user_action"] = record.get("is_user_action", "").lower() == "true"
        return AuditEvent.model_validate(record)

    async def _load_events(self) -> list[AuditEvent]:
        try:
            sheet = self._client.get_audit_sheet()
            all_rows = sheet.get_all_values()[1:]
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

        events = []
        for row in all_rows:
            if row and row[0]:
                try:
                    events.append(self._row_to_event(row))
                except ValueError:
                    continue
        return events

    @_sheets_retry
    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event."""
        try:
            sheet = self._client.get_audit_sheet()
            sheet.append_row(event.to_sheets_row(), value_input_option="RAW")
            return True
        except Exception as e:
            # Audit logging must not break the main flow
            logger.warning("audit_event_write_failed", event_id=str(event.event_id), error=str(e))
            return False

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in await self._load_events() if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in await self._load_events()
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        events = await self._load_events()
        events.sort(key=lambda e: e.timestamp, reverse=True)
        return events[:limit]
