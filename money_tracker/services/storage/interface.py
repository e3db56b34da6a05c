"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Swap Google Sheets for a real database later
2. Use in-memory storage for testing
3. Add caching layers transparently
4. Keep ledger logic decoupled from storage implementation

The storage layer is the single authority on whether a transaction still
exists. There is no side-table of "recently deleted" ids: callers ask
`transaction_exists` (or get None back) and act on the answer.
"""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from money_tracker.models.account import Account
from money_tracker.models.audit import AuditEvent
from money_tracker.models.currency import Currency, ExchangeRate
from money_tracker.models.transaction import Transaction, TransactionStatus


class LedgerStorageInterface(ABC):
    """
    Abstract interface for ledger persistence.

    Any storage implementation (Google Sheets, SQLite, in-memory, etc.)
    must implement these methods.
    """

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_account(self, account: Account) -> bool:
        """
        Insert or update an account.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def get_account(self, account_id: UUID) -> Optional[Account]:
        """Retrieve an account by ID, or None if it doesn't exist."""
        pass

    @abstractmethod
    async def list_accounts(self) -> list[Account]:
        """List all accounts in creation order."""
        pass

    @abstractmethod
    async def delete_account(self, account_id: UUID) -> bool:
        """
        Delete an account and every transaction whose source is this account.

        Returns:
            True if the account existed
        """
        pass

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_transaction(self, transaction: Transaction) -> bool:
        """
        Insert or update a transaction.

        Raises:
            StorageError: If save fails
        """
        pass

    @abstractmethod
    async def save_transactions(self, transactions: Iterable[Transaction]) -> int:
        """
        Insert or update several transactions as one write.

        Returns:
            Number of transactions written
        """
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        """Retrieve a transaction by ID, or None if it no longer exists."""
        pass

    @abstractmethod
    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        destination_account_id: Optional[UUID] = None,
        status: Optional[TransactionStatus] = None,
        parent_id: Optional[UUID] = None,
        is_recurring: Optional[bool] = None,
        is_scheduled: Optional[bool] = None,
    ) -> list[Transaction]:
        """
        List transactions matching every given filter.

        Args:
            account_id: Source account
            destination_account_id: Destination account (transfers)
            status: Lifecycle status
            parent_id: Template id, selects the generated instances of a series
            is_recurring: Templates only (True) or non-templates (False)
            is_scheduled: Scheduled only (True) or unscheduled (False)

        Returns:
            Matching transactions ordered by date
        """
        pass

    @abstractmethod
    async def delete_transactions(self, transaction_ids: Iterable[UUID]) -> int:
        """
        Delete transactions by ID. Unknown ids are ignored.

        Returns:
            Number of transactions actually deleted
        """
        pass

    @abstractmethod
    async def transaction_exists(self, transaction_id: UUID) -> bool:
        """Authoritative presence check for a transaction id."""
        pass

    async def get_transaction_or_raise(self, transaction_id: UUID) -> Transaction:
        """
        Retrieve a transaction that is expected to exist.

        Raises:
            StaleReferenceError: If it was removed in the meantime
        """
        transaction = await self.get_transaction(transaction_id)
        if transaction is None:
            raise StaleReferenceError(f"Transaction no longer exists: {transaction_id}")
        return transaction

    # -------------------------------------------------------------------------
    # Currencies and exchange rates
    # -------------------------------------------------------------------------

    @abstractmethod
    async def save_currency(self, currency: Currency) -> bool:
        pass

    @abstractmethod
    async def list_currencies(self) -> list[Currency]:
        pass

    @abstractmethod
    async def save_exchange_rate(self, rate: ExchangeRate) -> bool:
        """Upsert the rate for its ordered (from, to) pair."""
        pass

    @abstractmethod
    async def list_exchange_rates(self) -> list[ExchangeRate]:
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a correlation ID, in chronological order."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """Get all events for a specific entity, in chronological order."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Get the most recent audit events (newest first)."""
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class StaleReferenceError(NotFoundError):
    """
    An operation targeted a transaction that has already been removed,
    typically by a concurrent series delete.
    """
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass
