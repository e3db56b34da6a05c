"""
In-Memory Storage Implementation

Used by the test-suite and by callers that embed the ledger without a
backing store. Objects are copied on the way in and on the way out, so a
caller mutating a returned model never changes stored state until it saves.
"""

import asyncio
from typing import Iterable, Optional
from uuid import UUID

from money_tracker.models.account import Account
from money_tracker.models.audit import AuditEvent
from money_tracker.models.currency import Currency, ExchangeRate
from money_tracker.models.transaction import Transaction, TransactionStatus
from money_tracker.services.storage.interface import (
    AuditStorageInterface,
    LedgerStorageInterface,
)


class InMemoryLedgerStorage(LedgerStorageInterface):
    """Dictionary-backed ledger storage."""

    def __init__(self):
        self._accounts: dict[UUID, Account] = {}
        self._transactions: dict[UUID, Transaction] = {}
        self._currencies: dict[str, Currency] = {}
        self._rates: dict[tuple[str, str], ExchangeRate] = {}
        self._lock = asyncio.Lock()

    # Accounts

    async def save_account(self, account: Account) -> bool:
        async with self._lock:
            self._accounts[account.id] = account.model_copy(deep=True)
        return True

    async def get_account(self, account_id: UUID) -> Optional[Account]:
        account = self._accounts.get(account_id)
        return account.model_copy(deep=True) if account else None

    async def list_accounts(self) -> list[Account]:
        accounts = sorted(self._accounts.values(), key=lambda a: a.created_at)
        return [a.model_copy(deep=True) for a in accounts]

    async def delete_account(self, account_id: UUID) -> bool:
        async with self._lock:
            if self._accounts.pop(account_id, None) is None:
                return False
            owned = [
                tx_id for tx_id, tx in self._transactions.items()
                if tx.account_id == account_id
            ]
            for tx_id in owned:
                del self._transactions[tx_id]
        return True

    # Transactions

    async def save_transaction(self, transaction: Transaction) -> bool:
        async with self._lock:
            self._transactions[transaction.id] = transaction.model_copy(deep=True)
        return True

    async def save_transactions(self, transactions: Iterable[Transaction]) -> int:
        copies = [t.model_copy(deep=True) for t in transactions]
        async with self._lock:
            for tx in copies:
                self._transactions[tx.id] = tx
        return len(copies)

    async def get_transaction(self, transaction_id: UUID) -> Optional[Transaction]:
        tx = self._transactions.get(transaction_id)
        return tx.model_copy(deep=True) if tx else None

    async def list_transactions(
        self,
        account_id: Optional[UUID] = None,
        destination_account_id: Optional[UUID] = None,
        status: Optional[TransactionStatus] = None,
        parent_id: Optional[UUID] = None,
        is_recurring: Optional[bool] = None,
        is_scheduled: Optional[bool] = None,
    ) -> list[Transaction]:
        results = []
        for tx in self._transactions.values():
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
            results.append(tx.model_copy(deep=True))

        results.sort(key=lambda t: (t.date, t.created_at))
        return results

    async def delete_transactions(self, transaction_ids: Iterable[UUID]) -> int:
        deleted = 0
        async with self._lock:
            for tx_id in set(transaction_ids):
                if self._transactions.pop(tx_id, None) is not None:
                    deleted += 1
        return deleted

    async def transaction_exists(self, transaction_id: UUID) -> bool:
        return transaction_id in self._transactions

    # Currencies and rates

    async def save_currency(self, currency: Currency) -> bool:
        self._currencies[currency.code] = currency
        return True

    async def list_currencies(self) -> list[Currency]:
        return sorted(self._currencies.values(), key=lambda c: c.code)

    async def save_exchange_rate(self, rate: ExchangeRate) -> bool:
        self._rates[rate.pair] = rate
        return True

    async def list_exchange_rates(self) -> list[ExchangeRate]:
        return list(self._rates.values())


class InMemoryAuditStorage(AuditStorageInterface):
    """List-backed, append-only audit storage."""

    def __init__(self):
        self._events: list[AuditEvent] = []

    async def append_event(self, event: AuditEvent) -> bool:
        self._events.append(event)
        return True

    async def get_events_by_correlation_id(self, correlation_id: UUID) -> list[AuditEvent]:
        events = [e for e in self._events if e.correlation_id == correlation_id]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_events_by_entity(self, entity_type: str, entity_id: UUID) -> list[AuditEvent]:
        events = [
            e for e in self._events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        return sorted(events, key=lambda e: e.timestamp)

    async def get_recent_events(self, limit: int = 100) -> list[AuditEvent]:
        return sorted(self._events, key=lambda e: e.timestamp, reverse=True)[:limit]
