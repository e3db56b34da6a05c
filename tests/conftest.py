"""
Shared fixtures.

Test strategy:
1. Unit tests for pure components (models, recurrence, balance folding)
2. Flow tests for the LedgerService on in-memory storage
3. No network calls in tests (Google Sheets is never touched)

Async flows are driven with asyncio.run; each test runs its whole
scenario inside one event loop so background tasks can be drained.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import UUID

import pytest

from money_tracker.audit import AuditLogger
from money_tracker.config import LedgerSettings
from money_tracker.models import Account, AccountType, Currency, RateSource, Transaction
from money_tracker.orchestrator import LedgerService
from money_tracker.services.currency import ExchangeRateStore, UsageSinkInterface
from money_tracker.services.reminders import ReminderSchedulerInterface
from money_tracker.services.storage import InMemoryAuditStorage, InMemoryLedgerStorage

# Tuesday
NOW = datetime(2026, 3, 10, 12, 0)
EPOCH = datetime(2026, 1, 1)


class FixedClock:
    """A clock tests can move by hand."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingReminders(ReminderSchedulerInterface):
    def __init__(self):
        self.scheduled: dict[UUID, datetime] = {}
        self.cancelled: list[UUID] = []
        self.due: list[UUID] = []

    async def schedule(self, transaction: Transaction) -> None:
        self.scheduled[transaction.id] = transaction.schedule_anchor

    async def cancel(self, transaction_id: UUID) -> None:
        self.cancelled.append(transaction_id)
        self.scheduled.pop(transaction_id, None)

    async def notify_due(self, transaction: Transaction) -> None:
        self.due.append(transaction.id)


class RecordingUsage(UsageSinkInterface):
    def __init__(self):
        self.currencies: list[str] = []
        self.categories: list[UUID] = []

    def record_currency_usage(self, code: str) -> None:
        self.currencies.append(code)

    def record_category_usage(self, category_id: UUID) -> None:
        self.categories.append(category_id)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def rates(clock) -> ExchangeRateStore:
    store = ExchangeRateStore(clock=clock)
    for code, symbol, name in (
        ("EUR", "€", "Euro"),
        ("USD", "$", "US Dollar"),
        ("GBP", "£", "Pound Sterling"),
        ("JPY", "¥", "Yen"),
    ):
        store.add_currency(Currency(code=code, symbol=symbol, display_name=name))
    store.update_exchange_rate("EUR", "USD", Decimal("1.1"), RateSource.MANUAL)
    store.update_exchange_rate("GBP", "EUR", Decimal("0.5"), RateSource.MANUAL)
    return store


@pytest.fixture
def storage() -> InMemoryLedgerStorage:
    return InMemoryLedgerStorage()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def reminders() -> RecordingReminders:
    return RecordingReminders()


@pytest.fixture
def usage() -> RecordingUsage:
    return RecordingUsage()


@pytest.fixture
def eur_account() -> Account:
    return Account(
        name="Checking",
        account_type=AccountType.PAYMENT,
        currency="EUR",
        initial_balance=Decimal("1000"),
        created_at=EPOCH,
    )


@pytest.fixture
def usd_account() -> Account:
    return Account(
        name="US Savings",
        account_type=AccountType.ASSET,
        currency="USD",
        initial_balance=Decimal("500"),
        created_at=EPOCH,
    )


@pytest.fixture
def service(storage, rates, audit_storage, reminders, usage, clock, eur_account, usd_account) -> LedgerService:
    ledger = LedgerService(
        storage,
        rates=rates,
        audit_logger=AuditLogger(audit_storage),
        reminders=reminders,
        usage=usage,
        settings=LedgerSettings(),
        clock=clock,
    )

    async def setup():
        await storage.save_account(eur_account)
        await storage.save_account(usd_account)

    asyncio.run(setup())
    return ledger
