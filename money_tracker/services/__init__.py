"""Services package."""

from money_tracker.services.currency import (
    ExchangeRateStore,
    UsageSinkInterface,
    UsageTracker,
)
from money_tracker.services.reminders import (
    LoggingReminderScheduler,
    ReminderSchedulerInterface,
)
from money_tracker.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryAuditStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    StaleReferenceError,
    StorageError,
)

__all__ = [
    # Currency services
    "ExchangeRateStore",
    "UsageSinkInterface",
    "UsageTracker",
    # Reminders
    "LoggingReminderScheduler",
    "ReminderSchedulerInterface",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "GoogleSheetsAuditStorage",
    "GoogleSheetsClient",
    "GoogleSheetsLedgerStorage",
    "InMemoryAuditStorage",
    "InMemoryLedgerStorage",
    "LedgerStorageInterface",
    "NotFoundError",
    "StaleReferenceError",
    "StorageError",
]
