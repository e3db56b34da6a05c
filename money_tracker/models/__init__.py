"""
Data Models Package

This package contains all Pydantic models used by the ledger.
All data flowing through the system must conform to these schemas.
"""

from money_tracker.models.account import Account, AccountType
from money_tracker.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from money_tracker.models.currency import Currency, ExchangeRate, RateSource
from money_tracker.models.money import ZERO, Money, round_money, to_decimal
from money_tracker.models.patterns import DetectedRecurringPattern
from money_tracker.models.recurrence import RecurrenceRule, RecurrenceUnit
from money_tracker.models.transaction import (
    DeletionScope,
    EditScope,
    Transaction,
    TransactionChanges,
    TransactionSpec,
    TransactionStatus,
    TransactionType,
)
from money_tracker.models.validation import ValidationIssue, ValidationResult

__all__ = [
    # Money
    "Money",
    "ZERO",
    "round_money",
    "to_decimal",
    # Reference data
    "Account",
    "AccountType",
    "Currency",
    "ExchangeRate",
    "RateSource",
    # Transactions
    "DeletionScope",
    "EditScope",
    "RecurrenceRule",
    "RecurrenceUnit",
    "Transaction",
    "TransactionChanges",
    "TransactionSpec",
    "TransactionStatus",
    "TransactionType",
    "DetectedRecurringPattern",
    # Validation
    "ValidationIssue",
    "ValidationResult",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
