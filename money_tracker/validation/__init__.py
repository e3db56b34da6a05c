"""Transaction request validation."""

from money_tracker.validation.validator import TransactionValidationError, TransactionValidator

__all__ = ["TransactionValidationError", "TransactionValidator"]
