"""Recurring pattern detection."""

from money_tracker.patterns.detector import RecurringPatternDetector

__all__ = ["RecurringPatternDetector"]
