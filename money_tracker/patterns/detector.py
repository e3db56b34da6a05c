"""
Recurring Pattern Detection

Looks at recent executed transactions and suggests turning repeated ones
into a recurring template. A pattern is the same category, account, type
and amount seen at least `min_occurrences` times in the lookback window.

The window ends at the start of today and excludes today, so a habit seen
on the previous days is suggested before today's entry is made.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable
from uuid import UUID

import structlog

from money_tracker.models.patterns import DetectedRecurringPattern
from money_tracker.models.transaction import Transaction, TransactionStatus, TransactionType

logger = structlog.get_logger(__name__)

PatternKey = tuple[UUID, UUID, TransactionType, Decimal]


class RecurringPatternDetector:
    """Groups past transactions into candidate recurring patterns."""

    def __init__(self, min_occurrences: int = 3, lookback_days: int = 30):
        self.min_occurrences = min_occurrences
        self.lookback_days = lookback_days

    def window(self, now: datetime) -> tuple[datetime, datetime]:
        """[start, end) of the lookback window."""
        start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        return start_of_today - timedelta(days=self.lookback_days), start_of_today

    def detect(self, transactions: Iterable[Transaction], now: datetime) -> list[DetectedRecurringPattern]:
        """
        Find recurring patterns, most frequent first.

        Only executed, unscheduled, non-template entries with a category
        inside the window are considered.
        """
        start, end = self.window(now)

        groups: dict[PatternKey, list[Transaction]] = defaultdict(list)
        for tx in transactions:
            if (
                tx.status != TransactionStatus.EXECUTED
                or tx.is_scheduled
                or tx.is_template
                or tx.category_id is None
                or not (start <= tx.date < end)
            ):
                continue
            key = (tx.category_id, tx.account_id, tx.transaction_type, tx.amount)
            groups[key].append(tx)

        patterns = []
        for (category_id, account_id, tx_type, amount), members in groups.items():
            if len(members) < self.min_occurrences:
                continue
            members.sort(key=lambda t: t.date)
            patterns.append(DetectedRecurringPattern(
                category_id=category_id,
                account_id=account_id,
                transaction_type=tx_type,
                amount=amount,
                currency=members[-1].currency,
                occurrences=len(members),
                last_date=members[-1].date,
                transaction_ids=[t.id for t in members],
            ))

        patterns.sort(key=lambda p: (p.occurrences, p.last_date), reverse=True)
        logger.debug(
            "recurring_patterns_detected",
            groups=len(groups),
            patterns=len(patterns),
            window_start=start.isoformat(),
        )
        return patterns
