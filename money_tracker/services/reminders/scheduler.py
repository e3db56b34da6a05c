"""
Reminder Scheduling

The ledger asks an external collaborator to remind the user about
scheduled transactions. Delivery (push, e-mail, desktop) is out of scope;
the ledger only needs schedule / cancel keyed by transaction id, plus a
"this is due now" nudge for manual transactions the sweep finds.

Calls are fire-and-forget: the ledger wraps them so a failing reminder
backend never fails a ledger operation.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from uuid import UUID

import structlog

from money_tracker.models.transaction import Transaction


class ReminderSchedulerInterface(ABC):
    """Reminder backend keyed by transaction id."""

    @abstractmethod
    async def schedule(self, transaction: Transaction) -> None:
        """Remind the user at the transaction's scheduled date."""
        pass

    @abstractmethod
    async def cancel(self, transaction_id: UUID) -> None:
        """Drop any pending reminder. Unknown ids are ignored."""
        pass

    @abstractmethod
    async def notify_due(self, transaction: Transaction) -> None:
        """Tell the user a manual transaction is waiting for confirmation."""
        pass


class LoggingReminderScheduler(ReminderSchedulerInterface):
    """
    Reminder backend that only writes to the structured log.

    Keeps the set of pending reminders so callers can inspect it.
    """

    def __init__(self):
        self._logger = structlog.get_logger("money_tracker.reminders")
        self.pending: dict[UUID, datetime] = {}

    async def schedule(self, transaction: Transaction) -> None:
        fire_at = transaction.scheduled_date or transaction.date
        self.pending[transaction.id] = fire_at
        self._logger.info(
            "reminder_scheduled",
            transaction_id=str(transaction.id),
            fire_at=fire_at.isoformat(),
            automatic=transaction.is_automatic,
        )

    async def cancel(self, transaction_id: UUID) -> None:
        if self.pending.pop(transaction_id, None) is not None:
            self._logger.info("reminder_cancelled", transaction_id=str(transaction_id))

    async def notify_due(self, transaction: Transaction) -> None:
        self._logger.info(
            "transaction_due",
            transaction_id=str(transaction.id),
            amount=str(transaction.amount),
            currency=transaction.currency,
        )
