"""
Transaction Lifecycle State Machine

    PENDING --confirm--> EXECUTED
    PENDING --cancel---> CANCELLED

EXECUTED and CANCELLED are terminal. Edits may still change an executed
transaction's fields, but its status never moves again.
"""

from datetime import datetime
from typing import Optional

from money_tracker.models.transaction import Transaction, TransactionStatus

ALLOWED_TRANSITIONS: dict[TransactionStatus, frozenset[TransactionStatus]] = {
    TransactionStatus.PENDING: frozenset({TransactionStatus.EXECUTED, TransactionStatus.CANCELLED}),
    TransactionStatus.EXECUTED: frozenset(),
    TransactionStatus.CANCELLED: frozenset(),
}


class InvalidTransitionError(Exception):
    """A status change the state machine does not allow."""

    def __init__(self, current: TransactionStatus, target: TransactionStatus):
        self.current = current
        self.target = target
        super().__init__(f"Cannot move a {current.value} transaction to {target.value}")

    @property
    def already_terminal(self) -> bool:
        return is_terminal(self.current)


def is_terminal(status: TransactionStatus) -> bool:
    return not ALLOWED_TRANSITIONS[status]


def initial_status(
    is_scheduled: bool,
    scheduled_date: Optional[datetime],
    now: datetime,
) -> TransactionStatus:
    """
    Status a new transaction starts in.

    Unscheduled entries execute immediately. A scheduled entry whose date
    has already passed also executes immediately, automatic or not, so
    nothing sits in an invisible backlog.
    """
    if not is_scheduled or scheduled_date is None:
        return TransactionStatus.EXECUTED
    if scheduled_date <= now:
        return TransactionStatus.EXECUTED
    return TransactionStatus.PENDING


def transition(
    transaction: Transaction,
    target: TransactionStatus,
    now: datetime,
) -> Transaction:
    """
    Return a copy of `transaction` moved to `target`.

    Confirming stamps the effective date with the scheduled date, or `now`
    for unscheduled entries.

    Raises:
        InvalidTransitionError: If the move is not allowed
    """
    if target not in ALLOWED_TRANSITIONS[transaction.status]:
        raise InvalidTransitionError(transaction.status, target)

    update: dict = {"status": target}
    if target == TransactionStatus.EXECUTED:
        update["date"] = transaction.scheduled_date or now
    return transaction.model_copy(update=update)
