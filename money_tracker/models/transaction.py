"""
Transaction Models

The transaction is the central ledger entry. It has an immutable shape: a
type tag, an amount in its own currency, an optional destination amount,
a status, and optional recurrence linkage.

A transaction is exactly one of:
- a one-off entry (no recurrence linkage),
- a recurring TEMPLATE (`is_recurring=True`, holds the rule),
- a generated INSTANCE (`parent_recurring_transaction_id` set).

CRITICAL: Only EXECUTED transactions affect balances.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from money_tracker.models.currency import CurrencyCode
from money_tracker.models.money import Money
from money_tracker.models.recurrence import RecurrenceRule


# =============================================================================
# ENUMS
# =============================================================================

class TransactionType(str, Enum):
    """
    Transaction types.

    Every type except ADJUSTMENT carries a non-negative amount and its sign
    is implied by the type. ADJUSTMENT amounts carry their own sign.
    """
    EXPENSE = "expense"
    INCOME = "income"
    TRANSFER = "transfer"
    LIABILITY_PAYMENT = "liability_payment"
    ADJUSTMENT = "adjustment"


class TransactionStatus(str, Enum):
    """
    Lifecycle status.

    PENDING -> EXECUTED and PENDING -> CANCELLED are the only transitions.
    """
    PENDING = "pending"
    EXECUTED = "executed"
    CANCELLED = "cancelled"


class DeletionScope(str, Enum):
    """How far a delete reaches into a recurring series."""
    THIS_ONLY = "this_only"
    THIS_AND_FUTURE = "this_and_future"
    ALL = "all"
    STOP_HERE = "stop_here"


class EditScope(str, Enum):
    """How far an edit reaches into a recurring series."""
    THIS_ONLY = "this_only"
    THIS_AND_FUTURE = "this_and_future"


# =============================================================================
# CORE TRANSACTION MODEL
# =============================================================================

class Transaction(BaseModel):
    """
    A ledger entry.

    `exchange_rate_snapshot` is write-once: once a rate has been captured it
    can never be replaced, so recalculating a past balance always uses the
    rate that applied when the transaction was created.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(default_factory=uuid4)
    transaction_type: TransactionType
    created_at: datetime = Field(default_factory=datetime.now)

    # Amounts
    amount: Money = Field(
        ...,
        description="Amount in the transaction's own currency"
    )
    currency: CurrencyCode
    destination_amount: Optional[Money] = Field(
        default=None,
        description="Amount credited on the destination side, in the destination currency"
    )
    exchange_rate_snapshot: Optional[Money] = Field(
        default=None,
        description="Rate applied at creation time; never recomputed"
    )
    is_custom_rate: bool = Field(
        default=False,
        description="True if the user overrode the auto-converted destination amount"
    )
    interest_amount: Optional[Money] = Field(
        default=None,
        description="Interest paid on top of a liability payment"
    )

    # Relationships (by id; the persistence layer owns the objects)
    account_id: UUID
    destination_account_id: Optional[UUID] = None
    category_id: Optional[UUID] = None
    notes: str = Field(default="", max_length=1000)

    # Effective date (also the scheduled date before execution)
    date: datetime = Field(default_factory=datetime.now)

    # Scheduling
    status: TransactionStatus = TransactionStatus.EXECUTED
    is_scheduled: bool = False
    is_automatic: bool = False
    scheduled_date: Optional[datetime] = None

    # Recurrence
    is_recurring: bool = False
    parent_recurring_transaction_id: Optional[UUID] = None
    recurrence_rule: Optional[RecurrenceRule] = None
    recurrence_end_date: Optional[datetime] = None
    adjust_to_working_day: bool = False
    include_start_day_in_count: bool = False

    @model_validator(mode="after")
    def validate_shape(self) -> "Transaction":
        """Enforce the structural invariants of a ledger entry."""
        if self.is_recurring and self.parent_recurring_transaction_id is not None:
            raise ValueError("A transaction cannot be both a recurring template and an instance")

        if self.is_recurring and self.recurrence_rule is None:
            raise ValueError("A recurring template requires a recurrence rule")

        if not self.is_recurring and self.recurrence_rule is not None:
            raise ValueError("Only recurring templates may carry a recurrence rule")

        if self.transaction_type == TransactionType.TRANSFER:
            if self.destination_account_id is None:
                raise ValueError("A transfer requires a destination account")
            if self.destination_account_id == self.account_id:
                raise ValueError("Transfer source and destination must be different accounts")

        if self.transaction_type != TransactionType.ADJUSTMENT:
            if self.amount < 0:
                raise ValueError("Amount cannot be negative; only adjustments carry a sign")
            if self.destination_amount is not None and self.destination_amount < 0:
                raise ValueError("Destination amount cannot be negative")

        if self.interest_amount is not None:
            if self.transaction_type != TransactionType.LIABILITY_PAYMENT:
                raise ValueError("Interest applies to liability payments only")
            if self.interest_amount < 0:
                raise ValueError("Interest amount cannot be negative")

        if self.exchange_rate_snapshot is not None and self.exchange_rate_snapshot <= 0:
            raise ValueError("Exchange rate snapshot must be greater than zero")

        return self

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "exchange_rate_snapshot":
            current = self.__dict__.get("exchange_rate_snapshot")
            if current is not None and value != current:
                raise ValueError("exchange_rate_snapshot is immutable once set")
        super().__setattr__(name, value)

    # -------------------------------------------------------------------------
    # Convenience properties
    # -------------------------------------------------------------------------

    @property
    def is_template(self) -> bool:
        return self.is_recurring

    @property
    def is_instance(self) -> bool:
        return self.parent_recurring_transaction_id is not None

    @property
    def series_id(self) -> Optional[UUID]:
        """Id of the template this transaction belongs to, if any."""
        if self.is_recurring:
            return self.id
        return self.parent_recurring_transaction_id

    @property
    def schedule_anchor(self) -> datetime:
        """The date used to order a transaction within its series."""
        return self.scheduled_date or self.date

    @property
    def affected_account_ids(self) -> set[UUID]:
        ids = {self.account_id}
        if self.destination_account_id is not None:
            ids.add(self.destination_account_id)
        return ids


# =============================================================================
# INPUT MODELS
# =============================================================================

class TransactionSpec(BaseModel):
    """
    What a caller asks for when creating a transaction.

    This model is intentionally lax: semantic checks (accounts exist,
    transfer endpoints differ, amount is positive) are done by the
    TransactionValidator so the caller gets a full list of issues.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    transaction_type: TransactionType
    amount: Money
    account_id: Optional[UUID] = None
    currency: Optional[CurrencyCode] = Field(
        default=None,
        description="Defaults to the account's currency"
    )
    destination_account_id: Optional[UUID] = None
    destination_amount: Optional[Money] = Field(
        default=None,
        description="Manual override of the converted destination amount"
    )
    interest_amount: Optional[Money] = None
    category_id: Optional[UUID] = None
    notes: str = ""
    date: Optional[datetime] = None

    is_scheduled: bool = False
    scheduled_date: Optional[datetime] = None
    is_automatic: bool = False

    is_recurring: bool = False
    recurrence_rule: Optional[RecurrenceRule] = None
    recurrence_end_date: Optional[datetime] = None
    adjust_to_working_day: bool = False
    include_start_day_in_count: bool = False


class TransactionChanges(BaseModel):
    """Fields a user may edit on an existing transaction. None means unchanged."""

    amount: Optional[Money] = None
    destination_amount: Optional[Money] = None
    interest_amount: Optional[Money] = None
    category_id: Optional[UUID] = None
    notes: Optional[str] = None
    is_automatic: Optional[bool] = None
    scheduled_date: Optional[datetime] = None

    def has_changes(self) -> bool:
        return bool(self.model_dump(exclude_none=True))


def is_money_change(changes: TransactionChanges) -> bool:
    """True if an edit touches an amount and therefore a balance."""
    return any(
        value is not None
        for value in (changes.amount, changes.destination_amount, changes.interest_amount)
    )


def total_outflow(amount: Decimal, interest: Optional[Decimal]) -> Decimal:
    """Amount plus interest, as debited by a liability payment."""
    return amount + (interest or Decimal("0"))
