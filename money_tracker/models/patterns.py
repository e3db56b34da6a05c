"""Recurring pattern model."""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from money_tracker.models.transaction import TransactionType


class DetectedRecurringPattern(BaseModel):
    """
    A group of past transactions that look like the same recurring expense.

    Transactions are grouped by category, account, type AND amount, so the
    same category with two different amounts yields two patterns.
    """

    id: UUID = Field(default_factory=uuid4)
    category_id: UUID
    account_id: UUID
    transaction_type: TransactionType
    amount: Decimal
    currency: str
    occurrences: int = Field(..., ge=1)
    last_date: datetime
    transaction_ids: list[UUID] = Field(default_factory=list)
