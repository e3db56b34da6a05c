"""
Account Model

An account's balance is never stored here. `initial_balance` is the fixed
starting point; everything else is derived from the transaction log by the
balance engine.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator

from money_tracker.models.currency import CurrencyCode
from money_tracker.models.money import ZERO, Money


class AccountType(str, Enum):
    """Kinds of accounts a user can track."""
    CASH = "cash"
    PAYMENT = "payment"
    PREPAID_CARD = "prepaid_card"
    CREDIT_CARD = "credit_card"
    ASSET = "asset"
    LIABILITY = "liability"

    @property
    def is_debt(self) -> bool:
        """Debt accounts show their (negative) balance as an amount owed."""
        return self in (AccountType.CREDIT_CARD, AccountType.LIABILITY)


class Account(BaseModel):
    """A financial account in a single currency."""
    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=100)
    account_type: AccountType = AccountType.PAYMENT
    currency: CurrencyCode
    initial_balance: Money = ZERO
    credit_limit: Optional[Money] = Field(
        default=None,
        description="Spending limit, meaningful for credit cards"
    )
    description: str = Field(default="", max_length=500)
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("credit_limit")
    @classmethod
    def credit_limit_not_negative(cls, v: Optional[Decimal]) -> Optional[Decimal]:
        if v is not None and v < 0:
            raise ValueError("Credit limit cannot be negative")
        return v

    def available_credit(self, balance: Decimal) -> Optional[Decimal]:
        """Remaining credit given the current (signed) balance."""
        if self.account_type != AccountType.CREDIT_CARD or not self.credit_limit:
            return None
        return self.credit_limit + balance
