"""
Currency and Exchange Rate Models

DESIGN DECISION: There is exactly one currency value type. Accounts and
transactions refer to currencies by their ISO-4217-like code; the richer
record (symbol, display name) is reference data held by the rate store.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from money_tracker.models.money import Money

CurrencyCode = Annotated[
    str,
    StringConstraints(strip_whitespace=True, to_upper=True, min_length=3, max_length=3),
]


class RateSource(str, Enum):
    """Where an exchange rate came from."""
    MANUAL = "manual"      # Typed in by the user
    FETCHED = "fetched"    # Pulled from a rate provider
    DEFAULT = "default"    # Seeded cross-rate


class Currency(BaseModel):
    """
    Immutable currency reference data.

    `code` is the unique key used everywhere else in the ledger.
    """
    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    code: CurrencyCode = Field(
        ...,
        description="ISO-4217-like currency code (e.g. EUR, USD, MOP)"
    )
    symbol: str = Field(
        default="",
        max_length=8,
        description="Currency symbol (e.g. €, $)"
    )
    display_name: str = Field(
        default="",
        max_length=100,
        description="Human-readable name"
    )

    @property
    def display_symbol(self) -> str:
        """
        Symbol suitable for display.

        Only USD is shown as a bare "$"; other dollar-like symbols
        (MOP$, AU$) fall back to the code to stay unambiguous.
        """
        if self.code == "USD":
            return "$"
        if "$" in self.symbol or not self.symbol:
            return self.code
        return self.symbol


class ExchangeRate(BaseModel):
    """
    A directional exchange rate.

    `rate` converts one unit of `from_code` into `to_code`. There is at most
    one current rate per ordered pair; updates overwrite, they do not version.
    """
    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    from_code: CurrencyCode
    to_code: CurrencyCode
    rate: Money = Field(..., description="Units of `to_code` per unit of `from_code`")
    source: RateSource = RateSource.MANUAL
    updated_at: datetime = Field(default_factory=datetime.now)

    @field_validator("rate")
    @classmethod
    def rate_must_be_positive(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("Exchange rate must be greater than zero")
        return v

    @property
    def pair(self) -> tuple[str, str]:
        return (self.from_code, self.to_code)

    @property
    def is_default(self) -> bool:
        """Seeded cross-rate, replaceable by any later rate."""
        return self.source == RateSource.DEFAULT
