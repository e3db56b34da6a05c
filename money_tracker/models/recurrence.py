"""Recurrence rule value type."""

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class RecurrenceUnit(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"

    @property
    def plural(self) -> str:
        return f"{self.value}s"


class RecurrenceRule(BaseModel):
    """
    How often a recurring transaction repeats: every `interval` `unit`s.

    Pure value type. The working-day and start-day policies live on the
    template transaction, not here.
    """
    model_config = ConfigDict(frozen=True)

    interval: int = Field(default=1, ge=1, le=365)
    unit: RecurrenceUnit = RecurrenceUnit.MONTH

    @property
    def display_string(self) -> str:
        if self.interval == 1:
            return f"Every {self.unit.value}"
        return f"Every {self.interval} {self.unit.plural}"
