"""
Usage Tracking

Remembers which currencies and categories the user picks so pickers can
list them frequent-first. This is a best-effort side channel: nothing in
conversion or balance derivation reads it.
"""

from abc import ABC, abstractmethod
from collections import Counter
from typing import Hashable, Iterable, TypeVar
from uuid import UUID

T = TypeVar("T", bound=Hashable)


class UsageSinkInterface(ABC):
    """Where the ledger reports currency and category usage."""

    @abstractmethod
    def record_currency_usage(self, code: str) -> None:
        pass

    @abstractmethod
    def record_category_usage(self, category_id: UUID) -> None:
        pass


class _UsageLog:
    """Use counts plus a most-recent-first list of bounded length."""

    def __init__(self, recent_limit: int):
        self.counts: Counter = Counter()
        self.recent: list = []
        self._recent_limit = recent_limit

    def record(self, key: Hashable) -> None:
        self.counts[key] += 1
        if key in self.recent:
            self.recent.remove(key)
        self.recent.insert(0, key)
        del self.recent[self._recent_limit:]

    def reset(self) -> None:
        self.counts.clear()
        self.recent.clear()


class UsageTracker(UsageSinkInterface):
    """
    In-memory usage sink.

    Ordering is: frequent items (used at least `frequent_threshold` times,
    most used first), then recently used ones (most recent first), then
    everything else in the order given.
    """

    def __init__(self, frequent_threshold: int = 3, recent_limit: int = 5):
        self._threshold = frequent_threshold
        self._currencies = _UsageLog(recent_limit)
        self._categories = _UsageLog(recent_limit)

    def record_currency_usage(self, code: str) -> None:
        self._currencies.record(code.upper())

    def record_category_usage(self, category_id: UUID) -> None:
        self._categories.record(category_id)

    def currency_usage_count(self, code: str) -> int:
        return self._currencies.counts[code.upper()]

    def category_usage_count(self, category_id: UUID) -> int:
        return self._categories.counts[category_id]

    def recent_currencies(self) -> list[str]:
        return list(self._currencies.recent)

    def sorted_currencies(self, codes: Iterable[str]) -> list[str]:
        return self._sorted([c.upper() for c in codes], self._currencies)

    def sorted_categories(self, category_ids: Iterable[UUID]) -> list[UUID]:
        return self._sorted(list(category_ids), self._categories)

    def reset(self) -> None:
        self._currencies.reset()
        self._categories.reset()

    def _sorted(self, items: list[T], log: _UsageLog) -> list[T]:
        frequent, recent, other = [], [], []
        for item in items:
            if log.counts[item] >= self._threshold:
                frequent.append(item)
            elif item in log.recent:
                recent.append(item)
            else:
                other.append(item)

        frequent.sort(key=lambda item: log.counts[item], reverse=True)
        recent.sort(key=log.recent.index)
        return frequent + recent + other
