"""Balance derivation."""

from money_tracker.balance.engine import BalanceEngine

__all__ = ["BalanceEngine"]
