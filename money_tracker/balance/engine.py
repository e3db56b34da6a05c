"""
Balance Derivation Engine

An account balance is never stored. It is folded from the account's
initial balance and the executed transactions touching it, up to an
instant. The fold is commutative, so input order does not matter.

CRITICAL: Only EXECUTED transactions count. Templates, pending and
cancelled entries are skipped regardless of date.
"""

from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Optional
from uuid import UUID

from money_tracker.models.account import Account
from money_tracker.models.money import ZERO
from money_tracker.models.transaction import (
    Transaction,
    TransactionStatus,
    TransactionType,
    total_outflow,
)
from money_tracker.services.currency.store import ExchangeRateStore


class BalanceEngine:
    """
    Pure balance computation.

    No I/O: callers hand in the transactions read from storage. Conversions
    go through the rate store and degrade to identity when no rate exists.
    """

    def __init__(self, rates: ExchangeRateStore):
        self._rates = rates

    def effective_amount(self, transaction: Transaction, account_currency: str) -> Decimal:
        """
        Amount applied to the source account for non-transfer types.

        The stored destination amount wins, then a conversion into the
        account's currency, then the raw amount.
        """
        if transaction.destination_amount is not None:
            return transaction.destination_amount
        if transaction.currency != account_currency:
            return self._rates.convert(transaction.amount, transaction.currency, account_currency)
        return transaction.amount

    def incoming_amount(self, transaction: Transaction, account_currency: str) -> Decimal:
        """Amount a transfer credits to its destination account."""
        if transaction.destination_amount is not None:
            return transaction.destination_amount
        return self._rates.convert(transaction.amount, transaction.currency, account_currency)

    def signed_outgoing(self, transaction: Transaction, account_currency: str) -> Decimal:
        """Signed effect of a transaction on its own (source) account."""
        tx_type = transaction.transaction_type

        if tx_type == TransactionType.TRANSFER:
            # The source side always moves its own-currency amount
            return -transaction.amount
        if tx_type == TransactionType.ADJUSTMENT:
            return transaction.amount

        amount = self.effective_amount(transaction, account_currency)
        if tx_type == TransactionType.EXPENSE:
            return -amount
        if tx_type == TransactionType.INCOME:
            return amount
        if tx_type == TransactionType.LIABILITY_PAYMENT:
            return -total_outflow(amount, transaction.interest_amount)

        raise ValueError(f"Unhandled transaction type: {tx_type}")

    def balance_as_of(
        self,
        account: Account,
        outgoing: Iterable[Transaction],
        incoming: Iterable[Transaction],
        as_of: datetime,
        exists: Optional[Callable[[UUID], bool]] = None,
    ) -> Decimal:
        """
        Balance of `account` at `as_of`.

        Args:
            account: The account
            outgoing: Transactions whose source is this account
            incoming: Transfers whose destination is this account
            as_of: Instant to evaluate at (inclusive)
            exists: Optional presence check; entries it rejects are skipped

        Returns:
            Signed balance in the account's currency, 0 before the account existed
        """
        if as_of < account.created_at:
            return ZERO

        def counts(tx: Transaction) -> bool:
            return (
                not tx.is_template
                and tx.status == TransactionStatus.EXECUTED
                and tx.date <= as_of
                and (exists is None or exists(tx.id))
            )

        balance = account.initial_balance

        for tx in outgoing:
            if tx.account_id == account.id and counts(tx):
                balance += self.signed_outgoing(tx, account.currency)

        for tx in incoming:
            if (
                tx.transaction_type == TransactionType.TRANSFER
                and tx.destination_account_id == account.id
                and counts(tx)
            ):
                balance += self.incoming_amount(tx, account.currency)

        return balance
