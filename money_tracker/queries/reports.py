"""
Ledger Reports

DESIGN DECISION: Reports are DETERMINISTIC reads over stored data. They
never write and never estimate: a balance is always folded from the
transactions in storage at the moment of the call.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from money_tracker.balance.engine import BalanceEngine
from money_tracker.models.account import Account
from money_tracker.models.money import ZERO
from money_tracker.models.transaction import Transaction, TransactionStatus, TransactionType
from money_tracker.scheduling.recurrence import count_occurrences_between
from money_tracker.services.currency.store import ExchangeRateStore
from money_tracker.services.storage.interface import LedgerStorageInterface, NotFoundError


class ReportExecutor:
    """
    Read-only balance and schedule reports.

    GUARANTEES:
    - Only returns figures derived from storage
    - Balances use each transaction's stored destination amount or snapshot
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        engine: BalanceEngine,
        rates: ExchangeRateStore,
    ):
        self._storage = storage
        self._engine = engine
        self._rates = rates

    async def account_balance(self, account: Account, as_of: datetime) -> Decimal:
        """Balance of one account at `as_of`, read fresh from storage."""
        outgoing = await self._storage.list_transactions(account_id=account.id)
        incoming = await self._storage.list_transactions(destination_account_id=account.id)
        incoming = [t for t in incoming if t.transaction_type == TransactionType.TRANSFER]
        return self._engine.balance_as_of(account, outgoing, incoming, as_of)

    async def account_balances(self, as_of: datetime) -> dict[UUID, Decimal]:
        return {
            account.id: await self.account_balance(account, as_of)
            for account in await self._storage.list_accounts()
        }

    async def total_balance(self, target_currency: str, as_of: datetime) -> Decimal:
        """
        Sum of every account's balance, converted into `target_currency`.

        Accounts whose currency has no rate to the target are added as is.
        """
        total = ZERO
        for account in await self._storage.list_accounts():
            balance = await self.account_balance(account, as_of)
            total += self._rates.convert(balance, account.currency, target_currency)
        return total

    async def recurring_occurrence_count(
        self,
        template_id: UUID,
        period_start: datetime,
        period_end: datetime,
    ) -> int:
        """
        How many times a recurring template fires within [period_start, period_end].

        Raises:
            NotFoundError: If the template does not exist
        """
        template = await self._storage.get_transaction(template_id)
        if template is None or not template.is_template:
            raise NotFoundError(f"Recurring template not found: {template_id}")

        return count_occurrences_between(
            template.recurrence_rule,
            template.schedule_anchor,
            period_start,
            period_end,
            end_date=template.recurrence_end_date,
            include_start_day_in_count=template.include_start_day_in_count,
            adjust_to_working_day=template.adjust_to_working_day,
        )

    async def upcoming(self, now: datetime, until: Optional[datetime] = None) -> list[Transaction]:
        """Pending scheduled instances and one-offs due after `now`, soonest first."""
        pending = await self._storage.list_transactions(is_scheduled=True, is_recurring=False)
        upcoming = [
            t for t in pending
            if t.status == TransactionStatus.PENDING
            and t.schedule_anchor > now
            and (until is None or t.schedule_anchor <= until)
        ]
        upcoming.sort(key=lambda t: t.schedule_anchor)
        return upcoming
