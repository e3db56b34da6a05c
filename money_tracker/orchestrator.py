"""
Ledger Orchestrator

This module ties together all the components and defines the
end-to-end flows for:
1. Creating transactions (validate -> snapshot rate -> save -> recompute)
2. Moving scheduled transactions through their lifecycle
3. Generating, editing and deleting recurring series
4. Account and exchange-rate maintenance

DESIGN DECISION: The LedgerService enforces the boundaries:
- Nothing is written until a request has passed validation
- Balances are recomputed from the log after every balance-affecting write
- A transaction that vanished under a concurrent series delete is a no-op
- Every step is audited

Writes touching the same account are serialized with one asyncio.Lock per
account, always acquired in sorted id order. Reads never take locks.
"""

import asyncio
from collections import defaultdict
from contextlib import AsyncExitStack, asynccontextmanager
from datetime import datetime
from decimal import Decimal
from typing import AsyncIterator, Awaitable, Callable, Iterable, Optional, TypeVar
from uuid import UUID

import structlog
from pydantic import ValidationError

from money_tracker.audit import AuditLogger, configure_logging, create_correlation_id
from money_tracker.balance import BalanceEngine
from money_tracker.config import LedgerSettings, get_settings
from money_tracker.models.account import Account
from money_tracker.models.audit import AuditEventType
from money_tracker.models.currency import Currency, ExchangeRate, RateSource
from money_tracker.models.patterns import DetectedRecurringPattern
from money_tracker.models.transaction import (
    DeletionScope,
    EditScope,
    Transaction,
    TransactionChanges,
    TransactionSpec,
    TransactionStatus,
    TransactionType,
    is_money_change,
)
from money_tracker.models.validation import ValidationIssue, ValidationResult
from money_tracker.patterns import RecurringPatternDetector
from money_tracker.queries import ReportExecutor
from money_tracker.scheduling.lifecycle import InvalidTransitionError, initial_status, transition
from money_tracker.scheduling.scheduler import BackgroundTasks, DueProcessingResult, TransactionScheduler
from money_tracker.scheduling.series import plan_deletion, plan_edit, plan_instances
from money_tracker.services.currency import ExchangeRateStore, UsageSinkInterface, UsageTracker
from money_tracker.services.reminders import LoggingReminderScheduler, ReminderSchedulerInterface
from money_tracker.services.storage import (
    GoogleSheetsAuditStorage,
    GoogleSheetsClient,
    GoogleSheetsLedgerStorage,
    InMemoryLedgerStorage,
    LedgerStorageInterface,
    NotFoundError,
    StaleReferenceError,
    StorageError,
)
from money_tracker.validation import TransactionValidationError, TransactionValidator

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _rejection(field: str, issue_type: str, message: str) -> TransactionValidationError:
    issue = ValidationIssue(field=field, issue_type=issue_type, message=message, severity="error")
    return TransactionValidationError(ValidationResult(
        schema_valid=False,
        references_valid=False,
        is_valid=False,
        issues=[issue],
    ))


def _from_pydantic(error: ValidationError) -> TransactionValidationError:
    issues = [
        ValidationIssue(
            field=".".join(str(part) for part in err["loc"]) or "transaction",
            issue_type=err["type"],
            message=err["msg"],
            severity="error",
        )
        for err in error.errors()
    ]
    return TransactionValidationError(ValidationResult(
        schema_valid=False,
        references_valid=False,
        is_valid=False,
        issues=issues,
    ))


class LedgerService:
    """
    Facade over the ledger core.

    Collaborators are injected; the service holds no process-wide state.
    Reminder, usage and audit backends are best-effort: their failures are
    logged and never fail a ledger operation.
    """

    def __init__(
        self,
        storage: LedgerStorageInterface,
        rates: Optional[ExchangeRateStore] = None,
        audit_logger: Optional[AuditLogger] = None,
        reminders: Optional[ReminderSchedulerInterface] = None,
        usage: Optional[UsageSinkInterface] = None,
        settings: Optional[LedgerSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self._settings = settings or get_settings().ledger
        self._clock = clock
        self._storage = storage
        self._rates = rates or ExchangeRateStore(clock=clock)
        self._engine = BalanceEngine(self._rates)
        self._reports = ReportExecutor(storage, self._engine, self._rates)
        self._validator = TransactionValidator(storage, self._rates)
        self._audit_logger = audit_logger or AuditLogger()
        self._reminders = reminders or LoggingReminderScheduler()
        self._usage = usage or UsageTracker(
            frequent_threshold=self._settings.frequent_usage_threshold,
            recent_limit=self._settings.recent_usage_limit,
        )
        self._detector = RecurringPatternDetector(
            min_occurrences=self._settings.pattern_min_occurrences,
            lookback_days=self._settings.pattern_lookback_days,
        )
        self._tasks = BackgroundTasks()
        self._account_locks: dict[UUID, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._balances: dict[UUID, Decimal] = {}
        # Manual due transactions already reminded about
        self._notified_due: set[UUID] = set()

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def rates(self) -> ExchangeRateStore:
        return self._rates

    @property
    def reports(self) -> ReportExecutor:
        return self._reports

    @property
    def background_tasks(self) -> BackgroundTasks:
        return self._tasks

    def cached_balance(self, account_id: UUID) -> Optional[Decimal]:
        """Balance as of the last recomputation, if there was one."""
        return self._balances.get(account_id)

    def create_scheduler(self) -> TransactionScheduler:
        """A due-transaction sweep over this ledger at the configured interval."""
        return TransactionScheduler(
            self,
            interval_seconds=self._settings.scheduler_interval_seconds,
            clock=self._clock,
            audit_logger=self._audit_logger,
        )

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    @asynccontextmanager
    async def _locked(self, account_ids: Iterable[UUID]) -> AsyncIterator[None]:
        """Hold the locks of every given account, taken in sorted order."""
        async with AsyncExitStack() as stack:
            for account_id in sorted(set(account_ids)):
                await stack.enter_async_context(self._account_locks[account_id])
            yield

    async def _write(
        self,
        operation: str,
        action: Awaitable[T],
        correlation_id: Optional[UUID],
    ) -> T:
        """Run a storage write, auditing and re-raising any failure."""
        try:
            return await action
        except StorageError as e:
            await self._audit_logger.log_storage_failed(
                operation=operation,
                error_message=str(e),
                correlation_id=correlation_id,
            )
            raise

    async def _remind(self, action: str, *args) -> None:
        try:
            await getattr(self._reminders, action)(*args)
        except Exception as e:
            logger.warning("reminder_backend_failed", action=action, error=str(e))

    def _record_usage(self, transaction: Transaction, currency: bool = True, category: bool = True) -> None:
        try:
            if currency:
                self._usage.record_currency_usage(transaction.currency)
            if category and transaction.category_id is not None:
                self._usage.record_category_usage(transaction.category_id)
        except Exception as e:
            logger.warning("usage_sink_failed", error=str(e))

    def _needs_reminder(self, transaction: Transaction, now: datetime) -> bool:
        return (
            transaction.status == TransactionStatus.PENDING
            and transaction.is_scheduled
            and not transaction.is_template
            and transaction.schedule_anchor > now
        )

    async def _schedule_reminder(self, transaction_id: UUID) -> None:
        """Background task: schedule a reminder if the transaction still exists."""
        transaction = await self._storage.get_transaction(transaction_id)
        if transaction is None:
            await self._audit_logger.log_stale_reference(
                transaction_id=transaction_id,
                operation="schedule_reminder",
            )
            return
        if self._needs_reminder(transaction, self._clock()):
            await self._remind("schedule", transaction)

    def _queue_reminders(self, transactions: Iterable[Transaction]) -> None:
        now = self._clock()
        for tx in transactions:
            if self._needs_reminder(tx, now):
                self._tasks.spawn(self._schedule_reminder(tx.id), name=f"reminder-{tx.id}")

    async def _recompute(
        self,
        account_ids: Iterable[UUID],
        correlation_id: Optional[UUID] = None,
    ) -> dict[UUID, Decimal]:
        """Refold the given accounts. Callers hold the account locks."""
        now = self._clock()
        results = {}
        for account_id in sorted(set(account_ids)):
            account = await self._storage.get_account(account_id)
            if account is None:
                self._balances.pop(account_id, None)
                continue
            balance = await self._reports.account_balance(account, now)
            self._balances[account_id] = balance
            results[account_id] = balance
            await self._audit_logger.log_balance_recomputed(
                account_id=account_id,
                balance=str(balance),
                correlation_id=correlation_id,
            )
        return results

    async def _load_series(
        self,
        anchor: Transaction,
    ) -> tuple[Optional[Transaction], list[Transaction]]:
        """The template and instances of the anchor's series, if it has one."""
        series_id = anchor.series_id
        if series_id is None:
            return None, []
        template = anchor if anchor.is_template else await self._storage.get_transaction(series_id)
        instances = await self._storage.list_transactions(parent_id=series_id)
        return template, instances

    @staticmethod
    def _series_accounts(
        anchor: Transaction,
        template: Optional[Transaction],
        instances: list[Transaction],
    ) -> set[UUID]:
        ids = set(anchor.affected_account_ids)
        for tx in ([template] if template else []) + instances:
            ids |= tx.affected_account_ids
        return ids

    # -------------------------------------------------------------------------
    # Balances and conversion
    # -------------------------------------------------------------------------

    async def compute_balance(self, account_id: UUID, as_of: Optional[datetime] = None) -> Decimal:
        """
        Balance of an account at `as_of` (default: now).

        Raises:
            NotFoundError: If the account does not exist
        """
        account = await self._storage.get_account(account_id)
        if account is None:
            raise NotFoundError(f"Account not found: {account_id}")
        return await self._reports.account_balance(account, as_of or self._clock())

    def convert(self, amount: Decimal, from_code: str, to_code: str) -> Decimal:
        return self._rates.convert(amount, from_code, to_code)

    async def total_balance(
        self,
        target_currency: Optional[str] = None,
        as_of: Optional[datetime] = None,
    ) -> Decimal:
        """Sum of all account balances in `target_currency` (default from settings)."""
        return await self._reports.total_balance(
            target_currency or self._settings.default_currency,
            as_of or self._clock(),
        )

    async def recompute_balances(
        self,
        account_ids: Optional[Iterable[UUID]] = None,
        correlation_id: Optional[UUID] = None,
    ) -> dict[UUID, Decimal]:
        """Recompute and cache balances. Safe to call any number of times."""
        if account_ids is None:
            account_ids = [a.id for a in await self._storage.list_accounts()]
        account_ids = set(account_ids)
        async with self._locked(account_ids):
            return await self._recompute(account_ids, correlation_id)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    async def create_transaction(
        self,
        spec: TransactionSpec,
        correlation_id: Optional[UUID] = None,
    ) -> Transaction:
        """
        Validate and record a new transaction.

        Cross-currency entries capture the rate in force now as their
        snapshot. A recurring template is saved pending and its instances
        are generated in the background.

        Raises:
            TransactionValidationError: If the request is invalid
            StorageError: If the save fails
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            await self._validator.validate_or_raise(spec)
        except TransactionValidationError as e:
            await self._audit_logger.log_validation_failed(
                issues=[issue.model_dump() for issue in e.result.issues],
                correlation_id=correlation_id,
            )
            raise

        account = await self._storage.get_account(spec.account_id)
        destination = None
        if spec.destination_account_id is not None:
            destination = await self._storage.get_account(spec.destination_account_id)

        now = self._clock()
        currency = spec.currency or account.currency

        is_scheduled = spec.is_scheduled or spec.is_recurring
        scheduled_date = (spec.scheduled_date or spec.date or now) if is_scheduled else None
        if spec.is_recurring:
            status = TransactionStatus.PENDING
        else:
            status = initial_status(is_scheduled, scheduled_date, now)

        # Rate snapshot
        target_currency = (
            destination.currency
            if spec.transaction_type == TransactionType.TRANSFER and destination is not None
            else account.currency
        )
        destination_amount = spec.destination_amount
        snapshot = None
        is_custom_rate = False
        if spec.transaction_type != TransactionType.ADJUSTMENT and currency != target_currency:
            if destination_amount is not None:
                is_custom_rate = True
                if spec.amount > 0 and destination_amount > 0:
                    snapshot = destination_amount / spec.amount
            else:
                rate = self._rates.effective_rate(currency, target_currency)
                if rate is not None:
                    snapshot = rate
                    destination_amount = spec.amount * rate
        elif destination_amount is not None:
            is_custom_rate = True

        try:
            transaction = Transaction(
                transaction_type=spec.transaction_type,
                created_at=now,
                amount=spec.amount,
                currency=currency,
                destination_amount=destination_amount,
                exchange_rate_snapshot=snapshot,
                is_custom_rate=is_custom_rate,
                interest_amount=spec.interest_amount,
                account_id=account.id,
                destination_account_id=spec.destination_account_id,
                category_id=spec.category_id,
                notes=spec.notes,
                date=scheduled_date or spec.date or now,
                status=status,
                is_scheduled=is_scheduled,
                is_automatic=spec.is_automatic if is_scheduled else False,
                scheduled_date=scheduled_date,
                is_recurring=spec.is_recurring,
                recurrence_rule=spec.recurrence_rule,
                recurrence_end_date=spec.recurrence_end_date,
                adjust_to_working_day=spec.adjust_to_working_day,
                include_start_day_in_count=spec.include_start_day_in_count,
            )
        except ValidationError as e:
            error = _from_pydantic(e)
            await self._audit_logger.log_validation_failed(
                issues=[issue.model_dump() for issue in error.result.issues],
                correlation_id=correlation_id,
            )
            raise error from e

        async with self._locked(transaction.affected_account_ids):
            await self._write(
                "save_transaction",
                self._storage.save_transaction(transaction),
                correlation_id,
            )
            if transaction.status == TransactionStatus.EXECUTED:
                await self._recompute(transaction.affected_account_ids, correlation_id)

        # Category usage counts once the money actually moves
        self._record_usage(
            transaction,
            category=transaction.status == TransactionStatus.EXECUTED,
        )

        await self._audit_logger.log_transaction_created(
            transaction_id=transaction.id,
            transaction_type=transaction.transaction_type.value,
            amount=str(transaction.amount),
            currency=transaction.currency,
            status=transaction.status.value,
            correlation_id=correlation_id,
        )

        if transaction.is_template:
            self._tasks.spawn(
                self.generate_recurring_instances(transaction.id, correlation_id=correlation_id),
                name=f"generate-{transaction.id}",
            )
        else:
            self._queue_reminders([transaction])

        return transaction

    async def confirm_pending(
        self,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Execute a pending transaction.

        Returns the transaction as stored afterwards, or None if it no
        longer exists. Confirming an already executed or cancelled
        transaction changes nothing.

        Raises:
            TransactionValidationError: If the id is a recurring template
        """
        return await self._move(
            transaction_id,
            TransactionStatus.EXECUTED,
            "confirm",
            correlation_id or create_correlation_id(),
        )

    async def cancel_pending(
        self,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Optional[Transaction]:
        """
        Cancel a pending transaction. It never affects a balance.

        Same no-op rules as `confirm_pending`.
        """
        return await self._move(
            transaction_id,
            TransactionStatus.CANCELLED,
            "cancel",
            correlation_id or create_correlation_id(),
        )

    async def _move(
        self,
        transaction_id: UUID,
        target: TransactionStatus,
        operation: str,
        correlation_id: UUID,
        automatic: bool = False,
    ) -> Optional[Transaction]:
        try:
            transaction = await self._storage.get_transaction_or_raise(transaction_id)
        except StaleReferenceError:
            await self._audit_logger.log_stale_reference(
                transaction_id=transaction_id,
                operation=operation,
                correlation_id=correlation_id,
            )
            return None

        if transaction.is_template:
            raise _rejection(
                "transaction_id", "not_applicable",
                "A recurring template cannot be confirmed or cancelled; act on its instances",
            )

        async with self._locked(transaction.affected_account_ids):
            # Re-read under the lock: a series delete may have won the race
            current = await self._storage.get_transaction(transaction_id)
            if current is None:
                await self._audit_logger.log_stale_reference(
                    transaction_id=transaction_id,
                    operation=operation,
                    correlation_id=correlation_id,
                )
                return None

            try:
                updated = transition(current, target, self._clock())
            except InvalidTransitionError as e:
                logger.debug(
                    "transition_ignored",
                    transaction_id=str(transaction_id),
                    status=e.current.value,
                    target=e.target.value,
                )
                return current

            await self._write(f"{operation}_transaction", self._storage.save_transaction(updated), correlation_id)
            if target == TransactionStatus.EXECUTED:
                await self._recompute(updated.affected_account_ids, correlation_id)

        await self._remind("cancel", transaction_id)
        self._notified_due.discard(transaction_id)

        if target == TransactionStatus.EXECUTED:
            self._record_usage(updated, currency=False)
            await self._audit_logger.log_transaction_confirmed(
                transaction_id=transaction_id,
                automatic=automatic,
                correlation_id=correlation_id,
            )
        else:
            await self._audit_logger.log_transaction_cancelled(
                transaction_id=transaction_id,
                correlation_id=correlation_id,
            )
        return updated

    async def edit_transaction(
        self,
        transaction_id: UUID,
        changes: TransactionChanges,
        scope: EditScope = EditScope.THIS_ONLY,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Edit a transaction, and with `this_and_future` the rest of its series.

        Returns every transaction written; empty if the target is gone or
        there was nothing to change.

        Raises:
            TransactionValidationError: If the edited transaction is invalid
        """
        correlation_id = correlation_id or create_correlation_id()
        if not changes.has_changes():
            return []

        try:
            anchor = await self._storage.get_transaction_or_raise(transaction_id)
        except StaleReferenceError:
            await self._audit_logger.log_stale_reference(
                transaction_id=transaction_id,
                operation="edit",
                correlation_id=correlation_id,
            )
            return []

        template, instances = await self._load_series(anchor)

        async with self._locked(self._series_accounts(anchor, template, instances)):
            # Re-read under the lock: generation may have added instances,
            # or a concurrent delete removed the anchor, while we waited
            anchor = await self._storage.get_transaction(transaction_id)
            if anchor is None:
                await self._audit_logger.log_stale_reference(
                    transaction_id=transaction_id,
                    operation="edit",
                    correlation_id=correlation_id,
                )
                return []
            template, instances = await self._load_series(anchor)

            try:
                updated = plan_edit(anchor, changes, scope, template, instances)
            except ValidationError as e:
                error = _from_pydantic(e)
                await self._audit_logger.log_validation_failed(
                    issues=[issue.model_dump() for issue in error.result.issues],
                    correlation_id=correlation_id,
                )
                raise error from e

            await self._write("save_transactions", self._storage.save_transactions(updated), correlation_id)

            if is_money_change(changes) or changes.scheduled_date is not None:
                affected = set()
                for tx in updated:
                    affected |= tx.affected_account_ids
                await self._recompute(affected, correlation_id)

        if changes.scheduled_date is not None:
            await self._remind("cancel", anchor.id)
            self._notified_due.difference_update(tx.id for tx in updated)
            self._queue_reminders(updated[:1])

        await self._audit_logger.log_transaction_edited(
            transaction_ids=[tx.id for tx in updated],
            fields=sorted(changes.model_dump(exclude_none=True)),
            scope=scope.value,
            correlation_id=correlation_id,
        )
        return updated

    async def delete_transaction(
        self,
        transaction_id: UUID,
        scope: DeletionScope = DeletionScope.THIS_ONLY,
        correlation_id: Optional[UUID] = None,
    ) -> set[UUID]:
        """
        Delete a transaction, or part of its recurring series.

        Every affected account is recomputed exactly once afterwards.
        Deleting an id that is already gone is a no-op.

        Returns:
            Ids of the transactions removed
        """
        correlation_id = correlation_id or create_correlation_id()

        try:
            anchor = await self._storage.get_transaction_or_raise(transaction_id)
        except StaleReferenceError:
            await self._audit_logger.log_stale_reference(
                transaction_id=transaction_id,
                operation="delete",
                correlation_id=correlation_id,
            )
            return set()

        template, instances = await self._load_series(anchor)

        async with self._locked(self._series_accounts(anchor, template, instances)):
            # Re-read under the lock: generation may have added instances,
            # or a concurrent delete removed the anchor, while we waited
            anchor = await self._storage.get_transaction(transaction_id)
            if anchor is None:
                await self._audit_logger.log_stale_reference(
                    transaction_id=transaction_id,
                    operation="delete",
                    correlation_id=correlation_id,
                )
                return set()
            template, instances = await self._load_series(anchor)

            plan = plan_deletion(anchor, scope, template, instances)

            if plan.template_update is not None:
                await self._write(
                    "save_transaction",
                    self._storage.save_transaction(plan.template_update),
                    correlation_id,
                )
            await self._write(
                "delete_transactions",
                self._storage.delete_transactions(plan.delete_ids),
                correlation_id,
            )
            await self._recompute(plan.affected_account_ids, correlation_id)

        for deleted_id in plan.delete_ids:
            await self._remind("cancel", deleted_id)
        self._notified_due -= plan.delete_ids

        if scope == DeletionScope.STOP_HERE and plan.template_update is not None:
            await self._audit_logger.log_series_stopped(
                template_id=plan.template_update.id,
                recurrence_end_date=plan.template_update.recurrence_end_date,
                deleted_count=len(plan.delete_ids),
                correlation_id=correlation_id,
            )
        else:
            await self._audit_logger.log_transactions_deleted(
                anchor_id=transaction_id,
                deleted_ids=sorted(plan.delete_ids),
                scope=scope.value,
                correlation_id=correlation_id,
            )
        return plan.delete_ids

    # -------------------------------------------------------------------------
    # Recurring series
    # -------------------------------------------------------------------------

    async def generate_recurring_instances(
        self,
        template_id: UUID,
        horizon_months: Optional[int] = None,
        correlation_id: Optional[UUID] = None,
    ) -> list[Transaction]:
        """
        Materialize a template's instances up to `horizon_months` ahead.

        Safe to call repeatedly; existing days are never duplicated. A
        template deleted in the meantime yields nothing.

        Raises:
            TransactionValidationError: If the id is not a recurring template
        """
        correlation_id = correlation_id or create_correlation_id()
        if horizon_months is None:
            horizon_months = self._settings.recurring_horizon_months

        template = await self._storage.get_transaction(template_id)
        if template is None:
            await self._audit_logger.log_stale_reference(
                transaction_id=template_id,
                operation="generate_instances",
                correlation_id=correlation_id,
            )
            return []
        if not template.is_template:
            raise _rejection(
                "template_id", "not_applicable",
                f"Transaction {template_id} is not a recurring template",
            )

        async with self._locked(template.affected_account_ids):
            template = await self._storage.get_transaction(template_id)
            if template is None:
                await self._audit_logger.log_stale_reference(
                    transaction_id=template_id,
                    operation="generate_instances",
                    correlation_id=correlation_id,
                )
                return []

            existing = await self._storage.list_transactions(parent_id=template_id)
            planned = plan_instances(
                template,
                existing,
                now=self._clock(),
                horizon_months=horizon_months,
                max_instances=self._settings.max_generated_instances,
            )
            if not planned:
                return []

            await self._write("save_transactions", self._storage.save_transactions(planned), correlation_id)

            if any(tx.status == TransactionStatus.EXECUTED for tx in planned):
                await self._recompute(template.affected_account_ids, correlation_id)

        self._queue_reminders(planned)
        await self._audit_logger.log_instances_generated(
            template_id=template_id,
            count=len(planned),
            horizon_months=horizon_months,
            correlation_id=correlation_id,
        )
        return planned

    async def extend_recurring_series(self, correlation_id: Optional[UUID] = None) -> int:
        """Top up every template to the configured horizon. Returns instances added."""
        correlation_id = correlation_id or create_correlation_id()
        templates = await self._storage.list_transactions(is_recurring=True)
        added = 0
        for template in templates:
            added += len(await self.generate_recurring_instances(template.id, correlation_id=correlation_id))
        return added

    # -------------------------------------------------------------------------
    # Due-transaction sweep
    # -------------------------------------------------------------------------

    async def _due_pending(self, now: datetime) -> list[Transaction]:
        pending = await self._storage.list_transactions(
            status=TransactionStatus.PENDING,
            is_scheduled=True,
            is_recurring=False,
        )
        return [tx for tx in pending if tx.schedule_anchor <= now]

    async def process_due_transactions(
        self,
        now: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
    ) -> DueProcessingResult:
        """
        Execute due automatic transactions and remind about due manual ones.
        """
        correlation_id = correlation_id or create_correlation_id()
        result = DueProcessingResult()

        for tx in await self._due_pending(now or self._clock()):
            if tx.is_automatic:
                executed = await self._move(
                    tx.id,
                    TransactionStatus.EXECUTED,
                    "confirm",
                    correlation_id,
                    automatic=True,
                )
                if executed is not None and executed.status == TransactionStatus.EXECUTED:
                    result.executed_ids.append(tx.id)
            elif tx.id not in self._notified_due:
                await self._remind("notify_due", tx)
                result.notified_ids.append(tx.id)
                self._notified_due.add(tx.id)

        if result.executed_ids or result.notified_ids:
            await self._audit_logger.log_due_transactions_processed(
                automatic_count=result.automatic_count,
                manual_count=result.manual_count,
                correlation_id=correlation_id,
            )
        return result

    async def overdue_manual_transactions(self, now: Optional[datetime] = None) -> list[Transaction]:
        """Manual scheduled transactions past their date and still pending."""
        due = await self._due_pending(now or self._clock())
        return [tx for tx in due if not tx.is_automatic]

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def create_account(self, account: Account, correlation_id: Optional[UUID] = None) -> Account:
        correlation_id = correlation_id or create_correlation_id()
        await self._write("save_account", self._storage.save_account(account), correlation_id)
        self._balances[account.id] = account.initial_balance
        await self._audit_logger.log_account_changed(
            event_type=AuditEventType.ACCOUNT_CREATED,
            account_id=account.id,
            name=account.name,
            correlation_id=correlation_id,
        )
        return account

    async def update_account(
        self,
        account_id: UUID,
        name: Optional[str] = None,
        initial_balance: Optional[Decimal] = None,
        credit_limit: Optional[Decimal] = None,
        description: Optional[str] = None,
        correlation_id: Optional[UUID] = None,
    ) -> Account:
        """
        Edit an account. A new initial balance triggers recomputation.

        Raises:
            NotFoundError: If the account does not exist
        """
        correlation_id = correlation_id or create_correlation_id()

        async with self._locked([account_id]):
            account = await self._storage.get_account(account_id)
            if account is None:
                raise NotFoundError(f"Account not found: {account_id}")

            if name is not None:
                account.name = name
            if credit_limit is not None:
                account.credit_limit = credit_limit
            if description is not None:
                account.description = description
            balance_changed = initial_balance is not None and initial_balance != account.initial_balance
            if initial_balance is not None:
                account.initial_balance = initial_balance

            await self._write("save_account", self._storage.save_account(account), correlation_id)
            if balance_changed:
                await self._recompute([account_id], correlation_id)

        await self._audit_logger.log_account_changed(
            event_type=AuditEventType.ACCOUNT_UPDATED,
            account_id=account_id,
            name=account.name,
            correlation_id=correlation_id,
        )
        return account

    async def delete_account(self, account_id: UUID, correlation_id: Optional[UUID] = None) -> bool:
        """
        Delete an account and the transactions it is the source of.

        Transfers into it from other accounts are kept. Accounts that
        received transfers from it are recomputed.
        """
        correlation_id = correlation_id or create_correlation_id()

        owned = await self._storage.list_transactions(account_id=account_id)
        counterparties = {
            tx.destination_account_id
            for tx in owned
            if tx.destination_account_id is not None
        }

        async with self._locked(counterparties | {account_id}):
            account = await self._storage.get_account(account_id)
            if account is None:
                return False
            await self._write("delete_account", self._storage.delete_account(account_id), correlation_id)
            self._balances.pop(account_id, None)
            await self._recompute(counterparties, correlation_id)

        for tx in owned:
            await self._remind("cancel", tx.id)

        await self._audit_logger.log_account_changed(
            event_type=AuditEventType.ACCOUNT_DELETED,
            account_id=account_id,
            name=account.name,
            correlation_id=correlation_id,
        )
        return True

    # -------------------------------------------------------------------------
    # Currencies and rates
    # -------------------------------------------------------------------------

    async def load_reference_data(self) -> None:
        """Populate the rate store from storage."""
        currencies = await self._storage.list_currencies()
        rates = await self._storage.list_exchange_rates()
        self._rates.load(currencies, rates)
        logger.info("reference_data_loaded", currencies=len(currencies), rates=len(rates))

    async def add_currency(self, currency: Currency) -> Currency:
        await self._write("save_currency", self._storage.save_currency(currency), None)
        self._rates.add_currency(currency)
        return currency

    async def update_exchange_rate(
        self,
        from_code: str,
        to_code: str,
        rate: Decimal,
        source: RateSource = RateSource.MANUAL,
        correlation_id: Optional[UUID] = None,
    ) -> ExchangeRate:
        """
        Upsert the (from, to) rate.

        Transactions that captured a snapshot are unaffected; only entries
        converted live (no snapshot, no destination amount) can move.
        """
        correlation_id = correlation_id or create_correlation_id()
        exchange_rate = self._rates.build_rate(from_code, to_code, rate, source)
        await self._write(
            "save_exchange_rate",
            self._storage.save_exchange_rate(exchange_rate),
            correlation_id,
        )
        # Live conversions only see the rate once it is stored
        self._rates.put_rate(exchange_rate)
        await self._audit_logger.log_exchange_rate_updated(
            from_code=exchange_rate.from_code,
            to_code=exchange_rate.to_code,
            rate=str(exchange_rate.rate),
            source=exchange_rate.source.value,
            correlation_id=correlation_id,
        )
        return exchange_rate

    async def seed_default_rates(
        self,
        base_code: str,
        rates_from_base: dict[str, Decimal],
    ) -> list[ExchangeRate]:
        """
        Persist default cross-rates through `base_code`, then apply them.

        Each rate enters the store only after its own save succeeded.
        """
        written = []
        for exchange_rate in self._rates.plan_cross_rates(base_code, rates_from_base):
            await self._write(
                "save_exchange_rate",
                self._storage.save_exchange_rate(exchange_rate),
                None,
            )
            self._rates.put_rate(exchange_rate)
            written.append(exchange_rate)
        logger.info("cross_rates_seeded", base=base_code, count=len(written))
        return written

    # -------------------------------------------------------------------------
    # Suggestions
    # -------------------------------------------------------------------------

    async def detect_patterns(self, now: Optional[datetime] = None) -> list[DetectedRecurringPattern]:
        transactions = await self._storage.list_transactions(status=TransactionStatus.EXECUTED)
        return self._detector.detect(transactions, now or self._clock())


def create_ledger_service(
    use_storage: bool = True,
) -> tuple[LedgerService, Optional[GoogleSheetsClient]]:
    """
    Factory function to create the ledger service.

    Args:
        use_storage: Whether to initialize Google Sheets storage.
                    Set to False to run on in-memory storage.

    Returns:
        (ledger_service, sheets_client)
    """
    settings = get_settings().ledger
    configure_logging(settings.log_level)

    sheets_client = None
    storage: LedgerStorageInterface

    if use_storage:
        try:
            sheets_client = GoogleSheetsClient()
            storage = GoogleSheetsLedgerStorage(sheets_client)
            audit_logger = AuditLogger(GoogleSheetsAuditStorage(sheets_client))
        except Exception as e:
            # Storage not configured - continue without it
            logger.warning("storage_not_configured", error=str(e))
            sheets_client = None
            storage = InMemoryLedgerStorage()
            audit_logger = AuditLogger()  # Local-only logging
    else:
        storage = InMemoryLedgerStorage()
        audit_logger = AuditLogger()  # Local-only logging

    return LedgerService(storage, audit_logger=audit_logger, settings=settings), sheets_client
