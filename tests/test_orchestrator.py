"""
Flow tests for the LedgerService on in-memory storage.

Each test runs one scenario inside a single event loop and drains the
background tasks before asserting.
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from money_tracker.audit import AuditLogger
from money_tracker.config import LedgerSettings, get_settings
from money_tracker.models import (
    Account,
    AccountType,
    AuditEventType,
    Currency,
    DeletionScope,
    EditScope,
    RecurrenceRule,
    RecurrenceUnit,
    Transaction,
    TransactionChanges,
    TransactionSpec,
    TransactionStatus,
    TransactionType,
)
from money_tracker.orchestrator import LedgerService, create_ledger_service
from money_tracker.services.currency import ExchangeRateStore
from money_tracker.services.storage import InMemoryLedgerStorage, NotFoundError, StorageError
from money_tracker.validation import TransactionValidationError

from tests.conftest import EPOCH, NOW, RecordingReminders

CATEGORY = uuid4()
# Monday
SERIES_START = datetime(2026, 3, 16, 9, 0)


def expense_spec(account: Account, amount: str = "10", **fields) -> TransactionSpec:
    values = dict(
        transaction_type=TransactionType.EXPENSE,
        amount=Decimal(amount),
        account_id=account.id,
    )
    values.update(fields)
    return TransactionSpec(**values)


def monthly_spec(account: Account, **fields) -> TransactionSpec:
    return expense_spec(
        account,
        amount="50",
        category_id=CATEGORY,
        is_recurring=True,
        recurrence_rule=RecurrenceRule(interval=1, unit=RecurrenceUnit.MONTH),
        scheduled_date=fields.pop("scheduled_date", SERIES_START),
        **fields,
    )


async def event_types(audit_storage) -> list[AuditEventType]:
    return [e.event_type for e in await audit_storage.get_recent_events(limit=1000)]


async def create_series(service, storage, account, **fields):
    template = await service.create_transaction(monthly_spec(account, **fields))
    await service.background_tasks.drain()
    instances = await storage.list_transactions(parent_id=template.id)
    return template, instances


class TestCreateTransaction:
    """Tests for recording new transactions."""

    def test_expense_updates_balance(self, service, audit_storage, usage, eur_account):
        """Test that an executed expense is folded into the balance."""
        async def scenario():
            tx = await service.create_transaction(expense_spec(eur_account, category_id=CATEGORY))
            await service.background_tasks.drain()
            return tx, await service.compute_balance(eur_account.id), await event_types(audit_storage)

        tx, balance, events = asyncio.run(scenario())
        assert tx.status == TransactionStatus.EXECUTED
        assert tx.date == NOW
        assert balance == Decimal("990")
        assert service.cached_balance(eur_account.id) == Decimal("990")
        assert usage.currencies == ["EUR"]
        assert usage.categories == [CATEGORY]
        assert AuditEventType.TRANSACTION_CREATED in events
        assert AuditEventType.BALANCE_RECOMPUTED in events

    def test_transfer_captures_rate_snapshot(self, service, eur_account, usd_account):
        """Test that a cross-currency transfer stores its converted amount."""
        async def scenario():
            tx = await service.create_transaction(
                TransactionSpec(
                    transaction_type=TransactionType.TRANSFER,
                    amount=Decimal("100"),
                    account_id=eur_account.id,
                    destination_account_id=usd_account.id,
                )
            )
            return (
                tx,
                await service.compute_balance(eur_account.id),
                await service.compute_balance(usd_account.id),
            )

        tx, eur_balance, usd_balance = asyncio.run(scenario())
        assert tx.exchange_rate_snapshot == Decimal("1.1")
        assert tx.destination_amount == Decimal("110.0")
        assert not tx.is_custom_rate
        assert eur_balance == Decimal("900")
        assert usd_balance == Decimal("610")

    def test_rate_update_does_not_rewrite_history(self, service, eur_account, usd_account):
        """Test that a later rate change leaves past balances alone."""
        async def scenario():
            await service.create_transaction(
                TransactionSpec(
                    transaction_type=TransactionType.TRANSFER,
                    amount=Decimal("100"),
                    account_id=eur_account.id,
                    destination_account_id=usd_account.id,
                )
            )
            await service.update_exchange_rate("EUR", "USD", Decimal("1.5"))
            return await service.compute_balance(usd_account.id)

        assert asyncio.run(scenario()) == Decimal("610")
        assert service.convert(Decimal("100"), "EUR", "USD") == Decimal("150.0")

    def test_custom_destination_amount(self, service, eur_account, usd_account):
        """Test that a user-entered destination amount sets a custom rate."""
        async def scenario():
            return await service.create_transaction(
                TransactionSpec(
                    transaction_type=TransactionType.TRANSFER,
                    amount=Decimal("100"),
                    account_id=eur_account.id,
                    destination_account_id=usd_account.id,
                    destination_amount=Decimal("105"),
                )
            )

        tx = asyncio.run(scenario())
        assert tx.is_custom_rate
        assert tx.destination_amount == Decimal("105")
        assert tx.exchange_rate_snapshot == Decimal("1.05")

    def test_missing_rate_degrades_to_identity(self, service, eur_account):
        """Test that an unconvertible amount is recorded without a snapshot."""
        async def scenario():
            tx = await service.create_transaction(expense_spec(eur_account, "500", currency="JPY"))
            return tx, await service.compute_balance(eur_account.id)

        tx, balance = asyncio.run(scenario())
        assert tx.exchange_rate_snapshot is None
        assert tx.destination_amount is None
        assert balance == Decimal("500")

    def test_invalid_request_writes_nothing(self, service, storage, audit_storage, eur_account):
        """Test that validation failures are audited and nothing is saved."""
        async def scenario():
            with pytest.raises(TransactionValidationError):
                await service.create_transaction(expense_spec(eur_account, "0"))
            return await storage.list_transactions(), await event_types(audit_storage)

        stored, events = asyncio.run(scenario())
        assert stored == []
        assert events == [AuditEventType.VALIDATION_FAILED]

    def test_unknown_account_rejected(self, service):
        """Test that references are checked before writing."""
        ghost = Account(name="Ghost", currency="EUR")
        with pytest.raises(TransactionValidationError):
            asyncio.run(service.create_transaction(expense_spec(ghost)))

    def test_future_scheduled_is_pending_with_reminder(self, service, reminders, usage, eur_account):
        """Test that a future scheduled entry waits and is reminded."""
        due = NOW + timedelta(days=2)

        async def scenario():
            tx = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=due, category_id=CATEGORY)
            )
            await service.background_tasks.drain()
            return tx, await service.compute_balance(eur_account.id, as_of=due + timedelta(days=1))

        tx, later_balance = asyncio.run(scenario())
        assert tx.status == TransactionStatus.PENDING
        assert tx.date == due
        assert later_balance == Decimal("1000")
        assert reminders.scheduled == {tx.id: due}
        assert usage.categories == []

    def test_past_scheduled_executes_immediately(self, service, reminders, eur_account):
        """Test that a back-dated scheduled entry is executed on creation."""
        async def scenario():
            tx = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=NOW - timedelta(days=1))
            )
            await service.background_tasks.drain()
            return tx, await service.compute_balance(eur_account.id)

        tx, balance = asyncio.run(scenario())
        assert tx.status == TransactionStatus.EXECUTED
        assert balance == Decimal("990")
        assert reminders.scheduled == {}

    def test_reminder_backend_failure_is_contained(self, storage, rates, eur_account, clock):
        """Test that a broken reminder backend never fails the ledger."""
        class BrokenReminders(RecordingReminders):
            async def schedule(self, transaction):
                raise RuntimeError("push service down")

            async def cancel(self, transaction_id):
                raise RuntimeError("push service down")

        service = LedgerService(
            storage,
            rates=rates,
            reminders=BrokenReminders(),
            settings=LedgerSettings(),
            clock=clock,
        )

        async def scenario():
            await storage.save_account(eur_account)
            tx = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=NOW + timedelta(days=1))
            )
            await service.background_tasks.drain()
            return await service.confirm_pending(tx.id)

        assert asyncio.run(scenario()).status == TransactionStatus.EXECUTED
        assert service.background_tasks.failures == []


class TestLifecycle:
    """Tests for confirming and cancelling pending entries."""

    def test_confirm_executes_on_scheduled_date(self, service, reminders, usage, eur_account):
        """Test that confirming stamps the scheduled date and updates balances."""
        due = NOW + timedelta(days=2)

        async def scenario():
            tx = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=due, category_id=CATEGORY)
            )
            confirmed = await service.confirm_pending(tx.id)
            return (
                confirmed,
                await service.compute_balance(eur_account.id),
                await service.compute_balance(eur_account.id, as_of=due),
            )

        confirmed, today, on_due_date = asyncio.run(scenario())
        assert confirmed.status == TransactionStatus.EXECUTED
        assert confirmed.date == due
        assert today == Decimal("1000")
        assert on_due_date == Decimal("990")
        assert reminders.cancelled == [confirmed.id]
        assert usage.categories == [CATEGORY]

    def test_confirm_is_idempotent(self, service, reminders, eur_account):
        """Test that confirming twice changes nothing the second time."""
        due = NOW + timedelta(days=1)

        async def scenario():
            tx = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=due)
            )
            first = await service.confirm_pending(tx.id)
            second = await service.confirm_pending(tx.id)
            return first, second, await service.compute_balance(eur_account.id, as_of=due)

        first, second, balance = asyncio.run(scenario())
        assert second == first
        assert balance == Decimal("990")
        assert reminders.cancelled == [first.id]

    def test_cancel_never_affects_balance(self, service, eur_account):
        """Test that a cancelled entry stays out of every balance."""
        due = NOW + timedelta(days=1)

        async def scenario():
            tx = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=due)
            )
            cancelled = await service.cancel_pending(tx.id)
            after_confirm = await service.confirm_pending(tx.id)
            return cancelled, after_confirm, await service.compute_balance(eur_account.id, as_of=due)

        cancelled, after_confirm, balance = asyncio.run(scenario())
        assert cancelled.status == TransactionStatus.CANCELLED
        assert after_confirm.status == TransactionStatus.CANCELLED
        assert balance == Decimal("1000")

    def test_confirm_deleted_transaction_is_noop(self, service, audit_storage, eur_account):
        """Test that acting on a vanished id returns None and is audited."""
        async def scenario():
            tx = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=NOW + timedelta(days=1))
            )
            await service.delete_transaction(tx.id)
            return await service.confirm_pending(tx.id), await event_types(audit_storage)

        result, events = asyncio.run(scenario())
        assert result is None
        assert AuditEventType.STALE_REFERENCE_IGNORED in events

    def test_template_cannot_be_confirmed(self, service, eur_account):
        """Test that templates are not lifecycle targets."""
        async def scenario():
            template = await service.create_transaction(monthly_spec(eur_account))
            await service.background_tasks.drain()
            await service.confirm_pending(template.id)

        with pytest.raises(TransactionValidationError):
            asyncio.run(scenario())


class TestRecurringSeries:
    """Tests for generation and series deletion."""

    def test_template_generates_instances(self, service, storage, eur_account):
        """Test background generation up to the default horizon."""
        async def scenario():
            template, instances = await create_series(service, storage, eur_account)
            return template, instances, await service.compute_balance(eur_account.id)

        template, instances, balance = asyncio.run(scenario())
        assert template.status == TransactionStatus.PENDING
        assert template.is_template
        assert [i.scheduled_date for i in instances] == [
            datetime(2026, 3, 16, 9, 0),
            datetime(2026, 4, 16, 9, 0),
            datetime(2026, 5, 16, 9, 0),
        ]
        assert all(i.status == TransactionStatus.PENDING for i in instances)
        assert balance == Decimal("1000")

    def test_back_dated_series_executes_past_instances(self, service, storage, eur_account):
        """Test that instances already due are executed on generation."""
        async def scenario():
            _, instances = await create_series(
                service, storage, eur_account, scheduled_date=NOW - timedelta(days=20)
            )
            return instances, await service.compute_balance(eur_account.id)

        instances, balance = asyncio.run(scenario())
        assert [i.status for i in instances][:2] == [TransactionStatus.EXECUTED, TransactionStatus.PENDING]
        assert balance == Decimal("950")
        assert service.cached_balance(eur_account.id) == Decimal("950")

    def test_generation_is_idempotent(self, service, storage, eur_account):
        """Test that regenerating adds nothing."""
        async def scenario():
            template, _ = await create_series(service, storage, eur_account)
            again = await service.generate_recurring_instances(template.id)
            added = await service.extend_recurring_series()
            return again, added, await storage.list_transactions(parent_id=template.id)

        again, added, instances = asyncio.run(scenario())
        assert again == []
        assert added == 0
        assert len(instances) == 3

    def test_longer_horizon_extends(self, service, storage, eur_account):
        """Test an explicit horizon."""
        async def scenario():
            template, _ = await create_series(service, storage, eur_account)
            return await service.generate_recurring_instances(template.id, horizon_months=6)

        added = asyncio.run(scenario())
        assert [i.scheduled_date.month for i in added] == [6, 7, 8]

    def test_generate_for_non_template_rejected(self, service, eur_account):
        """Test that only templates can be expanded."""
        async def scenario():
            tx = await service.create_transaction(expense_spec(eur_account))
            await service.generate_recurring_instances(tx.id)

        with pytest.raises(TransactionValidationError):
            asyncio.run(scenario())

    def test_background_generation_of_deleted_template(self, service, storage, audit_storage, eur_account):
        """Test that a template deleted before generation runs yields nothing."""
        async def scenario():
            template = await service.create_transaction(monthly_spec(eur_account))
            await service.delete_transaction(template.id, DeletionScope.ALL)
            await service.background_tasks.drain()
            events = await audit_storage.get_recent_events(limit=1000)
            return await storage.list_transactions(), events

        stored, events = asyncio.run(scenario())
        assert stored == []
        stale = [e for e in events if e.event_type == AuditEventType.STALE_REFERENCE_IGNORED]
        assert [e.details["operation"] for e in stale] == ["generate_instances"]
        assert service.background_tasks.failures == []

    def test_delete_this_only(self, service, storage, reminders, eur_account):
        """Test deleting one instance, then deleting it again."""
        async def scenario():
            template, instances = await create_series(service, storage, eur_account)
            first = await service.delete_transaction(instances[1].id)
            second = await service.delete_transaction(instances[1].id)
            remaining = await storage.list_transactions(parent_id=template.id)
            return instances, first, second, remaining

        instances, first, second, remaining = asyncio.run(scenario())
        assert first == {instances[1].id}
        assert second == set()
        assert [r.id for r in remaining] == [instances[0].id, instances[2].id]
        assert instances[1].id in reminders.cancelled

    def test_delete_this_and_future(self, service, storage, eur_account):
        """Test that earlier instances and the template survive."""
        async def scenario():
            template, instances = await create_series(service, storage, eur_account)
            deleted = await service.delete_transaction(instances[1].id, DeletionScope.THIS_AND_FUTURE)
            return (
                template,
                instances,
                deleted,
                await storage.list_transactions(parent_id=template.id),
                await storage.transaction_exists(template.id),
            )

        template, instances, deleted, remaining, template_exists = asyncio.run(scenario())
        assert deleted == {instances[1].id, instances[2].id}
        assert [r.id for r in remaining] == [instances[0].id]
        assert template_exists

    def test_delete_all(self, service, storage, eur_account):
        """Test that the whole series goes and is not regenerated."""
        async def scenario():
            template, instances = await create_series(service, storage, eur_account)
            deleted = await service.delete_transaction(instances[0].id, DeletionScope.ALL)
            added = await service.extend_recurring_series()
            return template, instances, deleted, added, await storage.list_transactions()

        template, instances, deleted, added, stored = asyncio.run(scenario())
        assert deleted == {template.id} | {i.id for i in instances}
        assert added == 0
        assert stored == []

    def test_stop_here(self, service, storage, audit_storage, eur_account):
        """Test that the series ends before the anchor's next occurrence."""
        async def scenario():
            template, instances = await create_series(service, storage, eur_account)
            deleted = await service.delete_transaction(instances[1].id, DeletionScope.STOP_HERE)
            added = await service.extend_recurring_series()
            return (
                instances,
                deleted,
                added,
                await storage.get_transaction(template.id),
                await storage.list_transactions(parent_id=template.id),
                await event_types(audit_storage),
            )

        instances, deleted, added, template, remaining, events = asyncio.run(scenario())
        assert deleted == {instances[2].id}
        assert added == 0
        assert template.recurrence_end_date == datetime(2026, 4, 15, 9, 0)
        assert [r.id for r in remaining] == [instances[0].id, instances[1].id]
        assert AuditEventType.SERIES_STOPPED in events

    def test_delete_executed_instance_restores_balance(self, service, storage, eur_account):
        """Test that each affected account is recomputed after a delete."""
        async def scenario():
            _, instances = await create_series(
                service, storage, eur_account, scheduled_date=NOW - timedelta(days=20)
            )
            await service.delete_transaction(instances[0].id, DeletionScope.ALL)
            return await service.compute_balance(eur_account.id)

        assert asyncio.run(scenario()) == Decimal("1000")
        assert service.cached_balance(eur_account.id) == Decimal("1000")

    def test_this_and_future_survives_regeneration(self, service, storage, eur_account):
        """Test that a sweep after the delete does not bring past occurrences back."""
        async def scenario():
            template, instances = await create_series(
                service, storage, eur_account, scheduled_date=NOW - timedelta(days=50)
            )
            before = await service.compute_balance(eur_account.id)
            await service.delete_transaction(instances[1].id, DeletionScope.THIS_AND_FUTURE)
            await service.create_scheduler().run_once()
            return (
                instances,
                before,
                await service.compute_balance(eur_account.id),
                await storage.get_transaction(template.id),
                await storage.list_transactions(parent_id=template.id),
            )

        instances, before, after, template, remaining = asyncio.run(scenario())
        assert before == Decimal("900")
        assert after == Decimal("950")
        assert template.recurrence_end_date == instances[1].scheduled_date
        assert [r.id for r in remaining] == [instances[0].id]

    def test_delete_waits_for_running_generation(self, rates, clock, eur_account):
        """Test that instances saved while the delete waited for the lock go too."""
        class SlowStorage(InMemoryLedgerStorage):
            async def save_transactions(self, transactions):
                await asyncio.sleep(0.01)
                return await super().save_transactions(transactions)

        storage = SlowStorage()
        service = LedgerService(storage, rates=rates, settings=LedgerSettings(), clock=clock)

        async def scenario():
            await storage.save_account(eur_account)
            template = await service.create_transaction(monthly_spec(eur_account))
            # Let generation start and block inside its write
            await asyncio.sleep(0)
            await service.delete_transaction(template.id, DeletionScope.ALL)
            await service.background_tasks.drain()
            return await storage.list_transactions()

        assert asyncio.run(scenario()) == []
        assert service.background_tasks.failures == []

    def test_zero_horizon_generates_nothing(self, service, storage, eur_account):
        """Test that an explicit horizon of zero is honoured."""
        async def scenario():
            template, instances = await create_series(service, storage, eur_account)
            await storage.delete_transactions(i.id for i in instances)
            return await service.generate_recurring_instances(template.id, horizon_months=0)

        assert asyncio.run(scenario()) == []


class TestEditTransaction:
    """Tests for edits with scope."""

    def test_edit_amount_recomputes_balance(self, service, eur_account):
        """Test editing an executed one-off."""
        async def scenario():
            tx = await service.create_transaction(expense_spec(eur_account))
            updated = await service.edit_transaction(tx.id, TransactionChanges(amount=Decimal("25")))
            return updated, await service.compute_balance(eur_account.id)

        updated, balance = asyncio.run(scenario())
        assert [u.amount for u in updated] == [Decimal("25")]
        assert balance == Decimal("975")
        assert service.cached_balance(eur_account.id) == Decimal("975")

    def test_edit_this_and_future(self, service, storage, eur_account):
        """Test that the anchor, later pending instances and the template change."""
        async def scenario():
            template, instances = await create_series(service, storage, eur_account)
            await service.edit_transaction(
                instances[1].id,
                TransactionChanges(amount=Decimal("60")),
                EditScope.THIS_AND_FUTURE,
            )
            return (
                await storage.get_transaction(template.id),
                await storage.list_transactions(parent_id=template.id),
            )

        template, instances = asyncio.run(scenario())
        assert template.amount == Decimal("60")
        assert [i.amount for i in instances] == [Decimal("50"), Decimal("60"), Decimal("60")]

    def test_reschedule_moves_reminder(self, service, reminders, eur_account):
        """Test that a new date replaces the pending reminder."""
        new_date = NOW + timedelta(days=4)

        async def scenario():
            tx = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=NOW + timedelta(days=2))
            )
            await service.background_tasks.drain()
            await service.edit_transaction(tx.id, TransactionChanges(scheduled_date=new_date))
            await service.background_tasks.drain()
            return tx

        tx = asyncio.run(scenario())
        assert reminders.scheduled == {tx.id: new_date}

    def test_edit_missing_or_empty_is_noop(self, service, eur_account):
        """Test the two no-op paths."""
        async def scenario():
            tx = await service.create_transaction(expense_spec(eur_account))
            return (
                await service.edit_transaction(uuid4(), TransactionChanges(notes="x")),
                await service.edit_transaction(tx.id, TransactionChanges()),
            )

        assert asyncio.run(scenario()) == ([], [])

    def test_invalid_edit_rejected(self, service, eur_account):
        """Test that an edit producing an invalid transaction is refused."""
        async def scenario():
            tx = await service.create_transaction(expense_spec(eur_account))
            await service.edit_transaction(tx.id, TransactionChanges(interest_amount=Decimal("3")))

        with pytest.raises(TransactionValidationError):
            asyncio.run(scenario())


class TestDueProcessing:
    """Tests for the due-transaction sweep."""

    def test_automatic_executed_manual_notified(self, service, reminders, clock, eur_account):
        """Test both branches of the sweep."""
        due = NOW + timedelta(days=1)

        async def scenario():
            automatic = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=due, is_automatic=True)
            )
            manual = await service.create_transaction(
                expense_spec(eur_account, "30", is_scheduled=True, scheduled_date=due)
            )
            clock.advance(days=2)
            result = await service.process_due_transactions()
            return (
                automatic,
                manual,
                result,
                await service.overdue_manual_transactions(),
                await service.compute_balance(eur_account.id),
            )

        automatic, manual, result, overdue, balance = asyncio.run(scenario())
        assert result.executed_ids == [automatic.id]
        assert result.notified_ids == [manual.id]
        assert reminders.due == [manual.id]
        assert [t.id for t in overdue] == [manual.id]
        assert balance == Decimal("990")

    def test_manual_reminder_sent_once(self, service, reminders, clock, eur_account):
        """Test that later sweeps stay quiet until the entry is rescheduled."""
        async def scenario():
            manual = await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=NOW + timedelta(days=1))
            )
            clock.advance(days=2)
            first = await service.process_due_transactions()
            clock.advance(minutes=5)
            second = await service.process_due_transactions()
            await service.edit_transaction(
                manual.id, TransactionChanges(scheduled_date=clock.now - timedelta(hours=1))
            )
            third = await service.process_due_transactions()
            return manual, first, second, third, await service.overdue_manual_transactions()

        manual, first, second, third, overdue = asyncio.run(scenario())
        assert first.notified_ids == [manual.id]
        assert second.notified_ids == []
        assert third.notified_ids == [manual.id]
        assert reminders.due == [manual.id, manual.id]
        assert [t.id for t in overdue] == [manual.id]

    def test_nothing_due(self, service, eur_account):
        """Test that future entries are left alone."""
        async def scenario():
            await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=NOW + timedelta(days=1), is_automatic=True)
            )
            return await service.process_due_transactions()

        result = asyncio.run(scenario())
        assert result.automatic_count == 0
        assert result.manual_count == 0

    def test_scheduler_run_once(self, service, clock, eur_account):
        """Test the periodic sweep entry point."""
        async def scenario():
            await service.create_transaction(
                expense_spec(eur_account, is_scheduled=True, scheduled_date=NOW + timedelta(hours=1), is_automatic=True)
            )
            clock.advance(hours=2)
            return await service.create_scheduler().run_once()

        assert asyncio.run(scenario()).automatic_count == 1

    def test_scheduler_survives_storage_failure(self, rates, audit_storage, clock):
        """Test that a failing sweep is logged and audited."""
        class UnavailableStorage(InMemoryLedgerStorage):
            async def list_transactions(self, **filters):
                raise StorageError("sheet unavailable")

        service = LedgerService(
            UnavailableStorage(),
            rates=rates,
            audit_logger=AuditLogger(audit_storage),
            settings=LedgerSettings(),
            clock=clock,
        )

        async def scenario():
            await service.create_scheduler().run(max_ticks=1)
            return await event_types(audit_storage)

        assert asyncio.run(scenario()) == [AuditEventType.SYSTEM_ERROR]


class TestAccounts:
    """Tests for account maintenance."""

    def test_create_and_update_account(self, service, audit_storage):
        """Test that a new initial balance is recomputed."""
        card = Account(
            name="Card",
            currency="EUR",
            account_type=AccountType.CREDIT_CARD,
            credit_limit=Decimal("1500"),
            created_at=EPOCH,
        )

        async def scenario():
            await service.create_account(card)
            await service.create_transaction(expense_spec(card, "400"))
            updated = await service.update_account(card.id, name="Visa", initial_balance=Decimal("100"))
            return updated, await service.compute_balance(card.id), await event_types(audit_storage)

        updated, balance, events = asyncio.run(scenario())
        assert updated.name == "Visa"
        assert balance == Decimal("-300")
        assert service.cached_balance(card.id) == Decimal("-300")
        assert updated.available_credit(balance) == Decimal("1200")
        assert AuditEventType.ACCOUNT_CREATED in events
        assert AuditEventType.ACCOUNT_UPDATED in events

    def test_update_unknown_account(self, service):
        """Test that updating a missing account raises."""
        with pytest.raises(NotFoundError):
            asyncio.run(service.update_account(uuid4(), name="Nope"))

    def test_balance_of_unknown_account(self, service):
        """Test that computing a missing account's balance raises."""
        with pytest.raises(NotFoundError):
            asyncio.run(service.compute_balance(uuid4()))

    def test_delete_account_recomputes_counterparties(self, service, storage, eur_account, usd_account):
        """Test that transfers out of a deleted account disappear everywhere."""
        async def scenario():
            await service.create_transaction(
                TransactionSpec(
                    transaction_type=TransactionType.TRANSFER,
                    amount=Decimal("100"),
                    account_id=eur_account.id,
                    destination_account_id=usd_account.id,
                )
            )
            deleted = await service.delete_account(eur_account.id)
            again = await service.delete_account(eur_account.id)
            return deleted, again, await storage.get_account(eur_account.id)

        deleted, again, account = asyncio.run(scenario())
        assert deleted is True
        assert again is False
        assert account is None
        assert service.cached_balance(usd_account.id) == Decimal("500")
        assert service.cached_balance(eur_account.id) is None

    def test_delete_account_keeps_incoming_transfers(self, service, storage, eur_account, usd_account):
        """Test that another account's outgoing transfer survives."""
        async def scenario():
            transfer = await service.create_transaction(
                TransactionSpec(
                    transaction_type=TransactionType.TRANSFER,
                    amount=Decimal("50"),
                    account_id=usd_account.id,
                    destination_account_id=eur_account.id,
                )
            )
            await service.delete_account(eur_account.id)
            return (
                await storage.transaction_exists(transfer.id),
                await service.compute_balance(usd_account.id),
            )

        exists, usd_balance = asyncio.run(scenario())
        assert exists
        assert usd_balance == Decimal("450")


class TestReportsAndReferenceData:
    """Tests for totals, counts and rate maintenance."""

    def test_total_balance(self, service):
        """Test the converted sum across accounts."""
        async def scenario():
            return await service.total_balance(), await service.total_balance("USD")

        in_eur, in_usd = asyncio.run(scenario())
        assert in_eur == Decimal("1000") + Decimal("500") * (Decimal("1") / Decimal("1.1"))
        assert in_usd == Decimal("1600")

    def test_account_balances(self, service, eur_account, usd_account):
        """Test the per-account balance report."""
        async def scenario():
            await service.create_transaction(expense_spec(usd_account, "20"))
            return await service.reports.account_balances(NOW)

        assert asyncio.run(scenario()) == {
            eur_account.id: Decimal("1000"),
            usd_account.id: Decimal("480"),
        }

    def test_recurring_occurrence_count(self, service, storage, eur_account):
        """Test counting a template's occurrences in a period."""
        async def scenario():
            template, _ = await create_series(
                service, storage, eur_account, recurrence_end_date=datetime(2026, 10, 1)
            )
            count = await service.reports.recurring_occurrence_count(
                template.id, datetime(2026, 3, 1), datetime(2026, 12, 31)
            )
            upcoming = await service.reports.upcoming(NOW)
            return count, upcoming

        count, upcoming = asyncio.run(scenario())
        # March through September
        assert count == 7
        assert [t.scheduled_date.month for t in upcoming] == [3, 4, 5]

    def test_occurrence_count_unknown_template(self, service):
        """Test that counting needs a real template."""
        with pytest.raises(NotFoundError):
            asyncio.run(
                service.reports.recurring_occurrence_count(uuid4(), datetime(2026, 1, 1), datetime(2026, 2, 1))
            )

    def test_seed_and_reload_reference_data(self, service, storage, clock):
        """Test that seeded rates persist and reload into a fresh store."""
        async def scenario():
            await service.add_currency(Currency(code="CHF", symbol="Fr."))
            written = await service.seed_default_rates("EUR", {"CHF": Decimal("0.95"), "USD": Decimal("1.05")})

            fresh = LedgerService(storage, rates=ExchangeRateStore(clock=clock), settings=LedgerSettings(), clock=clock)
            await fresh.load_reference_data()
            return written, fresh

        written, fresh = asyncio.run(scenario())
        # EUR->USD is a manual rate and is kept
        assert len(written) == 5
        assert service.rates.effective_rate("EUR", "USD") == Decimal("1.1")
        assert fresh.rates.effective_rate("CHF", "EUR") == Decimal("1") / Decimal("0.95")
        assert [c.code for c in fresh.rates.list_currencies()] == ["CHF"]

    def test_failed_rate_save_leaves_store_untouched(self, rates, audit_storage, clock):
        """Test that a rate is only applied once it has been persisted."""
        class ReadOnlyRates(InMemoryLedgerStorage):
            async def save_exchange_rate(self, rate):
                raise StorageError("sheet is read-only")

        service = LedgerService(
            ReadOnlyRates(),
            rates=rates,
            audit_logger=AuditLogger(audit_storage),
            settings=LedgerSettings(),
            clock=clock,
        )

        async def scenario():
            with pytest.raises(StorageError):
                await service.update_exchange_rate("EUR", "USD", Decimal("1.5"))
            with pytest.raises(StorageError):
                await service.seed_default_rates("EUR", {"JPY": Decimal("160")})
            return await event_types(audit_storage)

        events = asyncio.run(scenario())
        assert rates.effective_rate("EUR", "USD") == Decimal("1.1")
        assert rates.get_rate("EUR", "JPY") is None
        assert events.count(AuditEventType.STORAGE_FAILED) == 2

    def test_detect_patterns(self, service, storage, eur_account):
        """Test pattern suggestions over stored history."""
        async def scenario():
            await storage.save_transactions([
                Transaction(
                    transaction_type=TransactionType.EXPENSE,
                    amount=Decimal("3.50"),
                    currency="EUR",
                    account_id=eur_account.id,
                    category_id=CATEGORY,
                    date=NOW - timedelta(days=days),
                )
                for days in (1, 2, 3)
            ])
            return await service.detect_patterns()

        patterns = asyncio.run(scenario())
        assert len(patterns) == 1
        assert patterns[0].occurrences == 3


class TestFactory:
    """Tests for create_ledger_service."""

    def test_in_memory_service(self, monkeypatch):
        """Test building a ledger without Sheets."""
        monkeypatch.chdir("/")
        get_settings.cache_clear()

        service, sheets_client = create_ledger_service(use_storage=False)

        assert sheets_client is None
        assert isinstance(service, LedgerService)
        assert service.create_scheduler()._interval == 300
