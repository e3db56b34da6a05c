"""
Recurring Series Planning

Pure planning for the three series operations: materializing instances
from a template, deleting part of a series, and editing part of a series.
Each planner returns what should change; the LedgerService applies the
plan to storage in one write so a failed save can be retried as a whole.

A series is one template (`is_recurring=True`) plus the instances whose
`parent_recurring_transaction_id` points at it. Either side may already be
gone when a plan is made.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, Optional
from uuid import UUID

from money_tracker.models.transaction import (
    DeletionScope,
    EditScope,
    Transaction,
    TransactionChanges,
    TransactionStatus,
)
from money_tracker.scheduling.lifecycle import initial_status
from money_tracker.scheduling.recurrence import add_months, iter_occurrences


# =============================================================================
# GENERATION
# =============================================================================

def build_instance(template: Transaction, occurrence: datetime, now: datetime) -> Transaction:
    """One generated instance of `template` scheduled at `occurrence`."""
    return Transaction(
        transaction_type=template.transaction_type,
        created_at=now,
        amount=template.amount,
        currency=template.currency,
        destination_amount=template.destination_amount,
        exchange_rate_snapshot=template.exchange_rate_snapshot,
        is_custom_rate=template.is_custom_rate,
        interest_amount=template.interest_amount,
        account_id=template.account_id,
        destination_account_id=template.destination_account_id,
        category_id=template.category_id,
        notes=template.notes,
        date=occurrence,
        status=initial_status(True, occurrence, now),
        is_scheduled=True,
        is_automatic=template.is_automatic,
        scheduled_date=occurrence,
        parent_recurring_transaction_id=template.id,
    )


def plan_instances(
    template: Transaction,
    existing: Iterable[Transaction],
    now: datetime,
    horizon_months: int,
    max_instances: int = 1000,
) -> list[Transaction]:
    """
    Instances to add so the series reaches `now + horizon_months`.

    The first instance sits on the template's own date. Only dates after
    the latest existing instance are considered, and a day that already
    holds an instance is skipped. The horizon is inclusive, the template's
    `recurrence_end_date` exclusive.
    """
    if not template.is_template or template.recurrence_rule is None:
        raise ValueError(f"Transaction {template.id} is not a recurring template")

    existing = list(existing)
    taken_days = {tx.schedule_anchor.date() for tx in existing}
    last = max((tx.schedule_anchor for tx in existing), default=None)
    horizon = add_months(now, horizon_months)

    planned: list[Transaction] = []
    for occurrence in iter_occurrences(
        template.recurrence_rule,
        template.schedule_anchor,
        include_start_day_in_count=template.include_start_day_in_count,
        adjust_to_working_day=template.adjust_to_working_day,
        until=template.recurrence_end_date,
    ):
        if occurrence > horizon or len(planned) >= max_instances:
            break
        if last is not None and occurrence <= last:
            continue
        if occurrence.date() in taken_days:
            continue
        planned.append(build_instance(template, occurrence, now))
        taken_days.add(occurrence.date())

    return planned


# =============================================================================
# DELETION
# =============================================================================

@dataclass
class DeletionPlan:
    """Ids to delete, plus a template rewrite that ends the series."""
    delete_ids: set[UUID] = field(default_factory=set)
    template_update: Optional[Transaction] = None
    affected_account_ids: set[UUID] = field(default_factory=set)


def _ended(template: Transaction, end: datetime) -> Transaction:
    """Copy of `template` ending at `end`, or earlier if it already did."""
    if template.recurrence_end_date is not None:
        end = min(end, template.recurrence_end_date)
    return template.model_copy(update={"recurrence_end_date": end})


def plan_deletion(
    anchor: Transaction,
    scope: DeletionScope,
    template: Optional[Transaction],
    instances: Iterable[Transaction],
) -> DeletionPlan:
    """
    Work out what a delete with `scope` anchored at `anchor` removes.

    Args:
        anchor: The transaction the user acted on
        scope: How far the delete reaches
        template: The series template, None for one-off entries or when
            the template is already gone
        instances: The series' remaining instances

    Scopes on a one-off transaction all mean "this one".
    """
    instances = list(instances)
    in_series = anchor.series_id is not None
    plan = DeletionPlan()

    if not in_series or scope == DeletionScope.THIS_ONLY:
        deleted = [anchor]

    elif scope == DeletionScope.ALL:
        deleted = instances + ([template] if template else [])
        if anchor.id not in {t.id for t in deleted}:
            deleted.append(anchor)

    elif scope == DeletionScope.THIS_AND_FUTURE:
        cutoff = anchor.schedule_anchor
        deleted = [tx for tx in instances if tx.schedule_anchor >= cutoff]
        if anchor.is_template:
            deleted.append(anchor)
        elif template is not None:
            # The end date is exclusive: nothing from the cutoff on is regenerated
            plan.template_update = _ended(template, cutoff)

    elif scope == DeletionScope.STOP_HERE:
        cutoff = anchor.schedule_anchor
        deleted = [tx for tx in instances if tx.schedule_anchor > cutoff]
        if template is not None:
            plan.template_update = _ended(template, cutoff - timedelta(days=1))

    else:
        raise ValueError(f"Unknown deletion scope: {scope}")

    plan.delete_ids = {tx.id for tx in deleted}
    for tx in deleted:
        plan.affected_account_ids |= tx.affected_account_ids
    return plan


# =============================================================================
# EDITING
# =============================================================================

def apply_changes(transaction: Transaction, changes: TransactionChanges, reschedule: bool) -> Transaction:
    """
    Return a validated copy of `transaction` with `changes` applied.

    A changed amount re-derives an automatic destination amount from the
    stored snapshot; the snapshot itself never changes. An explicit
    destination amount marks the rate as custom. Scheduling fields move
    only when `reschedule` is set and the entry is still pending.
    """
    data = transaction.model_dump()

    if changes.amount is not None:
        data["amount"] = changes.amount
        if (
            changes.destination_amount is None
            and transaction.exchange_rate_snapshot is not None
            and not transaction.is_custom_rate
        ):
            data["destination_amount"] = changes.amount * transaction.exchange_rate_snapshot

    if changes.destination_amount is not None:
        data["destination_amount"] = changes.destination_amount
        data["is_custom_rate"] = True

    for name in ("interest_amount", "category_id", "notes", "is_automatic"):
        value = getattr(changes, name)
        if value is not None:
            data[name] = value

    if (
        reschedule
        and changes.scheduled_date is not None
        and transaction.status == TransactionStatus.PENDING
    ):
        data["scheduled_date"] = changes.scheduled_date
        data["date"] = changes.scheduled_date

    return Transaction.model_validate(data)


def plan_edit(
    anchor: Transaction,
    changes: TransactionChanges,
    scope: EditScope,
    template: Optional[Transaction],
    instances: Iterable[Transaction],
) -> list[Transaction]:
    """
    Updated copies of every transaction an edit touches.

    `this_and_future` reaches the template and the pending instances
    scheduled on or after the anchor. Rescheduling only ever applies to
    the anchor.
    """
    updated = [apply_changes(anchor, changes, reschedule=True)]
    if scope == EditScope.THIS_ONLY or anchor.series_id is None:
        return updated

    cutoff = anchor.schedule_anchor
    for tx in instances:
        if (
            tx.id != anchor.id
            and tx.status == TransactionStatus.PENDING
            and tx.schedule_anchor >= cutoff
        ):
            updated.append(apply_changes(tx, changes, reschedule=False))

    if template is not None and template.id != anchor.id:
        updated.append(apply_changes(template, changes, reschedule=False))

    return updated
