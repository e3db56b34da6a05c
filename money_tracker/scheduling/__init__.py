"""Recurrence, lifecycle and scheduling."""

from money_tracker.scheduling.lifecycle import (
    InvalidTransitionError,
    initial_status,
    is_terminal,
    transition,
)
from money_tracker.scheduling.recurrence import (
    add_months,
    count_occurrences_between,
    iter_occurrences,
    next_occurrence,
    shift_to_working_day,
)
from money_tracker.scheduling.scheduler import (
    BackgroundTasks,
    DueProcessingResult,
    TransactionScheduler,
)
from money_tracker.scheduling.series import (
    DeletionPlan,
    apply_changes,
    plan_deletion,
    plan_edit,
    plan_instances,
)

__all__ = [
    "BackgroundTasks",
    "DeletionPlan",
    "DueProcessingResult",
    "InvalidTransitionError",
    "TransactionScheduler",
    "add_months",
    "apply_changes",
    "count_occurrences_between",
    "initial_status",
    "is_terminal",
    "iter_occurrences",
    "next_occurrence",
    "plan_deletion",
    "plan_edit",
    "plan_instances",
    "shift_to_working_day",
]
