"""Reminder scheduling collaborators."""

from money_tracker.services.reminders.scheduler import (
    LoggingReminderScheduler,
    ReminderSchedulerInterface,
)

__all__ = [
    "LoggingReminderScheduler",
    "ReminderSchedulerInterface",
]
