"""Report execution package."""

from money_tracker.queries.reports import ReportExecutor

__all__ = ["ReportExecutor"]
