"""
Audit Logger

DESIGN DECISION: Every ledger mutation is logged.
This provides:
1. Complete traceability of status transitions and series edits
2. Debugging capability when a balance looks wrong
3. User can see history of their interactions

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (doesn't crash the ledger if logging fails)
- Supports correlation IDs to trace related events
"""

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from money_tracker.models.audit import AuditEvent, AuditEventBuilder, AuditEventType
from money_tracker.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """Route structlog output to stderr at the given level."""
    logging.basicConfig(format="%(message)s", level=getattr(logging, level.upper()))


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence and user visibility), when configured
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger("money_tracker.audit")

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        log_dict = event.to_log_dict()

        if event.severity.value in ("error", "critical"):
            self._logger.error("audit_event", **log_dict)
        elif event.severity.value == "warning":
            self._logger.warning("audit_event", **log_dict)
        elif event.severity.value == "debug":
            self._logger.debug("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_transaction_created(
        self,
        transaction_id: UUID,
        transaction_type: str,
        amount: str,
        currency: str,
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log creation of a one-off transaction or recurring template."""
        await self.log(AuditEventBuilder.transaction_created(
            transaction_id=transaction_id,
            transaction_type=transaction_type,
            amount=amount,
            currency=currency,
            status=status,
            correlation_id=correlation_id,
        ))

    async def log_transaction_confirmed(
        self,
        transaction_id: UUID,
        automatic: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log pending -> executed."""
        await self.log(AuditEventBuilder.transaction_confirmed(
            transaction_id=transaction_id,
            automatic=automatic,
            correlation_id=correlation_id,
        ))

    async def log_transaction_cancelled(
        self,
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log pending -> cancelled."""
        await self.log(AuditEventBuilder.transaction_cancelled(
            transaction_id=transaction_id,
            correlation_id=correlation_id,
        ))

    async def log_transaction_edited(
        self,
        transaction_ids: list[UUID],
        fields: list[str],
        scope: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transaction_edited(
            transaction_ids=transaction_ids,
            fields=fields,
            scope=scope,
            correlation_id=correlation_id,
        ))

    async def log_transactions_deleted(
        self,
        anchor_id: UUID,
        deleted_ids: list[UUID],
        scope: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.transactions_deleted(
            anchor_id=anchor_id,
            deleted_ids=deleted_ids,
            scope=scope,
            correlation_id=correlation_id,
        ))

    async def log_series_stopped(
        self,
        template_id: UUID,
        recurrence_end_date: datetime,
        deleted_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.series_stopped(
            template_id=template_id,
            recurrence_end_date=recurrence_end_date,
            deleted_count=deleted_count,
            correlation_id=correlation_id,
        ))

    async def log_instances_generated(
        self,
        template_id: UUID,
        count: int,
        horizon_months: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.instances_generated(
            template_id=template_id,
            count=count,
            horizon_months=horizon_months,
            correlation_id=correlation_id,
        ))

    async def log_balance_recomputed(
        self,
        account_id: UUID,
        balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.balance_recomputed(
            account_id=account_id,
            balance=balance,
            correlation_id=correlation_id,
        ))

    async def log_account_changed(
        self,
        event_type: AuditEventType,
        account_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.account_changed(
            event_type=event_type,
            account_id=account_id,
            name=name,
            correlation_id=correlation_id,
        ))

    async def log_exchange_rate_updated(
        self,
        from_code: str,
        to_code: str,
        rate: str,
        source: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.exchange_rate_updated(
            from_code=from_code,
            to_code=to_code,
            rate=rate,
            source=source,
            correlation_id=correlation_id,
        ))

    async def log_due_transactions_processed(
        self,
        automatic_count: int,
        manual_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.due_transactions_processed(
            automatic_count=automatic_count,
            manual_count=manual_count,
            correlation_id=correlation_id,
        ))

    async def log_stale_reference(
        self,
        transaction_id: UUID,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an operation that targeted an already-removed transaction."""
        await self.log(AuditEventBuilder.stale_reference(
            transaction_id=transaction_id,
            operation=operation,
            correlation_id=correlation_id,
        ))

    async def log_validation_failed(
        self,
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.validation_failed(
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_storage_failed(
        self,
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.storage_failed(
            operation=operation,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log an error."""
        await self.log(AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a new user action (e.g., a series delete).
    Pass it through all subsequent operations.
    """
    return uuid4()
