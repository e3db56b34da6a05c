"""
Audit Models for the Ledger

Every significant ledger mutation is logged for audit purposes.
This provides:
1. Traceability of status transitions and series edits
2. Debugging information when a balance looks wrong
3. Ability to reconstruct what happened to a deleted transaction

DESIGN DECISION: Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Types of events we audit."""
    # Transactions
    TRANSACTION_CREATED = "transaction_created"
    TRANSACTION_CONFIRMED = "transaction_confirmed"
    TRANSACTION_CANCELLED = "transaction_cancelled"
    TRANSACTION_EDITED = "transaction_edited"
    TRANSACTION_DELETED = "transaction_deleted"

    # Recurring series
    INSTANCES_GENERATED = "instances_generated"
    SERIES_STOPPED = "series_stopped"

    # Balances
    BALANCE_RECOMPUTED = "balance_recomputed"

    # Accounts
    ACCOUNT_CREATED = "account_created"
    ACCOUNT_UPDATED = "account_updated"
    ACCOUNT_DELETED = "account_deleted"

    # Currency
    EXCHANGE_RATE_UPDATED = "exchange_rate_updated"

    # Scheduler
    DUE_TRANSACTIONS_PROCESSED = "due_transactions_processed"

    # Failures and no-ops
    STALE_REFERENCE_IGNORED = "stale_reference_ignored"
    VALIDATION_FAILED = "validation_failed"
    STORAGE_FAILED = "storage_failed"
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every ledger mutation creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=datetime.now,
        description="When the event occurred"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'transaction', 'account', 'exchange_rate')"
    )
    entity_id: Optional[UUID] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all deletes of one series edit)"
    )

    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_message: Optional[str] = None

    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": str(self.entity_id) if self.entity_id else None,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_sheets_row(self) -> list:
        """
        Convert to a row suitable for Google Sheets storage.

        Returns columns in order:
        [event_id, timestamp, event_type, severity, entity_type, entity_id,
         correlation_id, description, details_json, error_message, is_user_action]
        """
        return [
            str(self.event_id),
            self.timestamp.isoformat(),
            self.event_type.value,
            self.severity.value,
            self.entity_type or "",
            str(self.entity_id) if self.entity_id else "",
            str(self.correlation_id) if self.correlation_id else "",
            self.description,
            json.dumps(self.details, default=str) if self.details else "",
            self.error_message or "",
            str(self.is_user_action),
        ]


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.transaction_confirmed(tx_id, correlation_id)
        event = AuditEventBuilder.transactions_deleted(ids, "all", correlation_id)
    """

    @staticmethod
    def transaction_created(
        transaction_id: UUID,
        transaction_type: str,
        amount: str,
        currency: str,
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"Transaction created: {transaction_type} {amount} {currency} ({status})",
            details={
                "transaction_type": transaction_type,
                "amount": amount,
                "currency": currency,
                "status": status,
            },
            is_user_action=True,
        )

    @staticmethod
    def transaction_confirmed(
        transaction_id: UUID,
        automatic: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CONFIRMED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Scheduled transaction executed"
            + (" automatically" if automatic else ""),
            details={"automatic": automatic},
            is_user_action=not automatic,
        )

    @staticmethod
    def transaction_cancelled(
        transaction_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_CANCELLED,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description="Scheduled transaction cancelled",
            is_user_action=True,
        )

    @staticmethod
    def transaction_edited(
        transaction_ids: list[UUID],
        fields: list[str],
        scope: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_EDITED,
            entity_type="transaction",
            entity_id=transaction_ids[0] if transaction_ids else None,
            correlation_id=correlation_id,
            description=f"Edited {len(transaction_ids)} transaction(s) ({scope})",
            details={
                "transaction_ids": [str(i) for i in transaction_ids],
                "fields": fields,
                "scope": scope,
            },
            is_user_action=True,
        )

    @staticmethod
    def transactions_deleted(
        anchor_id: UUID,
        deleted_ids: list[UUID],
        scope: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSACTION_DELETED,
            entity_type="transaction",
            entity_id=anchor_id,
            correlation_id=correlation_id,
            description=f"Deleted {len(deleted_ids)} transaction(s) ({scope})",
            details={
                "scope": scope,
                "deleted_ids": [str(i) for i in deleted_ids],
            },
            is_user_action=True,
        )

    @staticmethod
    def series_stopped(
        template_id: UUID,
        recurrence_end_date: datetime,
        deleted_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SERIES_STOPPED,
            entity_type="transaction",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Recurrence stopped; ends {recurrence_end_date.date().isoformat()}",
            details={
                "recurrence_end_date": recurrence_end_date.isoformat(),
                "deleted_count": deleted_count,
            },
            is_user_action=True,
        )

    @staticmethod
    def instances_generated(
        template_id: UUID,
        count: int,
        horizon_months: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INSTANCES_GENERATED,
            entity_type="transaction",
            entity_id=template_id,
            correlation_id=correlation_id,
            description=f"Generated {count} recurring instance(s)",
            details={
                "count": count,
                "horizon_months": horizon_months,
            },
        )

    @staticmethod
    def balance_recomputed(
        account_id: UUID,
        balance: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.BALANCE_RECOMPUTED,
            severity=AuditSeverity.DEBUG,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Balance recomputed: {balance}",
            details={"balance": balance},
        )

    @staticmethod
    def account_changed(
        event_type: AuditEventType,
        account_id: UUID,
        name: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        verb = {
            AuditEventType.ACCOUNT_CREATED: "created",
            AuditEventType.ACCOUNT_UPDATED: "updated",
            AuditEventType.ACCOUNT_DELETED: "deleted",
        }[event_type]
        return AuditEvent(
            event_type=event_type,
            entity_type="account",
            entity_id=account_id,
            correlation_id=correlation_id,
            description=f"Account {verb}: {name}",
            details={"name": name},
            is_user_action=True,
        )

    @staticmethod
    def exchange_rate_updated(
        from_code: str,
        to_code: str,
        rate: str,
        source: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXCHANGE_RATE_UPDATED,
            entity_type="exchange_rate",
            correlation_id=correlation_id,
            description=f"Exchange rate {from_code}->{to_code} set to {rate}",
            details={
                "from": from_code,
                "to": to_code,
                "rate": rate,
                "source": source,
            },
            is_user_action=source == "manual",
        )

    @staticmethod
    def due_transactions_processed(
        automatic_count: int,
        manual_count: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DUE_TRANSACTIONS_PROCESSED,
            correlation_id=correlation_id,
            description=(
                f"Scheduler executed {automatic_count} automatic and "
                f"flagged {manual_count} manual transaction(s)"
            ),
            details={
                "automatic": automatic_count,
                "manual": manual_count,
            },
        )

    @staticmethod
    def stale_reference(
        transaction_id: UUID,
        operation: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STALE_REFERENCE_IGNORED,
            severity=AuditSeverity.WARNING,
            entity_type="transaction",
            entity_id=transaction_id,
            correlation_id=correlation_id,
            description=f"{operation} ignored: transaction no longer exists",
            details={"operation": operation},
        )

    @staticmethod
    def validation_failed(
        issues: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.VALIDATION_FAILED,
            severity=AuditSeverity.WARNING,
            correlation_id=correlation_id,
            description=f"Validation failed with {len(issues)} issue(s)",
            details={"issues": issues},
            is_user_action=True,
        )

    @staticmethod
    def storage_failed(
        operation: str,
        error_message: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.STORAGE_FAILED,
            severity=AuditSeverity.ERROR,
            correlation_id=correlation_id,
            description=f"Storage failure during {operation}",
            error_message=error_message,
            details={"operation": operation},
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
