"""
Two-Stage Transaction Validation

STAGE 1 - SCHEMA VALIDATION:
- Required fields present
- Amount sign matches the transaction type
- Transfer endpoints distinct
- Recurrence fields consistent
This needs nothing but the request itself.

STAGE 2 - REFERENCE VALIDATION:
- Source and destination accounts exist
- A conversion rate is known for cross-currency entries
This needs storage and the rate store.

IMPORTANT: Validation NEVER silently fixes issues. A request with any
error is rejected before anything is written.
"""

from typing import Optional

from money_tracker.models.account import Account
from money_tracker.models.money import ZERO
from money_tracker.models.transaction import TransactionSpec, TransactionType
from money_tracker.models.validation import ValidationIssue, ValidationResult
from money_tracker.services.currency.store import ExchangeRateStore
from money_tracker.services.storage.interface import LedgerStorageInterface


class TransactionValidationError(Exception):
    """A transaction request failed validation. Nothing was written."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(issue.message for issue in result.errors)
        super().__init__(f"Invalid transaction: {messages}")


def _error(field: str, issue_type: str, message: str, suggested_fix: Optional[str] = None) -> ValidationIssue:
    return ValidationIssue(
        field=field,
        issue_type=issue_type,
        message=message,
        severity="error",
        suggested_fix=suggested_fix,
    )


class TransactionValidator:
    """
    Validates transaction requests through a two-stage pipeline.

    Stage 1: Schema validation (can run without storage)
    Stage 2: Reference validation (needs storage for account lookups)
    """

    def __init__(
        self,
        storage: Optional[LedgerStorageInterface] = None,
        rates: Optional[ExchangeRateStore] = None,
    ):
        """
        Initialize validator.

        Args:
            storage: Storage used to resolve accounts.
                     If None, reference checks are skipped.
            rates: Rate store used to warn about missing conversions.
        """
        self._storage = storage
        self._rates = rates

    def validate_schema(self, spec: TransactionSpec) -> list[ValidationIssue]:
        """Stage 1: checks that need nothing but the request."""
        issues = []

        if spec.account_id is None:
            issues.append(_error(
                "account_id", "missing",
                "A transaction needs an account",
                "Pick the account the money moves from or to",
            ))

        if spec.transaction_type == TransactionType.ADJUSTMENT:
            if spec.amount == ZERO:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="no_effect",
                    message="An adjustment of zero changes nothing",
                    severity="warning",
                ))
        elif spec.amount <= ZERO:
            issues.append(_error(
                "amount", "invalid_value",
                "Amount must be greater than zero",
                "Use an adjustment to record a negative correction",
            ))

        if spec.destination_amount is not None and spec.destination_amount < ZERO:
            issues.append(_error(
                "destination_amount", "invalid_value",
                "Destination amount cannot be negative",
            ))

        if spec.transaction_type == TransactionType.TRANSFER:
            if spec.destination_account_id is None:
                issues.append(_error(
                    "destination_account_id", "missing",
                    "A transfer needs a destination account",
                ))
            elif spec.destination_account_id == spec.account_id:
                issues.append(_error(
                    "destination_account_id", "invalid_value",
                    "Transfer source and destination must be different accounts",
                ))

        if spec.interest_amount is not None:
            if spec.transaction_type != TransactionType.LIABILITY_PAYMENT:
                issues.append(_error(
                    "interest_amount", "not_applicable",
                    "Interest applies to liability payments only",
                ))
            elif spec.interest_amount < ZERO:
                issues.append(_error(
                    "interest_amount", "invalid_value",
                    "Interest amount cannot be negative",
                ))

        if spec.is_recurring:
            if spec.recurrence_rule is None:
                issues.append(_error(
                    "recurrence_rule", "missing",
                    "A recurring transaction needs a recurrence rule",
                ))
            elif spec.recurrence_rule.interval < 1:
                issues.append(_error(
                    "recurrence_rule", "invalid_value",
                    "Recurrence interval must be a positive number",
                ))
            start = spec.scheduled_date or spec.date
            if spec.recurrence_end_date is not None and start is not None and spec.recurrence_end_date <= start:
                issues.append(_error(
                    "recurrence_end_date", "inconsistent",
                    "Recurrence end date must be after the first occurrence",
                ))
        elif spec.recurrence_rule is not None:
            issues.append(_error(
                "recurrence_rule", "not_applicable",
                "Only recurring transactions carry a recurrence rule",
            ))

        if spec.is_automatic and not (spec.is_scheduled or spec.is_recurring):
            issues.append(ValidationIssue(
                field="is_automatic",
                issue_type="not_applicable",
                message="Automatic execution only applies to scheduled transactions",
                severity="info",
            ))

        return issues

    async def validate_references(self, spec: TransactionSpec) -> list[ValidationIssue]:
        """Stage 2: checks that need storage and rates."""
        issues = []

        if self._storage is None:
            return issues

        account = await self._storage.get_account(spec.account_id)
        if account is None:
            issues.append(_error(
                "account_id", "not_found",
                f"Account {spec.account_id} does not exist",
            ))

        destination: Optional[Account] = None
        if spec.destination_account_id is not None:
            destination = await self._storage.get_account(spec.destination_account_id)
            if destination is None:
                issues.append(_error(
                    "destination_account_id", "not_found",
                    f"Account {spec.destination_account_id} does not exist",
                ))

        if self._rates is not None and account is not None:
            currency = spec.currency or account.currency
            target = destination.currency if destination is not None else account.currency
            if (
                spec.destination_amount is None
                and self._rates.effective_rate(currency, target) is None
            ):
                issues.append(ValidationIssue(
                    field="currency",
                    issue_type="conversion_unavailable",
                    message=f"No exchange rate between {currency} and {target}; the amount will be used as is",
                    severity="warning",
                    suggested_fix=f"Add a {currency}->{target} rate or enter the destination amount",
                ))

        return issues

    async def validate(self, spec: TransactionSpec) -> ValidationResult:
        """
        Run the full two-stage pipeline.

        Stage 2 only runs if stage 1 found no errors.
        """
        issues = self.validate_schema(spec)
        schema_valid = not any(issue.severity == "error" for issue in issues)

        references_valid = False
        if schema_valid:
            reference_issues = await self.validate_references(spec)
            issues.extend(reference_issues)
            references_valid = not any(issue.severity == "error" for issue in reference_issues)

        return ValidationResult(
            schema_valid=schema_valid,
            references_valid=references_valid,
            is_valid=schema_valid and references_valid,
            issues=issues,
        )

    async def validate_or_raise(self, spec: TransactionSpec) -> ValidationResult:
        """
        Raises:
            TransactionValidationError: If any error-level issue was found
        """
        result = await self.validate(spec)
        if not result.is_valid:
            raise TransactionValidationError(result)
        return result
