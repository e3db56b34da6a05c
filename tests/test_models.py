"""
Tests for the ledger's Pydantic models.
"""

import pytest
from datetime import datetime
from decimal import Decimal
from uuid import uuid4

from pydantic import ValidationError

from money_tracker.models import (
    Account,
    AccountType,
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
    Currency,
    ExchangeRate,
    RecurrenceRule,
    RecurrenceUnit,
    Transaction,
    TransactionChanges,
    TransactionStatus,
    TransactionType,
    ValidationIssue,
    ValidationResult,
    round_money,
    to_decimal,
)


def make_transaction(**overrides) -> Transaction:
    fields = dict(
        transaction_type=TransactionType.EXPENSE,
        amount=Decimal("10"),
        currency="EUR",
        account_id=uuid4(),
    )
    fields.update(overrides)
    return Transaction(**fields)


class TestMoney:
    """Tests for Decimal coercion."""

    def test_accepts_decimal_int_and_string(self):
        """Test that exact inputs are accepted unchanged."""
        assert to_decimal(Decimal("1.10")) == Decimal("1.10")
        assert to_decimal(7) == Decimal("7")
        assert to_decimal(" 12.5 ") == Decimal("12.5")

    def test_accepts_comma_decimal_separator(self):
        """Test that '12,50' is read as 12.50."""
        assert to_decimal("12,50") == Decimal("12.50")

    def test_rejects_float(self):
        """Test that binary floats never become money."""
        with pytest.raises(ValueError):
            to_decimal(0.1)

    def test_rejects_bool_and_garbage(self):
        """Test that booleans and non-numbers are refused."""
        with pytest.raises(ValueError):
            to_decimal(True)
        with pytest.raises(ValueError):
            to_decimal("twelve")
        with pytest.raises(ValueError):
            to_decimal("Infinity")

    def test_round_money_is_bankers_rounding(self):
        """Test ROUND_HALF_EVEN at two places."""
        assert round_money(Decimal("2.345")) == Decimal("2.34")
        assert round_money(Decimal("2.355")) == Decimal("2.36")

    def test_model_rejects_float_amount(self):
        """Test that a float amount fails model validation."""
        with pytest.raises(ValidationError):
            make_transaction(amount=10.5)


class TestCurrencyModels:
    """Tests for currency reference data."""

    def test_code_is_normalized(self):
        """Test that codes are stripped and upper-cased."""
        assert Currency(code=" eur ").code == "EUR"

    def test_code_must_have_three_letters(self):
        """Test code length validation."""
        with pytest.raises(ValidationError):
            Currency(code="EURO")

    def test_display_symbol(self):
        """Test that only USD shows a bare dollar sign."""
        assert Currency(code="USD", symbol="$").display_symbol == "$"
        assert Currency(code="MOP", symbol="MOP$").display_symbol == "MOP"
        assert Currency(code="EUR", symbol="€").display_symbol == "€"
        assert Currency(code="CHF").display_symbol == "CHF"

    def test_exchange_rate_must_be_positive(self):
        """Test that zero and negative rates are refused."""
        with pytest.raises(ValidationError):
            ExchangeRate(from_code="EUR", to_code="USD", rate=Decimal("0"))
        with pytest.raises(ValidationError):
            ExchangeRate(from_code="EUR", to_code="USD", rate=Decimal("-1"))

    def test_exchange_rate_is_frozen(self):
        """Test that a stored rate cannot be modified in place."""
        rate = ExchangeRate(from_code="EUR", to_code="USD", rate=Decimal("1.1"))
        with pytest.raises(ValidationError):
            rate.rate = Decimal("1.2")


class TestAccountModel:
    """Tests for Account."""

    def test_account_creation(self):
        """Test Account model creation with defaults."""
        account = Account(name="  Wallet ", currency="eur")
        assert account.name == "Wallet"
        assert account.currency == "EUR"
        assert account.initial_balance == Decimal("0")
        assert account.account_type == AccountType.PAYMENT

    def test_negative_credit_limit_rejected(self):
        """Test credit limit validation."""
        with pytest.raises(ValidationError):
            Account(name="Card", currency="EUR", credit_limit=Decimal("-1"))

    def test_available_credit(self):
        """Test remaining credit on a credit card."""
        card = Account(
            name="Card",
            currency="EUR",
            account_type=AccountType.CREDIT_CARD,
            credit_limit=Decimal("1500"),
        )
        assert card.available_credit(Decimal("-400")) == Decimal("1100")
        assert Account(name="Cash", currency="EUR").available_credit(Decimal("0")) is None

    def test_debt_types(self):
        """Test which account types represent debt."""
        assert AccountType.CREDIT_CARD.is_debt
        assert AccountType.LIABILITY.is_debt
        assert not AccountType.CASH.is_debt


class TestRecurrenceRule:
    """Tests for RecurrenceRule."""

    def test_interval_must_be_positive(self):
        """Test that a zero interval is structurally invalid."""
        with pytest.raises(ValidationError):
            RecurrenceRule(interval=0, unit=RecurrenceUnit.DAY)

    def test_display_string(self):
        """Test human-readable rule descriptions."""
        assert RecurrenceRule(interval=1, unit=RecurrenceUnit.MONTH).display_string == "Every month"
        assert RecurrenceRule(interval=2, unit=RecurrenceUnit.WEEK).display_string == "Every 2 weeks"


class TestTransactionModel:
    """Tests for the Transaction invariants."""

    def test_defaults_to_executed_one_off(self):
        """Test that a plain transaction is executed and unlinked."""
        tx = make_transaction()
        assert tx.status == TransactionStatus.EXECUTED
        assert not tx.is_template
        assert not tx.is_instance
        assert tx.series_id is None

    def test_template_and_instance_are_exclusive(self):
        """Test that a transaction cannot be both template and instance."""
        with pytest.raises(ValidationError):
            make_transaction(
                is_recurring=True,
                recurrence_rule=RecurrenceRule(),
                parent_recurring_transaction_id=uuid4(),
            )

    def test_template_requires_rule(self):
        """Test that a recurring template carries a rule."""
        with pytest.raises(ValidationError):
            make_transaction(is_recurring=True)

    def test_rule_only_on_template(self):
        """Test that instances and one-offs carry no rule."""
        with pytest.raises(ValidationError):
            make_transaction(recurrence_rule=RecurrenceRule())

    def test_transfer_requires_distinct_destination(self):
        """Test transfer endpoint validation."""
        account_id = uuid4()
        with pytest.raises(ValidationError):
            make_transaction(transaction_type=TransactionType.TRANSFER, account_id=account_id)
        with pytest.raises(ValidationError):
            make_transaction(
                transaction_type=TransactionType.TRANSFER,
                account_id=account_id,
                destination_account_id=account_id,
            )

    def test_only_adjustments_are_signed(self):
        """Test that negative amounts are reserved for adjustments."""
        with pytest.raises(ValidationError):
            make_transaction(amount=Decimal("-5"))
        tx = make_transaction(transaction_type=TransactionType.ADJUSTMENT, amount=Decimal("-5"))
        assert tx.amount == Decimal("-5")

    def test_interest_only_on_liability_payments(self):
        """Test that interest is refused on other types."""
        with pytest.raises(ValidationError):
            make_transaction(interest_amount=Decimal("3"))
        tx = make_transaction(
            transaction_type=TransactionType.LIABILITY_PAYMENT,
            interest_amount=Decimal("3"),
        )
        assert tx.interest_amount == Decimal("3")

    def test_snapshot_is_write_once(self):
        """Test that a captured rate can never be replaced."""
        tx = make_transaction(exchange_rate_snapshot=Decimal("1.1"))
        with pytest.raises(ValueError):
            tx.exchange_rate_snapshot = Decimal("1.2")

    def test_snapshot_can_be_set_once(self):
        """Test that an empty snapshot may be filled."""
        tx = make_transaction()
        tx.exchange_rate_snapshot = Decimal("1.1")
        assert tx.exchange_rate_snapshot == Decimal("1.1")

    def test_affected_accounts(self):
        """Test that transfers touch both accounts."""
        source, dest = uuid4(), uuid4()
        tx = make_transaction(
            transaction_type=TransactionType.TRANSFER,
            account_id=source,
            destination_account_id=dest,
        )
        assert tx.affected_account_ids == {source, dest}

    def test_schedule_anchor_prefers_scheduled_date(self):
        """Test the date used to order series members."""
        scheduled = datetime(2026, 5, 1)
        tx = make_transaction(date=datetime(2026, 4, 1), scheduled_date=scheduled)
        assert tx.schedule_anchor == scheduled

    def test_changes_detects_empty_edit(self):
        """Test TransactionChanges.has_changes."""
        assert not TransactionChanges().has_changes()
        assert TransactionChanges(notes="rent").has_changes()


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.TRANSACTION_CREATED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.TRANSACTION_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        tx_id = uuid4()
        event = AuditEventBuilder.transaction_confirmed(tx_id, automatic=True)
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "transaction_confirmed"
        assert log_dict["entity_id"] == str(tx_id)
        assert log_dict["is_user_action"] is False

    def test_audit_event_to_sheets_row(self):
        """Test conversion to sheets row."""
        event = AuditEventBuilder.transactions_deleted(
            anchor_id=uuid4(),
            deleted_ids=[uuid4(), uuid4()],
            scope="all",
        )
        row = event.to_sheets_row()
        assert len(row) == 11
        assert row[2] == "transaction_deleted"


class TestValidationResult:
    """Tests for ValidationResult."""

    def test_errors_and_warnings_are_split(self):
        """Test the severity views."""
        result = ValidationResult(
            schema_valid=False,
            references_valid=False,
            is_valid=False,
            issues=[
                ValidationIssue(field="amount", issue_type="invalid_value", message="bad", severity="error"),
                ValidationIssue(field="currency", issue_type="conversion_unavailable", message="hm", severity="warning"),
            ],
        )
        assert [i.field for i in result.errors] == ["amount"]
        assert [i.field for i in result.warnings] == ["currency"]

    def test_severity_is_constrained(self):
        """Test the severity pattern."""
        with pytest.raises(ValidationError):
            ValidationIssue(field="x", issue_type="y", message="z", severity="fatal")
