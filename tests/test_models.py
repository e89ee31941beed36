"""
Tests for Contractor Billing models

Test strategy:
1. Unit tests for individual components (models, line maths, periods)
2. Integration tests for flows on a temporary JSON store
3. No network or external services in tests
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from contractor_billing.models.invoice import (
    Conflict,
    ConflictReason,
    Invoice,
    InvoicePatch,
    InvoiceStatus,
    LineItem,
    LineType,
    PaymentStatus,
    PaymentUpdate,
)
from contractor_billing.models.records import (
    Client,
    Expense,
    SettingsRecord,
    Timesheet,
)
from contractor_billing.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from contractor_billing.models.validation import ValidationIssue, ValidationResult


class TestLineItemModel:
    """Tests for the invoice line model."""

    def test_write_in_line_creation(self):
        """Test a write-in line needs no source."""
        line = LineItem(
            type=LineType.WRITE_IN,
            description="Workshop",
            quantity=Decimal("2"),
            unit_price=Decimal("100"),
        )
        assert line.source_id is None
        assert not line.is_sourced

    def test_write_in_rejects_source_id(self):
        """Test that write-in lines cannot reference a source."""
        with pytest.raises(ValueError, match="cannot reference a source"):
            LineItem(type=LineType.WRITE_IN, source_id=uuid4())

    def test_timesheet_line_requires_source_id(self):
        """Test that sourced lines need a source id."""
        with pytest.raises(ValueError, match="Timesheet lines require a source_id"):
            LineItem(type=LineType.TIMESHEET)

    def test_vat_percent_bounds(self):
        """Test VAT percent must be between 0 and 100."""
        with pytest.raises(ValueError):
            LineItem(type=LineType.WRITE_IN, vat_percent=Decimal("120"))

    def test_line_type_values(self):
        """Test line types serialise to their wire values."""
        assert LineType.WRITE_IN.value == "write-in"
        assert LineType("timesheet") == LineType.TIMESHEET


class TestInvoiceModel:
    """Tests for the invoice model."""

    def test_invoice_defaults(self):
        """Test a new invoice starts as an unpaid, numberless draft."""
        invoice = Invoice(
            client_id=uuid4(),
            invoice_date=date(2025, 3, 31),
            due_date=date(2025, 4, 10),
        )
        assert invoice.status == InvoiceStatus.DRAFT
        assert invoice.invoice_number is None
        assert invoice.payment_status == PaymentStatus.UNPAID
        assert invoice.total == Decimal("0.00")
        assert not invoice.holds_locks
        assert not invoice.was_ever_confirmed

    def test_due_date_validation(self):
        """Test that due_date cannot be before invoice_date."""
        with pytest.raises(ValueError, match="Due date cannot be before invoice date"):
            Invoice(
                client_id=uuid4(),
                invoice_date=date(2025, 3, 31),
                due_date=date(2025, 3, 1),
            )

    def test_service_period_validation(self):
        """Test service period end cannot be before start."""
        with pytest.raises(ValueError, match="Service period end cannot be before start"):
            Invoice(
                client_id=uuid4(),
                invoice_date=date(2025, 3, 31),
                due_date=date(2025, 4, 10),
                service_period_start=date(2025, 3, 31),
                service_period_end=date(2025, 3, 1),
            )

    def test_paid_date_validation(self):
        """Test paid date cannot be before invoice date."""
        with pytest.raises(ValueError, match="Paid date cannot be before invoice date"):
            Invoice(
                client_id=uuid4(),
                invoice_date=date(2025, 3, 31),
                due_date=date(2025, 4, 10),
                paid_date=date(2025, 3, 1),
            )

    def test_source_ids_are_distinct_and_ordered(self):
        """Test source_ids keeps first-seen order per line type."""
        first, second = uuid4(), uuid4()
        invoice = Invoice(
            client_id=uuid4(),
            due_date=date.today(),
            invoice_date=date.today(),
            lines=[
                LineItem(type=LineType.TIMESHEET, source_id=second),
                LineItem(type=LineType.EXPENSE, source_id=first),
                LineItem(type=LineType.TIMESHEET, source_id=first),
                LineItem(type=LineType.TIMESHEET, source_id=second),
            ],
        )
        assert invoice.source_ids(LineType.TIMESHEET) == [second, first]
        assert invoice.source_ids(LineType.EXPENSE) == [first]

    def test_confirmed_and_posted_hold_locks(self):
        """Test lock-holding statuses."""
        invoice = Invoice(client_id=uuid4(), invoice_date=date.today(), due_date=date.today())
        invoice.status = InvoiceStatus.CONFIRMED
        assert invoice.holds_locks
        invoice.status = InvoiceStatus.POSTED
        assert invoice.holds_locks

    def test_patch_rejects_unknown_fields(self):
        """Test that InvoicePatch forbids fields it does not know."""
        with pytest.raises(ValueError):
            InvoicePatch.model_validate({"colour": "red"})

    def test_payment_update_tracks_supplied_paid_date(self):
        """Test paid_date=None is distinguishable from an omitted paid_date."""
        assert not PaymentUpdate(payment_status=PaymentStatus.PAID).paid_date_supplied
        assert PaymentUpdate(paid_date=None).paid_date_supplied


class TestRecordModels:
    """Tests for clients and source records."""

    def test_client_currency_uppercased(self):
        """Test currency codes are normalised."""
        client = Client(company_name="Acme Ltd", currency="eur")
        assert client.currency == "EUR"

    def test_timesheet_quarter_hours(self):
        """Test hours must be in 0.25 steps."""
        Timesheet(project_id=uuid4(), work_date=date(2025, 3, 10), hours=Decimal("7.75"))
        with pytest.raises(ValueError, match="0.25 increments"):
            Timesheet(project_id=uuid4(), work_date=date(2025, 3, 10), hours=Decimal("7.3"))

    def test_timesheet_hours_upper_bound(self):
        """Test a day has at most 24 hours."""
        with pytest.raises(ValueError):
            Timesheet(project_id=uuid4(), work_date=date(2025, 3, 10), hours=Decimal("25"))

    def test_expense_vat_cannot_exceed_amount(self):
        """Test VAT larger than the whole receipt is rejected."""
        with pytest.raises(ValueError, match="VAT amount cannot exceed"):
            Expense(
                project_id=uuid4(),
                expense_date=date(2025, 3, 12),
                expense_type="Travel",
                amount=Decimal("10.00"),
                vat_amount=Decimal("12.00"),
            )

    def test_expense_derived_vat_percent(self):
        """Test VAT percent is derived over net."""
        expense = Expense(
            project_id=uuid4(),
            expense_date=date(2025, 3, 12),
            expense_type="Travel",
            amount=Decimal("120.00"),
            vat_amount=Decimal("20.00"),
        )
        assert expense.net_amount == Decimal("100.00")
        assert expense.vat_percent == Decimal("20.00")

    def test_expense_vat_cannot_exceed_net(self):
        """Test VAT above the net part of the receipt is rejected."""
        with pytest.raises(ValueError, match="cannot exceed the net amount"):
            Expense(
                project_id=uuid4(),
                expense_date=date(2025, 3, 12),
                expense_type="Fee",
                amount=Decimal("5.00"),
                vat_amount=Decimal("5.00"),
            )

    def test_zero_expense_has_zero_vat_percent(self):
        """Test an empty receipt does not divide by zero."""
        expense = Expense(
            project_id=uuid4(),
            expense_date=date(2025, 3, 12),
            expense_type="Fee",
            amount=Decimal("0.00"),
        )
        assert expense.vat_percent == Decimal("0.00")

    def test_settings_record_defaults(self):
        """Test the seed starts at zero with 10 day terms."""
        settings = SettingsRecord()
        assert settings.invoice_number_seed == 0
        assert settings.default_payment_term_days == 10


class TestValidationModels:
    """Tests for validation-related models."""

    def test_validation_result_splits_errors_and_warnings(self):
        """Test errors and warnings are separated."""
        result = ValidationResult(issues=[
            ValidationIssue(field="lines", issue_type="empty", message="No lines", severity="warning"),
            ValidationIssue(field="client_id", issue_type="not_found", message="Client not found"),
        ])
        assert result.has_errors
        assert [i.field for i in result.errors] == ["client_id"]
        assert [i.field for i in result.warnings] == ["lines"]

    def test_validation_result_warnings_only(self):
        """Test warnings alone do not count as errors."""
        result = ValidationResult(issues=[
            ValidationIssue(field="lines", issue_type="empty", message="No lines", severity="warning"),
        ])
        assert not result.has_errors

    def test_conflict_log_dict(self):
        """Test conflicts serialise for structured logs."""
        conflict = Conflict(
            line_id=uuid4(),
            type=LineType.TIMESHEET,
            source_id=uuid4(),
            reason=ConflictReason.DRIFT,
            field="amount",
            message="Timesheet 2025-03-10: amount changed from £400.00 to £450.00",
        )
        data = conflict.to_log_dict()
        assert data["reason"] == "drift"
        assert data["field"] == "amount"


class TestAuditModels:
    """Tests for audit-related models."""

    def test_audit_event_creation(self):
        """Test AuditEvent model creation."""
        event = AuditEvent(
            event_type=AuditEventType.INVOICE_CREATED,
            description="Test event",
        )
        assert event.event_type == AuditEventType.INVOICE_CREATED
        assert event.severity == AuditSeverity.INFO
        assert event.event_id is not None

    def test_audit_event_to_log_dict(self):
        """Test conversion to log dictionary."""
        event = AuditEvent(
            event_type=AuditEventType.INVOICE_POSTED,
            description="Test",
            entity_type="invoice",
            entity_id=uuid4(),
        )
        log_dict = event.to_log_dict()
        assert log_dict["event_type"] == "invoice_posted"
        assert log_dict["entity_type"] == "invoice"

    def test_audit_builder_invoice_confirmed(self):
        """Test AuditEventBuilder for a confirm."""
        invoice_id = uuid4()
        event = AuditEventBuilder.invoice_confirmed(
            invoice_id=invoice_id,
            invoice_number="INV00006",
            timesheets_locked=3,
            expenses_locked=1,
        )
        assert event.event_type == AuditEventType.INVOICE_CONFIRMED
        assert event.entity_id == invoice_id
        assert event.details["invoice_number"] == "INV00006"

    def test_audit_builder_transition_failed_severity(self):
        """Test failed compensation escalates to critical."""
        clean = AuditEventBuilder.transition_failed(
            invoice_id=uuid4(),
            transition="confirm",
            failed_step="persist_invoice",
            error_message="disk full",
            compensation_failures=[],
        )
        dirty = AuditEventBuilder.transition_failed(
            invoice_id=uuid4(),
            transition="confirm",
            failed_step="persist_invoice",
            error_message="disk full",
            compensation_failures=["lock_timesheets"],
        )
        assert clean.severity == AuditSeverity.ERROR
        assert dirty.severity == AuditSeverity.CRITICAL
