"""
Tests for line building, totals and presentation grouping.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from contractor_billing.invoicing.errors import InvoiceValidationError
from contractor_billing.invoicing.lines import (
    ProjectPricing,
    compute_totals,
    expense_line,
    format_money,
    format_percent,
    group_lines_for_presentation,
    normalize_line,
    round2,
    timesheet_line,
    vat_for,
    vat_rate_for,
    write_in_line,
)
from contractor_billing.models import (
    Expense,
    LineItem,
    LineType,
    Timesheet,
    WriteInInput,
)


class TestMoneyHelpers:
    """Tests for rounding and formatting."""

    def test_round2_is_half_up(self):
        """Test halves round away from zero."""
        assert round2(Decimal("2.345")) == Decimal("2.35")
        assert round2(Decimal("2.344")) == Decimal("2.34")

    def test_round2_accepts_floats_without_noise(self):
        """Test floats go through their string form."""
        assert round2(1.005) == Decimal("1.01")

    def test_vat_for_exempt(self):
        """Test exempt lines carry no VAT."""
        assert vat_for(Decimal("100"), None) == Decimal("0.00")
        assert vat_for(Decimal("100"), Decimal("20")) == Decimal("20.00")

    def test_format_money_symbols(self):
        """Test known currencies use their symbol."""
        assert format_money(Decimal("1234.5"), "GBP") == "£1,234.50"
        assert format_money(Decimal("10"), "eur") == "€10.00"
        assert format_money(Decimal("10"), "CHF") == "10.00 CHF"

    def test_format_percent(self):
        """Test trailing zeros are dropped."""
        assert format_percent(Decimal("20.00")) == "20"
        assert format_percent(Decimal("12.50")) == "12.5"
        assert format_percent(None) == "N/A"


class TestLineBuilders:
    """Tests for turning sources into lines."""

    def test_write_in_line_amounts(self):
        """Test quantity 2 at 100 with 20% VAT."""
        line = write_in_line(WriteInInput(
            description="Workshop",
            quantity=Decimal("2"),
            unit_price=Decimal("100"),
            vat_percent=Decimal("20"),
        ))
        assert line.type == LineType.WRITE_IN
        assert line.net_amount == Decimal("200.00")
        assert line.vat_amount == Decimal("40.00")
        assert line.gross_amount == Decimal("240.00")

    def test_timesheet_line_uses_frozen_amount(self):
        """Test a timesheet line takes net from the timesheet and VAT from pricing."""
        timesheet = Timesheet(
            project_id=uuid4(),
            work_date=date(2025, 3, 10),
            hours=Decimal("4"),
            days=Decimal("0.5"),
            amount=Decimal("212.50"),
        )
        pricing = ProjectPricing("Platform rebuild", Decimal("425"), Decimal("20"))
        line = timesheet_line(timesheet, pricing)

        assert line.source_id == timesheet.id
        assert line.description == "Platform rebuild"
        assert line.unit == "days"
        assert line.quantity == Decimal("0.5")
        assert line.unit_price == Decimal("425")
        assert line.net_amount == Decimal("212.50")
        assert line.vat_amount == Decimal("42.50")
        assert line.gross_amount == Decimal("255.00")

    def test_expense_line_keeps_receipt_vat(self):
        """Test an expense line keeps the VAT printed on the receipt."""
        expense = Expense(
            project_id=uuid4(),
            expense_date=date(2025, 3, 12),
            expense_type="Travel",
            description="Train",
            amount=Decimal("33.33"),
            vat_amount=Decimal("5.55"),
        )
        line = expense_line(expense)

        assert line.description == "Travel - Train"
        assert line.net_amount == Decimal("27.78")
        assert line.vat_amount == Decimal("5.55")
        assert line.gross_amount == expense.amount
        assert vat_for(line.net_amount, line.vat_percent) == line.vat_amount

    def test_expense_line_rate_reproduces_receipt_vat(self):
        """Test an odd receipt VAT is reproduced by the line rate."""
        expense = Expense(
            project_id=uuid4(),
            expense_date=date(2025, 3, 12),
            expense_type="Equipment",
            amount=Decimal("1200.07"),
            vat_amount=Decimal("200.07"),
        )
        line = expense_line(expense)

        assert line.net_amount == Decimal("1000.00")
        assert line.vat_amount == Decimal("200.07")
        assert line.vat_percent == Decimal("20.007")
        assert round2(line.net_amount * line.vat_percent / 100) == Decimal("200.07")
        assert expense.vat_percent == Decimal("20.01")

    def test_expense_line_rate_with_recurring_fraction(self):
        """Test rates that do not terminate still reproduce the VAT."""
        for amount, vat in [("10.00", "1.67"), ("99.99", "16.66"), ("0.07", "0.01")]:
            line = expense_line(Expense(
                project_id=uuid4(),
                expense_date=date(2025, 3, 12),
                expense_type="Travel",
                amount=Decimal(amount),
                vat_amount=Decimal(vat),
            ))
            assert vat_for(line.net_amount, line.vat_percent) == Decimal(vat)

    def test_vat_rate_for_zero_net(self):
        """Test a zero net gives a zero rate."""
        assert vat_rate_for(Decimal("0.00"), Decimal("0.00")) == Decimal("0")

    def test_expense_line_without_description(self):
        """Test the type alone is used when there is no description."""
        expense = Expense(
            project_id=uuid4(),
            expense_date=date(2025, 3, 12),
            expense_type="Parking",
            amount=Decimal("8.00"),
        )
        assert expense_line(expense).description == "Parking"

    def test_normalize_recomputes_write_in(self):
        """Test caller-supplied amounts on write-ins are ignored."""
        line = LineItem(
            type=LineType.WRITE_IN,
            quantity=Decimal("3"),
            unit_price=Decimal("10"),
            vat_percent=Decimal("20"),
            net_amount=Decimal("999"),
            gross_amount=Decimal("1"),
        )
        fixed = normalize_line(line)
        assert fixed.net_amount == Decimal("30.00")
        assert fixed.vat_amount == Decimal("6.00")
        assert fixed.gross_amount == Decimal("36.00")

    def test_normalize_timesheet_recomputes_vat_from_net(self):
        """Test timesheet lines keep net and get VAT from their own rate."""
        line = LineItem(
            type=LineType.TIMESHEET,
            source_id=uuid4(),
            vat_percent=Decimal("20"),
            net_amount=Decimal("400"),
            vat_amount=Decimal("1"),
        )
        fixed = normalize_line(line)
        assert fixed.vat_amount == Decimal("80.00")
        assert fixed.gross_amount == Decimal("480.00")

    def test_normalize_expense_rederives_rate(self):
        """Test a supplied expense line keeps its VAT and gets a matching rate."""
        line = LineItem(
            type=LineType.EXPENSE,
            source_id=uuid4(),
            vat_percent=Decimal("20"),
            net_amount=Decimal("1000.00"),
            vat_amount=Decimal("200.07"),
        )
        fixed = normalize_line(line)
        assert fixed.vat_amount == Decimal("200.07")
        assert fixed.gross_amount == Decimal("1200.07")
        assert vat_for(fixed.net_amount, fixed.vat_percent) == fixed.vat_amount


class TestTotals:
    """Tests for invoice totals."""

    def test_totals_sum_net_and_vat(self):
        """Test totals are summed from line net and VAT."""
        lines = [
            write_in_line(WriteInInput(
                description="A", quantity=Decimal("1"), unit_price=Decimal("0.10"),
                vat_percent=Decimal("20"),
            )),
            write_in_line(WriteInInput(
                description="B", quantity=Decimal("1"), unit_price=Decimal("0.10"),
                vat_percent=Decimal("20"),
            )),
        ]
        totals = compute_totals(lines)
        assert totals.subtotal == Decimal("0.20")
        assert totals.total_vat == Decimal("0.04")
        assert totals.total == round2(totals.subtotal + totals.total_vat)

    def test_totals_of_no_lines(self):
        """Test an empty invoice totals to zero."""
        totals = compute_totals([])
        assert totals.total == Decimal("0.00")


class TestPresentationGrouping:
    """Tests for grouping lines the way they are printed."""

    def _timesheet(self, project_id, amount, vat):
        return LineItem(
            type=LineType.TIMESHEET,
            source_id=uuid4(),
            project_id=project_id,
            description="Project",
            quantity=Decimal("1"),
            unit="days",
            unit_price=amount,
            vat_percent=vat,
            net_amount=amount,
            vat_amount=vat_for(amount, vat),
            gross_amount=amount + vat_for(amount, vat),
        )

    def test_groups_sorted_highest_rate_first_exempt_last(self):
        """Test VAT group ordering."""
        project_id = uuid4()
        lines = [
            self._timesheet(project_id, Decimal("100"), None),
            self._timesheet(project_id, Decimal("100"), Decimal("5")),
            self._timesheet(project_id, Decimal("100"), Decimal("20")),
        ]
        groups = group_lines_for_presentation(lines)
        assert [g.vat_percent for g in groups] == [Decimal("20"), Decimal("5"), None]

    def test_timesheets_merge_per_project(self):
        """Test timesheet lines of one project and rate print as one line."""
        project_id = uuid4()
        lines = [
            self._timesheet(project_id, Decimal("400"), Decimal("20")),
            self._timesheet(project_id, Decimal("400"), Decimal("20")),
        ]
        groups = group_lines_for_presentation(lines, {project_id: "Platform rebuild"})

        assert len(groups) == 1
        (printed,) = groups[0].lines
        assert printed.description == "Platform rebuild"
        assert printed.detail == "2 timesheet entries"
        assert printed.quantity == Decimal("2")
        assert printed.net_amount == Decimal("800.00")
        assert groups[0].vat_amount == Decimal("160.00")

    def test_expenses_list_their_types(self):
        """Test expense lines merge per project with a type summary."""
        project_id = uuid4()
        lines = [
            expense_line(Expense(
                project_id=project_id, expense_date=date(2025, 3, 1),
                expense_type="Travel", amount=Decimal("12.00"), vat_amount=Decimal("2.00"),
            )),
            expense_line(Expense(
                project_id=project_id, expense_date=date(2025, 3, 2),
                expense_type="Meals", amount=Decimal("24.00"), vat_amount=Decimal("4.00"),
            )),
        ]
        groups = group_lines_for_presentation(lines, {project_id: "Platform rebuild"})

        (printed,) = groups[0].lines
        assert printed.description == "Expenses - Platform rebuild"
        assert printed.detail == "Travel, Meals"
        assert printed.net_amount == Decimal("30.00")

    def test_expense_rates_group_as_printed(self):
        """Test expense lines whose rates round to the same value share a group."""
        project_id = uuid4()
        lines = [
            expense_line(Expense(
                project_id=project_id, expense_date=date(2025, 3, 1),
                expense_type="Travel", amount=Decimal("1200.07"), vat_amount=Decimal("200.07"),
            )),
            expense_line(Expense(
                project_id=project_id, expense_date=date(2025, 3, 2),
                expense_type="Hotel", amount=Decimal("120.01"), vat_amount=Decimal("20.01"),
            )),
        ]
        (group,) = group_lines_for_presentation(lines)
        assert group.vat_percent == Decimal("20.01")
        assert group.vat_amount == Decimal("220.08")

    def test_write_ins_print_individually(self):
        """Test write-ins are not merged."""
        lines = [
            write_in_line(WriteInInput(description="A", quantity=Decimal("1"), unit_price=Decimal("5"))),
            write_in_line(WriteInInput(description="B", quantity=Decimal("1"), unit_price=Decimal("5"))),
        ]
        groups = group_lines_for_presentation(lines)
        assert [p.description for p in groups[0].lines] == ["A", "B"]


class TestLineAggregator:
    """Tests for building lines from stored sources."""

    async def test_build_lines_from_sources(self, engine, seed):
        """Test timesheets, expenses and write-ins are built in that order."""
        lines = await engine.build_lines(
            [seed.timesheet.id],
            [seed.expense.id],
            [WriteInInput(description="Setup", quantity=Decimal("1"), unit_price=Decimal("50"))],
        )
        assert [l.type for l in lines] == [LineType.TIMESHEET, LineType.EXPENSE, LineType.WRITE_IN]
        assert lines[0].net_amount == Decimal("400.00")
        assert lines[0].vat_amount == Decimal("80.00")
        assert lines[0].description == "Default Project"
        assert lines[1].gross_amount == Decimal("120.00")

    async def test_build_lines_missing_source(self, engine, seed):
        """Test unknown ids are reported, not skipped."""
        with pytest.raises(InvoiceValidationError) as exc_info:
            await engine.build_lines([seed.timesheet.id, uuid4()])
        assert exc_info.value.issues[0].issue_type == "not_found"
