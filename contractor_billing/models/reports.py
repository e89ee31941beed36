"""
Dashboard Report Models

Read-only summaries computed from invoices, timesheets, expenses and
bank transactions. Nothing here is ever persisted.
"""

from datetime import date
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from contractor_billing.models.invoice import InvoiceStatus, PaymentStatus


ZERO = Decimal("0.00")


class CountAndTotal(BaseModel):
    count: int = 0
    total: Decimal = ZERO


class MonthlyInvoiceCheck(BaseModel):
    """Invoices dated in the current month; warns late in an empty month."""
    count: int = 0
    warning: bool = False


class OperationsSummary(BaseModel):
    unmatched_transactions: CountAndTotal
    uninvoiced_timesheets: CountAndTotal
    monthly_invoices: MonthlyInvoiceCheck


class CoverageInvoice(BaseModel):
    id: UUID
    invoice_number: Optional[str] = None
    total: Decimal
    status: InvoiceStatus
    payment_status: PaymentStatus


class MonthCoverage(BaseModel):
    label: str
    start: date
    end: date
    count: int = 0
    total: Decimal = ZERO
    invoices: list[CoverageInvoice] = Field(default_factory=list)


class AccrualMonth(BaseModel):
    """Revenue from confirmed/posted invoices against expenses, by month."""
    label: str
    start: date
    end: date
    revenue: Decimal = ZERO
    revenue_vat: Decimal = ZERO
    expenses: Decimal = ZERO
    expense_vat: Decimal = ZERO
    net_profit: Decimal = ZERO


class CashMonth(BaseModel):
    label: str
    start: date
    end: date
    cash_in: Decimal = ZERO
    cash_out: Decimal = ZERO
    net_cash_flow: Decimal = ZERO


class FinancialTotals(BaseModel):
    revenue: Decimal = ZERO
    expenses: Decimal = ZERO
    net_profit: Decimal = ZERO
    cash_in: Decimal = ZERO
    cash_out: Decimal = ZERO
    cash_position: Decimal = ZERO
    outstanding: Decimal = ZERO
    output_vat: Decimal = ZERO
    input_vat: Decimal = ZERO
    vat_position: Decimal = ZERO


class FinancialSummary(BaseModel):
    accrual: list[AccrualMonth]
    cash: list[CashMonth]
    totals: FinancialTotals
