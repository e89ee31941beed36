"""
Dashboard Service

DESIGN DECISION: Reporting is READ-ONLY.
It consumes invoices, timesheets, expenses and bank transactions
through the storage interfaces and never goes through the invoice
engine, so a report can never change lifecycle state.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from contractor_billing.invoicing.lines import round2
from contractor_billing.models.invoice import Invoice, InvoiceStatus, PaymentStatus
from contractor_billing.models.records import (
    BankTransaction,
    Expense,
    Timesheet,
    TransactionStatus,
)
from contractor_billing.models.reports import (
    AccrualMonth,
    CashMonth,
    CountAndTotal,
    CoverageInvoice,
    FinancialSummary,
    FinancialTotals,
    MonthCoverage,
    MonthlyInvoiceCheck,
    OperationsSummary,
)
from contractor_billing.reporting.periods import get_months_in_range
from contractor_billing.services.storage.interface import (
    InvoiceStorageInterface,
    SourceRecordProvider,
    TransactionProvider,
)


# Day of month from which a month without invoices is flagged
MISSING_INVOICE_WARNING_DAY = 20


def _sum(values: Iterable[Decimal]) -> Decimal:
    return round2(sum(values, Decimal("0")))


def _within(day: date, start: date, end: date) -> bool:
    return start <= day <= end


class DashboardService:
    """Summaries for the operations and financial dashboards."""

    def __init__(
        self,
        invoices: InvoiceStorageInterface,
        timesheets: SourceRecordProvider[Timesheet],
        expenses: SourceRecordProvider[Expense],
        transactions: TransactionProvider,
    ):
        self._invoices = invoices
        self._timesheets = timesheets
        self._expenses = expenses
        self._transactions = transactions

    async def get_operations_summary(self, today: Optional[date] = None) -> OperationsSummary:
        """
        Work waiting to be done.

        - Unmatched bank transactions (count, total of absolute amounts)
        - Timesheets not yet locked to an invoice (count, total amount)
        - Invoices dated this month, with a warning from the 20th if none
        """
        today = today or date.today()
        unmatched = await self._transactions.list_transactions(status=TransactionStatus.UNMATCHED)
        uninvoiced = await self._timesheets.list_records(locked=False)

        month = get_months_in_range(today, today)[0]
        this_month = [
            invoice for invoice in await self._invoices.list_invoices()
            if _within(invoice.invoice_date, month.start, month.end)
        ]

        return OperationsSummary(
            unmatched_transactions=CountAndTotal(
                count=len(unmatched),
                total=_sum(abs(t.amount) for t in unmatched),
            ),
            uninvoiced_timesheets=CountAndTotal(
                count=len(uninvoiced),
                total=_sum(t.amount for t in uninvoiced),
            ),
            monthly_invoices=MonthlyInvoiceCheck(
                count=len(this_month),
                warning=today.day >= MISSING_INVOICE_WARNING_DAY and not this_month,
            ),
        )

    async def get_invoice_coverage(self, start: date, end: date) -> list[MonthCoverage]:
        """Invoice count and total per month between two dates."""
        invoices = [
            invoice for invoice in await self._invoices.list_invoices()
            if _within(invoice.invoice_date, start, end)
        ]

        coverage = []
        for month in get_months_in_range(start, end):
            in_month = sorted(
                (i for i in invoices if _within(i.invoice_date, month.start, month.end)),
                key=lambda i: i.invoice_date,
            )
            coverage.append(MonthCoverage(
                label=month.label,
                start=month.start,
                end=month.end,
                count=len(in_month),
                total=_sum(i.total for i in in_month),
                invoices=[
                    CoverageInvoice(
                        id=i.id,
                        invoice_number=i.invoice_number,
                        total=i.total,
                        status=i.status,
                        payment_status=i.payment_status,
                    )
                    for i in in_month
                ],
            ))
        return coverage

    async def get_financial_summary(self, start: date, end: date) -> FinancialSummary:
        """
        Accrual and cash view of a period.

        Revenue counts confirmed and posted invoices by invoice date.
        Outstanding is every posted invoice not yet paid, whatever its date.
        """
        all_invoices = await self._invoices.list_invoices()
        issued = [
            i for i in all_invoices
            if i.status in (InvoiceStatus.CONFIRMED, InvoiceStatus.POSTED)
            and _within(i.invoice_date, start, end)
        ]
        expenses = [
            e for e in await self._expenses.list_records()
            if _within(e.expense_date, start, end)
        ]
        transactions = [
            t for t in await self._transactions.list_transactions()
            if _within(t.transaction_date, start, end)
        ]

        accrual = []
        cash = []
        for month in get_months_in_range(start, end):
            accrual.append(self._accrual_month(month, issued, expenses))
            cash.append(self._cash_month(month, transactions))

        revenue = _sum(m.revenue for m in accrual)
        expense_total = _sum(m.expenses for m in accrual)
        cash_in = _sum(m.cash_in for m in cash)
        cash_out = _sum(m.cash_out for m in cash)
        output_vat = _sum(m.revenue_vat for m in accrual)
        input_vat = _sum(m.expense_vat for m in accrual)

        return FinancialSummary(
            accrual=accrual,
            cash=cash,
            totals=FinancialTotals(
                revenue=revenue,
                expenses=expense_total,
                net_profit=round2(revenue - expense_total),
                cash_in=cash_in,
                cash_out=cash_out,
                cash_position=round2(cash_in - cash_out),
                outstanding=self._outstanding(all_invoices),
                output_vat=output_vat,
                input_vat=input_vat,
                vat_position=round2(output_vat - input_vat),
            ),
        )

    @staticmethod
    def _accrual_month(month, invoices: list[Invoice], expenses: list[Expense]) -> AccrualMonth:
        m_invoices = [i for i in invoices if _within(i.invoice_date, month.start, month.end)]
        m_expenses = [e for e in expenses if _within(e.expense_date, month.start, month.end)]
        revenue = _sum(i.subtotal for i in m_invoices)
        expense_total = _sum(e.amount for e in m_expenses)
        return AccrualMonth(
            label=month.label,
            start=month.start,
            end=month.end,
            revenue=revenue,
            revenue_vat=_sum(i.total_vat for i in m_invoices),
            expenses=expense_total,
            expense_vat=_sum(e.vat_amount for e in m_expenses),
            net_profit=round2(revenue - expense_total),
        )

    @staticmethod
    def _cash_month(month, transactions: list[BankTransaction]) -> CashMonth:
        m_txns = [t for t in transactions if _within(t.transaction_date, month.start, month.end)]
        cash_in = _sum(t.amount for t in m_txns if t.amount > 0)
        cash_out = _sum(-t.amount for t in m_txns if t.amount < 0)
        return CashMonth(
            label=month.label,
            start=month.start,
            end=month.end,
            cash_in=cash_in,
            cash_out=cash_out,
            net_cash_flow=round2(cash_in - cash_out),
        )

    @staticmethod
    def _outstanding(invoices: list[Invoice]) -> Decimal:
        return _sum(
            i.total for i in invoices
            if i.status == InvoiceStatus.POSTED and i.payment_status != PaymentStatus.PAID
        )
