"""
Consistency Check

Compares each sourced line of an invoice with its live source record
and reports every difference as a Conflict. Read-only: nothing is
written, so it can be run on demand as well as by confirm.

For each line with a source, in line order:
1. Existence - the source record was deleted
2. Locking   - the source is locked to a different invoice
3. Drift     - a frozen value differs from the live one by more than
               the tolerance (one conflict per field)
"""

from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog

from contractor_billing.invoicing.lines import (
    LineAggregator,
    ProjectPricing,
    format_money,
    format_percent,
)
from contractor_billing.models.invoice import (
    Conflict,
    ConflictReason,
    Invoice,
    LineItem,
    LineType,
)
from contractor_billing.models.records import Expense, Timesheet
from contractor_billing.services.storage.interface import (
    ClientProjectProvider,
    InvoiceStorageInterface,
    SourceRecordProvider,
)


logger = structlog.get_logger(__name__)


class _CheckContext:
    """Lookups shared by all lines of one check."""

    def __init__(self, invoice: Invoice, currency: str):
        self.invoice = invoice
        self.currency = currency
        self.pricing: dict[UUID, ProjectPricing] = {}
        self.other_numbers: dict[UUID, str] = {}


class ConsistencyChecker:
    """Detects deleted, foreign-locked and drifted sources."""

    def __init__(
        self,
        timesheets: SourceRecordProvider[Timesheet],
        expenses: SourceRecordProvider[Expense],
        invoices: InvoiceStorageInterface,
        client_projects: ClientProjectProvider,
        aggregator: LineAggregator,
        tolerance: Decimal = Decimal("0.01"),
    ):
        self._timesheets = timesheets
        self._expenses = expenses
        self._invoices = invoices
        self._client_projects = client_projects
        self._aggregator = aggregator
        self._tolerance = tolerance

    async def check(self, invoice: Invoice) -> list[Conflict]:
        """
        Check every sourced line of the invoice.

        Returns:
            Conflicts in line order; empty when the invoice can be confirmed
        """
        timesheets = {
            t.id: t
            for t in await self._timesheets.find_many_by_ids(invoice.source_ids(LineType.TIMESHEET))
        }
        expenses = {
            e.id: e
            for e in await self._expenses.find_many_by_ids(invoice.source_ids(LineType.EXPENSE))
        }

        client = await self._client_projects.get_client(invoice.client_id)
        ctx = _CheckContext(invoice, client.currency if client else "GBP")

        conflicts: list[Conflict] = []
        for line in invoice.lines:
            if line.type == LineType.TIMESHEET:
                conflicts.extend(
                    await self._check_timesheet(line, timesheets.get(line.source_id), ctx)
                )
            elif line.type == LineType.EXPENSE:
                conflicts.extend(
                    await self._check_expense(line, expenses.get(line.source_id), ctx)
                )

        if conflicts:
            logger.info(
                "consistency_conflicts_found",
                invoice_id=str(invoice.id),
                conflict_count=len(conflicts),
            )
        return conflicts

    # ---------------- Per-type checks ---------------- #

    async def _check_timesheet(
        self,
        line: LineItem,
        timesheet: Optional[Timesheet],
        ctx: _CheckContext,
    ) -> list[Conflict]:
        if timesheet is None:
            return [self._deleted(line, "Timesheet")]

        label = f"Timesheet {timesheet.work_date.isoformat()}"
        conflicts = []

        locked = await self._locked_elsewhere(line, timesheet.invoice_id, label, ctx)
        if locked:
            conflicts.append(locked)

        pricing = await self._aggregator.resolve_pricing(timesheet.project_id, ctx.pricing)

        if self._differs(line.net_amount, timesheet.amount):
            conflicts.append(self._drift(
                line, "amount",
                f"{label}: amount changed from {format_money(line.net_amount, ctx.currency)} "
                f"to {format_money(timesheet.amount, ctx.currency)}",
            ))
        if self._differs_optional(line.vat_percent, pricing.vat_percent):
            conflicts.append(self._drift(
                line, "vat_percent",
                f"{label}: VAT rate changed from {format_percent(line.vat_percent)}% "
                f"to {format_percent(pricing.vat_percent)}%",
            ))
        if self._differs(line.unit_price, pricing.rate):
            conflicts.append(self._drift(
                line, "rate",
                f"{label}: rate changed from {format_money(line.unit_price, ctx.currency)} "
                f"to {format_money(pricing.rate, ctx.currency)}",
            ))
        return conflicts

    async def _check_expense(
        self,
        line: LineItem,
        expense: Optional[Expense],
        ctx: _CheckContext,
    ) -> list[Conflict]:
        if expense is None:
            return [self._deleted(line, "Expense")]

        label = f"Expense {expense.expense_date.isoformat()}"
        conflicts = []

        locked = await self._locked_elsewhere(line, expense.invoice_id, label, ctx)
        if locked:
            conflicts.append(locked)

        if self._differs(line.gross_amount, expense.amount):
            conflicts.append(self._drift(
                line, "amount",
                f"{label}: amount changed from {format_money(line.gross_amount, ctx.currency)} "
                f"to {format_money(expense.amount, ctx.currency)}",
            ))
        if self._differs(line.vat_amount, expense.vat_amount):
            conflicts.append(self._drift(
                line, "vat_amount",
                f"{label}: VAT changed from {format_money(line.vat_amount, ctx.currency)} "
                f"to {format_money(expense.vat_amount, ctx.currency)}",
            ))
        return conflicts

    # ---------------- Helpers ---------------- #

    def _differs(self, frozen: Decimal, live: Decimal) -> bool:
        return abs(frozen - live) > self._tolerance

    def _differs_optional(self, frozen: Optional[Decimal], live: Optional[Decimal]) -> bool:
        if frozen is None or live is None:
            return frozen is not live
        return self._differs(frozen, live)

    async def _locked_elsewhere(
        self,
        line: LineItem,
        lock_owner: Optional[UUID],
        label: str,
        ctx: _CheckContext,
    ) -> Optional[Conflict]:
        if lock_owner is None or lock_owner == ctx.invoice.id:
            return None

        if lock_owner not in ctx.other_numbers:
            # Unnumbered or missing owners both read as "Draft"
            other = await self._invoices.get_invoice(lock_owner)
            number = other.invoice_number if other is not None else None
            ctx.other_numbers[lock_owner] = number or "Draft"

        return Conflict(
            line_id=line.id,
            type=line.type,
            source_id=line.source_id,
            reason=ConflictReason.LOCKED,
            message=f"{label} is locked to invoice {ctx.other_numbers[lock_owner]}",
        )

    @staticmethod
    def _deleted(line: LineItem, kind: str) -> Conflict:
        when = line.entry_date.isoformat() if line.entry_date else "unknown date"
        return Conflict(
            line_id=line.id,
            type=line.type,
            source_id=line.source_id,
            reason=ConflictReason.DELETED,
            message=f"{kind} ({when}) has been deleted",
        )

    @staticmethod
    def _drift(line: LineItem, field: str, message: str) -> Conflict:
        return Conflict(
            line_id=line.id,
            type=line.type,
            source_id=line.source_id,
            reason=ConflictReason.DRIFT,
            field=field,
            message=message,
        )
