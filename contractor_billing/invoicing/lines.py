"""
Line Aggregation

Turns timesheets, expenses and write-ins into invoice lines, sums
invoice totals and groups lines for printing.

DESIGN DECISION: Money is Decimal end to end and every stored amount
is rounded half-up to 2 places. Totals are sums of the rounded line
net and VAT amounts; VAT is never split back out of a gross total.

Per line type:
- Timesheet: net is the timesheet's amount; VAT from the project rate
- Expense:   net is gross minus the receipt's VAT; the receipt's VAT
             amount is kept and the line rate is derived from it unrounded
- Write-in:  net is quantity x unit price; VAT from the given rate
In all cases gross = round2(net + vat).
"""

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, NamedTuple, Optional, Sequence
from uuid import UUID

from contractor_billing.invoicing.errors import InvoiceValidationError
from contractor_billing.models.invoice import (
    Invoice,
    LineItem,
    LineType,
    PresentationLine,
    VatGroup,
    WriteInInput,
)
from contractor_billing.models.records import Expense, Timesheet
from contractor_billing.models.validation import ValidationIssue
from contractor_billing.services.storage.interface import (
    ClientProjectProvider,
    SourceRecordProvider,
)


CENT = Decimal("0.01")

CURRENCY_SYMBOLS = {
    "GBP": "£",
    "EUR": "€",
    "USD": "$",
}


# =============================================================================
# MONEY HELPERS
# =============================================================================

def to_decimal(value: Any) -> Decimal:
    """Convert int/str/float/Decimal to Decimal without binary float noise."""
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def round2(value: Any) -> Decimal:
    """Round half-up to 2 decimal places."""
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def vat_for(net_amount: Decimal, vat_percent: Optional[Decimal]) -> Decimal:
    """VAT on a net amount; exempt (None) yields 0.00."""
    if vat_percent is None:
        return Decimal("0.00")
    return round2(to_decimal(net_amount) * to_decimal(vat_percent) / 100)


def vat_rate_for(net_amount: Decimal, vat_amount: Decimal) -> Decimal:
    """
    Unrounded VAT rate of a recorded net/VAT pair.

    vat_for(net, vat_rate_for(net, vat)) == vat for any 2-place pair
    with 0 <= vat <= net. A zero net yields 0.
    """
    net = to_decimal(net_amount)
    if net <= 0:
        return Decimal("0")
    return to_decimal(vat_amount) * 100 / net


def format_money(amount: Decimal, currency: str = "GBP") -> str:
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    value = f"{round2(amount):,.2f}"
    return f"{symbol}{value}" if symbol else f"{value} {currency.upper()}"


def format_percent(value: Optional[Decimal]) -> str:
    if value is None:
        return "N/A"
    return format(to_decimal(value).normalize(), "f")


class ProjectPricing(NamedTuple):
    """Resolved pricing of one project at one point in time."""
    project_name: str
    rate: Decimal
    vat_percent: Optional[Decimal]


class InvoiceTotals(NamedTuple):
    subtotal: Decimal
    total_vat: Decimal
    total: Decimal


# =============================================================================
# LINE BUILDERS
# =============================================================================

def _new_line(line_id: Optional[UUID], **fields: Any) -> LineItem:
    if line_id is not None:
        fields["id"] = line_id
    return LineItem(**fields)


def timesheet_line(
    timesheet: Timesheet,
    pricing: ProjectPricing,
    line_id: Optional[UUID] = None,
) -> LineItem:
    """Snapshot a timesheet as an invoice line."""
    net = round2(timesheet.amount)
    vat = vat_for(net, pricing.vat_percent)
    return _new_line(
        line_id,
        type=LineType.TIMESHEET,
        source_id=timesheet.id,
        project_id=timesheet.project_id,
        description=pricing.project_name,
        entry_date=timesheet.work_date,
        hours=timesheet.hours,
        unit="days",
        quantity=timesheet.days,
        unit_price=pricing.rate,
        vat_percent=pricing.vat_percent,
        net_amount=net,
        vat_amount=vat,
        gross_amount=round2(net + vat),
    )


def expense_line(expense: Expense, line_id: Optional[UUID] = None) -> LineItem:
    """Snapshot an expense as an invoice line."""
    net = round2(expense.amount - expense.vat_amount)
    vat = round2(expense.vat_amount)
    description = (
        f"{expense.expense_type} - {expense.description}"
        if expense.description
        else expense.expense_type
    )
    return _new_line(
        line_id,
        type=LineType.EXPENSE,
        source_id=expense.id,
        project_id=expense.project_id,
        description=description,
        entry_date=expense.expense_date,
        expense_type=expense.expense_type,
        unit="item",
        quantity=Decimal("1"),
        unit_price=net,
        vat_percent=vat_rate_for(net, vat),
        net_amount=net,
        vat_amount=vat,
        gross_amount=round2(net + vat),
    )


def write_in_line(write_in: WriteInInput, line_id: Optional[UUID] = None) -> LineItem:
    """Build a free-form line from caller-supplied values."""
    net = round2(write_in.quantity * write_in.unit_price)
    vat = vat_for(net, write_in.vat_percent)
    return _new_line(
        line_id,
        type=LineType.WRITE_IN,
        project_id=write_in.project_id,
        description=write_in.description,
        unit=write_in.unit,
        quantity=write_in.quantity,
        unit_price=write_in.unit_price,
        vat_percent=write_in.vat_percent,
        net_amount=net,
        vat_amount=vat,
        gross_amount=round2(net + vat),
    )


def normalize_line(line: LineItem) -> LineItem:
    """
    Re-derive the computed amounts of a caller-supplied line.

    Write-ins are recomputed from quantity and unit price. Timesheet
    lines keep their frozen net and get VAT from their own rate.
    Expense lines keep net and VAT as recorded and take their rate from
    them. Gross is always round2(net + vat).
    """
    vat_percent = line.vat_percent
    if line.type == LineType.WRITE_IN:
        net = round2(line.quantity * line.unit_price)
        vat = vat_for(net, vat_percent)
    elif line.type == LineType.TIMESHEET:
        net = round2(line.net_amount)
        vat = vat_for(net, vat_percent)
    else:
        net = round2(line.net_amount)
        vat = round2(line.vat_amount)
        vat_percent = vat_rate_for(net, vat)

    return line.model_copy(update={
        "vat_percent": vat_percent,
        "net_amount": net,
        "vat_amount": vat,
        "gross_amount": round2(net + vat),
    })


# =============================================================================
# TOTALS
# =============================================================================

def compute_totals(lines: Iterable[LineItem]) -> InvoiceTotals:
    """Sum line net and VAT; total is their rounded sum."""
    subtotal = Decimal("0.00")
    total_vat = Decimal("0.00")
    for line in lines:
        subtotal += line.net_amount
        total_vat += line.vat_amount
    subtotal = round2(subtotal)
    total_vat = round2(total_vat)
    return InvoiceTotals(subtotal, total_vat, round2(subtotal + total_vat))


def apply_totals(invoice: Invoice) -> Invoice:
    """Write freshly computed totals onto the invoice (in place)."""
    totals = compute_totals(invoice.lines)
    invoice.subtotal = totals.subtotal
    invoice.total_vat = totals.total_vat
    invoice.total = totals.total
    return invoice


# =============================================================================
# PRESENTATION GROUPING
# =============================================================================

def _printed_rate(line: LineItem) -> Optional[Decimal]:
    # Expense rates are unrounded; group them as printed
    if line.type == LineType.EXPENSE and line.vat_percent is not None:
        return round2(line.vat_percent)
    return line.vat_percent


def _vat_sort_key(vat_percent: Optional[Decimal]) -> tuple[int, Decimal]:
    # Highest rate first, exempt last
    if vat_percent is None:
        return (1, Decimal("0"))
    return (0, -vat_percent)


def group_lines_for_presentation(
    lines: Sequence[LineItem],
    project_names: Optional[dict[UUID, str]] = None,
) -> list[VatGroup]:
    """
    Group lines by VAT rate the way they are printed.

    Timesheet lines merge per (VAT rate, project) into one "days" line;
    expense lines merge per (project, VAT rate) with their types listed;
    write-ins are printed one by one.
    """
    project_names = project_names or {}
    buckets: dict[tuple, list[LineItem]] = {}

    for line in lines:
        vat_key = _printed_rate(line)
        if line.type == LineType.TIMESHEET:
            key = (vat_key, "timesheet", line.project_id)
        elif line.type == LineType.EXPENSE:
            key = (vat_key, "expense", line.project_id)
        else:
            key = (vat_key, "write-in", line.id)
        buckets.setdefault(key, []).append(line)

    groups: dict[Optional[Decimal], list[PresentationLine]] = {}
    for (vat_key, kind, _), members in buckets.items():
        groups.setdefault(vat_key, []).append(_present(kind, members, project_names))

    result = []
    for vat_key in sorted(groups, key=_vat_sort_key):
        printed = groups[vat_key]
        result.append(VatGroup(
            vat_percent=vat_key,
            lines=printed,
            net_amount=round2(sum((p.net_amount for p in printed), Decimal("0"))),
            vat_amount=round2(sum((p.vat_amount for p in printed), Decimal("0"))),
        ))
    return result


def _present(
    kind: str,
    members: list[LineItem],
    project_names: dict[UUID, str],
) -> PresentationLine:
    net = round2(sum((m.net_amount for m in members), Decimal("0")))
    vat = round2(sum((m.vat_amount for m in members), Decimal("0")))
    first = members[0]
    line_ids = [m.id for m in members]

    if kind == "timesheet":
        rates = {m.unit_price for m in members}
        return PresentationLine(
            description=project_names.get(first.project_id, first.description),
            detail=f"{len(members)} timesheet entries" if len(members) > 1 else None,
            quantity=sum((m.quantity for m in members), Decimal("0")),
            unit="days",
            unit_price=first.unit_price if len(rates) == 1 else None,
            net_amount=net,
            vat_amount=vat,
            gross_amount=round2(net + vat),
            line_ids=line_ids,
        )

    if kind == "expense":
        types = list(dict.fromkeys(m.expense_type or "Other" for m in members))
        project_name = project_names.get(first.project_id)
        return PresentationLine(
            description=f"Expenses - {project_name}" if project_name else "Expenses",
            detail=", ".join(types),
            quantity=Decimal(len(members)),
            unit="item",
            net_amount=net,
            vat_amount=vat,
            gross_amount=round2(net + vat),
            line_ids=line_ids,
        )

    return PresentationLine(
        description=first.description,
        quantity=first.quantity,
        unit=first.unit,
        unit_price=first.unit_price,
        net_amount=net,
        vat_amount=vat,
        gross_amount=round2(net + vat),
        line_ids=line_ids,
    )


# =============================================================================
# AGGREGATOR (storage-backed)
# =============================================================================

class LineAggregator:
    """
    Builds and refreshes lines from live source records.

    Used by callers assembling a draft and by recalculation.
    """

    def __init__(
        self,
        timesheets: SourceRecordProvider[Timesheet],
        expenses: SourceRecordProvider[Expense],
        client_projects: ClientProjectProvider,
    ):
        self._timesheets = timesheets
        self._expenses = expenses
        self._client_projects = client_projects

    async def resolve_pricing(
        self,
        project_id: UUID,
        cache: Optional[dict[UUID, ProjectPricing]] = None,
    ) -> ProjectPricing:
        """Current name, effective rate and VAT of a project."""
        if cache is not None and project_id in cache:
            return cache[project_id]

        project, _ = await self._client_projects.get_project_and_client(project_id)
        pricing = ProjectPricing(
            project_name=project.name,
            rate=await self._client_projects.get_effective_rate(project_id),
            vat_percent=await self._client_projects.get_vat_percent(project_id),
        )
        if cache is not None:
            cache[project_id] = pricing
        return pricing

    async def build_lines(
        self,
        timesheet_ids: Sequence[UUID] = (),
        expense_ids: Sequence[UUID] = (),
        write_ins: Sequence[WriteInInput] = (),
    ) -> list[LineItem]:
        """
        Build draft lines: timesheets, then expenses, then write-ins,
        each in the order given.

        Raises:
            InvoiceValidationError: If a referenced record does not exist
        """
        timesheets = {t.id: t for t in await self._timesheets.find_many_by_ids(timesheet_ids)}
        expenses = {e.id: e for e in await self._expenses.find_many_by_ids(expense_ids)}

        issues = [
            ValidationIssue(
                field="timesheet_ids",
                issue_type="not_found",
                message=f"Timesheet not found: {record_id}",
            )
            for record_id in timesheet_ids if record_id not in timesheets
        ] + [
            ValidationIssue(
                field="expense_ids",
                issue_type="not_found",
                message=f"Expense not found: {record_id}",
            )
            for record_id in expense_ids if record_id not in expenses
        ]
        if issues:
            raise InvoiceValidationError(issues)

        cache: dict[UUID, ProjectPricing] = {}
        lines = []
        for record_id in dict.fromkeys(timesheet_ids):
            timesheet = timesheets[record_id]
            pricing = await self.resolve_pricing(timesheet.project_id, cache)
            lines.append(timesheet_line(timesheet, pricing))
        for record_id in dict.fromkeys(expense_ids):
            lines.append(expense_line(expenses[record_id]))
        for write_in in write_ins:
            lines.append(write_in_line(write_in))
        return lines

    async def refresh_lines(self, lines: Sequence[LineItem]) -> tuple[list[LineItem], int]:
        """
        Re-derive every line from its live source.

        Line ids and order are kept. A line whose source no longer
        exists is kept as-is and flagged source_deleted.

        Returns:
            (refreshed_lines, number_of_lines_with_deleted_sources)
        """
        timesheet_ids = [l.source_id for l in lines if l.type == LineType.TIMESHEET]
        expense_ids = [l.source_id for l in lines if l.type == LineType.EXPENSE]
        timesheets = {t.id: t for t in await self._timesheets.find_many_by_ids(timesheet_ids)}
        expenses = {e.id: e for e in await self._expenses.find_many_by_ids(expense_ids)}

        cache: dict[UUID, ProjectPricing] = {}
        refreshed = []
        deleted = 0
        for line in lines:
            if line.type == LineType.WRITE_IN:
                refreshed.append(normalize_line(line))
                continue

            if line.type == LineType.TIMESHEET:
                timesheet = timesheets.get(line.source_id)
                if timesheet is not None:
                    pricing = await self.resolve_pricing(timesheet.project_id, cache)
                    refreshed.append(timesheet_line(timesheet, pricing, line_id=line.id))
                    continue
            else:
                expense = expenses.get(line.source_id)
                if expense is not None:
                    refreshed.append(expense_line(expense, line_id=line.id))
                    continue

            deleted += 1
            refreshed.append(line.model_copy(update={"source_deleted": True}))

        return refreshed, deleted
