"""
Invoice Data Models

These models define the invoice, its line items and the structures
produced by the consistency check and presentation grouping.

DESIGN DECISION: A line item is a SNAPSHOT of its source record.
The timesheet or expense it came from can keep changing until the
invoice is confirmed; the line keeps the values that were agreed on
and the consistency check compares the two.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


ZERO = Decimal("0.00")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class InvoiceStatus(str, Enum):
    """
    Invoice lifecycle status.

    draft -> confirmed -> posted, plus the single reverse edge
    confirmed -> draft (unconfirm). Posted is final.
    """
    DRAFT = "draft"            # Editable, no number, sources unlocked
    CONFIRMED = "confirmed"    # Numbered, sources locked, frozen
    POSTED = "posted"          # Sent to the client, payment tracked


class PaymentStatus(str, Enum):
    """Payment status for a posted invoice."""
    UNPAID = "unpaid"
    PARTIALLY_PAID = "partially-paid"
    PAID = "paid"
    OVERDUE = "overdue"


class LineType(str, Enum):
    """Where a line item's values come from."""
    TIMESHEET = "timesheet"
    EXPENSE = "expense"
    WRITE_IN = "write-in"


class ConflictReason(str, Enum):
    """Why a line no longer matches its source."""
    DELETED = "deleted"
    LOCKED = "locked"
    DRIFT = "drift"


# Statuses whose sources are locked to the invoice
LOCKING_STATUSES = frozenset({InvoiceStatus.CONFIRMED, InvoiceStatus.POSTED})


# =============================================================================
# LINE ITEMS
# =============================================================================

class LineItem(BaseModel):
    """
    A single invoice line.

    Timesheet and expense lines reference their source record by id;
    write-in lines are free-form and carry no source.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(
        default_factory=uuid4,
        description="Unique line identifier"
    )
    type: LineType = Field(
        ...,
        description="Source kind of this line"
    )
    source_id: Optional[UUID] = Field(
        default=None,
        description="Timesheet or expense this line was built from"
    )
    project_id: Optional[UUID] = None

    description: str = Field(
        default="",
        max_length=500,
        description="Text printed on the invoice"
    )
    entry_date: Optional[date] = Field(
        default=None,
        description="Work or expense date of the source record"
    )
    hours: Optional[Decimal] = Field(
        default=None,
        ge=0,
        description="Hours worked (timesheet lines)"
    )
    expense_type: Optional[str] = Field(
        default=None,
        max_length=100,
        description="Expense category (expense lines)"
    )
    unit: Optional[str] = Field(
        default=None,
        max_length=20,
        description="Unit of the quantity (e.g., days, item)"
    )

    quantity: Decimal = Field(
        default=Decimal("1"),
        ge=0,
        description="Quantity billed"
    )
    unit_price: Decimal = Field(
        default=ZERO,
        description="Price per unit"
    )
    vat_percent: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        description="VAT rate in percent; None means VAT-exempt"
    )

    net_amount: Decimal = Field(default=ZERO)
    vat_amount: Decimal = Field(default=ZERO)
    gross_amount: Decimal = Field(default=ZERO)

    source_deleted: bool = Field(
        default=False,
        description="Set by recalculation when the source record no longer exists"
    )

    @model_validator(mode='after')
    def validate_source_reference(self) -> 'LineItem':
        """Sourced lines need a source id; write-ins must not have one."""
        if self.type == LineType.WRITE_IN:
            if self.source_id is not None:
                raise ValueError("Write-in lines cannot reference a source record")
        elif self.source_id is None:
            raise ValueError(f"{self.type.value.capitalize()} lines require a source_id")
        return self

    @property
    def is_sourced(self) -> bool:
        return self.type != LineType.WRITE_IN


class WriteInInput(BaseModel):
    """Caller-supplied values for a free-form line."""
    model_config = ConfigDict(str_strip_whitespace=True)

    description: str = Field(..., min_length=1, max_length=500)
    quantity: Decimal = Field(..., ge=0)
    unit_price: Decimal
    vat_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)
    unit: Optional[str] = Field(default=None, max_length=20)
    project_id: Optional[UUID] = None


# =============================================================================
# CORE INVOICE MODEL
# =============================================================================

class Invoice(BaseModel):
    """
    An invoice issued to a client.

    CRITICAL: Once confirmed, the lines are the agreed record.
    Every referenced timesheet and expense is locked to this invoice
    until it is unconfirmed or the client is deleted.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    # Identity
    id: UUID = Field(
        default_factory=uuid4,
        description="Unique invoice ID"
    )
    client_id: UUID = Field(
        ...,
        description="Owning client (immutable once ever confirmed)"
    )

    # Lifecycle
    status: InvoiceStatus = Field(default=InvoiceStatus.DRAFT)
    invoice_number: Optional[str] = Field(
        default=None,
        max_length=30,
        description="Allocated on confirm, cleared on unconfirm"
    )

    # Dates
    invoice_date: date = Field(default_factory=date.today)
    due_date: date
    service_period_start: Optional[date] = None
    service_period_end: Optional[date] = None

    additional_notes: str = Field(default="", max_length=2000)
    include_timesheet_report: bool = False
    include_expense_report: bool = False

    lines: list[LineItem] = Field(default_factory=list)

    # Totals (recomputed whenever lines change)
    subtotal: Decimal = Field(default=ZERO)
    total_vat: Decimal = Field(default=ZERO)
    total: Decimal = Field(default=ZERO)

    # Payment (mutable only while posted)
    payment_status: PaymentStatus = Field(default=PaymentStatus.UNPAID)
    paid_date: Optional[date] = None

    # Timestamps
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    confirmed_at: Optional[datetime] = None
    posted_at: Optional[datetime] = None
    first_confirmed_at: Optional[datetime] = Field(
        default=None,
        description="Set on the first confirm and never cleared"
    )

    @model_validator(mode='after')
    def validate_dates(self) -> 'Invoice':
        """Validate date relationships."""
        if self.due_date < self.invoice_date:
            raise ValueError("Due date cannot be before invoice date")

        if self.service_period_start and self.service_period_end:
            if self.service_period_end < self.service_period_start:
                raise ValueError("Service period end cannot be before start")

        if self.paid_date and self.paid_date < self.invoice_date:
            raise ValueError("Paid date cannot be before invoice date")

        return self

    @property
    def holds_locks(self) -> bool:
        """True while the referenced sources are locked to this invoice."""
        return self.status in LOCKING_STATUSES

    @property
    def was_ever_confirmed(self) -> bool:
        return self.first_confirmed_at is not None

    def source_ids(self, line_type: LineType) -> list[UUID]:
        """Distinct source ids of the given line type, in line order."""
        seen: dict[UUID, None] = {}
        for line in self.lines:
            if line.type == line_type and line.source_id is not None:
                seen.setdefault(line.source_id, None)
        return list(seen)


# =============================================================================
# INPUT MODELS
# =============================================================================

class InvoicePatch(BaseModel):
    """
    Editable fields of a draft invoice.

    Protected fields are stripped before this model sees the patch;
    anything else it does not know is rejected.
    """
    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    client_id: Optional[UUID] = None
    invoice_date: Optional[date] = None
    due_date: Optional[date] = None
    service_period_start: Optional[date] = None
    service_period_end: Optional[date] = None
    additional_notes: Optional[str] = Field(default=None, max_length=2000)
    include_timesheet_report: Optional[bool] = None
    include_expense_report: Optional[bool] = None
    lines: Optional[list[LineItem]] = None


class PaymentUpdate(BaseModel):
    """
    Payment tracking update for a posted invoice.

    paid_date is only applied when it was explicitly supplied,
    so passing paid_date=None clears it while omitting it keeps it.
    """

    payment_status: Optional[PaymentStatus] = None
    paid_date: Optional[date] = None

    @property
    def paid_date_supplied(self) -> bool:
        return "paid_date" in self.model_fields_set


# =============================================================================
# CONSISTENCY CHECK MODELS
# =============================================================================

class Conflict(BaseModel):
    """One reason a line can no longer be confirmed as-is."""

    line_id: UUID
    type: LineType
    source_id: UUID
    reason: ConflictReason
    field: Optional[str] = Field(
        default=None,
        description="Drifted field name (drift conflicts only)"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the conflict"
    )

    def to_log_dict(self) -> dict[str, Any]:
        return {
            "line_id": str(self.line_id),
            "type": self.type.value,
            "source_id": str(self.source_id),
            "reason": self.reason.value,
            "field": self.field,
            "message": self.message,
        }


# =============================================================================
# PRESENTATION MODELS
# =============================================================================

class PresentationLine(BaseModel):
    """A line as printed: possibly several invoice lines merged."""

    description: str
    detail: Optional[str] = None
    quantity: Decimal
    unit: Optional[str] = None
    unit_price: Optional[Decimal] = None
    net_amount: Decimal
    vat_amount: Decimal
    gross_amount: Decimal
    line_ids: list[UUID] = Field(default_factory=list)


class VatGroup(BaseModel):
    """Printed lines sharing one VAT rate."""

    vat_percent: Optional[Decimal] = Field(
        default=None,
        description="Shared VAT rate; None is the exempt group"
    )
    lines: list[PresentationLine] = Field(default_factory=list)
    net_amount: Decimal = Field(default=ZERO)
    vat_amount: Decimal = Field(default=ZERO)

    @field_validator('lines')
    @classmethod
    def validate_lines(cls, v: list[PresentationLine]) -> list[PresentationLine]:
        if not v:
            raise ValueError("A VAT group needs at least one line")
        return v
