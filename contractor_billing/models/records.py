"""
Business Record Models

Clients, projects and the source records (timesheets, expenses)
that invoices are built from, plus the settings record holding the
invoice numbering seed.

DESIGN DECISION: Project-level rate, working hours and VAT are
nullable. None means "inherit from the client", so changing a
client's default rate reprices every project that did not override it.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)


DEFAULT_WORKING_HOURS = Decimal("8")


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class ProjectStatus(str, Enum):
    """Project status."""
    ACTIVE = "active"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TransactionStatus(str, Enum):
    """Reconciliation status of an imported bank transaction."""
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    IGNORED = "ignored"


# =============================================================================
# CLIENTS AND PROJECTS
# =============================================================================

class Client(BaseModel):
    """A company the contractor bills."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    company_name: str = Field(
        ...,
        min_length=1,
        max_length=200,
        description="Legal name printed on invoices"
    )
    contact_email: Optional[str] = Field(default=None, max_length=200)
    currency: str = Field(
        default="GBP",
        min_length=3,
        max_length=3,
        description="ISO currency code used for all of this client's money"
    )
    default_rate: Decimal = Field(
        default=Decimal("0"),
        ge=0,
        description="Day rate used by projects without their own rate"
    )
    working_hours_per_day: Decimal = Field(
        default=DEFAULT_WORKING_HOURS,
        gt=0,
        le=24,
        description="Hours that make one billable day"
    )
    default_vat_percent: Optional[Decimal] = Field(
        default=None,
        ge=0,
        le=100,
        description="VAT rate used by projects without their own; None is exempt"
    )
    payment_term_days: Optional[int] = Field(
        default=None,
        ge=0,
        le=365,
        description="Days until an invoice is due; None uses the settings default"
    )
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('currency')
    @classmethod
    def normalize_currency(cls, v: str) -> str:
        return v.upper()


class Project(BaseModel):
    """
    A piece of work for a client.

    Every client owns exactly one default project, created with the
    client, which cannot be deleted.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    client_id: UUID
    name: str = Field(..., min_length=1, max_length=200)
    is_default: bool = False
    status: ProjectStatus = Field(default=ProjectStatus.ACTIVE)

    # None inherits the client's value
    rate: Optional[Decimal] = Field(default=None, ge=0)
    working_hours_per_day: Optional[Decimal] = Field(default=None, gt=0, le=24)
    vat_percent: Optional[Decimal] = Field(default=None, ge=0, le=100)

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# SOURCE RECORDS
# =============================================================================

class Timesheet(BaseModel):
    """
    Hours worked on a project on one day.

    days and amount are derived by the timesheet service from the
    project's effective working hours and rate.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    work_date: date
    hours: Decimal = Field(..., gt=0, le=24)
    days: Decimal = Field(default=Decimal("0"), ge=0)
    amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    notes: str = Field(default="", max_length=1000)

    invoice_id: Optional[UUID] = Field(
        default=None,
        description="Invoice this record is locked to"
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('hours')
    @classmethod
    def validate_quarter_hours(cls, v: Decimal) -> Decimal:
        """Hours are recorded in quarter-hour steps."""
        if v % Decimal("0.25") != 0:
            raise ValueError("Hours must be in 0.25 increments")
        return v

    @property
    def is_locked(self) -> bool:
        return self.invoice_id is not None

    @property
    def record_date(self) -> date:
        return self.work_date


class Expense(BaseModel):
    """
    A cost incurred for a project, as recorded on the receipt.

    amount is gross; vat_amount is the VAT printed on the receipt.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    id: UUID = Field(default_factory=uuid4)
    project_id: UUID
    expense_date: date
    expense_type: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    amount: Decimal = Field(..., ge=0, description="Gross amount")
    vat_amount: Decimal = Field(default=Decimal("0.00"), ge=0)
    currency: str = Field(default="GBP", min_length=3, max_length=3)
    billable: bool = True
    notes: str = Field(default="", max_length=1000)

    invoice_id: Optional[UUID] = Field(
        default=None,
        description="Invoice this record is locked to"
    )

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode='after')
    def validate_vat(self) -> 'Expense':
        # Rate over net stays within 0-100%
        if self.vat_amount > self.amount - self.vat_amount:
            raise ValueError("VAT amount cannot exceed the net amount")
        return self

    @property
    def net_amount(self) -> Decimal:
        return self.amount - self.vat_amount

    @property
    def vat_percent(self) -> Decimal:
        """VAT rate over net, to two places (0 when there is no net)."""
        net = self.net_amount
        if net <= 0:
            return Decimal("0.00")
        return (self.vat_amount * 100 / net).quantize(Decimal("0.01"))

    @property
    def is_locked(self) -> bool:
        return self.invoice_id is not None

    @property
    def record_date(self) -> date:
        return self.expense_date


# =============================================================================
# RECONCILIATION (read-only)
# =============================================================================

class BankTransaction(BaseModel):
    """An imported bank statement line. Read-only to this package."""

    id: UUID = Field(default_factory=uuid4)
    transaction_date: date
    description: str = ""
    amount: Decimal
    account_name: Optional[str] = None
    status: TransactionStatus = Field(default=TransactionStatus.UNMATCHED)


# =============================================================================
# SETTINGS STORE
# =============================================================================

class SettingsRecord(BaseModel):
    """
    Business-wide settings held in storage.

    invoice_number_seed is the last allocated number; the next
    confirm uses seed + 1.
    """

    invoice_number_seed: int = Field(default=0, ge=0)
    default_payment_term_days: int = Field(default=10, ge=0, le=365)
    business_name: Optional[str] = None
    vat_number: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)
