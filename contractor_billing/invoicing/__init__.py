"""
Invoicing package: lifecycle engine, line aggregation, consistency
checking and invoice numbering.
"""

from contractor_billing.invoicing.engine import PROTECTED_FIELDS, InvoiceEngine
from contractor_billing.invoicing.errors import (
    ConsistencyError,
    InvalidStateError,
    InvoiceError,
    InvoiceValidationError,
    NotFoundError,
    TransitionFailedError,
)
from contractor_billing.invoicing.lines import (
    LineAggregator,
    compute_totals,
    expense_line,
    format_money,
    group_lines_for_presentation,
    round2,
    timesheet_line,
    write_in_line,
)
from contractor_billing.invoicing.numbering import (
    InvoiceNumbering,
    format_invoice_number,
    parse_invoice_number,
)
from contractor_billing.invoicing.saga import Saga

__all__ = [
    # Engine
    "InvoiceEngine",
    "PROTECTED_FIELDS",
    # Errors
    "ConsistencyError",
    "InvalidStateError",
    "InvoiceError",
    "InvoiceValidationError",
    "NotFoundError",
    "TransitionFailedError",
    # Lines
    "LineAggregator",
    "compute_totals",
    "expense_line",
    "format_money",
    "group_lines_for_presentation",
    "round2",
    "timesheet_line",
    "write_in_line",
    # Numbering
    "InvoiceNumbering",
    "format_invoice_number",
    "parse_invoice_number",
    "Saga",
]
