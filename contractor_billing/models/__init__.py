"""
Data Models Package

This package contains all Pydantic models used by Contractor Billing.
All data flowing through the system must conform to these schemas.
"""

from contractor_billing.models.invoice import (
    LOCKING_STATUSES,
    Conflict,
    ConflictReason,
    Invoice,
    InvoicePatch,
    InvoiceStatus,
    LineItem,
    LineType,
    PaymentStatus,
    PaymentUpdate,
    PresentationLine,
    VatGroup,
    WriteInInput,
)
from contractor_billing.models.records import (
    BankTransaction,
    Client,
    Expense,
    Project,
    ProjectStatus,
    SettingsRecord,
    Timesheet,
    TransactionStatus,
)
from contractor_billing.models.validation import ValidationIssue, ValidationResult
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
from contractor_billing.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Invoice models
    "LOCKING_STATUSES",
    "Conflict",
    "ConflictReason",
    "Invoice",
    "InvoicePatch",
    "InvoiceStatus",
    "LineItem",
    "LineType",
    "PaymentStatus",
    "PaymentUpdate",
    "PresentationLine",
    "VatGroup",
    "WriteInInput",
    # Business records
    "BankTransaction",
    "Client",
    "Expense",
    "Project",
    "ProjectStatus",
    "SettingsRecord",
    "Timesheet",
    "TransactionStatus",
    # Validation models
    "ValidationIssue",
    "ValidationResult",
    # Report models
    "AccrualMonth",
    "CashMonth",
    "CountAndTotal",
    "CoverageInvoice",
    "FinancialSummary",
    "FinancialTotals",
    "MonthCoverage",
    "MonthlyInvoiceCheck",
    "OperationsSummary",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
