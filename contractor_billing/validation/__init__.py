"""Input validation package."""

from contractor_billing.validation.invoice_validator import InvoiceValidator

__all__ = ["InvoiceValidator"]
