"""
Lock Check

A timesheet or expense locked to an invoice is part of that invoice's
agreed record. Every service that edits or deletes source records
calls assert_not_locked first.
"""

from typing import Optional, Union
from uuid import UUID

from contractor_billing.models.records import Expense, Timesheet


class RecordLockedError(Exception):
    """The record is locked to an invoice and cannot be changed."""

    def __init__(
        self,
        record_kind: str,
        record_id: UUID,
        invoice_id: UUID,
        invoice_label: Optional[str] = None,
    ):
        self.record_kind = record_kind
        self.record_id = record_id
        self.invoice_id = invoice_id
        target = f"invoice {invoice_label}" if invoice_label else "an invoice"
        super().__init__(
            f"{record_kind.capitalize()} is locked to {target}. "
            "Unconfirm the invoice to make changes."
        )


def assert_not_locked(
    record: Union[Timesheet, Expense],
    record_kind: str,
    invoice_label: Optional[str] = None,
) -> None:
    """
    Raise if the record is locked to an invoice.

    Args:
        record: Timesheet or expense about to be changed
        record_kind: "timesheet" or "expense", for the message
        invoice_label: Number (or "Draft") of the locking invoice, if known
    """
    if record.invoice_id is not None:
        raise RecordLockedError(record_kind, record.id, record.invoice_id, invoice_label)
