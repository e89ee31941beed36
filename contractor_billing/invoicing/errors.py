"""
Invoice Engine Errors

Every error the engine raises derives from InvoiceError, so callers
can map the whole family at one boundary (e.g., to HTTP 400/404/409).
"""

from typing import Optional
from uuid import UUID

from contractor_billing.models.invoice import Conflict, InvoiceStatus
from contractor_billing.models.validation import ValidationIssue


class InvoiceError(Exception):
    """Base exception for invoice operations."""
    pass


class InvoiceValidationError(InvoiceError):
    """
    Malformed input, rejected before anything was written.

    Carries the individual issues for display next to the form fields.
    """

    def __init__(self, issues: list[ValidationIssue]):
        self.issues = issues
        messages = "; ".join(issue.message for issue in issues) or "Invalid invoice input"
        super().__init__(messages)

    @classmethod
    def single(cls, field: str, issue_type: str, message: str) -> "InvoiceValidationError":
        return cls([ValidationIssue(field=field, issue_type=issue_type, message=message)])


class InvalidStateError(InvoiceError):
    """The invoice is in the wrong status for the requested action."""

    def __init__(self, action: str, current_status: InvoiceStatus, required: str):
        self.action = action
        self.current_status = current_status
        self.required = required
        super().__init__(
            f"Cannot {action} invoice in status '{current_status.value}' "
            f"(requires {required})"
        )


class ConsistencyError(InvoiceError):
    """Lines no longer match their sources; confirm was refused."""

    def __init__(self, conflicts: list[Conflict]):
        self.conflicts = conflicts
        super().__init__(
            "Invoice has consistency conflicts: "
            + "; ".join(conflict.message for conflict in conflicts)
        )


class NotFoundError(InvoiceError):
    """Invoice (or a record it needs) does not exist."""

    def __init__(self, entity_type: str, entity_id: UUID):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type.capitalize()} not found: {entity_id}")


class TransitionFailedError(InvoiceError):
    """
    A write step of a multi-step transition failed.

    The completed steps were compensated in reverse order;
    compensation_failures lists any that could not be undone.
    """

    def __init__(
        self,
        transition: str,
        failed_step: str,
        cause: BaseException,
        compensation_failures: Optional[list[str]] = None,
    ):
        self.transition = transition
        self.failed_step = failed_step
        self.cause = cause
        self.compensation_failures = compensation_failures or []
        message = f"{transition} failed at step '{failed_step}': {cause}"
        if self.compensation_failures:
            message += f" (could not undo: {', '.join(self.compensation_failures)})"
        super().__init__(message)
