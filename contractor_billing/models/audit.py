"""
Audit trail records.

Numbering, locking and payment changes on an invoice each leave one
AuditEvent behind. Events are only ever appended.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the invoice lifecycle has its own event type.
    """
    # Invoice editing
    INVOICE_CREATED = "invoice_created"
    INVOICE_UPDATED = "invoice_updated"
    INVOICE_RECALCULATED = "invoice_recalculated"
    INVOICE_DELETED = "invoice_deleted"

    # Lifecycle transitions
    CONSISTENCY_CHECK_FAILED = "consistency_check_failed"
    INVOICE_CONFIRMED = "invoice_confirmed"
    INVOICE_POSTED = "invoice_posted"
    INVOICE_UNCONFIRMED = "invoice_unconfirmed"
    TRANSITION_FAILED = "transition_failed"

    # Payment status
    PAYMENT_STATUS_UPDATED = "payment_status_updated"

    # Cascades
    CLIENT_INVOICES_REMOVED = "client_invoices_removed"
    CLIENT_CREATED = "client_created"
    CLIENT_DELETED = "client_deleted"
    PROJECT_DELETED = "project_deleted"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """One entry in the invoice audit trail."""

    event_id: UUID = Field(default_factory=uuid4)
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    event_type: AuditEventType
    severity: AuditSeverity = AuditSeverity.INFO

    # 'invoice', 'client' or 'project'
    entity_type: Optional[str] = None
    entity_id: Optional[UUID] = None

    # Shared by every event written during one cascade or transition
    correlation_id: Optional[UUID] = None

    description: str = Field(..., max_length=500)
    details: dict[str, Any] = Field(default_factory=dict)
    error_message: Optional[str] = None

    def to_log_dict(self) -> dict:
        """Flatten to JSON-safe values for structlog keyword arguments."""
        return self.model_dump(mode="json")


class AuditEventBuilder:
    """
    Factories for the events the engine and client service emit.

        AuditEventBuilder.invoice_confirmed(invoice.id, "INV00006", 3, 1)
    """

    @staticmethod
    def invoice_created(
        invoice_id: UUID,
        client_id: UUID,
        line_count: int,
        total: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_CREATED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Draft invoice created with {line_count} lines",
            details={
                "client_id": str(client_id),
                "line_count": line_count,
                "total": total,
            },
        )

    @staticmethod
    def invoice_updated(
        invoice_id: UUID,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_UPDATED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Draft invoice updated: {', '.join(changed_fields) or 'no changes'}",
            details={
                "changed_fields": changed_fields,
            },
        )

    @staticmethod
    def invoice_recalculated(
        invoice_id: UUID,
        old_total: str,
        new_total: str,
        deleted_sources: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_RECALCULATED,
            severity=AuditSeverity.WARNING if deleted_sources else AuditSeverity.INFO,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice recalculated: total {old_total} -> {new_total}",
            details={
                "old_total": old_total,
                "new_total": new_total,
                "deleted_sources": deleted_sources,
            },
        )

    @staticmethod
    def invoice_deleted(
        invoice_id: UUID,
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_DELETED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice deleted (was {status})",
            details={
                "status": status,
            },
        )

    @staticmethod
    def consistency_check_failed(
        invoice_id: UUID,
        conflicts: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONSISTENCY_CHECK_FAILED,
            severity=AuditSeverity.WARNING,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Confirm blocked by {len(conflicts)} conflicts",
            details={
                "conflicts": conflicts,
            },
        )

    @staticmethod
    def invoice_confirmed(
        invoice_id: UUID,
        invoice_number: str,
        timesheets_locked: int,
        expenses_locked: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_CONFIRMED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice confirmed as {invoice_number}",
            details={
                "invoice_number": invoice_number,
                "timesheets_locked": timesheets_locked,
                "expenses_locked": expenses_locked,
            },
        )

    @staticmethod
    def invoice_posted(
        invoice_id: UUID,
        invoice_number: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_POSTED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice {invoice_number} posted",
            details={
                "invoice_number": invoice_number,
            },
        )

    @staticmethod
    def invoice_unconfirmed(
        invoice_id: UUID,
        invoice_number: Optional[str],
        number_released: bool,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.INVOICE_UNCONFIRMED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Invoice {invoice_number} returned to draft",
            details={
                "invoice_number": invoice_number,
                "number_released": number_released,
            },
        )

    @staticmethod
    def transition_failed(
        invoice_id: UUID,
        transition: str,
        failed_step: str,
        error_message: str,
        compensation_failures: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TRANSITION_FAILED,
            severity=(
                AuditSeverity.CRITICAL if compensation_failures else AuditSeverity.ERROR
            ),
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"{transition.capitalize()} failed at step '{failed_step}'",
            error_message=error_message,
            details={
                "transition": transition,
                "failed_step": failed_step,
                "compensation_failures": compensation_failures,
            },
        )

    @staticmethod
    def payment_status_updated(
        invoice_id: UUID,
        old_status: str,
        new_status: str,
        paid_date: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PAYMENT_STATUS_UPDATED,
            entity_type="invoice",
            entity_id=invoice_id,
            correlation_id=correlation_id,
            description=f"Payment status changed: {old_status} -> {new_status}",
            details={
                "old_status": old_status,
                "new_status": new_status,
                "paid_date": paid_date,
            },
        )

    @staticmethod
    def client_invoices_removed(
        client_id: UUID,
        removed: int,
        unlocked: int,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLIENT_INVOICES_REMOVED,
            entity_type="client",
            entity_id=client_id,
            correlation_id=correlation_id,
            description=f"Removed {removed} invoices, released locks of {unlocked}",
            details={
                "removed": removed,
                "unlocked": unlocked,
            },
        )

    @staticmethod
    def client_created(
        client_id: UUID,
        company_name: str,
        default_project_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLIENT_CREATED,
            entity_type="client",
            entity_id=client_id,
            correlation_id=correlation_id,
            description=f"Client created: {company_name}",
            details={
                "company_name": company_name,
                "default_project_id": str(default_project_id),
            },
        )

    @staticmethod
    def client_deleted(
        client_id: UUID,
        company_name: str,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLIENT_DELETED,
            severity=AuditSeverity.WARNING,
            entity_type="client",
            entity_id=client_id,
            correlation_id=correlation_id,
            description=f"Client deleted: {company_name}",
            details=counts,
        )

    @staticmethod
    def project_deleted(
        project_id: UUID,
        name: str,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.PROJECT_DELETED,
            entity_type="project",
            entity_id=project_id,
            correlation_id=correlation_id,
            description=f"Project deleted: {name}",
            details=counts,
        )
