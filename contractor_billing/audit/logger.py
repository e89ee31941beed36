"""
Audit Logger

Writes each AuditEvent twice: once through structlog, once to audit
storage. A failed storage append is logged and never raised to the
caller.
"""

import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import structlog

from contractor_billing.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from contractor_billing.services.storage import AuditStorageInterface


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """
    Configure structlog on top of the standard library logger.

    Called once at application start by create_app_components.
    """
    logging.basicConfig(format="%(message)s", level=getattr(logging, log_level.upper()))

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


class AuditLogger:
    """
    Records invoice, client and project events.

    Without a storage backend events only reach the structlog output.
    """

    _LEVELS = {
        AuditSeverity.DEBUG: "debug",
        AuditSeverity.INFO: "info",
        AuditSeverity.WARNING: "warning",
        AuditSeverity.ERROR: "error",
        AuditSeverity.CRITICAL: "critical",
    }

    def __init__(self, storage: Optional[AuditStorageInterface] = None):
        self._storage = storage
        self._logger = structlog.get_logger(__name__)

    async def log(self, event: AuditEvent) -> bool:
        """
        Emit the event and append it to storage.

        Returns False only when the storage append raised.
        """
        emit = getattr(self._logger, self._LEVELS[event.severity])
        emit("audit_event", **event.to_log_dict())

        if self._storage is None:
            return True
        try:
            return await self._storage.append_event(event)
        except Exception as e:
            self._logger.error(
                "audit_storage_failed",
                error=str(e),
                event_id=str(event.event_id),
                event_type=event.event_type.value,
            )
            return False

    async def log_invoice_created(
        self,
        invoice_id: UUID,
        client_id: UUID,
        line_count: int,
        total: Decimal,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log draft creation."""
        await self.log(AuditEventBuilder.invoice_created(
            invoice_id=invoice_id,
            client_id=client_id,
            line_count=line_count,
            total=str(total),
            correlation_id=correlation_id,
        ))

    async def log_invoice_updated(
        self,
        invoice_id: UUID,
        changed_fields: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_updated(
            invoice_id=invoice_id,
            changed_fields=changed_fields,
            correlation_id=correlation_id,
        ))

    async def log_invoice_recalculated(
        self,
        invoice_id: UUID,
        old_total: Decimal,
        new_total: Decimal,
        deleted_sources: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_recalculated(
            invoice_id=invoice_id,
            old_total=str(old_total),
            new_total=str(new_total),
            deleted_sources=deleted_sources,
            correlation_id=correlation_id,
        ))

    async def log_invoice_deleted(
        self,
        invoice_id: UUID,
        status: str,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_deleted(
            invoice_id=invoice_id,
            status=status,
            correlation_id=correlation_id,
        ))

    async def log_consistency_check_failed(
        self,
        invoice_id: UUID,
        conflicts: list[dict],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a confirm blocked by conflicts."""
        await self.log(AuditEventBuilder.consistency_check_failed(
            invoice_id=invoice_id,
            conflicts=conflicts,
            correlation_id=correlation_id,
        ))

    async def log_invoice_confirmed(
        self,
        invoice_id: UUID,
        invoice_number: str,
        timesheets_locked: int,
        expenses_locked: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_confirmed(
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            timesheets_locked=timesheets_locked,
            expenses_locked=expenses_locked,
            correlation_id=correlation_id,
        ))

    async def log_invoice_posted(
        self,
        invoice_id: UUID,
        invoice_number: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_posted(
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            correlation_id=correlation_id,
        ))

    async def log_invoice_unconfirmed(
        self,
        invoice_id: UUID,
        invoice_number: Optional[str],
        number_released: bool,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.invoice_unconfirmed(
            invoice_id=invoice_id,
            invoice_number=invoice_number,
            number_released=number_released,
            correlation_id=correlation_id,
        ))

    async def log_transition_failed(
        self,
        invoice_id: UUID,
        transition: str,
        failed_step: str,
        error_message: str,
        compensation_failures: list[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Log a confirm/unconfirm that was rolled back."""
        await self.log(AuditEventBuilder.transition_failed(
            invoice_id=invoice_id,
            transition=transition,
            failed_step=failed_step,
            error_message=error_message,
            compensation_failures=compensation_failures,
            correlation_id=correlation_id,
        ))

    async def log_payment_updated(
        self,
        invoice_id: UUID,
        old_status: str,
        new_status: str,
        paid_date: Optional[str],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.payment_status_updated(
            invoice_id=invoice_id,
            old_status=old_status,
            new_status=new_status,
            paid_date=paid_date,
            correlation_id=correlation_id,
        ))

    async def log_client_invoices_removed(
        self,
        client_id: UUID,
        removed: int,
        unlocked: int,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.client_invoices_removed(
            client_id=client_id,
            removed=removed,
            unlocked=unlocked,
            correlation_id=correlation_id,
        ))

    async def log_client_created(
        self,
        client_id: UUID,
        company_name: str,
        default_project_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.client_created(
            client_id=client_id,
            company_name=company_name,
            default_project_id=default_project_id,
            correlation_id=correlation_id,
        ))

    async def log_client_deleted(
        self,
        client_id: UUID,
        company_name: str,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.client_deleted(
            client_id=client_id,
            company_name=company_name,
            counts=counts,
            correlation_id=correlation_id,
        ))

    async def log_project_deleted(
        self,
        project_id: UUID,
        name: str,
        counts: dict[str, int],
        correlation_id: Optional[UUID] = None,
    ) -> None:
        await self.log(AuditEventBuilder.project_deleted(
            project_id=project_id,
            name=name,
            counts=counts,
            correlation_id=correlation_id,
        ))


def create_correlation_id() -> UUID:
    """New correlation ID for one cascade; every event it writes carries it."""
    return uuid4()
