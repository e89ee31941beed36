"""
Invoice Engine

Owns the invoice lifecycle:

    draft --confirm--> confirmed --post--> posted
      ^                    |
      +----unconfirm-------+

DESIGN DECISION: Every operation validates first and writes last.
Input validation, status checks and the consistency check all run
before the first write, so a refused operation leaves no trace.

Confirm writes, in order:
1. Lock timesheets to the invoice
2. Lock expenses to the invoice
3. Reserve the next invoice number
4. Persist the invoice as confirmed
Unconfirm writes, in order:
1. Unlock timesheets
2. Unlock expenses
3. Release the invoice number
4. Persist the invoice as draft
Both run as a Saga: if a later step fails the earlier ones are undone.

CONCURRENCY: Operations on one invoice are serialised with a
per-invoice asyncio.Lock. Two confirms of the same draft run one after
the other and the second fails its status check.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import date, datetime, timedelta
from typing import Any, Mapping, Optional, Sequence, Union
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from contractor_billing.audit import AuditLogger
from contractor_billing.config.settings import InvoicingSettings, get_settings
from contractor_billing.invoicing.consistency import ConsistencyChecker
from contractor_billing.invoicing.errors import (
    ConsistencyError,
    InvalidStateError,
    InvoiceValidationError,
    NotFoundError,
    TransitionFailedError,
)
from contractor_billing.invoicing.lines import (
    LineAggregator,
    apply_totals,
    group_lines_for_presentation,
    normalize_line,
)
from contractor_billing.invoicing.numbering import InvoiceNumbering
from contractor_billing.invoicing.saga import Saga
from contractor_billing.models.invoice import (
    Conflict,
    Invoice,
    InvoicePatch,
    InvoiceStatus,
    LineItem,
    LineType,
    PaymentUpdate,
    VatGroup,
    WriteInInput,
)
from contractor_billing.models.records import Client, Expense, Timesheet
from contractor_billing.models.validation import ValidationIssue
from contractor_billing.services.storage.interface import (
    ClientProjectProvider,
    InvoiceStorageInterface,
    SettingsProvider,
    SourceRecordProvider,
)
from contractor_billing.validation import InvoiceValidator


logger = structlog.get_logger(__name__)

# Never taken from caller input on update
PROTECTED_FIELDS = frozenset({
    "id",
    "status",
    "invoice_number",
    "payment_status",
    "paid_date",
    "subtotal",
    "total_vat",
    "total",
    "created_at",
    "updated_at",
    "confirmed_at",
    "posted_at",
    "first_confirmed_at",
})

LineInput = Union[LineItem, Mapping[str, Any]]


def _issues_from(error: PydanticValidationError) -> list[ValidationIssue]:
    return [
        ValidationIssue(
            field=".".join(str(part) for part in err["loc"]) or "invoice",
            issue_type=err["type"],
            message=err["msg"],
        )
        for err in error.errors()
    ]


class _InvoiceLock:
    """asyncio.Lock plus a count of callers holding or waiting on it."""

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class InvoiceEngine:
    """
    Invoice lifecycle operations.

    All methods are coroutines. Errors raised:
    - InvoiceValidationError: malformed input
    - InvalidStateError: wrong status for the operation
    - ConsistencyError: confirm refused, carries the conflicts
    - NotFoundError: no such invoice
    - TransitionFailedError: a confirm/unconfirm write failed and was rolled back
    """

    def __init__(
        self,
        invoices: InvoiceStorageInterface,
        timesheets: SourceRecordProvider[Timesheet],
        expenses: SourceRecordProvider[Expense],
        settings: SettingsProvider,
        client_projects: ClientProjectProvider,
        audit_logger: Optional[AuditLogger] = None,
        config: Optional[InvoicingSettings] = None,
    ):
        self._invoices = invoices
        self._timesheets = timesheets
        self._expenses = expenses
        self._settings = settings
        self._client_projects = client_projects
        self._audit = audit_logger or AuditLogger()
        self._config = config or get_settings().invoicing

        self._aggregator = LineAggregator(timesheets, expenses, client_projects)
        self._checker = ConsistencyChecker(
            timesheets,
            expenses,
            invoices,
            client_projects,
            self._aggregator,
            tolerance=self._config.drift_tolerance,
        )
        self._numbering = InvoiceNumbering(settings, self._config)
        self._validator = InvoiceValidator(client_projects, timesheets, expenses)

        self._invoice_locks: dict[UUID, _InvoiceLock] = {}

    @property
    def aggregator(self) -> LineAggregator:
        return self._aggregator

    # =========================================================================
    # HELPERS
    # =========================================================================

    @asynccontextmanager
    async def _exclusive(self, invoice_id: UUID):
        """Serialise work on one invoice. The last user drops the entry."""
        entry = self._invoice_locks.get(invoice_id)
        if entry is None:
            entry = self._invoice_locks[invoice_id] = _InvoiceLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._invoice_locks[invoice_id]

    async def _load(self, invoice_id: UUID) -> Invoice:
        invoice = await self._invoices.get_invoice(invoice_id)
        if invoice is None:
            raise NotFoundError("invoice", invoice_id)
        return invoice

    @staticmethod
    def _require_status(invoice: Invoice, action: str, *allowed: InvoiceStatus) -> None:
        if invoice.status not in allowed:
            raise InvalidStateError(
                action,
                invoice.status,
                " or ".join(status.value for status in allowed),
            )

    @staticmethod
    def _coerce_lines(lines: Sequence[LineInput]) -> list[LineItem]:
        try:
            return [
                normalize_line(line if isinstance(line, LineItem) else LineItem.model_validate(line))
                for line in lines
            ]
        except PydanticValidationError as e:
            raise InvoiceValidationError(_issues_from(e)) from e

    async def _payment_term_days(self, client: Optional[Client]) -> int:
        if client is not None and client.payment_term_days is not None:
            return client.payment_term_days
        return await self._settings.get_default_payment_term_days()

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_invoice(self, invoice_id: UUID) -> Invoice:
        return await self._load(invoice_id)

    async def list_invoices(
        self,
        client_id: Optional[UUID] = None,
        status: Optional[InvoiceStatus] = None,
    ) -> list[Invoice]:
        return await self._invoices.list_invoices(client_id=client_id, status=status)

    async def get_next_invoice_number(self) -> str:
        """Preview of the number the next confirm will allocate. Never writes."""
        return await self._numbering.preview()

    async def check_consistency(self, invoice_id: UUID) -> list[Conflict]:
        """Compare the invoice's lines with their live sources. Read-only."""
        invoice = await self._load(invoice_id)
        return await self._checker.check(invoice)

    async def present_invoice(self, invoice_id: UUID) -> list[VatGroup]:
        """Lines grouped by VAT rate, as printed."""
        invoice = await self._load(invoice_id)
        project_names = {
            project.id: project.name
            for project in await self._client_projects.list_projects(invoice.client_id)
        }
        return group_lines_for_presentation(invoice.lines, project_names)

    async def build_lines(
        self,
        timesheet_ids: Sequence[UUID] = (),
        expense_ids: Sequence[UUID] = (),
        write_ins: Sequence[WriteInInput] = (),
    ) -> list[LineItem]:
        """Snapshot live sources (and write-ins) into lines for a new draft."""
        return await self._aggregator.build_lines(timesheet_ids, expense_ids, write_ins)

    # =========================================================================
    # DRAFT EDITING
    # =========================================================================

    async def create_invoice(
        self,
        client_id: UUID,
        lines: Sequence[LineInput] = (),
        *,
        invoice_date: Optional[date] = None,
        due_date: Optional[date] = None,
        service_period_start: Optional[date] = None,
        service_period_end: Optional[date] = None,
        additional_notes: str = "",
        include_timesheet_report: bool = False,
        include_expense_report: bool = False,
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Create a draft invoice.

        Lines are taken as given (no comparison with live sources);
        their computed amounts and the invoice totals are re-derived.
        The due date defaults to the client's payment terms, else the
        settings store's default.
        """
        line_items = self._coerce_lines(lines)
        invoice_date = invoice_date or date.today()

        result = await self._validator.validate_new(
            client_id,
            line_items,
            invoice_date,
            due_date,
            service_period_start,
            service_period_end,
        )
        if result.has_errors:
            raise InvoiceValidationError(result.errors)

        if due_date is None:
            client = await self._client_projects.get_client(client_id)
            due_date = invoice_date + timedelta(days=await self._payment_term_days(client))

        try:
            invoice = Invoice(
                client_id=client_id,
                invoice_date=invoice_date,
                due_date=due_date,
                service_period_start=service_period_start,
                service_period_end=service_period_end,
                additional_notes=additional_notes,
                include_timesheet_report=include_timesheet_report,
                include_expense_report=include_expense_report,
                lines=line_items,
            )
        except PydanticValidationError as e:
            raise InvoiceValidationError(_issues_from(e)) from e
        apply_totals(invoice)

        await self._invoices.save_invoice(invoice)
        await self._audit.log_invoice_created(
            invoice_id=invoice.id,
            client_id=client_id,
            line_count=len(invoice.lines),
            total=invoice.total,
            correlation_id=correlation_id,
        )
        return invoice

    async def update_invoice(
        self,
        invoice_id: UUID,
        patch: Union[InvoicePatch, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Edit a draft.

        Protected fields (status, number, payment fields, timestamps,
        totals) are dropped from the patch; unknown fields are rejected.
        Totals are recomputed when lines change.
        """
        async with self._exclusive(invoice_id):
            invoice = await self._load(invoice_id)
            self._require_status(invoice, "update", InvoiceStatus.DRAFT)

            if isinstance(patch, InvoicePatch):
                data = {name: getattr(patch, name) for name in patch.model_fields_set}
            else:
                data = {k: v for k, v in patch.items() if k not in PROTECTED_FIELDS}
            try:
                parsed = InvoicePatch.model_validate(data)
            except PydanticValidationError as e:
                raise InvoiceValidationError(_issues_from(e)) from e

            changes = {name: getattr(parsed, name) for name in parsed.model_fields_set}
            if changes.get("lines") is not None:
                changes["lines"] = self._coerce_lines(changes["lines"])
                parsed = parsed.model_copy(update={"lines": changes["lines"]})

            result = await self._validator.validate_patch(invoice, parsed)
            if result.has_errors:
                raise InvoiceValidationError(result.errors)

            try:
                updated = Invoice.model_validate({**invoice.model_dump(), **changes})
            except PydanticValidationError as e:
                raise InvoiceValidationError(_issues_from(e)) from e
            apply_totals(updated)
            updated.updated_at = datetime.utcnow()

            await self._invoices.save_invoice(updated)

        await self._audit.log_invoice_updated(
            invoice_id=invoice_id,
            changed_fields=sorted(changes),
            correlation_id=correlation_id,
        )
        return updated

    async def recalculate_invoice(
        self,
        invoice_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Re-derive every line from its live source and re-sum totals.

        Allowed in any status. Lines whose source was deleted are kept
        and flagged source_deleted.
        """
        async with self._exclusive(invoice_id):
            invoice = await self._load(invoice_id)
            old_total = invoice.total

            invoice.lines, deleted = await self._aggregator.refresh_lines(invoice.lines)
            apply_totals(invoice)
            invoice.updated_at = datetime.utcnow()

            await self._invoices.save_invoice(invoice)

        await self._audit.log_invoice_recalculated(
            invoice_id=invoice_id,
            old_total=old_total,
            new_total=invoice.total,
            deleted_sources=deleted,
            correlation_id=correlation_id,
        )
        return invoice

    async def remove_invoice(
        self,
        invoice_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> None:
        """Delete a draft. Confirmed and posted invoices cannot be deleted."""
        async with self._exclusive(invoice_id):
            invoice = await self._load(invoice_id)
            self._require_status(invoice, "delete", InvoiceStatus.DRAFT)
            await self._invoices.delete_invoice(invoice_id)

        await self._audit.log_invoice_deleted(
            invoice_id=invoice_id,
            status=invoice.status.value,
            correlation_id=correlation_id,
        )

    # =========================================================================
    # LIFECYCLE TRANSITIONS
    # =========================================================================

    async def confirm_invoice(
        self,
        invoice_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Freeze a draft: lock its sources and give it a number.

        Raises:
            InvalidStateError: If the invoice is not a draft
            ConsistencyError: If any line conflicts with its source
            TransitionFailedError: If a write failed (earlier writes undone)
        """
        async with self._exclusive(invoice_id):
            invoice = await self._load(invoice_id)
            self._require_status(invoice, "confirm", InvoiceStatus.DRAFT)

            conflicts = await self._checker.check(invoice)
            if conflicts:
                await self._audit.log_consistency_check_failed(
                    invoice_id=invoice_id,
                    conflicts=[conflict.to_log_dict() for conflict in conflicts],
                    correlation_id=correlation_id,
                )
                raise ConsistencyError(conflicts)

            timesheet_ids = invoice.source_ids(LineType.TIMESHEET)
            expense_ids = invoice.source_ids(LineType.EXPENSE)
            confirmed = invoice.model_copy(deep=True)
            allocated: dict[str, str] = {}

            async def reserve_number() -> str:
                allocated["number"] = await self._numbering.reserve()
                return allocated["number"]

            async def release_number() -> None:
                await self._numbering.release(allocated["number"])

            async def persist() -> None:
                now = datetime.utcnow()
                confirmed.status = InvoiceStatus.CONFIRMED
                confirmed.invoice_number = allocated["number"]
                confirmed.confirmed_at = now
                confirmed.first_confirmed_at = confirmed.first_confirmed_at or now
                confirmed.updated_at = now
                await self._invoices.save_invoice(confirmed)

            saga = (
                Saga("confirm", invoice_id=str(invoice_id))
                .step(
                    "lock_timesheets",
                    lambda: self._timesheets.set_invoice_lock(timesheet_ids, invoice_id),
                    compensation=lambda: self._timesheets.set_invoice_lock(timesheet_ids, None),
                )
                .step(
                    "lock_expenses",
                    lambda: self._expenses.set_invoice_lock(expense_ids, invoice_id),
                    compensation=lambda: self._expenses.set_invoice_lock(expense_ids, None),
                )
                .step("reserve_number", reserve_number, compensation=release_number)
                .step("persist_invoice", persist)
            )
            try:
                results = await saga.run()
            except TransitionFailedError as e:
                await self._audit.log_transition_failed(
                    invoice_id=invoice_id,
                    transition="confirm",
                    failed_step=e.failed_step,
                    error_message=str(e.cause),
                    compensation_failures=e.compensation_failures,
                    correlation_id=correlation_id,
                )
                raise

        await self._audit.log_invoice_confirmed(
            invoice_id=invoice_id,
            invoice_number=confirmed.invoice_number,
            timesheets_locked=results["lock_timesheets"],
            expenses_locked=results["lock_expenses"],
            correlation_id=correlation_id,
        )
        return confirmed

    async def post_invoice(
        self,
        invoice_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """Mark a confirmed invoice as sent. No re-validation."""
        async with self._exclusive(invoice_id):
            invoice = await self._load(invoice_id)
            self._require_status(invoice, "post", InvoiceStatus.CONFIRMED)

            now = datetime.utcnow()
            invoice.status = InvoiceStatus.POSTED
            invoice.posted_at = now
            invoice.updated_at = now
            await self._invoices.save_invoice(invoice)

        await self._audit.log_invoice_posted(
            invoice_id=invoice_id,
            invoice_number=invoice.invoice_number,
            correlation_id=correlation_id,
        )
        return invoice

    async def unconfirm_invoice(
        self,
        invoice_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Return a confirmed invoice to draft.

        Sources are unlocked first, then the number is released, then
        the invoice is saved as a numberless draft.
        """
        async with self._exclusive(invoice_id):
            invoice = await self._load(invoice_id)
            self._require_status(invoice, "unconfirm", InvoiceStatus.CONFIRMED)

            timesheet_ids = invoice.source_ids(LineType.TIMESHEET)
            expense_ids = invoice.source_ids(LineType.EXPENSE)
            number = invoice.invoice_number
            draft = invoice.model_copy(deep=True)
            released: dict[str, bool] = {"number": False}

            async def release_number() -> bool:
                if number:
                    released["number"] = await self._numbering.release(number)
                return released["number"]

            async def restore_number() -> None:
                if released["number"]:
                    await self._numbering.restore(number)

            async def persist() -> None:
                draft.status = InvoiceStatus.DRAFT
                draft.invoice_number = None
                draft.confirmed_at = None
                draft.updated_at = datetime.utcnow()
                await self._invoices.save_invoice(draft)

            saga = (
                Saga("unconfirm", invoice_id=str(invoice_id))
                .step(
                    "unlock_timesheets",
                    lambda: self._timesheets.set_invoice_lock(timesheet_ids, None),
                    compensation=lambda: self._timesheets.set_invoice_lock(timesheet_ids, invoice_id),
                )
                .step(
                    "unlock_expenses",
                    lambda: self._expenses.set_invoice_lock(expense_ids, None),
                    compensation=lambda: self._expenses.set_invoice_lock(expense_ids, invoice_id),
                )
                .step("release_number", release_number, compensation=restore_number)
                .step("persist_invoice", persist)
            )
            try:
                await saga.run()
            except TransitionFailedError as e:
                await self._audit.log_transition_failed(
                    invoice_id=invoice_id,
                    transition="unconfirm",
                    failed_step=e.failed_step,
                    error_message=str(e.cause),
                    compensation_failures=e.compensation_failures,
                    correlation_id=correlation_id,
                )
                raise

        await self._audit.log_invoice_unconfirmed(
            invoice_id=invoice_id,
            invoice_number=number,
            number_released=released["number"],
            correlation_id=correlation_id,
        )
        return draft

    # =========================================================================
    # PAYMENT TRACKING
    # =========================================================================

    async def update_payment(
        self,
        invoice_id: UUID,
        update: Union[PaymentUpdate, Mapping[str, Any]],
        correlation_id: Optional[UUID] = None,
    ) -> Invoice:
        """
        Record payment progress on a posted invoice.

        Only payment_status and paid_date change; paid_date only when
        it is present in the update.
        """
        if not isinstance(update, PaymentUpdate):
            try:
                update = PaymentUpdate.model_validate(dict(update))
            except PydanticValidationError as e:
                raise InvoiceValidationError(_issues_from(e)) from e

        async with self._exclusive(invoice_id):
            invoice = await self._load(invoice_id)
            self._require_status(invoice, "update payment of", InvoiceStatus.POSTED)
            old_status = invoice.payment_status

            changes: dict[str, Any] = {}
            if update.payment_status is not None:
                changes["payment_status"] = update.payment_status
            if update.paid_date_supplied:
                changes["paid_date"] = update.paid_date

            try:
                updated = Invoice.model_validate({**invoice.model_dump(), **changes})
            except PydanticValidationError as e:
                raise InvoiceValidationError(_issues_from(e)) from e
            updated.updated_at = datetime.utcnow()
            await self._invoices.save_invoice(updated)

        await self._audit.log_payment_updated(
            invoice_id=invoice_id,
            old_status=old_status.value,
            new_status=updated.payment_status.value,
            paid_date=updated.paid_date.isoformat() if updated.paid_date else None,
            correlation_id=correlation_id,
        )
        return updated

    # =========================================================================
    # CASCADES
    # =========================================================================

    async def remove_invoices_for_client(
        self,
        client_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> int:
        """
        Delete every invoice of a client, in any status.

        Locks held by confirmed and posted invoices are released
        before the invoice is deleted.

        Returns:
            Number of invoices deleted
        """
        removed = 0
        unlocked = 0

        for listed in await self._invoices.list_invoices(client_id=client_id):
            async with self._exclusive(listed.id):
                invoice = await self._invoices.get_invoice(listed.id)
                if invoice is None:
                    continue

                if invoice.holds_locks:
                    await self._timesheets.set_invoice_lock(
                        invoice.source_ids(LineType.TIMESHEET), None
                    )
                    await self._expenses.set_invoice_lock(
                        invoice.source_ids(LineType.EXPENSE), None
                    )
                    unlocked += 1

                if await self._invoices.delete_invoice(invoice.id):
                    removed += 1

        logger.info(
            "client_invoices_removed",
            client_id=str(client_id),
            removed=removed,
            unlocked=unlocked,
        )
        await self._audit.log_client_invoices_removed(
            client_id=client_id,
            removed=removed,
            unlocked=unlocked,
            correlation_id=correlation_id,
        )
        return removed
