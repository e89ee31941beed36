"""
Source Record Services

Timesheets and expenses are owned here. Both services refuse to edit
or delete a record that is locked to an invoice.

DESIGN DECISION: A timesheet's days and amount are computed when it is
saved, from the project's effective working hours and rate at that
moment. Later rate changes do not reprice it silently; the invoice
consistency check reports the difference instead.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from contractor_billing.invoicing.lines import round2
from contractor_billing.models.records import Expense, Timesheet
from contractor_billing.services.lock_check import assert_not_locked
from contractor_billing.services.storage.interface import (
    ClientProjectProvider,
    InvoiceStorageInterface,
    RecordNotFoundError,
    SourceRecordProvider,
)


logger = structlog.get_logger(__name__)

DAYS_QUANTUM = Decimal("0.0001")


class SourceValidationError(Exception):
    """Timesheet or expense input was rejected."""
    pass


def compute_timesheet_values(
    hours: Decimal,
    working_hours_per_day: Decimal,
    rate: Decimal,
) -> tuple[Decimal, Decimal]:
    """
    Days and amount for a number of hours.

    Returns:
        (days to 4 places, amount to 2 places)
    """
    exact_days = hours / working_hours_per_day
    return exact_days.quantize(DAYS_QUANTUM), round2(exact_days * rate)


class _SourceService:
    """Shared lookups for the two source services."""

    record_kind = "record"

    def __init__(
        self,
        records: SourceRecordProvider,
        client_projects: ClientProjectProvider,
        invoices: Optional[InvoiceStorageInterface] = None,
    ):
        self._records = records
        self._client_projects = client_projects
        self._invoices = invoices

    async def _get(self, record_id: UUID):
        record = await self._records.find_by_id(record_id)
        if record is None:
            raise RecordNotFoundError(f"{self.record_kind.capitalize()} not found: {record_id}")
        return record

    async def _assert_editable(self, record) -> None:
        if record.invoice_id is None:
            return
        label = None
        if self._invoices is not None:
            invoice = await self._invoices.get_invoice(record.invoice_id)
            if invoice is not None:
                label = invoice.invoice_number or "Draft"
        assert_not_locked(record, self.record_kind, label)

    async def _require_project(self, project_id: UUID) -> None:
        if await self._client_projects.get_project(project_id) is None:
            raise RecordNotFoundError(f"Project not found: {project_id}")

    async def remove(self, record_id: UUID) -> None:
        """Delete an unlocked record."""
        record = await self._get(record_id)
        await self._assert_editable(record)
        await self._records.delete(record_id)
        logger.info(f"{self.record_kind}_deleted", record_id=str(record_id))

    async def list_uninvoiced(self, project_id: Optional[UUID] = None) -> list:
        return await self._records.list_records(project_id=project_id, locked=False)


class TimesheetService(_SourceService):
    """Creates, edits and deletes timesheets."""

    record_kind = "timesheet"

    async def _priced(self, timesheet_data: dict[str, Any]) -> Timesheet:
        try:
            timesheet = Timesheet.model_validate(timesheet_data)
        except PydanticValidationError as e:
            raise SourceValidationError(str(e)) from e

        if timesheet.work_date > date.today():
            raise SourceValidationError("Timesheet date cannot be in the future")

        working_hours = await self._client_projects.get_working_hours(timesheet.project_id)
        rate = await self._client_projects.get_effective_rate(timesheet.project_id)
        timesheet.days, timesheet.amount = compute_timesheet_values(
            timesheet.hours, working_hours, rate
        )
        return timesheet

    async def create_timesheet(
        self,
        project_id: UUID,
        work_date: date,
        hours: Decimal,
        notes: str = "",
    ) -> Timesheet:
        await self._require_project(project_id)
        timesheet = await self._priced({
            "project_id": project_id,
            "work_date": work_date,
            "hours": hours,
            "notes": notes,
        })
        await self._records.save(timesheet)
        logger.info(
            "timesheet_created",
            timesheet_id=str(timesheet.id),
            days=str(timesheet.days),
            amount=str(timesheet.amount),
        )
        return timesheet

    async def update_timesheet(self, timesheet_id: UUID, **changes: Any) -> Timesheet:
        """
        Edit an unlocked timesheet. Days and amount are recomputed.

        Accepted changes: project_id, work_date, hours, notes.
        """
        unknown = set(changes) - {"project_id", "work_date", "hours", "notes"}
        if unknown:
            raise SourceValidationError(f"Cannot change timesheet fields: {sorted(unknown)}")

        current = await self._get(timesheet_id)
        await self._assert_editable(current)
        if "project_id" in changes:
            await self._require_project(changes["project_id"])

        data = {**current.model_dump(), **changes}
        timesheet = await self._priced(data)
        timesheet.updated_at = datetime.utcnow()
        await self._records.save(timesheet)
        return timesheet

    async def remove_timesheet(self, timesheet_id: UUID) -> None:
        await self.remove(timesheet_id)


class ExpenseService(_SourceService):
    """Creates, edits and deletes expenses."""

    record_kind = "expense"

    @staticmethod
    def _validated(expense_data: dict[str, Any]) -> Expense:
        try:
            return Expense.model_validate(expense_data)
        except PydanticValidationError as e:
            raise SourceValidationError(str(e)) from e

    async def create_expense(
        self,
        project_id: UUID,
        expense_date: date,
        expense_type: str,
        amount: Decimal,
        vat_amount: Decimal = Decimal("0"),
        description: str = "",
        currency: Optional[str] = None,
        billable: bool = True,
        notes: str = "",
    ) -> Expense:
        """
        Record an expense. Currency defaults to the client's currency.
        """
        project, client = await self._client_projects.get_project_and_client(project_id)
        expense = self._validated({
            "project_id": project.id,
            "expense_date": expense_date,
            "expense_type": expense_type,
            "amount": round2(amount),
            "vat_amount": round2(vat_amount),
            "description": description,
            "currency": currency or client.currency,
            "billable": billable,
            "notes": notes,
        })
        await self._records.save(expense)
        logger.info("expense_created", expense_id=str(expense.id), amount=str(expense.amount))
        return expense

    async def update_expense(self, expense_id: UUID, **changes: Any) -> Expense:
        """Edit an unlocked expense."""
        allowed = {
            "project_id", "expense_date", "expense_type", "amount",
            "vat_amount", "description", "currency", "billable", "notes",
        }
        unknown = set(changes) - allowed
        if unknown:
            raise SourceValidationError(f"Cannot change expense fields: {sorted(unknown)}")

        current = await self._get(expense_id)
        await self._assert_editable(current)
        if "project_id" in changes:
            await self._require_project(changes["project_id"])
        for money_field in ("amount", "vat_amount"):
            if money_field in changes:
                changes[money_field] = round2(changes[money_field])

        expense = self._validated({**current.model_dump(), **changes})
        expense.updated_at = datetime.utcnow()
        await self._records.save(expense)
        return expense

    async def remove_expense(self, expense_id: UUID) -> None:
        await self.remove(expense_id)
