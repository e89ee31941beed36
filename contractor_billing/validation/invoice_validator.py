"""
Invoice Input Validation

DESIGN DECISION: Input checks run BEFORE anything is written and
collect every issue instead of stopping at the first one, so a form
can show all problems at once.

Checks:
- The client exists (and is not being swapped on an invoice that was
  ever confirmed)
- Dates are in order
- No source record appears twice on one invoice
- Lines only reference projects of the invoice's client, both through
  their own project_id and through the timesheet or expense they snapshot

IMPORTANT: Validation NEVER silently fixes input. It reports issues;
the engine refuses the operation if any has error severity.
"""

from datetime import date
from typing import Optional, Sequence
from uuid import UUID

from contractor_billing.models.invoice import Invoice, InvoicePatch, LineItem, LineType
from contractor_billing.models.records import Client, Expense, Project, Timesheet
from contractor_billing.models.validation import ValidationIssue, ValidationResult
from contractor_billing.services.storage.interface import (
    ClientProjectProvider,
    SourceRecordProvider,
)


class InvoiceValidator:
    """Validates new invoices and draft patches."""

    def __init__(
        self,
        client_projects: ClientProjectProvider,
        timesheets: Optional[SourceRecordProvider[Timesheet]] = None,
        expenses: Optional[SourceRecordProvider[Expense]] = None,
    ):
        self._client_projects = client_projects
        self._sources = {
            LineType.TIMESHEET: timesheets,
            LineType.EXPENSE: expenses,
        }

    async def validate_new(
        self,
        client_id: UUID,
        lines: Sequence[LineItem],
        invoice_date: date,
        due_date: Optional[date] = None,
        service_period_start: Optional[date] = None,
        service_period_end: Optional[date] = None,
    ) -> ValidationResult:
        issues = []

        client = await self._client_projects.get_client(client_id)
        if client is None:
            issues.append(ValidationIssue(
                field="client_id",
                issue_type="not_found",
                message="Client not found",
            ))

        issues.extend(self._check_dates(
            invoice_date, due_date, service_period_start, service_period_end
        ))
        issues.extend(self._check_duplicate_sources(lines))
        if client is not None:
            issues.extend(await self._check_line_projects(client, lines))
            issues.extend(await self._check_line_sources(client, lines))

        if not lines:
            issues.append(ValidationIssue(
                field="lines",
                issue_type="empty",
                message="Invoice has no lines",
                severity="warning",
            ))

        return ValidationResult(issues=issues)

    async def validate_patch(
        self,
        invoice: Invoice,
        patch: InvoicePatch,
    ) -> ValidationResult:
        """Validate a patch against the draft it will be applied to."""
        issues = []
        changed = patch.model_fields_set

        client_id = invoice.client_id
        if "client_id" in changed and patch.client_id != invoice.client_id:
            if invoice.was_ever_confirmed:
                issues.append(ValidationIssue(
                    field="client_id",
                    issue_type="immutable",
                    message="Cannot change the client of an invoice that has been confirmed",
                    suggested_fix="Create a new invoice for the other client",
                ))
            elif patch.client_id is None or await self._client_projects.get_client(patch.client_id) is None:
                issues.append(ValidationIssue(
                    field="client_id",
                    issue_type="not_found",
                    message="Client not found",
                ))
            else:
                client_id = patch.client_id

        def merged(name: str):
            return getattr(patch, name) if name in changed else getattr(invoice, name)

        if "invoice_date" in changed and patch.invoice_date is None:
            issues.append(ValidationIssue(
                field="invoice_date",
                issue_type="missing",
                message="Invoice date cannot be cleared",
            ))
        elif "due_date" in changed and patch.due_date is None:
            issues.append(ValidationIssue(
                field="due_date",
                issue_type="missing",
                message="Due date cannot be cleared",
            ))
        else:
            issues.extend(self._check_dates(
                merged("invoice_date"),
                merged("due_date"),
                merged("service_period_start"),
                merged("service_period_end"),
            ))

        lines = merged("lines")
        if lines is None:
            issues.append(ValidationIssue(
                field="lines",
                issue_type="missing",
                message="Lines cannot be cleared; pass an empty list instead",
            ))
            lines = []
        if "lines" in changed or client_id != invoice.client_id:
            issues.extend(self._check_duplicate_sources(lines))
            client = await self._client_projects.get_client(client_id)
            if client is not None:
                issues.extend(await self._check_line_projects(client, lines))
                issues.extend(await self._check_line_sources(client, lines))

        return ValidationResult(issues=issues)

    # ---------------- Individual checks ---------------- #

    @staticmethod
    def _check_dates(
        invoice_date: date,
        due_date: Optional[date],
        service_period_start: Optional[date],
        service_period_end: Optional[date],
    ) -> list[ValidationIssue]:
        issues = []
        if due_date and due_date < invoice_date:
            issues.append(ValidationIssue(
                field="due_date",
                issue_type="inconsistent",
                message="Due date cannot be before invoice date",
            ))
        if (
            service_period_start
            and service_period_end
            and service_period_end < service_period_start
        ):
            issues.append(ValidationIssue(
                field="service_period_end",
                issue_type="inconsistent",
                message="Service period end cannot be before start",
            ))
        return issues

    @staticmethod
    def _check_duplicate_sources(lines: Sequence[LineItem]) -> list[ValidationIssue]:
        issues = []
        seen = set()
        for line in lines:
            if line.source_id is None:
                continue
            key = (line.type, line.source_id)
            if key in seen:
                issues.append(ValidationIssue(
                    field="lines",
                    issue_type="duplicate",
                    message=f"{line.type.value.capitalize()} {line.source_id} appears more than once",
                ))
            seen.add(key)
        return issues

    async def _check_line_projects(
        self,
        client: Client,
        lines: Sequence[LineItem],
    ) -> list[ValidationIssue]:
        issues = []
        project_ids = {line.project_id for line in lines if line.project_id is not None}
        for project_id in project_ids:
            project = await self._client_projects.get_project(project_id)
            if project is None:
                issues.append(ValidationIssue(
                    field="lines",
                    issue_type="not_found",
                    message=f"Project not found: {project_id}",
                ))
            elif project.client_id != client.id:
                issues.append(ValidationIssue(
                    field="lines",
                    issue_type="wrong_client",
                    message=f"Project '{project.name}' belongs to another client",
                ))
        return issues

    async def _check_line_sources(
        self,
        client: Client,
        lines: Sequence[LineItem],
    ) -> list[ValidationIssue]:
        """Sourced lines must snapshot records of this client's projects."""
        issues = []
        projects: dict[UUID, Optional[Project]] = {}
        for line_type, provider in self._sources.items():
            source_ids = [line.source_id for line in lines if line.type == line_type]
            if provider is None or not source_ids:
                continue
            # Missing records are left to the consistency check
            for record in await provider.find_many_by_ids(source_ids):
                if record.project_id not in projects:
                    projects[record.project_id] = await self._client_projects.get_project(
                        record.project_id
                    )
                project = projects[record.project_id]
                if project is not None and project.client_id != client.id:
                    issues.append(ValidationIssue(
                        field="lines",
                        issue_type="wrong_client",
                        message=(
                            f"{line_type.value.capitalize()} {record.record_date.isoformat()} "
                            f"belongs to another client's project '{project.name}'"
                        ),
                    ))
        return issues
