"""
Client and Project Services

DESIGN DECISION: Deleting a client removes everything it owns, in an
order that never leaves a dangling lock:
1. Invoices (locks of confirmed/posted invoices released first)
2. Timesheets and expenses of every project
3. Projects
4. The client

A project can only be deleted while none of its records is locked,
and a client's default project can never be deleted on its own.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

import structlog
from pydantic import ValidationError as PydanticValidationError

from contractor_billing.audit import AuditLogger, create_correlation_id
from contractor_billing.invoicing.engine import InvoiceEngine
from contractor_billing.models.records import Client, Expense, Project, Timesheet
from contractor_billing.services.lock_check import assert_not_locked
from contractor_billing.services.storage.interface import (
    ClientProjectProvider,
    RecordNotFoundError,
    SourceRecordProvider,
)


logger = structlog.get_logger(__name__)

DEFAULT_PROJECT_NAME = "Default Project"

CLIENT_FIELDS = frozenset({
    "company_name",
    "contact_email",
    "currency",
    "default_rate",
    "working_hours_per_day",
    "default_vat_percent",
    "payment_term_days",
})
PROJECT_FIELDS = frozenset({
    "name",
    "status",
    "rate",
    "working_hours_per_day",
    "vat_percent",
})


class ClientServiceError(Exception):
    """Client or project input was rejected."""
    pass


class DefaultProjectError(ClientServiceError):
    """The default project of a client cannot be deleted."""
    pass


def _validated(model_cls, data: dict[str, Any]):
    try:
        return model_cls.model_validate(data)
    except PydanticValidationError as e:
        raise ClientServiceError(str(e)) from e


class ClientService:
    """Creates, edits and deletes clients."""

    def __init__(
        self,
        client_projects: ClientProjectProvider,
        timesheets: SourceRecordProvider[Timesheet],
        expenses: SourceRecordProvider[Expense],
        engine: InvoiceEngine,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._client_projects = client_projects
        self._timesheets = timesheets
        self._expenses = expenses
        self._engine = engine
        self._audit = audit_logger or AuditLogger()

    async def get_client(self, client_id: UUID) -> Client:
        client = await self._client_projects.get_client(client_id)
        if client is None:
            raise RecordNotFoundError(f"Client not found: {client_id}")
        return client

    async def create_client(
        self,
        company_name: str,
        default_rate: Decimal = Decimal("0"),
        correlation_id: Optional[UUID] = None,
        **fields: Any,
    ) -> tuple[Client, Project]:
        """
        Create a client together with its default project.

        Returns:
            (client, default_project)
        """
        unknown = set(fields) - CLIENT_FIELDS
        if unknown:
            raise ClientServiceError(f"Unknown client fields: {sorted(unknown)}")

        client = _validated(Client, {
            **fields,
            "company_name": company_name,
            "default_rate": default_rate,
        })
        project = Project(client_id=client.id, name=DEFAULT_PROJECT_NAME, is_default=True)

        await self._client_projects.save_client(client)
        await self._client_projects.save_project(project)

        await self._audit.log_client_created(
            client_id=client.id,
            company_name=client.company_name,
            default_project_id=project.id,
            correlation_id=correlation_id,
        )
        return client, project

    async def update_client(self, client_id: UUID, **changes: Any) -> Client:
        """
        Edit a client.

        Existing timesheets keep their stored amounts; drafts that
        reference them will show drift on their next consistency check.
        """
        unknown = set(changes) - CLIENT_FIELDS
        if unknown:
            raise ClientServiceError(f"Unknown client fields: {sorted(unknown)}")

        current = await self.get_client(client_id)
        client = _validated(Client, {**current.model_dump(), **changes})
        client.updated_at = datetime.utcnow()
        return await self._client_projects.save_client(client)

    async def remove_client(
        self,
        client_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, int]:
        """
        Delete a client and everything it owns.

        Returns:
            Counts of deleted invoices, timesheets, expenses and projects
        """
        client = await self.get_client(client_id)
        correlation_id = correlation_id or create_correlation_id()

        counts = {"invoices": 0, "timesheets": 0, "expenses": 0, "projects": 0}
        counts["invoices"] = await self._engine.remove_invoices_for_client(
            client_id, correlation_id=correlation_id
        )

        for project in await self._client_projects.list_projects(client_id):
            for timesheet in await self._timesheets.list_records(project_id=project.id):
                if await self._timesheets.delete(timesheet.id):
                    counts["timesheets"] += 1
            for expense in await self._expenses.list_records(project_id=project.id):
                if await self._expenses.delete(expense.id):
                    counts["expenses"] += 1
            if await self._client_projects.delete_project(project.id):
                counts["projects"] += 1

        await self._client_projects.delete_client(client_id)

        await self._audit.log_client_deleted(
            client_id=client_id,
            company_name=client.company_name,
            counts=counts,
            correlation_id=correlation_id,
        )
        return counts


class ProjectService:
    """Creates, edits and deletes projects."""

    def __init__(
        self,
        client_projects: ClientProjectProvider,
        timesheets: SourceRecordProvider[Timesheet],
        expenses: SourceRecordProvider[Expense],
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._client_projects = client_projects
        self._timesheets = timesheets
        self._expenses = expenses
        self._audit = audit_logger or AuditLogger()

    async def get_project(self, project_id: UUID) -> Project:
        project = await self._client_projects.get_project(project_id)
        if project is None:
            raise RecordNotFoundError(f"Project not found: {project_id}")
        return project

    async def create_project(self, client_id: UUID, name: str, **fields: Any) -> Project:
        """Create a project. rate, working_hours_per_day and vat_percent inherit when omitted."""
        unknown = set(fields) - PROJECT_FIELDS
        if unknown:
            raise ClientServiceError(f"Unknown project fields: {sorted(unknown)}")
        if await self._client_projects.get_client(client_id) is None:
            raise RecordNotFoundError(f"Client not found: {client_id}")

        project = _validated(Project, {**fields, "client_id": client_id, "name": name})
        return await self._client_projects.save_project(project)

    async def update_project(self, project_id: UUID, **changes: Any) -> Project:
        unknown = set(changes) - PROJECT_FIELDS
        if unknown:
            raise ClientServiceError(f"Unknown project fields: {sorted(unknown)}")

        current = await self.get_project(project_id)
        project = _validated(Project, {**current.model_dump(), **changes})
        project.updated_at = datetime.utcnow()
        return await self._client_projects.save_project(project)

    async def remove_project(
        self,
        project_id: UUID,
        correlation_id: Optional[UUID] = None,
    ) -> dict[str, int]:
        """
        Delete a project with its timesheets and expenses.

        Raises:
            DefaultProjectError: For the client's default project
            RecordLockedError: If any of its records is locked to an invoice
        """
        project = await self.get_project(project_id)
        if project.is_default:
            raise DefaultProjectError("Cannot delete the default project")

        timesheets = await self._timesheets.list_records(project_id=project_id)
        expenses = await self._expenses.list_records(project_id=project_id)
        for timesheet in timesheets:
            assert_not_locked(timesheet, "timesheet")
        for expense in expenses:
            assert_not_locked(expense, "expense")

        counts = {"timesheets": 0, "expenses": 0}
        for timesheet in timesheets:
            if await self._timesheets.delete(timesheet.id):
                counts["timesheets"] += 1
        for expense in expenses:
            if await self._expenses.delete(expense.id):
                counts["expenses"] += 1
        await self._client_projects.delete_project(project_id)

        await self._audit.log_project_deleted(
            project_id=project_id,
            name=project.name,
            counts=counts,
            correlation_id=correlation_id,
        )
        return counts
