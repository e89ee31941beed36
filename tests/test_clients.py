"""
Tests for client and project services, including cascading deletes.
"""

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from contractor_billing.models import AuditEventType
from contractor_billing.services.clients import (
    DEFAULT_PROJECT_NAME,
    ClientServiceError,
    DefaultProjectError,
)
from contractor_billing.services.lock_check import RecordLockedError
from contractor_billing.services.storage import RecordNotFoundError


class TestClientService:
    """Tests for client creation and removal."""

    async def test_create_client_makes_default_project(self, client_service, client_projects):
        """Test every client starts with a default project."""
        client, project = await client_service.create_client("Acme Ltd", default_rate=Decimal("400"))

        assert project.client_id == client.id
        assert project.name == DEFAULT_PROJECT_NAME
        assert project.is_default
        assert [p.id for p in await client_projects.list_projects(client.id)] == [project.id]

    async def test_unknown_fields_rejected(self, client_service):
        """Test a typo in a field name is an error, not ignored."""
        with pytest.raises(ClientServiceError, match="Unknown client fields"):
            await client_service.create_client("Acme Ltd", vat_rate=Decimal("20"))

    async def test_update_client(self, seed, client_service):
        """Test editing a client keeps its id."""
        updated = await client_service.update_client(seed.client.id, payment_term_days=45)
        assert updated.id == seed.client.id
        assert updated.payment_term_days == 45

    async def test_get_missing_client(self, client_service):
        """Test an unknown client raises."""
        with pytest.raises(RecordNotFoundError):
            await client_service.get_client(uuid4())

    async def test_remove_client_cascades(
        self,
        engine,
        draft,
        seed,
        client_service,
        client_projects,
        timesheet_provider,
        expense_provider,
        invoice_storage,
    ):
        """Test a client goes with its invoices, records and projects."""
        await engine.confirm_invoice(draft.id)
        await engine.create_invoice(seed.client.id)

        counts = await client_service.remove_client(seed.client.id)

        assert counts == {"invoices": 2, "timesheets": 1, "expenses": 1, "projects": 1}
        assert await client_projects.get_client(seed.client.id) is None
        assert await invoice_storage.list_invoices() == []
        assert await timesheet_provider.list_records() == []
        assert await expense_provider.list_records() == []

    async def test_remove_client_shares_correlation_id(
        self, seed, client_service, audit_storage
    ):
        """Test the cascade's audit events are grouped."""
        correlation_id = uuid4()
        await client_service.remove_client(seed.client.id, correlation_id=correlation_id)

        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert [e.event_type for e in events] == [
            AuditEventType.CLIENT_INVOICES_REMOVED,
            AuditEventType.CLIENT_DELETED,
        ]

    async def test_remove_client_leaves_others(self, seed, client_service, client_projects):
        """Test another client's data survives."""
        other, other_project = await client_service.create_client("Globex")
        await client_service.remove_client(seed.client.id)

        assert (await client_projects.get_client(other.id)).company_name == "Globex"
        assert (await client_projects.get_project(other_project.id)) is not None


class TestProjectService:
    """Tests for project creation and removal."""

    async def test_create_project_for_missing_client(self, project_service):
        """Test a project needs an existing client."""
        with pytest.raises(RecordNotFoundError):
            await project_service.create_project(uuid4(), "Orphan")

    async def test_default_project_cannot_be_removed(self, seed, project_service):
        """Test the default project is protected."""
        with pytest.raises(DefaultProjectError):
            await project_service.remove_project(seed.project.id)

    async def test_remove_project_with_records(
        self, seed, project_service, timesheet_service, expense_service, timesheet_provider
    ):
        """Test unlocked records are removed with their project."""
        project = await project_service.create_project(seed.client.id, "Audit")
        await timesheet_service.create_timesheet(project.id, date(2025, 3, 11), Decimal("8"))
        await expense_service.create_expense(project.id, date(2025, 3, 11), "Parking", Decimal("8"))

        counts = await project_service.remove_project(project.id)

        assert counts == {"timesheets": 1, "expenses": 1}
        assert [t.id for t in await timesheet_provider.list_records()] == [seed.timesheet.id]

    async def test_project_with_locked_record_cannot_be_removed(
        self, engine, seed, project_service, timesheet_service, client_projects
    ):
        """Test a project with invoiced work is protected."""
        project = await project_service.create_project(seed.client.id, "Audit")
        timesheet = await timesheet_service.create_timesheet(
            project.id, date(2025, 3, 11), Decimal("8")
        )
        lines = await engine.build_lines([timesheet.id])
        invoice = await engine.create_invoice(seed.client.id, lines)
        await engine.confirm_invoice(invoice.id)

        with pytest.raises(RecordLockedError):
            await project_service.remove_project(project.id)
        assert await client_projects.get_project(project.id) is not None

    async def test_project_inherits_pricing(self, seed, project_service, client_projects):
        """Test omitted project pricing falls back to the client's."""
        project = await project_service.create_project(seed.client.id, "Audit")
        assert await client_projects.get_effective_rate(project.id) == Decimal("400")
        assert await client_projects.get_vat_percent(project.id) == Decimal("20")
        assert await client_projects.get_working_hours(project.id) == Decimal("8")

    async def test_update_project_rate(self, seed, project_service, client_projects):
        """Test a project rate overrides the client rate."""
        project = await project_service.create_project(seed.client.id, "Audit")
        await project_service.update_project(project.id, rate=Decimal("550"))
        assert await client_projects.get_effective_rate(project.id) == Decimal("550")
