"""
Shared fixtures.

Every test gets its own JSON store in tmp_path and an engine wired
the same way create_app_components wires it, with explicit invoicing
settings so the environment cannot change numbering or tolerances.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal

import pytest

from contractor_billing.audit import AuditLogger
from contractor_billing.config import InvoicingSettings
from contractor_billing.invoicing import InvoiceEngine
from contractor_billing.models import Client, Expense, Project, Timesheet
from contractor_billing.reporting import DashboardService
from contractor_billing.services.clients import ClientService, ProjectService
from contractor_billing.services.sources import ExpenseService, TimesheetService
from contractor_billing.services.storage import (
    JsonAuditStorage,
    JsonClientProjectProvider,
    JsonExpenseProvider,
    JsonInvoiceStorage,
    JsonSettingsProvider,
    JsonStore,
    JsonTimesheetProvider,
    JsonTransactionProvider,
)


WORK_DATE = date(2025, 3, 10)
EXPENSE_DATE = date(2025, 3, 12)


@pytest.fixture
def store(tmp_path):
    return JsonStore(tmp_path / "data")


@pytest.fixture
def invoicing_settings():
    return InvoicingSettings(
        number_prefix="INV",
        number_width=5,
        default_payment_term_days=10,
        drift_tolerance=Decimal("0.01"),
        reuse_released_numbers=True,
    )


@pytest.fixture
def invoice_storage(store):
    return JsonInvoiceStorage(store)


@pytest.fixture
def timesheet_provider(store):
    return JsonTimesheetProvider(store)


@pytest.fixture
def expense_provider(store):
    return JsonExpenseProvider(store)


@pytest.fixture
def client_projects(store):
    return JsonClientProjectProvider(store)


@pytest.fixture
def settings_provider(store):
    return JsonSettingsProvider(store)


@pytest.fixture
def audit_storage(store):
    return JsonAuditStorage(store)


@pytest.fixture
def audit_logger(audit_storage):
    return AuditLogger(audit_storage)


@pytest.fixture
def engine(
    invoice_storage,
    timesheet_provider,
    expense_provider,
    settings_provider,
    client_projects,
    audit_logger,
    invoicing_settings,
):
    return InvoiceEngine(
        invoices=invoice_storage,
        timesheets=timesheet_provider,
        expenses=expense_provider,
        settings=settings_provider,
        client_projects=client_projects,
        audit_logger=audit_logger,
        config=invoicing_settings,
    )


@pytest.fixture
def client_service(client_projects, timesheet_provider, expense_provider, engine, audit_logger):
    return ClientService(client_projects, timesheet_provider, expense_provider, engine, audit_logger)


@pytest.fixture
def project_service(client_projects, timesheet_provider, expense_provider, audit_logger):
    return ProjectService(client_projects, timesheet_provider, expense_provider, audit_logger)


@pytest.fixture
def timesheet_service(timesheet_provider, client_projects, invoice_storage):
    return TimesheetService(timesheet_provider, client_projects, invoice_storage)


@pytest.fixture
def expense_service(expense_provider, client_projects, invoice_storage):
    return ExpenseService(expense_provider, client_projects, invoice_storage)


@pytest.fixture
def dashboard(invoice_storage, timesheet_provider, expense_provider, store):
    return DashboardService(
        invoice_storage,
        timesheet_provider,
        expense_provider,
        JsonTransactionProvider(store),
    )


@dataclass
class Seed:
    client: Client
    project: Project
    timesheet: Timesheet
    expense: Expense


@pytest.fixture
async def seed(client_service, timesheet_service, expense_service):
    """
    One client (400/day, 8h days, 20% VAT) with its default project,
    one 8-hour timesheet (400.00) and one expense (120.00 gross, 20.00 VAT).
    """
    client, project = await client_service.create_client(
        "Acme Ltd",
        default_rate=Decimal("400"),
        default_vat_percent=Decimal("20"),
    )
    timesheet = await timesheet_service.create_timesheet(
        project.id, WORK_DATE, Decimal("8"), notes="Sprint planning"
    )
    expense = await expense_service.create_expense(
        project.id,
        EXPENSE_DATE,
        "Travel",
        amount=Decimal("120.00"),
        vat_amount=Decimal("20.00"),
        description="Train to client site",
    )
    return Seed(client=client, project=project, timesheet=timesheet, expense=expense)


@pytest.fixture
async def draft(engine, seed):
    """Draft built from the seeded timesheet and expense."""
    lines = await engine.build_lines([seed.timesheet.id], [seed.expense.id])
    return await engine.create_invoice(
        seed.client.id,
        lines,
        invoice_date=date(2025, 3, 31),
    )
