"""
Application Composition

Wires one data directory into a ready-to-use set of components:

    JsonStore -> providers -> AuditLogger -> InvoiceEngine
                                          -> client/project/source services
                                          -> DashboardService

DESIGN DECISION: Every component receives its collaborators through
its constructor. Nothing reaches for a global store, so tests build
the same graph on a temporary directory.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import structlog

from contractor_billing.audit import AuditLogger, configure_logging
from contractor_billing.config import get_settings
from contractor_billing.invoicing import InvoiceEngine
from contractor_billing.models.records import SettingsRecord
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


logger = structlog.get_logger(__name__)


@dataclass
class AppComponents:
    """Everything a caller (HTTP layer, CLI, tests) needs."""

    store: JsonStore
    audit_logger: AuditLogger
    engine: InvoiceEngine
    clients: ClientService
    projects: ProjectService
    timesheets: TimesheetService
    expenses: ExpenseService
    dashboard: DashboardService
    settings: JsonSettingsProvider


def create_app_components(
    data_dir: Optional[Path] = None,
    configure_logs: bool = True,
) -> AppComponents:
    """
    Factory function to create all application components.

    Args:
        data_dir: Directory holding the JSON collections.
                  Defaults to the configured storage directory.
        configure_logs: Set up structlog from the app settings.
                        Set to False when the caller already did.

    Returns:
        AppComponents sharing one store and one audit logger
    """
    settings = get_settings()
    app_settings = settings.app
    invoicing_settings = settings.invoicing

    if configure_logs:
        configure_logging(app_settings.log_level, app_settings.log_json)

    store = JsonStore(Path(data_dir) if data_dir else settings.storage.data_dir)

    invoice_storage = JsonInvoiceStorage(store)
    timesheet_provider = JsonTimesheetProvider(store)
    expense_provider = JsonExpenseProvider(store)
    client_projects = JsonClientProjectProvider(store)
    settings_provider = JsonSettingsProvider(
        store,
        defaults=SettingsRecord(
            default_payment_term_days=invoicing_settings.default_payment_term_days,
        ),
    )
    audit_logger = AuditLogger(JsonAuditStorage(store))

    engine = InvoiceEngine(
        invoices=invoice_storage,
        timesheets=timesheet_provider,
        expenses=expense_provider,
        settings=settings_provider,
        client_projects=client_projects,
        audit_logger=audit_logger,
        config=invoicing_settings,
    )

    components = AppComponents(
        store=store,
        audit_logger=audit_logger,
        engine=engine,
        clients=ClientService(
            client_projects,
            timesheet_provider,
            expense_provider,
            engine,
            audit_logger,
        ),
        projects=ProjectService(
            client_projects,
            timesheet_provider,
            expense_provider,
            audit_logger,
        ),
        timesheets=TimesheetService(timesheet_provider, client_projects, invoice_storage),
        expenses=ExpenseService(expense_provider, client_projects, invoice_storage),
        dashboard=DashboardService(
            invoice_storage,
            timesheet_provider,
            expense_provider,
            JsonTransactionProvider(store),
        ),
        settings=settings_provider,
    )

    logger.info(
        "app_components_created",
        data_dir=str(store.data_dir),
        environment=app_settings.app_environment,
    )
    return components
