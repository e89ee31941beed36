"""
Storage interfaces for the billing engine.

The engine and services depend only on these ABCs; the JSON file
implementation lives in json_store.py and tests subclass it to inject
failures.

Lock state on timesheets and expenses is written ONLY through
SourceRecordProvider.set_invoice_lock. The numbering seed is changed
ONLY through SettingsProvider.reserve_next_number / release_number.
"""

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Generic, Iterable, Optional, TypeVar
from uuid import UUID

from contractor_billing.models.audit import AuditEvent
from contractor_billing.models.invoice import Invoice, InvoiceStatus
from contractor_billing.models.records import (
    DEFAULT_WORKING_HOURS,
    BankTransaction,
    Client,
    Expense,
    Project,
    SettingsRecord,
    Timesheet,
    TransactionStatus,
)


RecordT = TypeVar("RecordT", Timesheet, Expense)


class InvoiceStorageInterface(ABC):
    """
    Abstract interface for invoice storage operations.

    Any storage implementation must implement these methods.
    """

    @abstractmethod
    async def save_invoice(self, invoice: Invoice) -> Invoice:
        """
        Insert or replace an invoice.

        Args:
            invoice: The invoice to store

        Returns:
            The stored invoice

        Raises:
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def get_invoice(self, invoice_id: UUID) -> Optional[Invoice]:
        """
        Retrieve an invoice by its ID.

        Returns:
            The invoice if found, None otherwise
        """
        pass

    @abstractmethod
    async def list_invoices(
        self,
        client_id: Optional[UUID] = None,
        status: Optional[InvoiceStatus] = None,
    ) -> list[Invoice]:
        """
        List invoices with optional filters, newest invoice date first.

        Args:
            client_id: Only invoices of this client
            status: Only invoices in this status
        """
        pass

    @abstractmethod
    async def delete_invoice(self, invoice_id: UUID) -> bool:
        """
        Delete an invoice by ID.

        Returns:
            True if an invoice was deleted
        """
        pass


class SourceRecordProvider(ABC, Generic[RecordT]):
    """
    Abstract interface over one kind of source record
    (timesheets or expenses).
    """

    record_kind: str = "record"

    @abstractmethod
    async def find_by_id(self, record_id: UUID) -> Optional[RecordT]:
        """Return the record, or None if it does not exist."""
        pass

    @abstractmethod
    async def find_many_by_ids(self, record_ids: Iterable[UUID]) -> list[RecordT]:
        """
        Return the records that exist among record_ids.

        Missing ids are skipped, not reported.
        """
        pass

    @abstractmethod
    async def set_invoice_lock(
        self,
        record_ids: Iterable[UUID],
        invoice_id: Optional[UUID],
    ) -> int:
        """
        Lock records to an invoice, or unlock them with invoice_id=None.

        Locking is all-or-nothing: if any record is already locked to
        a different invoice nothing is written.

        Returns:
            Number of records written

        Raises:
            LockConflictError: If a record is locked to another invoice
            StorageError: If the write fails
        """
        pass

    @abstractmethod
    async def list_records(
        self,
        project_id: Optional[UUID] = None,
        locked: Optional[bool] = None,
    ) -> list[RecordT]:
        """
        List records with optional filters, oldest first.

        Args:
            project_id: Only records of this project
            locked: True for locked records only, False for unlocked only
        """
        pass

    @abstractmethod
    async def save(self, record: RecordT) -> RecordT:
        """Insert or replace a record."""
        pass

    @abstractmethod
    async def delete(self, record_id: UUID) -> bool:
        """Delete a record. Returns True if it existed."""
        pass


class SettingsProvider(ABC):
    """
    Abstract interface for the business settings store.

    reserve_next_number and release_number must be atomic with
    respect to each other.
    """

    @abstractmethod
    async def get_settings(self) -> SettingsRecord:
        """Return the settings record, creating defaults on first use."""
        pass

    @abstractmethod
    async def save_settings(self, settings: SettingsRecord) -> SettingsRecord:
        pass

    async def get_invoice_seed(self) -> int:
        """Last allocated invoice number (0 if none yet)."""
        return (await self.get_settings()).invoice_number_seed

    async def get_default_payment_term_days(self) -> int:
        return (await self.get_settings()).default_payment_term_days

    @abstractmethod
    async def reserve_next_number(self) -> int:
        """
        Atomically increment the seed.

        Returns:
            The newly allocated number (old seed + 1)
        """
        pass

    @abstractmethod
    async def release_number(self, number: int) -> bool:
        """
        Atomically hand a number back.

        The seed is decremented only when it still equals number,
        i.e. when number is the most recently allocated one.

        Returns:
            True if the seed was decremented
        """
        pass


class ClientProjectProvider(ABC):
    """
    Abstract interface for clients and projects.

    Rate, working hours and VAT resolution (project override, else
    client default) are implemented here on top of get_project and
    get_client.
    """

    @abstractmethod
    async def get_client(self, client_id: UUID) -> Optional[Client]:
        pass

    @abstractmethod
    async def list_clients(self) -> list[Client]:
        pass

    @abstractmethod
    async def save_client(self, client: Client) -> Client:
        pass

    @abstractmethod
    async def delete_client(self, client_id: UUID) -> bool:
        pass

    @abstractmethod
    async def get_project(self, project_id: UUID) -> Optional[Project]:
        pass

    @abstractmethod
    async def list_projects(self, client_id: Optional[UUID] = None) -> list[Project]:
        pass

    @abstractmethod
    async def save_project(self, project: Project) -> Project:
        pass

    @abstractmethod
    async def delete_project(self, project_id: UUID) -> bool:
        pass

    async def get_project_and_client(
        self,
        project_id: UUID,
    ) -> tuple[Project, Client]:
        """
        Load a project together with its client.

        Raises:
            RecordNotFoundError: If either is missing
        """
        project = await self.get_project(project_id)
        if project is None:
            raise RecordNotFoundError(f"Project not found: {project_id}")
        client = await self.get_client(project.client_id)
        if client is None:
            raise RecordNotFoundError(f"Client not found: {project.client_id}")
        return project, client

    async def get_effective_rate(self, project_id: UUID) -> Decimal:
        """Project rate, else the client's default rate."""
        project, client = await self.get_project_and_client(project_id)
        if project.rate is not None:
            return project.rate
        return client.default_rate

    async def get_vat_percent(self, project_id: UUID) -> Optional[Decimal]:
        """Project VAT, else the client's default VAT. None means exempt."""
        project, client = await self.get_project_and_client(project_id)
        if project.vat_percent is not None:
            return project.vat_percent
        return client.default_vat_percent

    async def get_working_hours(self, project_id: UUID) -> Decimal:
        """Project working hours per day, else the client's, else 8."""
        project, client = await self.get_project_and_client(project_id)
        if project.working_hours_per_day is not None:
            return project.working_hours_per_day
        return client.working_hours_per_day or DEFAULT_WORKING_HOURS


class TransactionProvider(ABC):
    """Read-only access to imported bank transactions."""

    @abstractmethod
    async def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
    ) -> list[BankTransaction]:
        pass


class AuditStorageInterface(ABC):
    """Append-only store of AuditEvents."""

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """All events of one correlation ID, oldest first."""
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        """History of one invoice, client or project, oldest first."""
        pass

    @abstractmethod
    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        """Most recent events, newest first."""
        pass


class StorageError(Exception):
    """Raised by storage backends."""
    pass


class RecordNotFoundError(StorageError):
    """No record with the requested ID."""
    pass


class DuplicateError(StorageError):
    """A record with this ID already exists."""
    pass


class LockConflictError(StorageError):
    """A source record is already locked to a different invoice."""

    def __init__(self, record_kind: str, conflicts: dict[UUID, UUID]):
        self.record_kind = record_kind
        self.conflicts = conflicts
        ids = ", ".join(str(record_id) for record_id in conflicts)
        super().__init__(f"{record_kind.capitalize()} records locked to another invoice: {ids}")
