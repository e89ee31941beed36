"""
JSON File Storage Implementation

DESIGN DECISION: Each entity type lives in one JSON file under the
data directory (invoices.json, timesheets.json, ...). A personal
billing book is small enough to read whole files, and the files can
be inspected and backed up by hand.

TRADEOFFS:
- Every read parses the whole file (fine for thousands of records)
- No cross-file transactions (the engine runs multi-file writes as
  a saga with compensations instead)
- Read-modify-write on one file is atomic: a per-collection lock
  is held across the read and the replace

Writes go to a temporary file that is then renamed over the target,
so a crash never leaves a half-written collection behind.
"""

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Iterator, Optional, Type
from uuid import UUID

import structlog
from pydantic import BaseModel, ValidationError
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contractor_billing.models.audit import AuditEvent
from contractor_billing.models.invoice import Invoice, InvoiceStatus
from contractor_billing.models.records import (
    BankTransaction,
    Client,
    Expense,
    Project,
    SettingsRecord,
    Timesheet,
    TransactionStatus,
)
from contractor_billing.services.storage.interface import (
    AuditStorageInterface,
    ClientProjectProvider,
    DuplicateError,
    InvoiceStorageInterface,
    LockConflictError,
    RecordT,
    SettingsProvider,
    SourceRecordProvider,
    StorageError,
    TransactionProvider,
)


logger = structlog.get_logger(__name__)

Row = dict[str, Any]

SETTINGS_ROW_ID = "business"


class JsonCollection:
    """
    One JSON file holding a list of records keyed by id.

    Thread-safe: every read-modify-write runs under a re-entrant lock.
    """

    def __init__(self, filepath: Path, entity_name: str, key: str = "id"):
        self.filepath = Path(filepath)
        self.entity_name = entity_name
        self.key = key
        self._lock = threading.RLock()

        self.filepath.parent.mkdir(parents=True, exist_ok=True)
        if not self.filepath.exists():
            self._write_raw([])

    # ---------------- Low-level I/O ---------------- #

    def _read_raw(self) -> list[Row]:
        with self._lock:
            try:
                with self.filepath.open("r", encoding="utf-8") as f:
                    data = json.load(f)
            except FileNotFoundError:
                return []
            except json.JSONDecodeError as e:
                raise StorageError(
                    f"{self.entity_name} file is corrupt: {self.filepath} ({e})"
                ) from e
        if not isinstance(data, list):
            raise StorageError(f"{self.entity_name} file does not hold a list: {self.filepath}")
        return data

    @retry(
        retry=retry_if_exception_type(OSError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    def _replace_file(self, content: str) -> None:
        fd, tmp_path = tempfile.mkstemp(
            dir=self.filepath.parent,
            prefix=f".{self.filepath.stem}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_path, self.filepath)
        except OSError:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def _write_raw(self, data: Iterable[Row]) -> None:
        with self._lock:
            new_dump = json.dumps(list(data), ensure_ascii=False, indent=2)

            # Identical content: nothing to do
            if self.filepath.exists():
                if self.filepath.read_text(encoding="utf-8") == new_dump:
                    return

            try:
                self._replace_file(new_dump)
            except OSError as e:
                raise StorageError(f"Failed to write {self.entity_name} file: {e}") from e

    @contextmanager
    def transaction(self) -> Iterator[list[Row]]:
        """
        Read all rows, let the caller mutate them, write them back.

        If the with-block raises, nothing is written.
        """
        with self._lock:
            rows = self._read_raw()
            yield rows
            self._write_raw(rows)

    # ---------------- CRUD ---------------- #

    def list_all(self) -> list[Row]:
        return self._read_raw()

    def get(self, obj_id: Any) -> Optional[Row]:
        for row in self._read_raw():
            if str(row.get(self.key)) == str(obj_id):
                return row
        return None

    def insert(self, record: Row) -> Row:
        with self.transaction() as rows:
            if any(str(r.get(self.key)) == str(record[self.key]) for r in rows):
                raise DuplicateError(
                    f"{self.entity_name} with {self.key}={record[self.key]} already exists"
                )
            rows.append(record)
        return record

    def upsert(self, record: Row) -> Row:
        with self.transaction() as rows:
            for idx, existing in enumerate(rows):
                if str(existing.get(self.key)) == str(record[self.key]):
                    rows[idx] = record
                    break
            else:
                rows.append(record)
        return record

    def delete(self, obj_id: Any) -> bool:
        return self.delete_where(lambda r: str(r.get(self.key)) == str(obj_id)) > 0

    def delete_where(self, predicate: Callable[[Row], bool]) -> int:
        with self.transaction() as rows:
            keep = [r for r in rows if not predicate(r)]
            removed = len(rows) - len(keep)
            rows[:] = keep
        return removed

    def find(self, predicate: Callable[[Row], bool]) -> list[Row]:
        return [r for r in self._read_raw() if predicate(r)]


class JsonStore:
    """
    All collections of one data directory.

    Usage:
        store = JsonStore(Path("data"))
        invoices = JsonInvoiceStorage(store)
    """

    def __init__(self, data_dir: Path):
        self.data_dir = Path(data_dir)
        self.clients = JsonCollection(self.data_dir / "clients.json", "client")
        self.projects = JsonCollection(self.data_dir / "projects.json", "project")
        self.timesheets = JsonCollection(self.data_dir / "timesheets.json", "timesheet")
        self.expenses = JsonCollection(self.data_dir / "expenses.json", "expense")
        self.invoices = JsonCollection(self.data_dir / "invoices.json", "invoice")
        self.transactions = JsonCollection(self.data_dir / "transactions.json", "transaction")
        self.settings = JsonCollection(self.data_dir / "settings.json", "settings")
        self.audit = JsonCollection(self.data_dir / "audit.json", "audit event", key="event_id")


def _to_row(model: BaseModel) -> Row:
    return model.model_dump(mode="json")


def _from_row(model_cls: Type[BaseModel], row: Row, entity_name: str) -> Any:
    try:
        return model_cls.model_validate(row)
    except ValidationError as e:
        raise StorageError(f"Malformed {entity_name} record {row.get('id')}: {e}") from e


# =============================================================================
# INVOICES
# =============================================================================

class JsonInvoiceStorage(InvoiceStorageInterface):
    """Invoices stored as whole documents, lines included."""

    def __init__(self, store: JsonStore):
        self._collection = store.invoices

    async def save_invoice(self, invoice: Invoice) -> Invoice:
        self._collection.upsert(_to_row(invoice))
        return invoice

    async def get_invoice(self, invoice_id: UUID) -> Optional[Invoice]:
        row = self._collection.get(invoice_id)
        return _from_row(Invoice, row, "invoice") if row else None

    async def list_invoices(
        self,
        client_id: Optional[UUID] = None,
        status: Optional[InvoiceStatus] = None,
    ) -> list[Invoice]:
        invoices = []
        for row in self._collection.list_all():
            if client_id and row.get("client_id") != str(client_id):
                continue
            if status and row.get("status") != status.value:
                continue
            invoices.append(_from_row(Invoice, row, "invoice"))

        invoices.sort(key=lambda inv: (inv.invoice_date, inv.created_at), reverse=True)
        return invoices

    async def delete_invoice(self, invoice_id: UUID) -> bool:
        return self._collection.delete(invoice_id)


# =============================================================================
# SOURCE RECORDS
# =============================================================================

class _JsonSourceProvider(SourceRecordProvider[RecordT]):
    """Shared implementation for timesheets and expenses."""

    model_cls: Type[BaseModel]
    date_field: str

    def __init__(self, collection: JsonCollection):
        self._collection = collection

    def _load(self, row: Row) -> RecordT:
        return _from_row(self.model_cls, row, self.record_kind)

    async def find_by_id(self, record_id: UUID) -> Optional[RecordT]:
        row = self._collection.get(record_id)
        return self._load(row) if row else None

    async def find_many_by_ids(self, record_ids: Iterable[UUID]) -> list[RecordT]:
        wanted = {str(record_id) for record_id in record_ids}
        if not wanted:
            return []
        return [self._load(row) for row in self._collection.find(lambda r: r.get("id") in wanted)]

    async def set_invoice_lock(
        self,
        record_ids: Iterable[UUID],
        invoice_id: Optional[UUID],
    ) -> int:
        wanted = {str(record_id) for record_id in record_ids}
        if not wanted:
            return 0
        target = str(invoice_id) if invoice_id else None

        with self._collection.transaction() as rows:
            hits = [row for row in rows if row.get("id") in wanted]

            if target is not None:
                conflicts = {
                    UUID(row["id"]): UUID(row["invoice_id"])
                    for row in hits
                    if row.get("invoice_id") not in (None, target)
                }
                if conflicts:
                    raise LockConflictError(self.record_kind, conflicts)

            for row in hits:
                row["invoice_id"] = target

        logger.debug(
            "source_lock_written",
            record_kind=self.record_kind,
            invoice_id=target,
            count=len(hits),
        )
        return len(hits)

    async def list_records(
        self,
        project_id: Optional[UUID] = None,
        locked: Optional[bool] = None,
    ) -> list[RecordT]:
        def matches(row: Row) -> bool:
            if project_id and row.get("project_id") != str(project_id):
                return False
            if locked is not None and (row.get("invoice_id") is not None) != locked:
                return False
            return True

        rows = sorted(self._collection.find(matches), key=lambda r: r.get(self.date_field, ""))
        return [self._load(row) for row in rows]

    async def save(self, record: RecordT) -> RecordT:
        self._collection.upsert(_to_row(record))
        return record

    async def delete(self, record_id: UUID) -> bool:
        return self._collection.delete(record_id)


class JsonTimesheetProvider(_JsonSourceProvider[Timesheet]):
    record_kind = "timesheet"
    model_cls = Timesheet
    date_field = "work_date"

    def __init__(self, store: JsonStore):
        super().__init__(store.timesheets)


class JsonExpenseProvider(_JsonSourceProvider[Expense]):
    record_kind = "expense"
    model_cls = Expense
    date_field = "expense_date"

    def __init__(self, store: JsonStore):
        super().__init__(store.expenses)


# =============================================================================
# SETTINGS
# =============================================================================

class JsonSettingsProvider(SettingsProvider):
    """
    The settings store is a single row in settings.json.

    The numbering seed is changed only inside a collection
    transaction, so reserve and release are atomic.
    """

    def __init__(self, store: JsonStore, defaults: Optional[SettingsRecord] = None):
        self._collection = store.settings
        self._defaults = defaults or SettingsRecord()

    def _current(self, rows: list[Row]) -> tuple[int, SettingsRecord]:
        for idx, row in enumerate(rows):
            if row.get("id") == SETTINGS_ROW_ID:
                return idx, _from_row(SettingsRecord, row, "settings")
        rows.append({"id": SETTINGS_ROW_ID, **_to_row(self._defaults)})
        return len(rows) - 1, self._defaults.model_copy()

    @staticmethod
    def _store(rows: list[Row], idx: int, settings: SettingsRecord) -> None:
        settings.updated_at = datetime.utcnow()
        rows[idx] = {"id": SETTINGS_ROW_ID, **_to_row(settings)}

    async def get_settings(self) -> SettingsRecord:
        row = self._collection.get(SETTINGS_ROW_ID)
        if row is None:
            return self._defaults.model_copy()
        return _from_row(SettingsRecord, row, "settings")

    async def save_settings(self, settings: SettingsRecord) -> SettingsRecord:
        with self._collection.transaction() as rows:
            idx, _ = self._current(rows)
            self._store(rows, idx, settings)
        return settings

    async def reserve_next_number(self) -> int:
        with self._collection.transaction() as rows:
            idx, settings = self._current(rows)
            settings.invoice_number_seed += 1
            self._store(rows, idx, settings)
        logger.info("invoice_number_reserved", number=settings.invoice_number_seed)
        return settings.invoice_number_seed

    async def release_number(self, number: int) -> bool:
        with self._collection.transaction() as rows:
            idx, settings = self._current(rows)
            if settings.invoice_number_seed != number or number <= 0:
                released = False
            else:
                settings.invoice_number_seed -= 1
                self._store(rows, idx, settings)
                released = True
        logger.info(
            "invoice_number_released" if released else "invoice_number_gap_left",
            number=number,
            seed=settings.invoice_number_seed,
        )
        return released


# =============================================================================
# CLIENTS AND PROJECTS
# =============================================================================

class JsonClientProjectProvider(ClientProjectProvider):
    """Clients and projects in two collections."""

    def __init__(self, store: JsonStore):
        self._clients = store.clients
        self._projects = store.projects

    async def get_client(self, client_id: UUID) -> Optional[Client]:
        row = self._clients.get(client_id)
        return _from_row(Client, row, "client") if row else None

    async def list_clients(self) -> list[Client]:
        clients = [_from_row(Client, row, "client") for row in self._clients.list_all()]
        clients.sort(key=lambda c: c.company_name.lower())
        return clients

    async def save_client(self, client: Client) -> Client:
        self._clients.upsert(_to_row(client))
        return client

    async def delete_client(self, client_id: UUID) -> bool:
        return self._clients.delete(client_id)

    async def get_project(self, project_id: UUID) -> Optional[Project]:
        row = self._projects.get(project_id)
        return _from_row(Project, row, "project") if row else None

    async def list_projects(self, client_id: Optional[UUID] = None) -> list[Project]:
        rows = self._projects.find(
            lambda r: client_id is None or r.get("client_id") == str(client_id)
        )
        projects = [_from_row(Project, row, "project") for row in rows]
        # Default project first, then by name
        projects.sort(key=lambda p: (not p.is_default, p.name.lower()))
        return projects

    async def save_project(self, project: Project) -> Project:
        self._projects.upsert(_to_row(project))
        return project

    async def delete_project(self, project_id: UUID) -> bool:
        return self._projects.delete(project_id)


# =============================================================================
# BANK TRANSACTIONS (read-only)
# =============================================================================

class JsonTransactionProvider(TransactionProvider):
    """Reads transactions written by the statement import pipeline."""

    def __init__(self, store: JsonStore):
        self._collection = store.transactions

    async def list_transactions(
        self,
        status: Optional[TransactionStatus] = None,
    ) -> list[BankTransaction]:
        rows = self._collection.find(
            lambda r: status is None or r.get("status") == status.value
        )
        transactions = [_from_row(BankTransaction, row, "transaction") for row in rows]
        transactions.sort(key=lambda t: t.transaction_date)
        return transactions


# =============================================================================
# AUDIT LOG
# =============================================================================

class JsonAuditStorage(AuditStorageInterface):
    """
    Append-only audit log.

    Audit events are never updated or deleted.
    """

    def __init__(self, store: JsonStore):
        self._collection = store.audit

    def _events(self, predicate: Callable[[Row], bool]) -> list[AuditEvent]:
        events = [_from_row(AuditEvent, row, "audit event") for row in self._collection.find(predicate)]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        self._collection.insert(_to_row(event))
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        return self._events(lambda r: r.get("correlation_id") == str(correlation_id))

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: UUID,
    ) -> list[AuditEvent]:
        return self._events(
            lambda r: r.get("entity_type") == entity_type
            and r.get("entity_id") == str(entity_id)
        )

    async def get_recent_events(
        self,
        limit: int = 100,
    ) -> list[AuditEvent]:
        events = self._events(lambda r: True)
        events.reverse()
        return events[:limit]
