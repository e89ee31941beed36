"""
Tests for the JSON file storage.
"""

import json

import pytest
from datetime import date
from decimal import Decimal
from uuid import uuid4

from contractor_billing.models import AuditEventBuilder, AuditEventType, SettingsRecord
from contractor_billing.services.storage import (
    DuplicateError,
    JsonCollection,
    JsonSettingsProvider,
    LockConflictError,
    StorageError,
)


class TestJsonCollection:
    """Tests for a single JSON collection file."""

    @pytest.fixture
    def collection(self, tmp_path):
        return JsonCollection(tmp_path / "nested" / "things.json", "thing")

    def test_new_collection_creates_empty_file(self, collection):
        """Test the file and its directory are created on first use."""
        assert collection.filepath.exists()
        assert json.loads(collection.filepath.read_text()) == []

    def test_insert_and_get(self, collection):
        """Test rows are found by id in string form."""
        row_id = uuid4()
        collection.insert({"id": str(row_id), "name": "a"})
        assert collection.get(row_id)["name"] == "a"
        assert collection.get(uuid4()) is None

    def test_insert_duplicate_rejected(self, collection):
        """Test insert refuses an existing id."""
        collection.insert({"id": "1"})
        with pytest.raises(DuplicateError):
            collection.insert({"id": "1"})

    def test_upsert_replaces(self, collection):
        """Test upsert overwrites a row with the same id."""
        collection.upsert({"id": "1", "v": 1})
        collection.upsert({"id": "1", "v": 2})
        assert collection.list_all() == [{"id": "1", "v": 2}]

    def test_delete_where_counts(self, collection):
        """Test delete_where reports how many rows went."""
        for i in range(4):
            collection.insert({"id": str(i), "even": i % 2 == 0})
        assert collection.delete_where(lambda r: r["even"]) == 2
        assert [r["id"] for r in collection.list_all()] == ["1", "3"]
        assert not collection.delete("0")

    def test_transaction_rolls_back_on_error(self, collection):
        """Test nothing is written when the with-block raises."""
        collection.insert({"id": "1"})
        with pytest.raises(RuntimeError):
            with collection.transaction() as rows:
                rows.append({"id": "2"})
                raise RuntimeError("abort")
        assert collection.list_all() == [{"id": "1"}]

    def test_corrupt_file_raises_storage_error(self, collection):
        """Test unreadable JSON is reported, not treated as empty."""
        collection.filepath.write_text("{not json", encoding="utf-8")
        with pytest.raises(StorageError, match="corrupt"):
            collection.list_all()

    def test_non_list_file_raises_storage_error(self, collection):
        """Test a file holding an object is rejected."""
        collection.filepath.write_text("{}", encoding="utf-8")
        with pytest.raises(StorageError, match="does not hold a list"):
            collection.list_all()

    def test_no_temp_files_left_behind(self, collection):
        """Test atomic writes clean up after themselves."""
        collection.insert({"id": "1"})
        leftovers = [p for p in collection.filepath.parent.iterdir() if p.suffix == ".tmp"]
        assert leftovers == []


class TestSourceLocks:
    """Tests for locking timesheets and expenses to invoices."""

    async def test_lock_and_unlock(self, timesheet_provider, seed):
        """Test set_invoice_lock writes and clears the owner."""
        invoice_id = uuid4()
        assert await timesheet_provider.set_invoice_lock([seed.timesheet.id], invoice_id) == 1
        assert (await timesheet_provider.find_by_id(seed.timesheet.id)).invoice_id == invoice_id

        assert await timesheet_provider.set_invoice_lock([seed.timesheet.id], None) == 1
        assert (await timesheet_provider.find_by_id(seed.timesheet.id)).invoice_id is None

    async def test_relock_by_same_invoice_is_allowed(self, timesheet_provider, seed):
        """Test locking again to the same owner is not a conflict."""
        invoice_id = uuid4()
        await timesheet_provider.set_invoice_lock([seed.timesheet.id], invoice_id)
        assert await timesheet_provider.set_invoice_lock([seed.timesheet.id], invoice_id) == 1

    async def test_conflict_is_all_or_nothing(self, timesheet_service, timesheet_provider, seed):
        """Test one foreign lock leaves every record in the batch untouched."""
        second = await timesheet_service.create_timesheet(seed.project.id, date(2025, 3, 11), Decimal("4"))
        owner, intruder = uuid4(), uuid4()
        await timesheet_provider.set_invoice_lock([seed.timesheet.id], owner)

        with pytest.raises(LockConflictError) as exc_info:
            await timesheet_provider.set_invoice_lock([second.id, seed.timesheet.id], intruder)

        assert exc_info.value.conflicts == {seed.timesheet.id: owner}
        assert (await timesheet_provider.find_by_id(second.id)).invoice_id is None
        assert (await timesheet_provider.find_by_id(seed.timesheet.id)).invoice_id == owner

    async def test_empty_batch_is_noop(self, expense_provider):
        """Test no ids means nothing to lock."""
        assert await expense_provider.set_invoice_lock([], uuid4()) == 0

    async def test_list_records_by_lock_state(self, timesheet_provider, expense_provider, seed):
        """Test locked=False lists only uninvoiced records."""
        await expense_provider.set_invoice_lock([seed.expense.id], uuid4())
        assert [t.id for t in await timesheet_provider.list_records(locked=False)] == [seed.timesheet.id]
        assert await expense_provider.list_records(locked=False) == []
        assert len(await expense_provider.list_records(project_id=seed.project.id)) == 1


class TestSettingsStore:
    """Tests for the invoice number seed."""

    async def test_defaults_before_first_write(self, settings_provider, store):
        """Test reading settings does not create the row."""
        settings = await settings_provider.get_settings()
        assert settings.invoice_number_seed == 0
        assert store.settings.list_all() == []

    async def test_configured_defaults(self, store):
        """Test the payment term default comes from the provider's defaults."""
        provider = JsonSettingsProvider(store, defaults=SettingsRecord(default_payment_term_days=30))
        assert await provider.get_default_payment_term_days() == 30

    async def test_reserve_increments(self, settings_provider):
        """Test each reserve returns the next number."""
        assert await settings_provider.reserve_next_number() == 1
        assert await settings_provider.reserve_next_number() == 2
        assert await settings_provider.get_invoice_seed() == 2

    async def test_release_is_compare_and_decrement(self, settings_provider):
        """Test only the latest number can be released."""
        await settings_provider.reserve_next_number()
        await settings_provider.reserve_next_number()

        assert not await settings_provider.release_number(1)
        assert await settings_provider.get_invoice_seed() == 2

        assert await settings_provider.release_number(2)
        assert await settings_provider.get_invoice_seed() == 1

    async def test_release_never_goes_below_zero(self, settings_provider):
        """Test releasing with nothing allocated is refused."""
        assert not await settings_provider.release_number(0)
        assert await settings_provider.get_invoice_seed() == 0


class TestAuditStorage:
    """Tests for the append-only audit log."""

    async def test_append_and_query_by_entity(self, audit_storage):
        """Test events are found by entity."""
        invoice_id = uuid4()
        await audit_storage.append_event(AuditEventBuilder.invoice_posted(
            invoice_id=invoice_id,
            invoice_number="INV00001",
        ))
        await audit_storage.append_event(AuditEventBuilder.invoice_posted(
            invoice_id=uuid4(),
            invoice_number="INV00002",
        ))

        events = await audit_storage.get_events_by_entity("invoice", invoice_id)
        assert [e.event_type for e in events] == [AuditEventType.INVOICE_POSTED]
        assert events[0].details["invoice_number"] == "INV00001"

    async def test_query_by_correlation_id(self, audit_logger, audit_storage):
        """Test events logged under one correlation id are grouped."""
        correlation_id = uuid4()
        await audit_logger.log_invoice_posted(
            invoice_id=uuid4(),
            invoice_number="INV00001",
            correlation_id=correlation_id,
        )
        await audit_logger.log_invoice_posted(invoice_id=uuid4(), invoice_number="INV00002")

        events = await audit_storage.get_events_by_correlation_id(correlation_id)
        assert len(events) == 1

    async def test_recent_events_newest_first(self, audit_logger, audit_storage):
        """Test recent events are returned newest first."""
        for number in ("INV00001", "INV00002", "INV00003"):
            await audit_logger.log_invoice_posted(invoice_id=uuid4(), invoice_number=number)

        recent = await audit_storage.get_recent_events(limit=2)
        assert [e.details["invoice_number"] for e in recent] == ["INV00003", "INV00002"]
