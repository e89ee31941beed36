"""
Services package.

The client, project, timesheet and expense services live in their own
modules (services.clients, services.sources) and are imported from
there; they depend on the invoice engine, which depends on storage.
"""

from contractor_billing.services.lock_check import RecordLockedError, assert_not_locked
from contractor_billing.services.storage import (
    AuditStorageInterface,
    ClientProjectProvider,
    DuplicateError,
    InvoiceStorageInterface,
    LockConflictError,
    RecordNotFoundError,
    SettingsProvider,
    SourceRecordProvider,
    StorageError,
    TransactionProvider,
)

__all__ = [
    # Lock check
    "RecordLockedError",
    "assert_not_locked",
    # Storage services
    "AuditStorageInterface",
    "ClientProjectProvider",
    "DuplicateError",
    "InvoiceStorageInterface",
    "LockConflictError",
    "RecordNotFoundError",
    "SettingsProvider",
    "SourceRecordProvider",
    "StorageError",
    "TransactionProvider",
]
