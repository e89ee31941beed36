"""
Storage Services Package

Storage interfaces and their JSON file implementation.
"""

from contractor_billing.services.storage.interface import (
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
from contractor_billing.services.storage.json_store import (
    JsonAuditStorage,
    JsonClientProjectProvider,
    JsonCollection,
    JsonExpenseProvider,
    JsonInvoiceStorage,
    JsonSettingsProvider,
    JsonStore,
    JsonTimesheetProvider,
    JsonTransactionProvider,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ClientProjectProvider",
    "InvoiceStorageInterface",
    "SettingsProvider",
    "SourceRecordProvider",
    "TransactionProvider",
    # Exceptions
    "DuplicateError",
    "LockConflictError",
    "RecordNotFoundError",
    "StorageError",
    # JSON file implementation
    "JsonAuditStorage",
    "JsonClientProjectProvider",
    "JsonCollection",
    "JsonExpenseProvider",
    "JsonInvoiceStorage",
    "JsonSettingsProvider",
    "JsonStore",
    "JsonTimesheetProvider",
    "JsonTransactionProvider",
]
