"""Services package."""

from kakebo.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    GoogleSheetsClient,
    GoogleSheetsStore,
    InMemoryStore,
    LearningStorageInterface,
    NotFoundError,
    StorageError,
)

__all__ = [
    "AuditStorageInterface",
    "ConnectionError",
    "DuplicateError",
    "ExpenseStorageInterface",
    "GoogleSheetsClient",
    "GoogleSheetsStore",
    "InMemoryStore",
    "LearningStorageInterface",
    "NotFoundError",
    "StorageError",
]
