"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Google Sheets is the persistent backend; the in-memory store backs tests
and local runs. Both are swappable behind the same interfaces.
"""

from kakebo.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DuplicateError,
    ExpenseStorageInterface,
    LearningStorageInterface,
    NotFoundError,
    StorageError,
)
from kakebo.services.storage.in_memory import InMemoryStore
from kakebo.services.storage.google_sheets import (
    GoogleSheetsClient,
    GoogleSheetsStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "ExpenseStorageInterface",
    "LearningStorageInterface",
    # Exceptions
    "ConnectionError",
    "DuplicateError",
    "NotFoundError",
    "StorageError",
    # Implementations
    "GoogleSheetsClient",
    "GoogleSheetsStore",
    "InMemoryStore",
]
