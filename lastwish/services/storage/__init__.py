"""
Storage Services Package

Provides abstract interfaces and concrete implementations for data storage.
Supabase is the production backend; the in-memory store backs the tests.
"""

from lastwish.services.storage.interface import (
    AuditStorageInterface,
    ConnectionError,
    DeliveryLogInterface,
    InvalidTransitionError,
    NotFoundError,
    SettingsRow,
    SettingsStorageInterface,
    StorageError,
)
from lastwish.services.storage.memory import (
    InMemoryAuditStorage,
    InMemoryStore,
)
from lastwish.services.storage.supabase_store import (
    SupabaseAuditStorage,
    SupabaseClient,
    SupabaseStore,
)

__all__ = [
    # Interfaces
    "AuditStorageInterface",
    "DeliveryLogInterface",
    "SettingsRow",
    "SettingsStorageInterface",
    # Exceptions
    "ConnectionError",
    "InvalidTransitionError",
    "NotFoundError",
    "StorageError",
    # In-memory implementation
    "InMemoryAuditStorage",
    "InMemoryStore",
    # Supabase implementation
    "SupabaseAuditStorage",
    "SupabaseClient",
    "SupabaseStore",
]
