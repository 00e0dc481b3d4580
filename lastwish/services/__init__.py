"""Services package."""

from lastwish.services.mail import (
    MailError,
    MailTransport,
    OutgoingEmail,
    SendReceipt,
    SMTPMailTransport,
)
from lastwish.services.sources import (
    CategorySource,
    SourceError,
    SupabaseTableSource,
    create_supabase_sources,
)
from lastwish.services.storage import (
    AuditStorageInterface,
    ConnectionError,
    DeliveryLogInterface,
    InMemoryAuditStorage,
    InMemoryStore,
    InvalidTransitionError,
    NotFoundError,
    SettingsStorageInterface,
    StorageError,
    SupabaseAuditStorage,
    SupabaseClient,
    SupabaseStore,
)

__all__ = [
    # Mail services
    "MailError",
    "MailTransport",
    "OutgoingEmail",
    "SendReceipt",
    "SMTPMailTransport",
    # Category sources
    "CategorySource",
    "SourceError",
    "SupabaseTableSource",
    "create_supabase_sources",
    # Storage services
    "AuditStorageInterface",
    "ConnectionError",
    "DeliveryLogInterface",
    "InMemoryAuditStorage",
    "InMemoryStore",
    "InvalidTransitionError",
    "NotFoundError",
    "SettingsStorageInterface",
    "StorageError",
    "SupabaseAuditStorage",
    "SupabaseClient",
    "SupabaseStore",
]
