"""
Abstract Storage Interface

DESIGN DECISION: We define an abstract interface for storage operations.
This allows us to:
1. Run against Supabase in production
2. Use in-memory storage for testing
3. Keep business logic decoupled from storage implementation

The interface is intentionally narrow - just the operations the delivery
engine needs.

CRITICAL: `conditional_update` is the only way `delivery_triggered` changes
outside of a check-in. It must be a single atomic compare-and-set on the
backend; an implementation that reads, compares in Python, then writes is
wrong.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from lastwish.models.audit import AuditEvent
from lastwish.models.delivery import DeliveryRecord, DeliveryStatus


# Settings rows are handed out raw; callers parse them with
# CheckInSettings.from_row so malformed rows surface per user.
SettingsRow = dict[str, Any]


class SettingsStorageInterface(ABC):
    """
    Abstract interface for Last Wish settings.

    Any storage implementation (Supabase, in-memory, etc.)
    must implement these methods.
    """

    @abstractmethod
    async def get_settings_where(
        self,
        is_enabled: bool,
        is_active: bool,
        delivery_triggered: bool,
    ) -> list[SettingsRow]:
        """
        List every settings row matching the three flags.

        Args:
            is_enabled: Required value of is_enabled
            is_active: Required value of is_active
            delivery_triggered: Required value of delivery_triggered

        Returns:
            All matching rows (the full result, not one page)

        Raises:
            StorageError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def get_settings(self, user_id: str) -> Optional[SettingsRow]:
        """
        Read the settings row of one user.

        Args:
            user_id: The owner of the settings

        Returns:
            The row if found, None otherwise

        Raises:
            StorageError: If the store cannot be read
        """
        pass

    @abstractmethod
    async def conditional_update(
        self,
        user_id: str,
        values: dict[str, Any],
        where_delivery_triggered: bool,
    ) -> bool:
        """
        Atomically apply `values` to one row, only if its
        delivery_triggered currently equals `where_delivery_triggered`.

        Args:
            user_id: Row to update
            values: Column values to set
            where_delivery_triggered: Expected current flag value

        Returns:
            True if exactly this call changed the row

        Raises:
            StorageError: If the store cannot be reached
        """
        pass

    @abstractmethod
    async def update_check_in(self, user_id: str, timestamp: datetime) -> SettingsRow:
        """
        Record a check-in: set last_check_in, clear delivery_triggered.

        Args:
            user_id: User checking in
            timestamp: Check-in time (UTC)

        Returns:
            The updated row

        Raises:
            NotFoundError: If the user has no settings
            StorageError: If the update fails
        """
        pass

    @abstractmethod
    async def get_user_profiles(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        """
        Look up account profiles for several users in one query.

        Args:
            user_ids: Users to look up

        Returns:
            Mapping of user_id to profile row; unknown users are absent

        Raises:
            StorageError: If the store cannot be read
        """
        pass


class DeliveryLogInterface(ABC):
    """
    Abstract interface for the delivery log.

    Records are append-only. The only permitted change is moving a
    record out of `pending`.
    """

    @abstractmethod
    async def insert_delivery_record(self, record: DeliveryRecord) -> DeliveryRecord:
        """
        Append a delivery record.

        Args:
            record: The record to insert (normally pending)

        Returns:
            The stored record

        Raises:
            StorageError: If the insert fails
        """
        pass

    @abstractmethod
    async def update_delivery_status(
        self,
        record_id: UUID,
        status: DeliveryStatus,
        sent_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """
        Move a pending record to its final status.

        Args:
            record_id: Record to update
            status: SENT or FAILED
            sent_at: Send time for SENT records
            error_message: Failure detail for FAILED records

        Returns:
            True if updated

        Raises:
            InvalidTransitionError: If the record is not pending or status is PENDING
            NotFoundError: If the record does not exist
            StorageError: If the update fails
        """
        pass

    @abstractmethod
    async def list_delivery_records(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """
        List delivery records of one user.

        Args:
            user_id: Owner of the records
            since: Only records created at or after this time
            until: Only records created at or before this time
            limit: Maximum number of results

        Returns:
            Records, newest first
        """
        pass


class AuditStorageInterface(ABC):
    """
    Abstract interface for audit log storage.

    Audit logs are append-only - we never delete or modify them.
    """

    @abstractmethod
    async def append_event(self, event: AuditEvent) -> bool:
        """
        Append an audit event to the log.

        Args:
            event: The audit event to log

        Returns:
            True if logged successfully
        """
        pass

    @abstractmethod
    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """
        Get all events for a correlation ID (e.g., one scheduled run).

        Args:
            correlation_id: The correlation identifier

        Returns:
            List of related events in chronological order
        """
        pass

    @abstractmethod
    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """
        Get all events for a specific entity.

        Args:
            entity_type: Type of entity (e.g., 'user', 'delivery')
            entity_id: The entity's ID

        Returns:
            List of events in chronological order
        """
        pass


class StorageError(Exception):
    """Base exception for storage operations."""
    pass


class NotFoundError(StorageError):
    """Entity not found in storage."""
    pass


class ConnectionError(StorageError):
    """Could not connect to storage backend."""
    pass


class InvalidTransitionError(StorageError):
    """A delivery record was moved out of a non-pending state."""
    pass
