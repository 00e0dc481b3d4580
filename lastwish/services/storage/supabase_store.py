"""
Supabase Storage Implementation

DESIGN DECISION: Supabase (PostgREST over Postgres) is the production backend
because the web application already keeps Last Wish settings there, and
because PostgREST gives us a single-statement conditional update:

    UPDATE last_wish_settings SET delivery_triggered = true
    WHERE user_id = ? AND delivery_triggered = false

returning the changed rows. Exactly one concurrent caller gets a row back.

TRADEOFFS:
- supabase-py is synchronous; every call runs in a worker thread
- PostgREST caps responses (~1000 rows), so scans paginate
- Scans use keyset pagination on user_id, because claims flip
  delivery_triggered mid-run and offset pagination would skip rows
"""

import asyncio
from datetime import datetime
from typing import Any, Callable, Optional
from uuid import UUID

import structlog
from supabase import Client, create_client
from tenacity import retry, stop_after_attempt, wait_exponential

from lastwish.config import get_settings
from lastwish.config.settings import SupabaseSettings
from lastwish.models.audit import AuditEvent
from lastwish.models.delivery import DeliveryRecord, DeliveryStatus
from lastwish.models.settings import utc_now
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


logger = structlog.get_logger()

# Profiles are looked up in chunks to keep the `in` filter URL short
PROFILE_BATCH_SIZE = 200


class SupabaseClient:
    """
    Low-level Supabase client wrapper.

    Creates the client lazily and exposes the configured table names.
    """

    def __init__(self, settings: Optional[SupabaseSettings] = None):
        self._client: Optional[Client] = None
        self._settings = settings or get_settings().supabase

    @property
    def settings(self) -> SupabaseSettings:
        return self._settings

    def connect(self) -> Client:
        """Create the Supabase client on first use."""
        if self._client is None:
            try:
                self._client = create_client(self._settings.url, self._settings.service_key)
            except Exception as e:
                raise ConnectionError(f"Failed to connect to Supabase: {e}")
        return self._client

    def table(self, name: str):
        return self.connect().table(name)

    def fetch_all(self, build_query: Callable[[], Any]) -> list[dict]:
        """
        Fetch every row of a query with offset pagination.

        `build_query` must return a new query builder on each call: the
        builders accumulate params, so a reused one would resend every
        earlier page's range.

        Only safe when the filtered set does not change during the read.
        """
        page_size = self._settings.page_size
        rows: list[dict] = []
        offset = 0
        while True:
            response = build_query().range(offset, offset + page_size - 1).execute()
            batch = response.data or []
            rows.extend(batch)
            if len(batch) < page_size:
                break
            offset += page_size
        return rows


class SupabaseStore(SettingsStorageInterface, DeliveryLogInterface):
    """
    Supabase implementation of settings and delivery log storage.

    Settings rows are returned exactly as PostgREST sends them.
    """

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()
        self._tables = self._client.settings

    # =========================================================================
    # SETTINGS
    # =========================================================================

    def _scan_settings(
        self,
        is_enabled: bool,
        is_active: bool,
        delivery_triggered: bool,
    ) -> list[SettingsRow]:
        page_size = self._tables.page_size
        rows: list[SettingsRow] = []
        last_seen: Optional[str] = None
        while True:
            query = (
                self._client.table(self._tables.settings_table)
                .select("*")
                .eq("is_enabled", is_enabled)
                .eq("is_active", is_active)
                .eq("delivery_triggered", delivery_triggered)
                .order("user_id")
                .limit(page_size)
            )
            if last_seen is not None:
                query = query.gt("user_id", last_seen)
            response = query.execute()
            batch = response.data or []
            rows.extend(batch)
            if len(batch) < page_size:
                break
            last_seen = str(batch[-1]["user_id"])
        return rows

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get_settings_where(
        self,
        is_enabled: bool,
        is_active: bool,
        delivery_triggered: bool,
    ) -> list[SettingsRow]:
        """Scan settings rows by flag values."""
        try:
            return await asyncio.to_thread(
                self._scan_settings, is_enabled, is_active, delivery_triggered
            )
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to scan settings: {e}")

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get_settings(self, user_id: str) -> Optional[SettingsRow]:
        """Read one settings row."""
        def _read() -> Optional[SettingsRow]:
            response = (
                self._client.table(self._tables.settings_table)
                .select("*")
                .eq("user_id", user_id)
                .limit(1)
                .execute()
            )
            rows = response.data or []
            return rows[0] if rows else None

        try:
            return await asyncio.to_thread(_read)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read settings for {user_id}: {e}")

    async def conditional_update(
        self,
        user_id: str,
        values: dict[str, Any],
        where_delivery_triggered: bool,
    ) -> bool:
        """Compare-and-set on delivery_triggered. Never retried."""
        def _update() -> bool:
            response = (
                self._client.table(self._tables.settings_table)
                .update(values)
                .eq("user_id", user_id)
                .eq("delivery_triggered", where_delivery_triggered)
                .execute()
            )
            return bool(response.data)

        try:
            return await asyncio.to_thread(_update)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Conditional update failed for {user_id}: {e}")

    async def update_check_in(self, user_id: str, timestamp: datetime) -> SettingsRow:
        """Record a check-in and clear the trigger flag."""
        values = {
            "last_check_in": timestamp.isoformat(),
            "delivery_triggered": False,
            "updated_at": utc_now().isoformat(),
        }

        def _update() -> list[dict]:
            response = (
                self._client.table(self._tables.settings_table)
                .update(values)
                .eq("user_id", user_id)
                .execute()
            )
            return response.data or []

        try:
            rows = await asyncio.to_thread(_update)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to record check-in for {user_id}: {e}")
        if not rows:
            raise NotFoundError(f"No Last Wish settings for user {user_id}")
        return rows[0]

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def get_user_profiles(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        """Batch profile lookup."""
        unique_ids = list(dict.fromkeys(user_ids))
        if not unique_ids:
            return {}

        def _read() -> dict[str, dict[str, Any]]:
            profiles: dict[str, dict[str, Any]] = {}
            for start in range(0, len(unique_ids), PROFILE_BATCH_SIZE):
                chunk = unique_ids[start:start + PROFILE_BATCH_SIZE]
                response = (
                    self._client.table(self._tables.profiles_table)
                    .select("*")
                    .in_("user_id", chunk)
                    .execute()
                )
                for row in response.data or []:
                    profiles[str(row["user_id"])] = row
            return profiles

        try:
            return await asyncio.to_thread(_read)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to read profiles: {e}")

    # =========================================================================
    # DELIVERY LOG
    # =========================================================================

    async def insert_delivery_record(self, record: DeliveryRecord) -> DeliveryRecord:
        """Append a delivery record. Never retried."""
        def _insert() -> list[dict]:
            response = (
                self._client.table(self._tables.deliveries_table)
                .insert(record.to_row())
                .execute()
            )
            return response.data or []

        try:
            rows = await asyncio.to_thread(_insert)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to insert delivery record: {e}")
        if not rows:
            raise StorageError("Delivery record insert returned no row")
        return DeliveryRecord.model_validate(rows[0])

    async def update_delivery_status(
        self,
        record_id: UUID,
        status: DeliveryStatus,
        sent_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        """Move a record out of pending. Never retried."""
        if status == DeliveryStatus.PENDING:
            raise InvalidTransitionError("A delivery record cannot move back to pending")

        values = {
            "delivery_status": status.value,
            "sent_at": sent_at.isoformat() if sent_at else None,
            "error_message": error_message,
        }

        def _update() -> tuple[bool, bool]:
            response = (
                self._client.table(self._tables.deliveries_table)
                .update(values)
                .eq("id", str(record_id))
                .eq("delivery_status", DeliveryStatus.PENDING.value)
                .execute()
            )
            if response.data:
                return True, True
            existing = (
                self._client.table(self._tables.deliveries_table)
                .select("id")
                .eq("id", str(record_id))
                .execute()
            )
            return False, bool(existing.data)

        try:
            updated, exists = await asyncio.to_thread(_update)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to update delivery record {record_id}: {e}")
        if updated:
            return True
        if exists:
            raise InvalidTransitionError(f"Delivery record {record_id} is no longer pending")
        raise NotFoundError(f"Delivery record not found: {record_id}")

    async def list_delivery_records(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        """List delivery records, newest first."""
        def _read() -> list[dict]:
            query = (
                self._client.table(self._tables.deliveries_table)
                .select("*")
                .eq("user_id", user_id)
            )
            if since is not None:
                query = query.gte("created_at", since.isoformat())
            if until is not None:
                query = query.lte("created_at", until.isoformat())
            response = query.order("created_at", desc=True).limit(limit).execute()
            return response.data or []

        try:
            rows = await asyncio.to_thread(_read)
        except Exception as e:
            raise StorageError(f"Failed to list delivery records: {e}")
        return [DeliveryRecord.model_validate(row) for row in rows]


class SupabaseAuditStorage(AuditStorageInterface):
    """
    Supabase implementation of audit log storage.

    Audit events are append-only.
    """

    def __init__(self, client: Optional[SupabaseClient] = None):
        self._client = client or SupabaseClient()
        self._table = self._client.settings.audit_table

    def _read_events(self, query) -> list[AuditEvent]:
        events = []
        for row in query.execute().data or []:
            try:
                events.append(AuditEvent.from_row(row))
            except (KeyError, ValueError) as e:
                logger.warning("audit_row_unreadable", event_id=row.get("event_id"), error=str(e))
        return events

    async def append_event(self, event: AuditEvent) -> bool:
        """Append an audit event. Not retried; a failed write returns False."""
        try:
            await asyncio.to_thread(
                lambda: self._client.table(self._table).insert(event.to_row()).execute()
            )
            return True
        except Exception as e:
            # Audit logging should not break the main flow
            logger.warning(
                "audit_write_failed",
                event_id=str(event.event_id),
                event_type=event.event_type.value,
                error=str(e),
            )
            return False

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        """Get events by correlation ID."""
        query = (
            self._client.table(self._table)
            .select("*")
            .eq("correlation_id", str(correlation_id))
            .order("timestamp")
        )
        try:
            return await asyncio.to_thread(self._read_events, query)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        """Get events by entity."""
        query = (
            self._client.table(self._table)
            .select("*")
            .eq("entity_type", entity_type)
            .eq("entity_id", entity_id)
            .order("timestamp")
        )
        try:
            return await asyncio.to_thread(self._read_events, query)
        except Exception as e:
            raise StorageError(f"Failed to get audit events: {e}")
