"""
In-Memory Storage Implementation

Used by the test suite and for local dry runs. Behaves like the Supabase
store at the contract level: rows are handed out as copies in store column
naming, and `conditional_update` is an atomic compare-and-set guarded by a
lock, so concurrent claims from threads or tasks have exactly one winner.

Failures can be injected per operation name via `fail_on`.
"""

import copy
import threading
from datetime import datetime
from typing import Any, Iterable, Optional, Union
from uuid import UUID

from lastwish.models.audit import AuditEvent
from lastwish.models.delivery import DeliveryRecord, DeliveryStatus
from lastwish.models.settings import CheckInSettings, utc_now
from lastwish.services.storage.interface import (
    AuditStorageInterface,
    DeliveryLogInterface,
    InvalidTransitionError,
    NotFoundError,
    SettingsRow,
    SettingsStorageInterface,
    StorageError,
)


class InMemoryStore(SettingsStorageInterface, DeliveryLogInterface):
    """Thread-safe in-memory settings, profiles and delivery log."""

    def __init__(self, fail_on: Optional[Iterable[str]] = None):
        self._lock = threading.Lock()
        self._settings: dict[str, SettingsRow] = {}
        self._profiles: dict[str, dict[str, Any]] = {}
        self._deliveries: dict[UUID, DeliveryRecord] = {}
        self.fail_on: set[str] = set(fail_on or ())
        self.conditional_update_calls = 0

    def _check_failure(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageError(f"Injected failure: {operation}")

    # =========================================================================
    # SEEDING (tests)
    # =========================================================================

    def put_settings(self, settings: Union[CheckInSettings, SettingsRow]) -> None:
        """Insert or replace a settings row. Raw rows are stored unparsed."""
        row = settings.to_row() if isinstance(settings, CheckInSettings) else dict(settings)
        with self._lock:
            self._settings[str(row.get("user_id"))] = copy.deepcopy(row)

    def put_profile(self, user_id: str, email: Optional[str], full_name: Optional[str] = None) -> None:
        with self._lock:
            self._profiles[user_id] = {"user_id": user_id, "email": email, "full_name": full_name}

    def raw_settings(self, user_id: str) -> Optional[SettingsRow]:
        with self._lock:
            row = self._settings.get(user_id)
            return copy.deepcopy(row) if row is not None else None

    def all_delivery_records(self) -> list[DeliveryRecord]:
        with self._lock:
            return [record.model_copy() for record in self._deliveries.values()]

    # =========================================================================
    # SETTINGS
    # =========================================================================

    async def get_settings_where(
        self,
        is_enabled: bool,
        is_active: bool,
        delivery_triggered: bool,
    ) -> list[SettingsRow]:
        self._check_failure("get_settings_where")
        with self._lock:
            return [
                copy.deepcopy(row)
                for row in self._settings.values()
                if row.get("is_enabled") is is_enabled
                and row.get("is_active") is is_active
                and bool(row.get("delivery_triggered")) is delivery_triggered
            ]

    async def get_settings(self, user_id: str) -> Optional[SettingsRow]:
        self._check_failure("get_settings")
        return self.raw_settings(user_id)

    async def conditional_update(
        self,
        user_id: str,
        values: dict[str, Any],
        where_delivery_triggered: bool,
    ) -> bool:
        self._check_failure("conditional_update")
        with self._lock:
            self.conditional_update_calls += 1
            row = self._settings.get(user_id)
            if row is None or bool(row.get("delivery_triggered")) is not where_delivery_triggered:
                return False
            row.update(copy.deepcopy(values))
            return True

    async def update_check_in(self, user_id: str, timestamp: datetime) -> SettingsRow:
        self._check_failure("update_check_in")
        with self._lock:
            row = self._settings.get(user_id)
            if row is None:
                raise NotFoundError(f"No Last Wish settings for user {user_id}")
            row["last_check_in"] = timestamp.isoformat()
            row["delivery_triggered"] = False
            row["updated_at"] = utc_now().isoformat()
            return copy.deepcopy(row)

    async def get_user_profiles(self, user_ids: list[str]) -> dict[str, dict[str, Any]]:
        self._check_failure("get_user_profiles")
        with self._lock:
            return {
                user_id: dict(self._profiles[user_id])
                for user_id in user_ids
                if user_id in self._profiles
            }

    # =========================================================================
    # DELIVERY LOG
    # =========================================================================

    async def insert_delivery_record(self, record: DeliveryRecord) -> DeliveryRecord:
        self._check_failure("insert_delivery_record")
        with self._lock:
            if record.id in self._deliveries:
                raise StorageError(f"Duplicate delivery record id: {record.id}")
            self._deliveries[record.id] = record.model_copy()
            return record.model_copy()

    async def update_delivery_status(
        self,
        record_id: UUID,
        status: DeliveryStatus,
        sent_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
    ) -> bool:
        self._check_failure("update_delivery_status")
        if status == DeliveryStatus.PENDING:
            raise InvalidTransitionError("A delivery record cannot move back to pending")
        with self._lock:
            record = self._deliveries.get(record_id)
            if record is None:
                raise NotFoundError(f"Delivery record not found: {record_id}")
            if record.delivery_status != DeliveryStatus.PENDING:
                raise InvalidTransitionError(f"Delivery record {record_id} is no longer pending")
            self._deliveries[record_id] = record.model_copy(update={
                "delivery_status": status,
                "sent_at": sent_at,
                "error_message": error_message,
            })
            return True

    async def list_delivery_records(
        self,
        user_id: str,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[DeliveryRecord]:
        self._check_failure("list_delivery_records")
        with self._lock:
            records = [
                record.model_copy()
                for record in self._deliveries.values()
                if record.user_id == user_id
                and (since is None or record.created_at >= since)
                and (until is None or record.created_at <= until)
            ]
        records.sort(key=lambda r: r.created_at, reverse=True)
        return records[:limit]


class InMemoryAuditStorage(AuditStorageInterface):
    """In-memory audit log. Append-only."""

    def __init__(self):
        self._lock = threading.Lock()
        self._events: list[AuditEvent] = []

    @property
    def events(self) -> list[AuditEvent]:
        with self._lock:
            return list(self._events)

    async def append_event(self, event: AuditEvent) -> bool:
        with self._lock:
            self._events.append(event)
        return True

    async def get_events_by_correlation_id(
        self,
        correlation_id: UUID,
    ) -> list[AuditEvent]:
        events = [e for e in self.events if e.correlation_id == correlation_id]
        events.sort(key=lambda e: e.timestamp)
        return events

    async def get_events_by_entity(
        self,
        entity_type: str,
        entity_id: str,
    ) -> list[AuditEvent]:
        events = [
            e for e in self.events
            if e.entity_type == entity_type and e.entity_id == entity_id
        ]
        events.sort(key=lambda e: e.timestamp)
        return events
