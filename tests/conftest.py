"""
Shared fixtures.

No network access: the store is in-memory, the mail transport records
sends, and category sources return canned records.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import pytest

from lastwish.audit import AuditLogger
from lastwish.config.settings import DeliverySettings
from lastwish.models.settings import CheckInSettings, DataCategory, Recipient
from lastwish.orchestrator import LastWishService
from lastwish.services.mail import (
    MailTransport,
    OutgoingEmail,
    PermanentMailError,
    SendReceipt,
)
from lastwish.services.sources import CategorySource, SourceError
from lastwish.services.storage import InMemoryAuditStorage, InMemoryStore


T0 = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class RecordingTransport(MailTransport):
    """Records every email; fails or stalls for chosen addresses."""

    def __init__(
        self,
        fail_for: Optional[set[str]] = None,
        hang_for: Optional[set[str]] = None,
    ):
        self.sent: list[OutgoingEmail] = []
        self.attempted: list[str] = []
        self.fail_for = fail_for or set()
        self.hang_for = hang_for or set()
        self.is_configured = True

    async def send(self, email: OutgoingEmail) -> SendReceipt:
        self.attempted.append(email.to_address)
        if email.to_address in self.hang_for:
            await asyncio.sleep(3600)
        if email.to_address in self.fail_for:
            raise PermanentMailError(f"Mailbox unavailable: {email.to_address}")
        self.sent.append(email)
        return SendReceipt(message_id=f"<{len(self.sent)}@test>")


class StaticSource(CategorySource):
    """Returns fixed records, or raises when `error` is set."""

    def __init__(self, records: Optional[list[dict[str, Any]]] = None, error: Optional[str] = None):
        self.records = records or []
        self.error = error
        self.calls = 0

    async def fetch(self, user_id: str) -> list[dict[str, Any]]:
        self.calls += 1
        if self.error:
            raise SourceError(self.error)
        return list(self.records)


def make_settings(
    user_id: str = "user-1",
    recipients: Optional[list[str]] = None,
    last_check_in: Optional[datetime] = T0,
    frequency: float = 5.0,
    **overrides: Any,
) -> CheckInSettings:
    """Enabled, active, untriggered settings with the given recipients."""
    if recipients is None:
        recipients = ["alice@example.com"]
    values: dict[str, Any] = {
        "user_id": user_id,
        "is_enabled": True,
        "is_active": True,
        "check_in_frequency": frequency,
        "last_check_in": last_check_in,
        "delivery_triggered": False,
        "recipients": [
            Recipient(id=str(i), email=email, name=f"Recipient {i}", relationship="friend")
            for i, email in enumerate(recipients, start=1)
        ],
        "message": "Take care of each other.",
    }
    values.update(overrides)
    return CheckInSettings(**values)


def default_sources() -> dict[DataCategory, CategorySource]:
    return {
        DataCategory.ACCOUNTS: StaticSource([
            {"id": "a1", "title": "Checking", "balance": 1200.5, "currency": "USD"},
            {"id": "a2", "title": "Savings", "balance": "300", "currency": "EUR"},
        ]),
        DataCategory.TRANSACTIONS: StaticSource([
            {"id": "t1", "type": "income", "amount": 1000},
            {"id": "t2", "type": "expense", "amount": 250.25},
        ]),
        DataCategory.PURCHASES: StaticSource([]),
        DataCategory.LEND_BORROW: StaticSource([
            {"id": "l1", "type": "lend", "amount": 50, "status": "active"},
            {"id": "l2", "type": "borrow", "amount": 20, "status": "settled"},
        ]),
        DataCategory.SAVINGS: StaticSource([{"id": "s1", "amount": 75}]),
    }


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def audit_storage() -> InMemoryAuditStorage:
    return InMemoryAuditStorage()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def sources() -> dict[DataCategory, CategorySource]:
    return default_sources()


@pytest.fixture
def delivery_settings() -> DeliverySettings:
    return DeliverySettings(
        send_timeout_seconds=0.2,
        max_concurrent_sends=5,
        max_concurrent_users=4,
        recent_deliveries_limit=10,
    )


@pytest.fixture
def service(store, transport, sources, audit_storage, delivery_settings) -> LastWishService:
    return LastWishService(
        store=store,
        transport=transport,
        sources=sources,
        audit_logger=AuditLogger(audit_storage),
        delivery_settings=delivery_settings,
    )


def seed_user(store: InMemoryStore, settings: CheckInSettings, email: Optional[str] = None) -> None:
    store.put_settings(settings)
    store.put_profile(settings.user_id, email or f"{settings.user_id}@owner.example.com", "Owner Name")


def overdue_now(days: float = 5.0) -> datetime:
    """A reference time one second past a deadline of T0 + `days`."""
    return T0 + timedelta(days=days, seconds=1)
