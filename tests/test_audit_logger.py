"""Tests for the audit logger."""

import pytest

from lastwish.audit import AuditLogger, create_correlation_id
from lastwish.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)
from lastwish.services.storage import AuditStorageInterface


class BrokenAuditStorage(AuditStorageInterface):
    """Audit storage whose writes always fail."""

    async def append_event(self, event: AuditEvent) -> bool:
        raise RuntimeError("audit table unavailable")

    async def get_events_by_correlation_id(self, correlation_id):
        return []

    async def get_events_by_entity(self, entity_type, entity_id):
        return []


class TestAuditLogger:
    """Local logging plus persistence."""

    @pytest.mark.asyncio
    async def test_events_are_persisted(self, audit_storage):
        """Test builder helpers persist the event."""
        logger = AuditLogger(audit_storage)
        cid = create_correlation_id()

        await logger.log_claim_won("u1", 2, cid)
        await logger.log_delivery_failed("u1", "a@example.com", "refused", cid)

        events = await audit_storage.get_events_by_correlation_id(cid)
        assert [e.event_type for e in events] == [
            AuditEventType.CLAIM_WON,
            AuditEventType.DELIVERY_FAILED,
        ]
        assert events[1].severity == AuditSeverity.ERROR

    @pytest.mark.asyncio
    async def test_storage_failure_does_not_raise(self):
        """Test a broken audit table never breaks the caller."""
        logger = AuditLogger(BrokenAuditStorage())
        event = AuditEventBuilder.scan_failed("boom", create_correlation_id())
        assert await logger.log(event) is False
        await logger.log_scan_failed("boom", create_correlation_id())

    @pytest.mark.asyncio
    async def test_without_storage(self):
        """Test logging locally only."""
        event = AuditEventBuilder.system_error("ValueError", "bad", user_id="u1")
        assert await AuditLogger().log(event) is True

    @pytest.mark.asyncio
    async def test_events_by_entity(self, audit_storage):
        """Test a user's events can be listed."""
        logger = AuditLogger(audit_storage)
        cid = create_correlation_id()
        await logger.log_claim_lost("u1", cid)
        await logger.log_claim_lost("u2", cid)

        events = await audit_storage.get_events_by_entity("user", "u1")

        assert len(events) == 1
        assert events[0].entity_id == "u1"
