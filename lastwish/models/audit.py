"""
Audit Models for Last Wish

Every step that leads to (or stops short of) releasing a user's data to
third parties is recorded:
1. Which users a scan found overdue
2. Who won or lost each claim
3. What went into each export
4. Every send, successful or not

Audit logs are append-only. We never delete or modify them.
"""

import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from lastwish.models.settings import utc_now


class AuditEventType(str, Enum):
    """
    Types of events we audit.

    Every step of the delivery pipeline has its own event type.
    """
    # Scanning
    SCAN_COMPLETED = "scan_completed"
    SCAN_FAILED = "scan_failed"
    SETTINGS_MALFORMED = "settings_malformed"

    # Trigger guard
    CLAIM_WON = "claim_won"
    CLAIM_LOST = "claim_lost"
    CLAIM_RELEASED = "claim_released"
    CONFIGURATION_REJECTED = "configuration_rejected"

    # Export
    EXPORT_BUILT = "export_built"
    CATEGORY_OMITTED = "category_omitted"

    # Delivery
    DELIVERY_SENT = "delivery_sent"
    DELIVERY_FAILED = "delivery_failed"
    DISPATCH_COMPLETED = "dispatch_completed"
    TEST_DELIVERY_SENT = "test_delivery_sent"

    # User actions
    CHECK_IN_RECORDED = "check_in_recorded"

    # Run lifecycle
    RUN_COMPLETED = "run_completed"

    # System events
    SYSTEM_ERROR = "system_error"


class AuditSeverity(str, Enum):
    """Severity level for audit events."""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class AuditEvent(BaseModel):
    """
    A single audit event.

    This is the core unit of our audit trail.
    Every significant action creates one of these.
    """

    # Identity
    event_id: UUID = Field(
        default_factory=uuid4,
        description="Unique event identifier"
    )
    timestamp: datetime = Field(
        default_factory=utc_now,
        description="When the event occurred (UTC)"
    )

    # Event classification
    event_type: AuditEventType = Field(
        ...,
        description="Type of event"
    )
    severity: AuditSeverity = Field(
        default=AuditSeverity.INFO,
        description="Event severity"
    )

    # Context - what entity is this about?
    entity_type: Optional[str] = Field(
        default=None,
        description="Type of entity (e.g., 'user', 'delivery', 'run')"
    )
    entity_id: Optional[str] = Field(
        default=None,
        description="ID of the entity this event relates to"
    )

    # Correlation - for tracking related events
    correlation_id: Optional[UUID] = Field(
        default=None,
        description="ID to correlate related events (e.g., all events in one run)"
    )

    # Event details
    description: str = Field(
        ...,
        max_length=500,
        description="Human-readable description of what happened"
    )

    # Additional data (event-specific)
    details: dict[str, Any] = Field(
        default_factory=dict,
        description="Additional event-specific data"
    )

    # Error information (if applicable)
    error_code: Optional[str] = None
    error_message: Optional[str] = None

    # User action tracking
    is_user_action: bool = Field(
        default=False,
        description="Was this triggered by a user or operator action?"
    )

    def to_log_dict(self) -> dict:
        """
        Convert to a dictionary suitable for structured logging.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details": self.details,
            "error_code": self.error_code,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    def to_row(self) -> dict[str, Any]:
        """
        Convert to a row for the audit table.

        `details` is stored as JSON text so any backend can hold it.
        """
        return {
            "event_id": str(self.event_id),
            "timestamp": self.timestamp.isoformat(),
            "event_type": self.event_type.value,
            "severity": self.severity.value,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "correlation_id": str(self.correlation_id) if self.correlation_id else None,
            "description": self.description,
            "details_json": json.dumps(self.details, default=str) if self.details else None,
            "error_message": self.error_message,
            "is_user_action": self.is_user_action,
        }

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "AuditEvent":
        details_json = row.get("details_json")
        return cls(
            event_id=UUID(str(row["event_id"])),
            timestamp=row["timestamp"],
            event_type=AuditEventType(row["event_type"]),
            severity=AuditSeverity(row.get("severity") or "info"),
            entity_type=row.get("entity_type"),
            entity_id=row.get("entity_id"),
            correlation_id=UUID(str(row["correlation_id"])) if row.get("correlation_id") else None,
            description=row.get("description") or "",
            details=json.loads(details_json) if details_json else {},
            error_message=row.get("error_message"),
            is_user_action=bool(row.get("is_user_action")),
        )


class AuditEventBuilder:
    """
    Helper class to build audit events with common patterns.

    Usage:
        event = AuditEventBuilder.claim_won(user_id, days_overdue, correlation_id)
        event = AuditEventBuilder.delivery_sent(user_id, email, message_id, correlation_id)
    """

    @staticmethod
    def scan_completed(
        scanned: int,
        overdue: int,
        malformed: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCAN_COMPLETED,
            entity_type="run",
            correlation_id=correlation_id,
            description=f"Overdue scan found {overdue} of {scanned} eligible users overdue",
            details={
                "scanned": scanned,
                "overdue": overdue,
                "malformed": malformed,
            },
        )

    @staticmethod
    def scan_failed(
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SCAN_FAILED,
            severity=AuditSeverity.CRITICAL,
            entity_type="run",
            correlation_id=correlation_id,
            description="Overdue scan failed; no users were processed",
            error_message=error_message,
        )

    @staticmethod
    def settings_malformed(
        user_id: Optional[str],
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SETTINGS_MALFORMED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Settings for user {user_id} could not be parsed",
            error_message=error_message,
        )

    @staticmethod
    def claim_won(
        user_id: str,
        days_overdue: Optional[int],
        correlation_id: UUID,
        is_manual: bool = False
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLAIM_WON,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Delivery claimed for user {user_id}",
            details={
                "days_overdue": days_overdue,
                "manual": is_manual,
            },
            is_user_action=is_manual,
        )

    @staticmethod
    def claim_lost(
        user_id: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLAIM_LOST,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Delivery for user {user_id} already claimed elsewhere",
        )

    @staticmethod
    def claim_released(
        user_id: str,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CLAIM_RELEASED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Claim released for user {user_id} before any send",
            details={
                "reason": reason,
            },
        )

    @staticmethod
    def configuration_rejected(
        user_id: str,
        issues: list[dict],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CONFIGURATION_REJECTED,
            severity=AuditSeverity.ERROR,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"User {user_id} is overdue but cannot be delivered",
            details={
                "issues": issues,
            },
        )

    @staticmethod
    def export_built(
        user_id: str,
        counts: dict[str, int],
        omitted: dict[str, str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.EXPORT_BUILT,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Export built with {len(counts)} sections",
            details={
                "counts": counts,
                "omitted": omitted,
            },
        )

    @staticmethod
    def category_omitted(
        user_id: str,
        category: str,
        reason: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CATEGORY_OMITTED,
            severity=AuditSeverity.WARNING,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Category '{category}' omitted from export",
            details={
                "category": category,
                "reason": reason,
            },
        )

    @staticmethod
    def delivery_sent(
        user_id: str,
        recipient_email: str,
        message_id: Optional[str],
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELIVERY_SENT,
            entity_type="delivery",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Export delivered to {recipient_email}",
            details={
                "recipient_email": recipient_email,
                "message_id": message_id,
            },
        )

    @staticmethod
    def delivery_failed(
        user_id: str,
        recipient_email: str,
        error_message: str,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.DELIVERY_FAILED,
            severity=AuditSeverity.ERROR,
            entity_type="delivery",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Delivery to {recipient_email} failed",
            error_message=error_message,
            details={
                "recipient_email": recipient_email,
            },
        )

    @staticmethod
    def dispatch_completed(
        user_id: str,
        attempted: int,
        succeeded: int,
        failed: int,
        correlation_id: UUID
    ) -> AuditEvent:
        severity = AuditSeverity.INFO
        if attempted and not succeeded:
            severity = AuditSeverity.ERROR
        elif failed:
            severity = AuditSeverity.WARNING
        return AuditEvent(
            event_type=AuditEventType.DISPATCH_COMPLETED,
            severity=severity,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Dispatch finished: {succeeded}/{attempted} recipients reached",
            details={
                "attempted": attempted,
                "succeeded": succeeded,
                "failed": failed,
            },
        )

    @staticmethod
    def test_delivery_sent(
        user_id: str,
        attempted: int,
        succeeded: int,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.TEST_DELIVERY_SENT,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"Test delivery sent to {succeeded}/{attempted} recipients",
            details={
                "attempted": attempted,
                "succeeded": succeeded,
            },
            is_user_action=True,
        )

    @staticmethod
    def check_in_recorded(
        user_id: str,
        checked_in_at: datetime,
        was_triggered: bool,
        correlation_id: UUID
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.CHECK_IN_RECORDED,
            entity_type="user",
            entity_id=user_id,
            correlation_id=correlation_id,
            description=f"User {user_id} checked in",
            details={
                "checked_in_at": checked_in_at.isoformat(),
                "cleared_trigger": was_triggered,
            },
            is_user_action=True,
        )

    @staticmethod
    def run_completed(
        summary: dict,
        correlation_id: UUID
    ) -> AuditEvent:
        severity = AuditSeverity.WARNING if summary.get("error_count") else AuditSeverity.INFO
        return AuditEvent(
            event_type=AuditEventType.RUN_COMPLETED,
            severity=severity,
            entity_type="run",
            correlation_id=correlation_id,
            description=(
                f"Run finished: {summary.get('processed_count', 0)} processed, "
                f"{summary.get('failed', 0)} failed"
            ),
            details=summary,
        )

    @staticmethod
    def system_error(
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
        user_id: Optional[str] = None
    ) -> AuditEvent:
        return AuditEvent(
            event_type=AuditEventType.SYSTEM_ERROR,
            severity=AuditSeverity.ERROR,
            entity_type="user" if user_id else None,
            entity_id=user_id,
            description=f"System error: {error_type}",
            error_message=error_message,
            details=details or {},
            correlation_id=correlation_id,
        )
