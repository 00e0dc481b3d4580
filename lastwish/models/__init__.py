"""
Data Models Package

This package contains all Pydantic models used by the Last Wish engine.
All data flowing through the system must conform to these schemas.
"""

from lastwish.models.settings import (
    CheckInSettings,
    DataCategory,
    EpisodeState,
    IncludeData,
    ReadinessResult,
    Recipient,
    SettingsValidationError,
    ValidationIssue,
    ensure_utc,
    parse_timestamp,
    utc_now,
)
from lastwish.models.delivery import (
    DeliveryRecord,
    DeliveryStatus,
    DispatchReport,
    ExportPayload,
    OverdueCandidate,
    RecipientOutcome,
    RunError,
    RunReport,
    ScanIssue,
    ScanResult,
    StatusReport,
    UserOutcome,
    UserOutcomeStatus,
)
from lastwish.models.audit import (
    AuditEvent,
    AuditEventBuilder,
    AuditEventType,
    AuditSeverity,
)

__all__ = [
    # Settings models
    "CheckInSettings",
    "DataCategory",
    "EpisodeState",
    "IncludeData",
    "ReadinessResult",
    "Recipient",
    "SettingsValidationError",
    "ValidationIssue",
    "ensure_utc",
    "parse_timestamp",
    "utc_now",
    # Delivery models
    "DeliveryRecord",
    "DeliveryStatus",
    "DispatchReport",
    "ExportPayload",
    "OverdueCandidate",
    "RecipientOutcome",
    "RunError",
    "RunReport",
    "ScanIssue",
    "ScanResult",
    "StatusReport",
    "UserOutcome",
    "UserOutcomeStatus",
    # Audit models
    "AuditEvent",
    "AuditEventBuilder",
    "AuditEventType",
    "AuditSeverity",
]
