"""
Delivery Models

Everything the engine produces while processing overdue users:
candidates from the scanner, the export payload, per-recipient delivery
records, and the reports handed back to whoever invoked the run.

CRITICAL: DeliveryRecord is append-only. The only permitted change after
insertion is pending -> sent or pending -> failed.
"""

import json
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from lastwish.models.settings import (
    CheckInSettings,
    DataCategory,
    EpisodeState,
    utc_now,
)


# =============================================================================
# ENUMS
# =============================================================================

class DeliveryStatus(str, Enum):
    """Status of a single (user, episode, recipient) delivery."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class UserOutcomeStatus(str, Enum):
    """How processing of one user ended within a run or manual trigger."""
    DELIVERED = "delivered"                      # At least one recipient got it
    DELIVERY_FAILED = "delivery_failed"          # Attempted, nobody got it
    CONFIGURATION_ERROR = "configuration_error"  # e.g. no recipients; not claimed
    CLAIM_LOST = "claim_lost"                    # Another invocation owns it
    ERROR = "error"                              # Unexpected / contract error
    NOT_OVERDUE = "not_overdue"
    NOT_FOUND = "not_found"
    DISABLED = "disabled"


# =============================================================================
# DELIVERY LOG
# =============================================================================

class DeliveryRecord(BaseModel):
    """One row of the append-only delivery log."""

    id: UUID = Field(
        default_factory=uuid4,
        description="Record identifier"
    )
    user_id: str = Field(
        ...,
        description="Owner whose data was delivered"
    )
    recipient_email: str = Field(
        ...,
        description="Recipient address"
    )
    delivery_status: DeliveryStatus = Field(
        default=DeliveryStatus.PENDING,
        description="pending until the send completes"
    )
    episode_check_in: Optional[datetime] = Field(
        default=None,
        description="last_check_in of the overdue episode this delivery belongs to"
    )
    sent_at: Optional[datetime] = None
    error_message: Optional[str] = None
    created_at: datetime = Field(
        default_factory=utc_now,
        description="When the record was created (UTC)"
    )

    def to_row(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "user_id": self.user_id,
            "recipient_email": self.recipient_email,
            "delivery_status": self.delivery_status.value,
            "episode_check_in": self.episode_check_in.isoformat() if self.episode_check_in else None,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "error_message": self.error_message,
            "created_at": self.created_at.isoformat(),
        }


# =============================================================================
# SCAN
# =============================================================================

class OverdueCandidate(BaseModel):
    """A user whose deadline has lapsed. Lives for one invocation only."""

    user_id: str
    email: Optional[str] = None
    deadline: datetime
    lapsed: timedelta = Field(
        ...,
        description="How far past the deadline the user is"
    )
    days_overdue: int = Field(
        ...,
        description="Whole days past the deadline (floored)"
    )
    settings: CheckInSettings = Field(
        ...,
        description="Settings snapshot read by the scan"
    )


class ScanIssue(BaseModel):
    """A settings row the scanner could not use."""

    user_id: Optional[str] = None
    message: str


class ScanResult(BaseModel):
    """Output of one overdue scan."""

    scanned_at: datetime
    scanned_count: int = Field(
        default=0,
        ge=0,
        description="Eligible rows examined"
    )
    candidates: list[OverdueCandidate] = Field(default_factory=list)
    malformed: list[ScanIssue] = Field(default_factory=list)


# =============================================================================
# EXPORT
# =============================================================================

class ExportPayload(BaseModel):
    """
    Snapshot of a user's selected data, independent of how it is sent.

    `sections` holds raw records per category. `structured_summary` holds the
    record count per included category and, if selected, the derived
    analytics block.
    """

    user_id: str
    owner_email: Optional[str] = None
    owner_name: Optional[str] = None
    generated_at: datetime = Field(default_factory=utc_now)
    message: str = ""
    sections: dict[DataCategory, list[dict[str, Any]]] = Field(default_factory=dict)
    structured_summary: dict[str, Any] = Field(default_factory=dict)
    omitted: dict[DataCategory, str] = Field(
        default_factory=dict,
        description="Categories left out and why"
    )

    @property
    def owner_label(self) -> str:
        """How the owner is referred to in emails."""
        return self.owner_email or self.owner_name or "the account owner"

    def section_counts(self) -> dict[str, int]:
        return {category.value: len(records) for category, records in self.sections.items()}

    def to_document(self) -> dict[str, Any]:
        """Structured form of the export (the attachment content)."""
        return {
            "user_id": self.user_id,
            "owner_email": self.owner_email,
            "generated_at": self.generated_at.isoformat(),
            "message": self.message,
            "summary": self.structured_summary,
            "data": {category.value: records for category, records in self.sections.items()},
            "omitted": {category.value: reason for category, reason in self.omitted.items()},
        }

    def to_json_document(self) -> bytes:
        return json.dumps(self.to_document(), indent=2, default=str).encode("utf-8")

    def attachment_filename(self, test_mode: bool = False) -> str:
        owner = self.owner_email or self.user_id
        prefix = "test-" if test_mode else ""
        return f"{prefix}financial-data-{owner}-{self.generated_at.date().isoformat()}.json"


# =============================================================================
# DISPATCH
# =============================================================================

class RecipientOutcome(BaseModel):
    """What happened for one recipient."""

    recipient_email: str
    recipient_name: str = ""
    status: DeliveryStatus
    message_id: Optional[str] = None
    error: Optional[str] = None
    record_id: Optional[UUID] = None
    record_error: Optional[str] = Field(
        default=None,
        description="Set when the delivery log could not be written"
    )


class DispatchReport(BaseModel):
    """Aggregate result of dispatching one export to all recipients."""

    user_id: str
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    per_recipient: list[RecipientOutcome] = Field(default_factory=list)

    @property
    def is_success(self) -> bool:
        """At least one recipient received the export."""
        return self.succeeded > 0

    @property
    def is_total_failure(self) -> bool:
        return self.attempted > 0 and self.succeeded == 0


# =============================================================================
# RUN
# =============================================================================

class UserOutcome(BaseModel):
    """Result of processing one user."""

    user_id: str
    status: UserOutcomeStatus
    message: str = ""
    days_overdue: Optional[int] = None
    dispatch: Optional[DispatchReport] = None

    @property
    def claimed(self) -> bool:
        """Whether this invocation won the claim and dispatched."""
        return self.dispatch is not None


class RunError(BaseModel):
    """A per-user failure surfaced in the run report."""

    user_id: Optional[str] = None
    kind: str
    message: str


class RunReport(BaseModel):
    """What `run_check` returns to the scheduler."""

    started_at: datetime
    finished_at: Optional[datetime] = None
    processed_count: int = Field(
        default=0,
        description="Users claimed and dispatched by this run"
    )
    succeeded: int = 0
    failed: int = 0
    skipped: int = Field(
        default=0,
        description="Claims lost, or users no longer overdue once claimed"
    )
    errors: list[RunError] = Field(default_factory=list)
    outcomes: list[UserOutcome] = Field(default_factory=list)

    def to_log_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processed_count": self.processed_count,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "error_count": len(self.errors),
        }


# =============================================================================
# STATUS
# =============================================================================

class StatusReport(BaseModel):
    """Operator view of one user's Last Wish state."""

    user_id: str
    checked_at: datetime
    state: EpisodeState
    is_enabled: bool
    is_active: bool
    delivery_triggered: bool
    check_in_frequency: float
    last_check_in: Optional[datetime] = None
    deadline: Optional[datetime] = None
    hours_overdue: Optional[float] = Field(
        default=None,
        description="Hours past the deadline; negative while time remains"
    )
    recipient_count: int = 0
    included_categories: list[DataCategory] = Field(default_factory=list)
    recent_deliveries: list[DeliveryRecord] = Field(default_factory=list)
    mail_configured: Optional[bool] = Field(
        default=None,
        description="Whether the mail transport has credentials (None if unknown)"
    )
