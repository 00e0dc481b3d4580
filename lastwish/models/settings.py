"""
Check-In Settings Models

One CheckInSettings record exists per user. The user edits it from the web UI;
the engine only ever flips `delivery_triggered` (through the Trigger Guard) and
moves `last_check_in` forward (through a check-in).

Rows arrive from the store as plain mappings in store column naming.
They are parsed here, strictly, at read time. A row that does not parse is a
contract error for that user and is reported, never guessed at.

CHECK-IN FREQUENCY CONVENTION:
`check_in_frequency` is a signed float measured in days and is used as-is:
deadline = last_check_in + frequency * 86400s. Fractional values encode
sub-day intervals (0.003472 is roughly five minutes). Negative values place
the deadline before the check-in, so the user is overdue immediately.
No unit conversion is applied. A frequency whose deadline would fall outside
the datetime range is rejected as malformed.
"""

from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Mapping, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)


# =============================================================================
# ENUMS
# =============================================================================

class DataCategory(str, Enum):
    """
    Data categories a user can include in their Last Wish export.

    The set is closed. Unknown category keys in a settings row are rejected.
    """
    ACCOUNTS = "accounts"
    TRANSACTIONS = "transactions"
    PURCHASES = "purchases"
    LEND_BORROW = "lend_borrow"
    SAVINGS = "savings"
    ANALYTICS = "analytics"


class EpisodeState(str, Enum):
    """
    Delivery state of one user.

    IDLE -> OVERDUE_PENDING -> TRIGGERED -> (check-in) -> IDLE
    """
    IDLE = "idle"                          # Not overdue, or not enabled/active
    OVERDUE_PENDING = "overdue_pending"    # Overdue, delivery not yet claimed
    TRIGGERED = "triggered"                # Claimed; waits for a check-in


# =============================================================================
# ERRORS
# =============================================================================

class SettingsValidationError(Exception):
    """A settings row could not be parsed into CheckInSettings."""

    def __init__(self, user_id: Optional[str], message: str):
        self.user_id = user_id
        super().__init__(message)


# =============================================================================
# HELPERS
# =============================================================================

def ensure_utc(value: datetime) -> datetime:
    """Return an aware UTC datetime. Naive values are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse a store timestamp.

    Accepts datetimes and ISO 8601 strings (including a trailing 'Z').
    Empty values parse to None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(text))
    raise ValueError(f"Unsupported timestamp value: {value!r}")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


# =============================================================================
# MODELS
# =============================================================================

class Recipient(BaseModel):
    """A person designated to receive the export."""
    model_config = ConfigDict(str_strip_whitespace=True)

    id: str = Field(
        ...,
        min_length=1,
        description="Recipient identifier assigned by the UI"
    )
    email: str = Field(
        ...,
        min_length=1,
        max_length=320,
        description="Delivery address"
    )
    name: str = Field(
        default="",
        max_length=200,
        description="Display name"
    )
    relationship: str = Field(
        default="",
        max_length=100,
        description="Relationship to the account owner"
    )

    @field_validator("id", mode="before")
    @classmethod
    def coerce_id(cls, v: Any) -> Any:
        """The UI stores ids as numbers or strings."""
        if isinstance(v, (int, float)):
            return str(v)
        return v

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class IncludeData(BaseModel):
    """
    Which categories go into the export.

    Defaults to everything, matching what the web UI offers to new users.
    The UI writes `lendBorrow`; both spellings are accepted.
    """
    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    accounts: bool = True
    transactions: bool = True
    purchases: bool = True
    lend_borrow: bool = Field(default=True, alias="lendBorrow")
    savings: bool = True
    analytics: bool = True

    def selected(self) -> list[DataCategory]:
        """Included categories, in declaration order."""
        return [
            category
            for category in DataCategory
            if getattr(self, category.value)
        ]

    def to_row(self) -> dict[str, bool]:
        """Store form, using the key spelling the web UI writes."""
        return self.model_dump(by_alias=True)


class CheckInSettings(BaseModel):
    """
    Last Wish settings of a single user.

    INVARIANT: `delivery_triggered` only goes false -> true through the
    Trigger Guard, and only goes back to false through a check-in.
    """
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str = Field(
        ...,
        min_length=1,
        description="Owner of these settings (unique key)"
    )
    is_enabled: bool = Field(
        default=False,
        description="Master switch; disabled users are never scanned"
    )
    is_active: bool = Field(
        default=False,
        description="Operational flag used to pause without disabling"
    )
    check_in_frequency: float = Field(
        default=30.0,
        description="Check-in interval in days (signed, may be fractional)"
    )
    last_check_in: Optional[datetime] = Field(
        default=None,
        description="Most recent check-in (UTC)"
    )
    delivery_triggered: bool = Field(
        default=False,
        description="Set once per overdue episode by the Trigger Guard"
    )
    recipients: list[Recipient] = Field(
        default_factory=list,
        description="Ordered recipients of the export"
    )
    include_data: IncludeData = Field(
        default_factory=IncludeData,
        description="Categories included in the export"
    )
    message: str = Field(
        default="",
        description="Personal note from the owner"
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        description="Last mutation time (UTC)"
    )

    @field_validator("check_in_frequency", mode="before")
    @classmethod
    def parse_frequency(cls, v: Any) -> Any:
        # PostgREST returns numeric columns as strings
        if isinstance(v, bool):
            raise ValueError("check_in_frequency must be a number")
        if isinstance(v, str):
            return float(v)
        return v

    @field_validator("last_check_in", "updated_at", mode="before")
    @classmethod
    def parse_timestamps(cls, v: Any) -> Any:
        return parse_timestamp(v)

    @field_validator("recipients", mode="before")
    @classmethod
    def parse_recipients(cls, v: Any) -> Any:
        if v is None:
            return []
        return v

    @field_validator("include_data", mode="before")
    @classmethod
    def parse_include_data(cls, v: Any) -> Any:
        if v is None:
            return IncludeData()
        return v

    @field_validator("message", mode="before")
    @classmethod
    def parse_message(cls, v: Any) -> Any:
        return v or ""

    @model_validator(mode="after")
    def check_frequency_in_range(self) -> "CheckInSettings":
        freq = self.check_in_frequency
        if freq != freq or freq in (float("inf"), float("-inf")):
            raise ValueError("check_in_frequency must be finite")
        try:
            interval = timedelta(days=freq)
            if self.last_check_in is not None:
                self.last_check_in + interval
        except OverflowError:
            raise ValueError(
                f"check_in_frequency {freq} puts the deadline out of range"
            )
        return self

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "CheckInSettings":
        """
        Parse a store row.

        Raises:
            SettingsValidationError: If the row is malformed
        """
        user_id = row.get("user_id") if isinstance(row, Mapping) else None
        try:
            return cls.model_validate(dict(row))
        except (ValidationError, TypeError, ValueError) as e:
            raise SettingsValidationError(
                str(user_id) if user_id else None,
                f"Malformed settings for user {user_id}: {e}",
            ) from e

    def to_row(self) -> dict[str, Any]:
        """Convert to store column naming."""
        return {
            "user_id": self.user_id,
            "is_enabled": self.is_enabled,
            "is_active": self.is_active,
            "check_in_frequency": self.check_in_frequency,
            "last_check_in": self.last_check_in.isoformat() if self.last_check_in else None,
            "delivery_triggered": self.delivery_triggered,
            "recipients": [r.model_dump() for r in self.recipients],
            "include_data": self.include_data.to_row(),
            "message": self.message,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# =============================================================================
# READINESS
# =============================================================================

class ValidationIssue(BaseModel):
    """A single problem found in a user's delivery configuration."""

    field: str = Field(
        ...,
        description="Field with the issue"
    )
    issue_type: str = Field(
        ...,
        description="Type of issue (e.g., 'missing', 'invalid_format', 'duplicate')"
    )
    message: str = Field(
        ...,
        description="Human-readable description of the issue"
    )
    severity: str = Field(
        ...,
        pattern="^(error|warning|info)$",
        description="Issue severity"
    )


class ReadinessResult(BaseModel):
    """
    Whether a user's settings can be delivered.

    Only errors block a delivery. Warnings are reported and audited.
    """

    user_id: str
    is_ready: bool
    issues: list[ValidationIssue] = Field(default_factory=list)

    @property
    def errors(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "error"]

    @property
    def warnings(self) -> list[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]

    def error_summary(self) -> str:
        return "; ".join(issue.message for issue in self.errors)
