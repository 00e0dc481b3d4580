"""
Deadline Calculator

Pure functions over (last_check_in, frequency, now). No clock reads, no I/O:
`now` is always passed in so every boundary can be tested exactly.

The deadline is `last_check_in + frequency * 86400s`, with the frequency used
raw (see lastwish.models.settings for the convention). A user is overdue only
when `now` is strictly past the deadline.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from lastwish.models.settings import CheckInSettings, EpisodeState, ensure_utc


ONE_DAY = timedelta(days=1)
ONE_HOUR = timedelta(hours=1)
LATEST = datetime.max.replace(tzinfo=timezone.utc)
EARLIEST = datetime.min.replace(tzinfo=timezone.utc)


def compute_deadline(last_check_in: datetime, frequency: float) -> datetime:
    """
    The instant after which the user counts as silent.

    A deadline past the datetime range is clamped to its end, so such a
    user is never overdue (or, for a huge negative frequency, always is).
    """
    try:
        return ensure_utc(last_check_in) + timedelta(days=frequency)
    except OverflowError:
        return LATEST if frequency > 0 else EARLIEST


def lapsed_amount(last_check_in: datetime, frequency: float, now: datetime) -> timedelta:
    """How far `now` is past the deadline. Negative while time remains."""
    return ensure_utc(now) - compute_deadline(last_check_in, frequency)


def is_overdue(last_check_in: datetime, frequency: float, now: datetime) -> bool:
    """True iff `now` is strictly after the deadline."""
    return ensure_utc(now) > compute_deadline(last_check_in, frequency)


def days_overdue(lapsed: timedelta) -> int:
    """Whole days past the deadline, floored."""
    return lapsed // ONE_DAY


def hours_overdue(lapsed: timedelta) -> float:
    return lapsed / ONE_HOUR


def classify(settings: CheckInSettings, now: datetime) -> EpisodeState:
    """
    Place a user in the delivery state machine.

    A set `delivery_triggered` flag is TRIGGERED whatever else the row
    says: only a check-in leaves that state.
    """
    if settings.delivery_triggered:
        return EpisodeState.TRIGGERED
    if not (settings.is_enabled and settings.is_active):
        return EpisodeState.IDLE
    if settings.last_check_in is None:
        return EpisodeState.IDLE
    if is_overdue(settings.last_check_in, settings.check_in_frequency, now):
        return EpisodeState.OVERDUE_PENDING
    return EpisodeState.IDLE


def settings_deadline(settings: CheckInSettings) -> Optional[datetime]:
    """Deadline of a settings snapshot, or None if the user never checked in."""
    if settings.last_check_in is None:
        return None
    return compute_deadline(settings.last_check_in, settings.check_in_frequency)
