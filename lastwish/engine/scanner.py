"""
Overdue Scanner

Finds users whose deadline has lapsed and whose delivery has not been
claimed yet. Read-only, so any number of scans may run at once.

CRITICAL: A failed read is an error, never an empty result. Reporting
"nobody is overdue" because the store was down would silently suppress
deliveries.
"""

from datetime import datetime

import structlog

from lastwish.engine.deadline import compute_deadline, days_overdue, lapsed_amount
from lastwish.models.delivery import OverdueCandidate, ScanIssue, ScanResult
from lastwish.models.settings import (
    CheckInSettings,
    SettingsValidationError,
    ensure_utc,
)
from lastwish.services.storage import SettingsStorageInterface, StorageError


logger = structlog.get_logger()


class ScanError(Exception):
    """The settings table could not be read. Fatal for the whole run."""
    pass


class OverdueScanner:
    """
    Scans enabled, active, untriggered users for lapsed deadlines.
    """

    def __init__(self, store: SettingsStorageInterface):
        self._store = store

    async def scan_overdue(self, now: datetime) -> ScanResult:
        """
        Scan for overdue users.

        Args:
            now: Reference time for the deadline check

        Returns:
            ScanResult with overdue candidates (most overdue first)
            and every row that failed to parse

        Raises:
            ScanError: If the store cannot be read
        """
        now = ensure_utc(now)

        try:
            rows = await self._store.get_settings_where(
                is_enabled=True,
                is_active=True,
                delivery_triggered=False,
            )
        except StorageError as e:
            raise ScanError(f"Could not read Last Wish settings: {e}") from e

        result = ScanResult(scanned_at=now, scanned_count=len(rows))
        overdue: list[tuple[CheckInSettings, datetime]] = []

        for row in rows:
            try:
                settings = CheckInSettings.from_row(row)
            except SettingsValidationError as e:
                logger.warning("settings_row_malformed", user_id=e.user_id, error=str(e))
                result.malformed.append(ScanIssue(user_id=e.user_id, message=str(e)))
                continue

            # Never checked in: there is no clock to lapse
            if settings.last_check_in is None:
                continue

            deadline = compute_deadline(settings.last_check_in, settings.check_in_frequency)
            if now > deadline:
                overdue.append((settings, deadline))

        if overdue:
            try:
                profiles = await self._store.get_user_profiles(
                    [settings.user_id for settings, _ in overdue]
                )
            except StorageError as e:
                raise ScanError(f"Could not read user profiles: {e}") from e
        else:
            profiles = {}

        for settings, deadline in overdue:
            lapsed = lapsed_amount(settings.last_check_in, settings.check_in_frequency, now)
            profile = profiles.get(settings.user_id) or {}
            result.candidates.append(OverdueCandidate(
                user_id=settings.user_id,
                email=profile.get("email"),
                deadline=deadline,
                lapsed=lapsed,
                days_overdue=days_overdue(lapsed),
                settings=settings,
            ))

        result.candidates.sort(key=lambda c: c.lapsed, reverse=True)

        logger.info(
            "overdue_scan_completed",
            scanned=result.scanned_count,
            overdue=len(result.candidates),
            malformed=len(result.malformed),
        )
        return result
