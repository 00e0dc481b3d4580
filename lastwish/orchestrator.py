"""
Main Orchestrator for Last Wish

This module ties together all the components and defines the
end-to-end flows for:
1. Scheduled check (scan -> validate -> claim -> export -> dispatch)
2. Manual trigger of one user (same pipeline, same guard)
3. Check-in, status and test delivery for operators

DESIGN DECISION: The orchestrator enforces the boundaries:
- No user is claimed unless their recipients are known at scan time
- No claim is kept if nothing was sent
- No send happens without a won claim (test deliveries excepted)
- Every step is audited

Each run is stateless. All authoritative state lives in the store, and the
only serialization point between overlapping runs is the guard's
conditional update.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from lastwish.audit import AuditLogger, create_correlation_id
from lastwish.config import check_send_budget, get_settings
from lastwish.config.settings import DeliverySettings
from lastwish.engine.deadline import (
    classify,
    days_overdue,
    hours_overdue,
    is_overdue,
    lapsed_amount,
    settings_deadline,
)
from lastwish.engine.dispatcher import DeliveryDispatcher, NoRecipientsError
from lastwish.engine.export import ExportBuilder, ExportError
from lastwish.engine.guard import TriggerGuard
from lastwish.engine.rendering import EmailRenderer
from lastwish.engine.scanner import OverdueScanner, ScanError
from lastwish.models.delivery import (
    DispatchReport,
    OverdueCandidate,
    RunError,
    RunReport,
    StatusReport,
    UserOutcome,
    UserOutcomeStatus,
)
from lastwish.models.settings import (
    CheckInSettings,
    DataCategory,
    SettingsValidationError,
    ensure_utc,
    utc_now,
)
from lastwish.services.mail import MailTransport, SMTPMailTransport
from lastwish.services.sources import CategorySource, create_supabase_sources
from lastwish.services.storage import (
    DeliveryLogInterface,
    NotFoundError,
    SettingsStorageInterface,
    StorageError,
    SupabaseAuditStorage,
    SupabaseClient,
    SupabaseStore,
)
from lastwish.validation import DeliveryReadinessValidator


logger = structlog.get_logger()

# Outcomes that count as a failure in the run report
FAILED_OUTCOMES = {
    UserOutcomeStatus.DELIVERY_FAILED,
    UserOutcomeStatus.CONFIGURATION_ERROR,
    UserOutcomeStatus.ERROR,
}

SKIPPED_OUTCOMES = {
    UserOutcomeStatus.CLAIM_LOST,
    UserOutcomeStatus.NOT_OVERDUE,
    UserOutcomeStatus.DISABLED,
    UserOutcomeStatus.NOT_FOUND,
}


class LastWishService:
    """
    Composes scanner, guard, export builder and dispatcher.

    Flow for one overdue user:
    1. Validate the scan snapshot (no recipients -> configuration error, no claim)
    2. Claim via the guard (lost -> skip)
    3. Re-read settings; release if the user checked in, was disabled,
       or lost their recipients in the meantime
    4. Build the export; release if the owner's profile is unreadable
    5. Dispatch to every recipient; the claim is now final
    """

    def __init__(
        self,
        store: SettingsStorageInterface,
        transport: MailTransport,
        sources: dict[DataCategory, CategorySource],
        delivery_log: Optional[DeliveryLogInterface] = None,
        audit_logger: Optional[AuditLogger] = None,
        delivery_settings: Optional[DeliverySettings] = None,
        validator: Optional[DeliveryReadinessValidator] = None,
    ):
        self._store = store
        self._delivery_log = delivery_log or store
        self._transport = transport
        self._settings = delivery_settings or DeliverySettings()
        self._audit = audit_logger or AuditLogger()
        self._validator = validator or DeliveryReadinessValidator()

        self._scanner = OverdueScanner(store)
        self._guard = TriggerGuard(store)
        self._exporter = ExportBuilder(store, sources)
        self._dispatcher = DeliveryDispatcher(
            delivery_log=self._delivery_log,
            transport=transport,
            renderer=EmailRenderer(product_name=self._settings.product_name),
            send_timeout_seconds=self._settings.send_timeout_seconds,
            max_concurrent_sends=self._settings.max_concurrent_sends,
            audit_logger=self._audit,
        )

    # =========================================================================
    # PIPELINE
    # =========================================================================

    async def _release(self, user_id: str, reason: str, correlation_id: UUID) -> str:
        """
        Release a claim on which nothing was sent.

        Returns a note for the outcome message.
        """
        try:
            released = await self._guard.release(user_id, reason=reason)
        except StorageError as e:
            logger.error("claim_release_failed", user_id=user_id, error=str(e))
            await self._audit.log_error(
                "claim_release_failed",
                str(e),
                details={"reason": reason},
                correlation_id=correlation_id,
                user_id=user_id,
            )
            return f"{reason}; claim could NOT be released: {e}"
        await self._audit.log_claim_released(user_id, reason, correlation_id)
        if not released:
            return f"{reason}; claim was already cleared"
        return reason

    async def _deliver(
        self,
        snapshot: CheckInSettings,
        owner_email: Optional[str],
        now: datetime,
        correlation_id: UUID,
        is_manual: bool = False,
    ) -> UserOutcome:
        user_id = snapshot.user_id
        lapsed = lapsed_amount(snapshot.last_check_in, snapshot.check_in_frequency, now)
        overdue_days = days_overdue(lapsed)

        # Step 1: Pre-claim validation of the scan snapshot
        readiness = self._validator.validate(snapshot, owner_email)
        if not readiness.is_ready:
            await self._audit.log_configuration_rejected(
                user_id,
                [issue.model_dump() for issue in readiness.issues],
                correlation_id,
            )
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.CONFIGURATION_ERROR,
                message=readiness.error_summary(),
                days_overdue=overdue_days,
            )

        # Step 2: Claim. Never retried.
        if not await self._guard.try_claim(user_id):
            await self._audit.log_claim_lost(user_id, correlation_id)
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.CLAIM_LOST,
                message="Delivery already claimed for this episode",
                days_overdue=overdue_days,
            )
        await self._audit.log_claim_won(user_id, overdue_days, correlation_id, is_manual=is_manual)

        # Step 3: Re-read what may have changed since the scan
        try:
            row = await self._store.get_settings(user_id)
            if row is None:
                raise NotFoundError(f"Settings of user {user_id} disappeared")
            fresh = CheckInSettings.from_row(row)
        except (StorageError, SettingsValidationError) as e:
            note = await self._release(user_id, f"settings re-read failed: {e}", correlation_id)
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.ERROR,
                message=note,
                days_overdue=overdue_days,
            )

        if not (fresh.is_enabled and fresh.is_active):
            note = await self._release(user_id, "disabled after scan", correlation_id)
            return UserOutcome(user_id=user_id, status=UserOutcomeStatus.DISABLED, message=note)

        if fresh.last_check_in is None or not is_overdue(
            fresh.last_check_in, fresh.check_in_frequency, now
        ):
            note = await self._release(user_id, "checked in after scan", correlation_id)
            return UserOutcome(user_id=user_id, status=UserOutcomeStatus.NOT_OVERDUE, message=note)

        readiness = self._validator.validate(fresh, owner_email)
        if not readiness.is_ready:
            await self._audit.log_configuration_rejected(
                user_id,
                [issue.model_dump() for issue in readiness.issues],
                correlation_id,
            )
            note = await self._release(user_id, readiness.error_summary(), correlation_id)
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.CONFIGURATION_ERROR,
                message=note,
                days_overdue=overdue_days,
            )

        # Step 4: Export
        try:
            payload = await self._exporter.build_export(
                user_id, fresh.include_data, fresh.message, now=now
            )
        except Exception as e:
            note = await self._release(user_id, f"export failed: {e}", correlation_id)
            if not isinstance(e, ExportError):
                raise
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.ERROR,
                message=note,
                days_overdue=overdue_days,
            )

        await self._audit.log_export_built(
            user_id,
            payload.section_counts(),
            {c.value: reason for c, reason in payload.omitted.items()},
            correlation_id,
        )
        for category, reason in payload.omitted.items():
            await self._audit.log_category_omitted(user_id, category.value, reason, correlation_id)

        # Step 5: Dispatch. From here on the claim is final.
        try:
            report = await self._dispatcher.dispatch(
                user_id,
                fresh.recipients,
                payload,
                episode_check_in=fresh.last_check_in,
                correlation_id=correlation_id,
            )
        except NoRecipientsError as e:
            note = await self._release(user_id, str(e), correlation_id)
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.CONFIGURATION_ERROR,
                message=note,
                days_overdue=overdue_days,
            )

        if report.is_success:
            status = UserOutcomeStatus.DELIVERED
            message = f"Delivered to {report.succeeded} of {report.attempted} recipients"
        else:
            status = UserOutcomeStatus.DELIVERY_FAILED
            message = f"All {report.attempted} sends failed; episode stays triggered"

        return UserOutcome(
            user_id=user_id,
            status=status,
            message=message,
            days_overdue=overdue_days,
            dispatch=report,
        )

    async def _contain(self, user_id: str, work, correlation_id: UUID) -> UserOutcome:
        """Run one user's pipeline; unexpected errors become an ERROR outcome."""
        try:
            return await work
        except Exception as e:
            logger.exception("user_processing_failed", user_id=user_id)
            await self._audit.log_error(
                type(e).__name__,
                str(e),
                correlation_id=correlation_id,
                user_id=user_id,
            )
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.ERROR,
                message=f"{type(e).__name__}: {e}",
            )

    # =========================================================================
    # SCHEDULED CHECK
    # =========================================================================

    async def run_check(self, now: Optional[datetime] = None) -> RunReport:
        """
        Process every overdue user once.

        Args:
            now: Reference time (defaults to the current time)

        Returns:
            RunReport aggregating every user's outcome

        Raises:
            ScanError: If the settings table could not be read
        """
        now = ensure_utc(now) if now else utc_now()
        correlation_id = create_correlation_id()
        report = RunReport(started_at=utc_now())

        try:
            scan = await self._scanner.scan_overdue(now)
        except ScanError as e:
            await self._audit.log_scan_failed(str(e), correlation_id)
            raise

        await self._audit.log_scan_completed(
            scan.scanned_count,
            len(scan.candidates),
            len(scan.malformed),
            correlation_id,
        )

        for issue in scan.malformed:
            await self._audit.log_settings_malformed(issue.user_id, issue.message, correlation_id)
            report.failed += 1
            report.errors.append(RunError(
                user_id=issue.user_id,
                kind="malformed_settings",
                message=issue.message,
            ))

        semaphore = asyncio.Semaphore(self._settings.max_concurrent_users)

        async def process(candidate: OverdueCandidate) -> UserOutcome:
            async with semaphore:
                return await self._contain(
                    candidate.user_id,
                    self._deliver(candidate.settings, candidate.email, now, correlation_id),
                    correlation_id,
                )

        outcomes = await asyncio.gather(*(process(c) for c in scan.candidates))

        for outcome in outcomes:
            report.outcomes.append(outcome)
            if outcome.claimed:
                report.processed_count += 1
            if outcome.status == UserOutcomeStatus.DELIVERED:
                report.succeeded += 1
            elif outcome.status in FAILED_OUTCOMES:
                report.failed += 1
                report.errors.append(RunError(
                    user_id=outcome.user_id,
                    kind=outcome.status.value,
                    message=outcome.message,
                ))
            elif outcome.status in SKIPPED_OUTCOMES:
                report.skipped += 1

        report.finished_at = utc_now()
        await self._audit.log_run_completed(report.to_log_dict(), correlation_id)
        logger.info("run_check_completed", **report.to_log_dict())
        return report

    # =========================================================================
    # OPERATOR ACTIONS
    # =========================================================================

    async def _load(self, user_id: str) -> CheckInSettings:
        row = await self._store.get_settings(user_id)
        if row is None:
            raise NotFoundError(f"No Last Wish settings for user {user_id}")
        return CheckInSettings.from_row(row)

    async def _trigger(self, user_id: str, now: datetime, correlation_id: UUID) -> UserOutcome:
        try:
            settings = await self._load(user_id)
        except NotFoundError as e:
            return UserOutcome(user_id=user_id, status=UserOutcomeStatus.NOT_FOUND, message=str(e))

        if settings.delivery_triggered:
            await self._audit.log_claim_lost(user_id, correlation_id)
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.CLAIM_LOST,
                message="Delivery already triggered; waiting for a check-in",
            )
        if not (settings.is_enabled and settings.is_active):
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.DISABLED,
                message="Last Wish is not enabled and active for this user",
            )
        if settings.last_check_in is None or not is_overdue(
            settings.last_check_in, settings.check_in_frequency, now
        ):
            return UserOutcome(
                user_id=user_id,
                status=UserOutcomeStatus.NOT_OVERDUE,
                message="User is not overdue",
            )

        profiles = await self._store.get_user_profiles([user_id])
        owner_email = (profiles.get(user_id) or {}).get("email")
        return await self._deliver(settings, owner_email, now, correlation_id, is_manual=True)

    async def trigger_user(self, user_id: str, now: Optional[datetime] = None) -> UserOutcome:
        """
        Operator-initiated delivery of one overdue user.

        Runs the same validate/claim/dispatch pipeline as the scheduled
        check; the guard is never bypassed.
        """
        now = ensure_utc(now) if now else utc_now()
        correlation_id = create_correlation_id()
        outcome = await self._contain(user_id, self._trigger(user_id, now, correlation_id), correlation_id)
        logger.info("manual_trigger_completed", user_id=user_id, status=outcome.status.value)
        return outcome

    async def check_in(self, user_id: str, now: Optional[datetime] = None) -> CheckInSettings:
        """
        Record a check-in: advance last_check_in and clear the trigger flag.

        Raises:
            NotFoundError: If the user has no settings
        """
        now = ensure_utc(now) if now else utc_now()
        previous = await self._store.get_settings(user_id)
        if previous is None:
            raise NotFoundError(f"No Last Wish settings for user {user_id}")

        row = await self._store.update_check_in(user_id, now)
        settings = CheckInSettings.from_row(row)
        await self._audit.log_check_in(
            user_id,
            now,
            bool(previous.get("delivery_triggered")),
            create_correlation_id(),
        )
        return settings

    async def get_status(self, user_id: str, now: Optional[datetime] = None) -> StatusReport:
        """
        Operator view of one user.

        Raises:
            NotFoundError: If the user has no settings
            SettingsValidationError: If the settings row is malformed
        """
        now = ensure_utc(now) if now else utc_now()
        settings = await self._load(user_id)
        deadline = settings_deadline(settings)
        recent = await self._delivery_log.list_delivery_records(
            user_id, limit=self._settings.recent_deliveries_limit
        )

        return StatusReport(
            user_id=user_id,
            checked_at=now,
            state=classify(settings, now),
            is_enabled=settings.is_enabled,
            is_active=settings.is_active,
            delivery_triggered=settings.delivery_triggered,
            check_in_frequency=settings.check_in_frequency,
            last_check_in=settings.last_check_in,
            deadline=deadline,
            hours_overdue=hours_overdue(now - deadline) if deadline else None,
            recipient_count=len(settings.recipients),
            included_categories=settings.include_data.selected(),
            recent_deliveries=recent,
            mail_configured=getattr(self._transport, "is_configured", None),
        )

    async def send_test_delivery(self, user_id: str, now: Optional[datetime] = None) -> DispatchReport:
        """
        Send the test variant of the export to the configured recipients.

        Does not claim, does not write delivery records, and works whether
        or not the user is overdue.

        Raises:
            NotFoundError: If the user has no settings
            NoRecipientsError: If the user has no recipients
            UserRecordUnavailableError: If the owner's profile cannot be read
        """
        now = ensure_utc(now) if now else utc_now()
        correlation_id = create_correlation_id()
        settings = await self._load(user_id)
        if not settings.recipients:
            raise NoRecipientsError(user_id)

        payload = await self._exporter.build_export(
            user_id, settings.include_data, settings.message, now=now
        )
        report = await self._dispatcher.dispatch(
            user_id,
            settings.recipients,
            payload,
            correlation_id=correlation_id,
            test_mode=True,
        )
        await self._audit.log_test_delivery_sent(
            user_id, report.attempted, report.succeeded, correlation_id
        )
        return report


def create_service() -> LastWishService:
    """
    Factory function wiring the production components from settings.

    Raises:
        pydantic.ValidationError: If Supabase settings are missing
        ValueError: If the send timeout does not cover SMTP retries
    """
    settings = get_settings()
    check_send_budget(settings.delivery, settings.smtp)
    client = SupabaseClient(settings.supabase)

    return LastWishService(
        store=SupabaseStore(client),
        transport=SMTPMailTransport(settings.smtp),
        sources=create_supabase_sources(client),
        audit_logger=AuditLogger(SupabaseAuditStorage(client)),
        delivery_settings=settings.delivery,
    )
