"""
Delivery Dispatcher

Sends one export to every recipient of a user and keeps the delivery log
complete.

For each recipient, in isolation:
1. Insert a `pending` DeliveryRecord
2. Render and send, bounded by a timeout
3. Move the record to `sent` or `failed`

CRITICAL: If step 1 fails, the email is NOT sent. Every send that reaches a
recipient has a log row.

DESIGN DECISION: Recipients are independent and are sent concurrently, up to
`max_concurrent_sends` at a time. One recipient's failure never affects the
others. Retries of transient errors happen inside the transport's send, so a
timed-out or failed send is final for this episode.
"""

import asyncio
from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog

from lastwish.audit import AuditLogger
from lastwish.engine.rendering import EmailRenderer
from lastwish.models.delivery import (
    DeliveryRecord,
    DeliveryStatus,
    DispatchReport,
    ExportPayload,
    RecipientOutcome,
)
from lastwish.models.settings import Recipient, utc_now
from lastwish.services.mail import MailTimeoutError, MailTransport
from lastwish.services.storage import DeliveryLogInterface


logger = structlog.get_logger()


class DispatchError(Exception):
    """Base exception for dispatching."""
    pass


class NoRecipientsError(DispatchError):
    """Dispatch was asked to deliver to nobody."""

    def __init__(self, user_id: str):
        self.user_id = user_id
        super().__init__(f"User {user_id} has no recipients")


class DeliveryDispatcher:
    """
    Delivers ExportPayloads through a MailTransport.
    """

    def __init__(
        self,
        delivery_log: DeliveryLogInterface,
        transport: MailTransport,
        renderer: Optional[EmailRenderer] = None,
        send_timeout_seconds: float = 120.0,
        max_concurrent_sends: int = 5,
        audit_logger: Optional[AuditLogger] = None,
    ):
        self._log = delivery_log
        self._transport = transport
        self._renderer = renderer or EmailRenderer()
        self._send_timeout = send_timeout_seconds
        self._max_concurrent = max_concurrent_sends
        self._audit = audit_logger or AuditLogger()

    async def _send(self, payload: ExportPayload, recipient: Recipient, test_mode: bool) -> Optional[str]:
        """Render and send; returns the message id. Raises on any failure."""
        email = self._renderer.render(payload, recipient, test_mode=test_mode)
        try:
            receipt = await asyncio.wait_for(self._transport.send(email), timeout=self._send_timeout)
        except asyncio.TimeoutError:
            raise MailTimeoutError(f"Send timed out after {self._send_timeout:g}s")
        return receipt.message_id

    async def _deliver_one(
        self,
        user_id: str,
        recipient: Recipient,
        payload: ExportPayload,
        episode_check_in: Optional[datetime],
        correlation_id: Optional[UUID],
        test_mode: bool,
    ) -> RecipientOutcome:
        outcome = RecipientOutcome(
            recipient_email=recipient.email,
            recipient_name=recipient.name,
            status=DeliveryStatus.PENDING,
        )

        # Test sends are never logged as deliveries
        if not test_mode:
            try:
                record = await self._log.insert_delivery_record(DeliveryRecord(
                    user_id=user_id,
                    recipient_email=recipient.email,
                    episode_check_in=episode_check_in,
                ))
                outcome.record_id = record.id
            except Exception as e:
                logger.error(
                    "delivery_record_insert_failed",
                    user_id=user_id,
                    recipient=recipient.email,
                    error=str(e),
                )
                outcome.status = DeliveryStatus.FAILED
                outcome.error = "Delivery log unavailable; email not sent"
                outcome.record_error = str(e)
                return outcome

        try:
            outcome.message_id = await self._send(payload, recipient, test_mode)
            outcome.status = DeliveryStatus.SENT
        except Exception as e:
            outcome.status = DeliveryStatus.FAILED
            outcome.error = str(e) or type(e).__name__
            logger.warning(
                "recipient_delivery_failed",
                user_id=user_id,
                recipient=recipient.email,
                error_type=type(e).__name__,
                error=outcome.error,
            )

        if outcome.record_id is not None:
            try:
                await self._log.update_delivery_status(
                    outcome.record_id,
                    outcome.status,
                    sent_at=utc_now() if outcome.status == DeliveryStatus.SENT else None,
                    error_message=outcome.error,
                )
            except Exception as e:
                logger.error(
                    "delivery_record_update_failed",
                    user_id=user_id,
                    record_id=str(outcome.record_id),
                    error=str(e),
                )
                outcome.record_error = str(e)

        if correlation_id is not None and not test_mode:
            if outcome.status == DeliveryStatus.SENT:
                await self._audit.log_delivery_sent(
                    user_id, recipient.email, outcome.message_id, correlation_id
                )
            else:
                await self._audit.log_delivery_failed(
                    user_id, recipient.email, outcome.error or "unknown error", correlation_id
                )

        return outcome

    async def dispatch(
        self,
        user_id: str,
        recipients: list[Recipient],
        payload: ExportPayload,
        episode_check_in: Optional[datetime] = None,
        correlation_id: Optional[UUID] = None,
        test_mode: bool = False,
    ) -> DispatchReport:
        """
        Deliver `payload` to every recipient.

        Args:
            user_id: Owner of the export
            recipients: Who receives it
            payload: The export
            episode_check_in: last_check_in of the episode, stored on each record
            correlation_id: Ties audit events to the calling run
            test_mode: Send the test variant and write no delivery records

        Returns:
            DispatchReport; success means at least one recipient got it

        Raises:
            NoRecipientsError: If `recipients` is empty (nothing recorded or sent)
        """
        if not recipients:
            raise NoRecipientsError(user_id)

        semaphore = asyncio.Semaphore(self._max_concurrent)

        async def bounded(recipient: Recipient) -> RecipientOutcome:
            async with semaphore:
                return await self._deliver_one(
                    user_id, recipient, payload, episode_check_in, correlation_id, test_mode
                )

        outcomes = await asyncio.gather(*(bounded(r) for r in recipients))

        succeeded = sum(1 for o in outcomes if o.status == DeliveryStatus.SENT)
        report = DispatchReport(
            user_id=user_id,
            attempted=len(outcomes),
            succeeded=succeeded,
            failed=len(outcomes) - succeeded,
            per_recipient=list(outcomes),
        )

        logger.info(
            "dispatch_completed",
            user_id=user_id,
            attempted=report.attempted,
            succeeded=report.succeeded,
            failed=report.failed,
            test_mode=test_mode,
        )
        if correlation_id is not None and not test_mode:
            await self._audit.log_dispatch_completed(
                user_id, report.attempted, report.succeeded, report.failed, correlation_id
            )
        return report
