"""
Audit Logger

DESIGN DECISION: Every step towards releasing someone's data is logged.
This provides:
1. Complete traceability of who received what, and when
2. Debugging capability for failed runs
3. Evidence that a delivery happened exactly once

The audit logger:
- Is async to not block main flow
- Gracefully handles failures (a broken audit table never stops a delivery)
- Supports correlation IDs to trace all events of one run
"""

import logging
import sys
from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

import structlog

from lastwish.models.audit import AuditEvent, AuditEventBuilder, AuditSeverity
from lastwish.services.storage import AuditStorageInterface


# Configure structlog for local logging
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)


def configure_logging(level: str = "INFO") -> None:
    """
    Route stdlib logging (and therefore structlog) to stderr at `level`.

    stdout is kept free for the JSON reports printed by the CLI.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        force=True,
    )


class AuditLogger:
    """
    Central audit logging service.

    Logs events both to:
    1. Structured local log (for debugging)
    2. Audit storage (for persistence)
    """

    def __init__(
        self,
        storage: Optional[AuditStorageInterface] = None,
    ):
        """
        Initialize audit logger.

        Args:
            storage: Storage backend for persistence.
                    If None, only logs locally.
        """
        self._storage = storage
        self._logger = structlog.get_logger()

    async def log(self, event: AuditEvent) -> bool:
        """
        Log an audit event.

        Always logs locally. Persists to storage if available.

        Returns True if storage write succeeded (or no storage configured).
        """
        # Always log locally
        log_dict = event.to_log_dict()

        if event.severity == AuditSeverity.CRITICAL:
            self._logger.critical("audit_event", **log_dict)
        elif event.severity == AuditSeverity.ERROR:
            self._logger.error("audit_event", **log_dict)
        elif event.severity == AuditSeverity.WARNING:
            self._logger.warning("audit_event", **log_dict)
        else:
            self._logger.info("audit_event", **log_dict)

        # Persist to storage if available
        if self._storage:
            try:
                return await self._storage.append_event(event)
            except Exception as e:
                # Log failure but don't raise
                self._logger.error(
                    "audit_storage_failed",
                    error=str(e),
                    event_id=str(event.event_id),
                )
                return False

        return True

    async def log_scan_completed(
        self,
        scanned: int,
        overdue: int,
        malformed: int,
        correlation_id: UUID,
    ) -> None:
        """Log a finished overdue scan."""
        await self.log(AuditEventBuilder.scan_completed(
            scanned=scanned,
            overdue=overdue,
            malformed=malformed,
            correlation_id=correlation_id,
        ))

    async def log_scan_failed(
        self,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.scan_failed(
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_settings_malformed(
        self,
        user_id: Optional[str],
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.settings_malformed(
            user_id=user_id,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_claim_won(
        self,
        user_id: str,
        days_overdue: Optional[int],
        correlation_id: UUID,
        is_manual: bool = False,
    ) -> None:
        """Log a won claim. Everything after this point is a real delivery."""
        await self.log(AuditEventBuilder.claim_won(
            user_id=user_id,
            days_overdue=days_overdue,
            correlation_id=correlation_id,
            is_manual=is_manual,
        ))

    async def log_claim_lost(
        self,
        user_id: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.claim_lost(
            user_id=user_id,
            correlation_id=correlation_id,
        ))

    async def log_claim_released(
        self,
        user_id: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.claim_released(
            user_id=user_id,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_configuration_rejected(
        self,
        user_id: str,
        issues: list[dict],
        correlation_id: UUID,
    ) -> None:
        """Log an overdue user whose settings cannot be delivered."""
        await self.log(AuditEventBuilder.configuration_rejected(
            user_id=user_id,
            issues=issues,
            correlation_id=correlation_id,
        ))

    async def log_export_built(
        self,
        user_id: str,
        counts: dict[str, int],
        omitted: dict[str, str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.export_built(
            user_id=user_id,
            counts=counts,
            omitted=omitted,
            correlation_id=correlation_id,
        ))

    async def log_category_omitted(
        self,
        user_id: str,
        category: str,
        reason: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.category_omitted(
            user_id=user_id,
            category=category,
            reason=reason,
            correlation_id=correlation_id,
        ))

    async def log_delivery_sent(
        self,
        user_id: str,
        recipient_email: str,
        message_id: Optional[str],
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.delivery_sent(
            user_id=user_id,
            recipient_email=recipient_email,
            message_id=message_id,
            correlation_id=correlation_id,
        ))

    async def log_delivery_failed(
        self,
        user_id: str,
        recipient_email: str,
        error_message: str,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.delivery_failed(
            user_id=user_id,
            recipient_email=recipient_email,
            error_message=error_message,
            correlation_id=correlation_id,
        ))

    async def log_dispatch_completed(
        self,
        user_id: str,
        attempted: int,
        succeeded: int,
        failed: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.dispatch_completed(
            user_id=user_id,
            attempted=attempted,
            succeeded=succeeded,
            failed=failed,
            correlation_id=correlation_id,
        ))

    async def log_test_delivery_sent(
        self,
        user_id: str,
        attempted: int,
        succeeded: int,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.test_delivery_sent(
            user_id=user_id,
            attempted=attempted,
            succeeded=succeeded,
            correlation_id=correlation_id,
        ))

    async def log_check_in(
        self,
        user_id: str,
        checked_in_at: datetime,
        was_triggered: bool,
        correlation_id: UUID,
    ) -> None:
        """Log a user check-in."""
        await self.log(AuditEventBuilder.check_in_recorded(
            user_id=user_id,
            checked_in_at=checked_in_at,
            was_triggered=was_triggered,
            correlation_id=correlation_id,
        ))

    async def log_run_completed(
        self,
        summary: dict,
        correlation_id: UUID,
    ) -> None:
        await self.log(AuditEventBuilder.run_completed(
            summary=summary,
            correlation_id=correlation_id,
        ))

    async def log_error(
        self,
        error_type: str,
        error_message: str,
        details: Optional[dict] = None,
        correlation_id: Optional[UUID] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Log an error."""
        event = AuditEventBuilder.system_error(
            error_type=error_type,
            error_message=error_message,
            details=details,
            correlation_id=correlation_id,
            user_id=user_id,
        )
        await self.log(event)


def create_correlation_id() -> UUID:
    """
    Create a new correlation ID for tracking related events.

    Use this at the start of a run or operator action.
    Pass it through all subsequent operations.
    """
    return uuid4()
