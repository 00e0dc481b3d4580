"""
Trigger Guard

The idempotency gate of the whole engine. A claim is one conditional update:

    SET delivery_triggered = true
    WHERE user_id = ? AND delivery_triggered = false

Whichever invocation's update changes the row owns the episode. Everyone
else sees False and skips.

CRITICAL: Never retry a claim or a release. A retried claim whose first
attempt actually landed would report "lost" to its own winner, and a retried
release could undo a claim taken by another invocation in between.
"""

from typing import Optional

import structlog

from lastwish.models.settings import utc_now
from lastwish.services.storage import SettingsStorageInterface


logger = structlog.get_logger()


class TriggerGuard:
    """Atomic claim and release of a user's delivery episode."""

    def __init__(self, store: SettingsStorageInterface):
        self._store = store

    async def try_claim(self, user_id: str) -> bool:
        """
        Claim the delivery of `user_id`.

        Returns:
            True if this caller won the right to dispatch

        Raises:
            StorageError: If the store could not be reached
        """
        won = await self._store.conditional_update(
            user_id,
            {"delivery_triggered": True, "updated_at": utc_now().isoformat()},
            where_delivery_triggered=False,
        )
        logger.info("delivery_claim", user_id=user_id, won=won)
        return won

    async def release(self, user_id: str, reason: Optional[str] = None) -> bool:
        """
        Give a claim back. Only valid while no send has been attempted.

        Returns:
            True if the flag was cleared by this call
        """
        released = await self._store.conditional_update(
            user_id,
            {"delivery_triggered": False, "updated_at": utc_now().isoformat()},
            where_delivery_triggered=True,
        )
        logger.warning("delivery_claim_released", user_id=user_id, released=released, reason=reason)
        return released
