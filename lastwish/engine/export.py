"""
Export Builder

Assembles a snapshot of a user's selected data categories.

DESIGN DECISION: Failure is graded.
- The owner's profile is required. Without it we cannot say whose data
  this is, so the build fails (UserRecordUnavailableError).
- Any single category may be empty or unreadable. An unreadable category is
  left out and the reason recorded in `omitted`; the rest still ships.

`analytics` is not a table. It is derived from accounts, transactions and
lend/borrow records, which are read for it even when those categories are
not themselves selected.
"""

import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Optional

import structlog

from lastwish.models.delivery import ExportPayload
from lastwish.models.settings import DataCategory, IncludeData, ensure_utc, utc_now
from lastwish.services.sources import CategorySource
from lastwish.services.storage import SettingsStorageInterface, StorageError


logger = structlog.get_logger()

ANALYTICS_INPUTS = (
    DataCategory.ACCOUNTS,
    DataCategory.TRANSACTIONS,
    DataCategory.LEND_BORROW,
)


class ExportError(Exception):
    """Base exception for export building."""
    pass


class UserRecordUnavailableError(ExportError):
    """The owner's profile could not be read."""

    def __init__(self, user_id: str, message: str):
        self.user_id = user_id
        super().__init__(message)


def _amount(record: dict[str, Any], key: str = "amount") -> float:
    value = record.get(key)
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def compute_analytics(
    accounts: list[dict[str, Any]],
    transactions: list[dict[str, Any]],
    lend_borrow: Optional[list[dict[str, Any]]] = None,
) -> dict[str, Any]:
    """
    Derive the analytics block.

    Balances are summed per currency. Lend/borrow totals only count
    records that are not settled, and are absent when those records
    could not be read.
    """
    balances: dict[str, float] = defaultdict(float)
    for account in accounts:
        balances[account.get("currency") or "USD"] += _amount(account, "balance")

    income = sum(_amount(t) for t in transactions if t.get("type") == "income")
    expense = sum(_amount(t) for t in transactions if t.get("type") == "expense")

    analytics: dict[str, Any] = {
        "account_count": len(accounts),
        "balances_by_currency": {k: round(v, 2) for k, v in sorted(balances.items())},
        "transaction_count": len(transactions),
        "total_income": round(income, 2),
        "total_expense": round(expense, 2),
        "net_flow": round(income - expense, 2),
    }

    if lend_borrow is not None:
        open_records = [r for r in lend_borrow if r.get("status") != "settled"]
        analytics["outstanding_lent"] = round(
            sum(_amount(r) for r in open_records if r.get("type") == "lend"), 2
        )
        analytics["outstanding_borrowed"] = round(
            sum(_amount(r) for r in open_records if r.get("type") == "borrow"), 2
        )

    return analytics


class ExportBuilder:
    """
    Builds ExportPayloads from the registered category sources.
    """

    def __init__(
        self,
        store: SettingsStorageInterface,
        sources: dict[DataCategory, CategorySource],
    ):
        self._store = store
        self._sources = sources

    async def _read_profile(self, user_id: str) -> dict[str, Any]:
        try:
            profiles = await self._store.get_user_profiles([user_id])
        except StorageError as e:
            raise UserRecordUnavailableError(
                user_id, f"Could not read profile of user {user_id}: {e}"
            ) from e
        profile = profiles.get(user_id)
        if profile is None:
            raise UserRecordUnavailableError(user_id, f"User {user_id} has no profile")
        return profile

    async def _fetch(
        self,
        user_id: str,
        category: DataCategory,
    ) -> tuple[DataCategory, Optional[list[dict[str, Any]]], Optional[str]]:
        """Returns (category, records, None) or (category, None, reason)."""
        source = self._sources.get(category)
        if source is None:
            return category, None, "no data source configured"
        try:
            return category, await source.fetch(user_id), None
        except Exception as e:
            # Soft fail: one category never sinks the export
            logger.warning(
                "export_category_unavailable",
                user_id=user_id,
                category=category.value,
                error=str(e),
            )
            return category, None, f"source unavailable: {e}"

    async def build_export(
        self,
        user_id: str,
        include_data: IncludeData,
        message: str = "",
        now: Optional[datetime] = None,
    ) -> ExportPayload:
        """
        Build the export of one user.

        Args:
            user_id: Owner of the data
            include_data: Selected categories
            message: The owner's personal note
            now: Generation time (defaults to the current time)

        Returns:
            ExportPayload with one section per readable selected category

        Raises:
            UserRecordUnavailableError: If the owner's profile cannot be read
        """
        generated_at = ensure_utc(now) if now else utc_now()
        profile = await self._read_profile(user_id)

        selected = include_data.selected()
        wanted = [c for c in selected if c != DataCategory.ANALYTICS]
        if DataCategory.ANALYTICS in selected:
            wanted.extend(c for c in ANALYTICS_INPUTS if c not in wanted)

        fetched = await asyncio.gather(*(self._fetch(user_id, c) for c in wanted))
        records = {category: rows for category, rows, _ in fetched if rows is not None}
        failures = {category: reason for category, _, reason in fetched if reason is not None}

        payload = ExportPayload(
            user_id=user_id,
            owner_email=profile.get("email"),
            owner_name=profile.get("full_name") or profile.get("name"),
            generated_at=generated_at,
            message=message or "",
        )

        counts: dict[str, int] = {}
        for category in selected:
            if category == DataCategory.ANALYTICS:
                continue
            if category in records:
                payload.sections[category] = records[category]
                counts[category.value] = len(records[category])
            else:
                payload.omitted[category] = failures[category]

        payload.structured_summary["counts"] = counts

        if DataCategory.ANALYTICS in selected:
            missing = [
                c.value for c in (DataCategory.ACCOUNTS, DataCategory.TRANSACTIONS)
                if c not in records
            ]
            if missing:
                payload.omitted[DataCategory.ANALYTICS] = (
                    f"inputs unavailable: {', '.join(missing)}"
                )
            else:
                payload.structured_summary["analytics"] = compute_analytics(
                    records[DataCategory.ACCOUNTS],
                    records[DataCategory.TRANSACTIONS],
                    records.get(DataCategory.LEND_BORROW),
                )

        logger.info(
            "export_built",
            user_id=user_id,
            counts=counts,
            omitted=[c.value for c in payload.omitted],
        )
        return payload
