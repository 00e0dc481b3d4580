"""
Supabase Category Sources

Every category lives in its own table keyed by `user_id`. The savings
category is stored in `donation_saving_records` for historical reasons.
"""

import asyncio
from typing import Any, Optional

from tenacity import retry, stop_after_attempt, wait_exponential

from lastwish.models.settings import DataCategory
from lastwish.services.sources.interface import CategorySource, SourceError
from lastwish.services.storage.supabase_store import SupabaseClient


CATEGORY_TABLES: dict[DataCategory, str] = {
    DataCategory.ACCOUNTS: "accounts",
    DataCategory.TRANSACTIONS: "transactions",
    DataCategory.PURCHASES: "purchases",
    DataCategory.LEND_BORROW: "lend_borrow",
    DataCategory.SAVINGS: "donation_saving_records",
}


class SupabaseTableSource(CategorySource):
    """Reads every row of one table belonging to a user."""

    def __init__(self, table_name: str, client: Optional[SupabaseClient] = None):
        self._table_name = table_name
        self._client = client or SupabaseClient()

    @property
    def table_name(self) -> str:
        return self._table_name

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def fetch(self, user_id: str) -> list[dict[str, Any]]:
        def _query():
            return (
                self._client.table(self._table_name)
                .select("*")
                .eq("user_id", user_id)
                .order("created_at")
            )

        def _read() -> list[dict[str, Any]]:
            return self._client.fetch_all(_query)

        try:
            return await asyncio.to_thread(_read)
        except Exception as e:
            raise SourceError(f"Failed to read {self._table_name}: {e}")


def create_supabase_sources(
    client: Optional[SupabaseClient] = None,
) -> dict[DataCategory, CategorySource]:
    """One table source per stored category, sharing a client."""
    client = client or SupabaseClient()
    return {
        category: SupabaseTableSource(table, client)
        for category, table in CATEGORY_TABLES.items()
    }
