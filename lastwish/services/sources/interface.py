"""
Category Data Source Interface

Each exportable data category (accounts, transactions, ...) is read through a
CategorySource. The export builder does not know where the records live.
"""

from abc import ABC, abstractmethod
from typing import Any


class CategorySource(ABC):
    """Reads all records of one category for one user."""

    @abstractmethod
    async def fetch(self, user_id: str) -> list[dict[str, Any]]:
        """
        Fetch the user's records.

        Args:
            user_id: Owner of the records

        Returns:
            Records as plain dicts (possibly empty)

        Raises:
            SourceError: If the records cannot be read
        """
        pass


class SourceError(Exception):
    """A category source could not be read."""
    pass
