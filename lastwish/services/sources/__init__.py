"""Category data sources package."""

from lastwish.services.sources.interface import CategorySource, SourceError
from lastwish.services.sources.supabase_sources import (
    CATEGORY_TABLES,
    SupabaseTableSource,
    create_supabase_sources,
)

__all__ = [
    "CATEGORY_TABLES",
    "CategorySource",
    "SourceError",
    "SupabaseTableSource",
    "create_supabase_sources",
]
