"""Record store clients."""

from __future__ import annotations

from ..config import Settings, get_settings
from .base import FieldFilter, Record, RecordStore, contains, eq, matches_all


def create_record_store(settings: Settings | None = None) -> RecordStore:
    """Build the store selected by ``DASHBOARD_RECORD_BACKEND``."""
    settings = settings or get_settings()
    if settings.record_backend == "database":
        from ..db.session import init_database
        from .database import DatabaseRecordStore

        init_database()
        return DatabaseRecordStore()
    from .airtable import AirtableRecordStore

    return AirtableRecordStore.from_settings(settings)


__all__ = [
    "FieldFilter",
    "Record",
    "RecordStore",
    "contains",
    "create_record_store",
    "eq",
    "matches_all",
]
