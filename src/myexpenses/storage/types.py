"""Custom SQLAlchemy types used by the persistence layer."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy.types import DateTime, TypeDecorator


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware UTC timestamp on every dialect.

    PostgreSQL stores ``timestamptz`` natively.  SQLite has no timezone
    support and hands back naive values, so results are re-attached to UTC
    on the way out.  Naive values are rejected on the way in.
    """

    cache_ok = True
    impl = DateTime(timezone=True)

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError(f"UTCDateTime requires a timezone-aware datetime, got {value!r}")
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
