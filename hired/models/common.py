"""
hired/models/common.py

Timestamp helpers shared by the domain models.

Every timestamp leaving this package is timezone-aware UTC. SQLite hands
DateTime columns back naive; those are UTC wall-clock values by construction.
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Interpret naive datetimes as UTC and convert aware ones to UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
