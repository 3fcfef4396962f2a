from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # sqlite hands DateTime(timezone=True) columns back naive
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
