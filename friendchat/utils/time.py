# friendchat/utils/time.py

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    """Текущее время в UTC без tzinfo - в таком виде время хранится в БД."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
