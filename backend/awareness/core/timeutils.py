"""Naive-UTC time helpers shared by models and services."""
from datetime import datetime, timedelta, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching what SQLite hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def days_from(start: datetime, days: Optional[int]) -> Optional[datetime]:
    if not days:
        return None
    return start + timedelta(days=days)
