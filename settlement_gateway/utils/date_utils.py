"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    """Current settlement day (UTC)"""
    return utc_now().date()


def add_days(from_date: date, days: int) -> date:
    """Add calendar days to a date (no holiday calendar)"""
    return from_date + timedelta(days=days)
