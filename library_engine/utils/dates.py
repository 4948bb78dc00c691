from datetime import date, datetime
from typing import Optional, Union

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'
DATE_FORMAT = '%Y-%m-%d'


def format_timestamp(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp, accepting date-only values as midnight."""
    if not value:
        return None
    try:
        return datetime.strptime(value, TIMESTAMP_FORMAT)
    except ValueError:
        return datetime.strptime(value, DATE_FORMAT)


def format_date(value: Union[date, datetime]) -> str:
    if isinstance(value, datetime):
        value = value.date()
    return value.strftime(DATE_FORMAT)


def parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    return datetime.strptime(value[:10], DATE_FORMAT).date()


def calendar_days_between(start: datetime, end: datetime) -> int:
    """Whole calendar days from ``start`` to ``end`` (negative if end is earlier)."""
    return (end.date() - start.date()).days
