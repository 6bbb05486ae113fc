"""
RFC3339 timestamp helpers.

Timestamps are kept timezone-aware (UTC) in memory and stored as naive UTC
datetimes, so that SQL range comparisons stay lexical and consistent
across SQLite and PostgreSQL.
"""

import re
from datetime import datetime, timezone
from typing import Any, Optional

from fleetsync.errors import ValidationError

# date-time production of RFC3339 section 5.6
RFC3339_PATTERN = re.compile(
    r'[0-9]{4}-[0-9]{2}-[0-9]{2}[Tt][0-9]{2}:[0-9]{2}:[0-9]{2}(\.[0-9]+)?([Zz]|[+-][0-9]{2}:[0-9]{2})'
)


def parse_timestamp(value: Any) -> datetime:
    """
    Parse an RFC3339 string into an aware UTC datetime.

    Raises ValidationError for anything that is not a string carrying
    an explicit offset. Shorter ISO 8601 forms that fromisoformat
    accepts, such as a bare date, are rejected too.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'Invalid timestamp: {value!r}')

    text = value.strip()
    if not RFC3339_PATTERN.fullmatch(text):
        raise ValidationError(f'Invalid timestamp: {value!r}. Use RFC3339.')

    if text.endswith(('Z', 'z')):
        text = text[:-1] + '+00:00'

    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(f'Invalid timestamp: {value!r}. Use RFC3339.')

    return parsed.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Format a datetime as RFC3339 with a 'Z' suffix."""
    if value is None:
        return None
    return as_utc(value).isoformat().replace('+00:00', 'Z')


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a naive datetime read back from the database."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: datetime) -> datetime:
    """Convert an aware datetime to the naive UTC form stored in columns."""
    return as_utc(value).replace(tzinfo=None)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)
