"""
Datetime utilities.

All timestamps are stored as naive UTC datetimes.
"""

from datetime import datetime, timezone


def utcnow():
    """Current UTC time as a naive datetime, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def isoformat_or_none(dt):
    """Serialize a datetime for JSON responses, passing None through."""
    return dt.isoformat() if dt else None
