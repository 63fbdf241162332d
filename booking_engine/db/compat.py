"""
Dialect-neutral helpers shared by PostgreSQL (production) and SQLite (tests).
"""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp.

    Columns are plain ``DateTime`` (no tz) so values compare the same way on
    PostgreSQL and SQLite.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)
