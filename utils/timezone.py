"""UTC-everywhere time handling.

Profiles, audit rows and auth events carry aware datetimes, always in UTC.
"""

from datetime import datetime, timezone


def now_utc() -> datetime:
    """
    Current time in UTC.

    Use this instead of datetime.now() everywhere.
    """
    return datetime.now(timezone.utc)
