"""Time source for the auth services."""

from collections.abc import Callable
from datetime import datetime, timezone

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, the form DateTime columns round-trip."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
