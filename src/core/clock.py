"""Injectable wall clock."""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current instant, timezone-aware UTC."""
    return datetime.now(timezone.utc)
