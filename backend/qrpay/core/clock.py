"""Wall clock used by services that reason about expiry and cache age."""

from datetime import datetime, timezone
from typing import Callable

# Services take a Clock so tests can substitute a controllable one
Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
