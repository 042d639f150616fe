"""Small shared utility helpers used across backend modules."""

import time
from datetime import datetime, timezone


def utc_iso_now() -> str:
    """Return current UTC timestamp as ISO-8601 string."""

    return datetime.now(timezone.utc).isoformat()


def now_ms() -> int:
    """Return current wall-clock time as integer epoch milliseconds."""

    return int(time.time() * 1000)
