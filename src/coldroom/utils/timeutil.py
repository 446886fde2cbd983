"""
Time helpers shared by the stores.
"""

import time
from datetime import datetime, timezone


def utc_now_iso() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


def epoch_seconds() -> float:
    """Current wall-clock time in seconds since the epoch."""
    return time.time()
