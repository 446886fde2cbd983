"""
Presence Tracker

Ephemeral online status: user id -> last liveness signal. Populated on
login and on every ping, cleared on disconnect. Never persisted.
"""

import logging
from typing import Dict, List, Optional

from .utils import epoch_seconds

logger = logging.getLogger(__name__)

PRESENCE_TIMEOUT = 120  # seconds without a ping before a user is pruned


class PresenceTracker:
    """Tracks which users are currently online."""

    def __init__(self):
        self._last_seen: Dict[str, float] = {}

    def touch(self, user_id: str, now: Optional[float] = None):
        """Record a liveness signal for a user."""
        self._last_seen[user_id] = epoch_seconds() if now is None else now

    def remove(self, user_id: str):
        self._last_seen.pop(user_id, None)

    def is_online(self, user_id: str) -> bool:
        return user_id in self._last_seen

    def last_seen(self, user_id: str) -> Optional[float]:
        return self._last_seen.get(user_id)

    def prune(
        self, timeout: float = PRESENCE_TIMEOUT, now: Optional[float] = None
    ) -> List[str]:
        """
        Drop users whose last ping is older than the timeout.

        Returns:
            IDs of users that were pruned
        """
        current = epoch_seconds() if now is None else now
        stale = [
            user_id
            for user_id, seen in self._last_seen.items()
            if current - seen > timeout
        ]
        for user_id in stale:
            del self._last_seen[user_id]
        if stale:
            logger.info(f"Pruned {len(stale)} stale presence entries")
        return stale
