"""
Event journal for lifecycle events.

Mirrors forwarded events into Redis so observers can read recent history
or subscribe to a live channel.

Design Principles:
- Graceful degradation: Redis failures are logged, never raised
- Bounded: history per profile is trimmed to history_size
"""

import json
import logging
from typing import Any, Dict, List

from .events import LifecycleEvent

logger = logging.getLogger("sessionhub.journal")


class EventJournal:
    """
    Stores lifecycle events in Redis.

    Key layout:
    - events:profile:{id}  list, newest first
    - events:profile:{id}  pub/sub channel with the same name
    """

    DEFAULT_HISTORY_SIZE = 200

    def __init__(self, redis_client, history_size: int = DEFAULT_HISTORY_SIZE):
        """
        Initialize event journal.

        Args:
            redis_client: Async Redis client
            history_size: Events kept per profile
        """
        self.redis = redis_client
        self.history_size = history_size

    @staticmethod
    def channel(profile_id: str) -> str:
        """Redis key and pub/sub channel for a profile."""
        return f"events:profile:{profile_id}"

    async def record(self, event: LifecycleEvent) -> bool:
        """
        Append an event to the profile history and publish it.

        Returns:
            True if recorded, False otherwise
        """
        key = self.channel(event.profile_id)
        data = json.dumps(event.to_dict())
        try:
            await self.redis.lpush(key, data)
            await self.redis.ltrim(key, 0, self.history_size - 1)
            await self.redis.publish(key, data)
            return True
        except Exception as e:
            logger.error(f"Failed to journal {event.kind.value} for {event.profile_id}: {e}")
            return False

    async def recent(self, profile_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Most recent events for a profile, newest first.

        Returns:
            List of event dicts (empty on Redis failure)
        """
        limit = max(1, min(limit, self.history_size))
        try:
            raw_events = await self.redis.lrange(self.channel(profile_id), 0, limit - 1)
        except Exception as e:
            logger.error(f"Failed to read event history for {profile_id}: {e}")
            return []

        events = []
        for raw in raw_events:
            if isinstance(raw, bytes):
                raw = raw.decode("utf-8")
            events.append(json.loads(raw))
        return events
