"""
Activity feed — reconcile events appended to a Redis Stream per Fleet and
broadcast on a shared channel for dashboards (optional, non-fatal).
"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import redis

logger = logging.getLogger("fleet-operator.events")

STREAM_MAXLEN = 100
CHANNEL = "fleet:events"


def stream_key(namespace: str, name: str) -> str:
    return f"fleet:events:{namespace}/{name}"


def _now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


class EventPublisher:
    """Publishes pass events when ``redis_url`` is configured."""

    def __init__(self, redis_url: str = ""):
        self._redis_url = redis_url
        self._client: Optional[redis.Redis] = None

    def _get_redis(self) -> Optional[redis.Redis]:
        """Lazy-init Redis client. Returns None if unavailable."""
        if self._client is not None:
            return self._client
        if not self._redis_url:
            return None
        try:
            self._client = redis.Redis.from_url(self._redis_url, decode_responses=True)
            self._client.ping()
            logger.info(f"Redis connected: {self._redis_url}")
            return self._client
        except redis.RedisError as e:
            logger.warning(f"Redis unavailable (non-fatal): {e}")
            self._client = None
            return None

    def publish(self, namespace: str, name: str, event_type: str, message: str, phase: str = ""):
        r = self._get_redis()
        if not r:
            return
        entry = {
            "type": event_type,
            "message": message,
            "phase": phase,
            "timestamp": _now(),
            "fleet": f"{namespace}/{name}",
        }
        try:
            r.xadd(stream_key(namespace, name), entry, maxlen=STREAM_MAXLEN)
            r.publish(CHANNEL, json.dumps(entry))
        except redis.RedisError as e:
            logger.debug(f"Redis publish failed (non-fatal): {e}")
