"""
Trade Log - Bounded recent-trade list in Redis, for observability only.

Each trade is LPUSHed as JSON onto trades:<mint> and the list is trimmed
to the newest MAX_ENTRIES. Nothing here is ever read back into trading
decisions. Without REDIS_URL the log is disabled and push() is a no-op.
"""
import json
import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from .models import TradeObservation

logger = logging.getLogger(__name__)

MAX_ENTRIES = 2000


def trades_key(mint: str) -> str:
    return f"trades:{mint}"


class TradeLog:

    def __init__(self, redis_url: Optional[str] = None, max_entries: int = MAX_ENTRIES,
                 client=None):
        self.redis_url = redis_url
        self.max_entries = max_entries
        self._redis = client
        self.total_pushed = 0

    @property
    def enabled(self) -> bool:
        return self._redis is not None or bool(self.redis_url)

    def _client(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url, decode_responses=True)
        return self._redis

    async def push(self, mint: str, obs: TradeObservation) -> bool:
        """Append one trade. Redis errors are logged, never raised."""
        if not self.enabled:
            return False

        key = trades_key(mint)
        try:
            client = self._client()
            await client.lpush(key, json.dumps(obs.to_dict()))
            await client.ltrim(key, 0, self.max_entries - 1)
        except RedisError as e:
            logger.warning(f"[trade_log] push to {key} failed: {e}")
            return False

        self.total_pushed += 1
        return True

    async def close(self):
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
