"""
Short-lived keyed state in Redis.

Values survive process restarts and are shared by every worker; Redis expires
them. Used for one-time connect state tokens.

Keys: {prefix}:{key} -> JSON value, SETEX'd with the ttl.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, Optional

import redis

from app.core.config import REDIS_URL

logger = logging.getLogger(__name__)

_client: Optional[redis.Redis] = None


def get_redis() -> redis.Redis:
    global _client
    if _client is None:
        _client = redis.from_url(REDIS_URL, decode_responses=True)
    return _client


class TTLStore:
    def __init__(self, prefix: str, default_ttl: int, client: redis.Redis | None = None):
        self.prefix = prefix
        self.default_ttl = default_ttl
        self._client = client

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = get_redis()
        return self._client

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def set(self, key: str, value: Dict[str, Any], ttl: int | None = None) -> None:
        ttl = int(ttl or self.default_ttl)
        payload = {**value, "_expires_at": time.time() + ttl}
        self.client.setex(self._key(key), ttl, json.dumps(payload))

    def get_and_delete(self, key: str) -> Optional[Dict[str, Any]]:
        """One-time read: GET and DEL in one pipeline so a value is consumed once."""
        pipe = self.client.pipeline()
        pipe.get(self._key(key))
        pipe.delete(self._key(key))
        raw, _deleted = pipe.execute()

        if not raw:
            return None
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning(f"Discarding unreadable value under {self._key(key)}")
            return None

        if data.pop("_expires_at", 0) < time.time():
            return None
        return data
