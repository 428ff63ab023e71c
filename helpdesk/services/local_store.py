"""Persistent local store for the ticket cache's second tier.

A best-effort key/value store: every call reports success, absence or error
as a value and never raises. Redis is the primary backend; when it cannot be
reached the app uses the in-process MemoryLocalStore, which lives only as
long as the process does.
"""

import enum
import logging
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class StoreStatus(enum.Enum):
    OK = "ok"
    ABSENT = "absent"
    ERROR = "error"


@dataclass(frozen=True)
class StoreRead:
    """Tri-state read result; ``payload`` is set only when status is OK."""

    status: StoreStatus
    payload: bytes | None = None

    @property
    def found(self) -> bool:
        return self.status is StoreStatus.OK


ABSENT = StoreRead(StoreStatus.ABSENT)
FAILED = StoreRead(StoreStatus.ERROR)


@runtime_checkable
class LocalStore(Protocol):
    """Capability interface consumed by the tiered ticket cache."""

    @property
    def backend_name(self) -> str:
        ...

    async def try_read(self, key: str) -> StoreRead:
        ...

    async def try_write(self, key: str, payload: bytes) -> bool:
        ...

    async def try_delete(self, key: str) -> bool:
        ...


class RedisLocalStore:
    """Redis-backed store. Keys are written without TTL; callers enforce freshness."""

    backend_name = "redis"

    def __init__(self, redis_url: str = "", client=None):
        self._redis_url = redis_url
        self._redis = client
        self._available = client is not None

    @property
    def available(self) -> bool:
        return self._available

    async def connect(self) -> bool:
        """Connect to Redis. Returns True on success."""
        try:
            import redis.asyncio as aioredis

            self._redis = aioredis.from_url(
                self._redis_url,
                socket_connect_timeout=3,
            )
            await self._redis.ping()
            self._available = True
            return True
        except Exception as e:
            logger.warning("Redis connection failed | %s", str(e)[:100])
            self._redis = None
            self._available = False
            return False

    async def disconnect(self):
        """Close Redis connection."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            self._available = False

    async def try_read(self, key: str) -> StoreRead:
        if not self._available or self._redis is None:
            return FAILED
        try:
            data = await self._redis.get(key)
        except Exception as e:
            logger.debug("Redis GET error | key=%s | %s", key, str(e)[:100])
            return FAILED
        if data is None:
            return ABSENT
        if isinstance(data, str):
            data = data.encode("utf-8")
        return StoreRead(StoreStatus.OK, data)

    async def try_write(self, key: str, payload: bytes) -> bool:
        if not self._available or self._redis is None:
            return False
        try:
            await self._redis.set(key, payload)
            logger.debug("Redis SET | key=%s | bytes=%d", key, len(payload))
            return True
        except Exception as e:
            logger.debug("Redis SET error | key=%s | %s", key, str(e)[:100])
            return False

    async def try_delete(self, key: str) -> bool:
        if not self._available or self._redis is None:
            return False
        try:
            await self._redis.delete(key)
            return True
        except Exception as e:
            logger.debug("Redis DELETE error | key=%s | %s", key, str(e)[:100])
            return False


class MemoryLocalStore:
    """In-process store, used when Redis is unavailable and in tests."""

    backend_name = "memory"

    def __init__(self):
        self._data: dict[str, bytes] = {}

    async def try_read(self, key: str) -> StoreRead:
        payload = self._data.get(key)
        if payload is None:
            return ABSENT
        return StoreRead(StoreStatus.OK, payload)

    async def try_write(self, key: str, payload: bytes) -> bool:
        self._data[key] = payload
        return True

    async def try_delete(self, key: str) -> bool:
        self._data.pop(key, None)
        return True
