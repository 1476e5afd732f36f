"""
Redis Connection Management

Redis connection with retry/backoff, keyed locks for per-user and
per-alert serialization, and enhanced-monitoring flags. Everything
degrades to process-local state when Redis is unavailable.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import ConnectionError, LockError, TimeoutError, RedisError

# Logger
logger = logging.getLogger(__name__)

# App prefix for namespacing (allows multiple apps/versions on same Redis)
APP_PREFIX = "sparq:safety:v1:"


class RedisClient:
    """
    Manages the Redis connection as a singleton.

    Features:
    - Connection pooling
    - Automatic retries
    - Timeouts
    - Graceful failure handling
    """

    _client: Optional[Redis] = None
    _connected: bool = False

    @classmethod
    async def get_client(cls, redis_url: str) -> Optional[Redis]:
        """
        Get or create Redis client.

        Args:
            redis_url: Redis connection URL

        Returns:
            Redis client or None if connection fails
        """
        if cls._client is not None and cls._connected:
            return cls._client

        try:
            # Retry configuration: 3 retries with exponential backoff
            retry = Retry(ExponentialBackoff(), retries=3)

            cls._client = redis.from_url(
                redis_url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5.0,
                socket_timeout=5.0,
                retry_on_timeout=True,
                retry=retry,
            )

            # Test connection
            await cls._client.ping()
            cls._connected = True
            logger.info("Redis connection established successfully")
            return cls._client

        except (ConnectionError, TimeoutError, RedisError) as e:
            logger.error(f"Failed to connect to Redis: {e}")
            cls._connected = False
            cls._client = None
            return None

    @classmethod
    async def close(cls) -> None:
        """Close Redis connection."""
        if cls._client is not None:
            try:
                await cls._client.aclose()
                logger.info("Redis connection closed")
            except RedisError as e:
                logger.error(f"Error closing Redis connection: {e}")
            finally:
                cls._client = None
                cls._connected = False

    @classmethod
    def is_connected(cls) -> bool:
        """Check if Redis is connected."""
        return cls._connected


class KeyedLock:
    """
    Mutual exclusion per (scope, key), e.g. ("history", user_id).

    Always takes a process-local asyncio.Lock; additionally takes a Redis
    lock when Redis is available so that several workers serialize on
    the same key.

    Keys:
    - sparq:safety:v1:lock:{scope}:{key}

    Usage:
        locks = KeyedLock(redis_client)
        async with locks.hold("alert", alert_id):
            ...
    """

    LOCK_PREFIX = f"{APP_PREFIX}lock:"

    def __init__(self, redis_client: Optional[Redis] = None, timeout_seconds: float = 10.0):
        self.redis = redis_client
        self.timeout_seconds = timeout_seconds
        self._local: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def _key(self, scope: str, key: str) -> str:
        """Generate lock key with namespace."""
        return f"{self.LOCK_PREFIX}{scope}:{key}"

    @asynccontextmanager
    async def hold(self, scope: str, key: str) -> AsyncIterator[None]:
        name = self._key(scope, key)
        local = self._local.setdefault(name, asyncio.Lock())
        self._holders[name] = self._holders.get(name, 0) + 1

        try:
            async with local:
                distributed = await self._acquire_distributed(name)
                try:
                    yield
                finally:
                    if distributed is not None:
                        await self._release_distributed(name, distributed)
        finally:
            self._holders[name] -= 1
            if self._holders[name] == 0:
                del self._holders[name]
                self._local.pop(name, None)

    async def _acquire_distributed(self, name: str):
        if self.redis is None:
            return None

        lock = self.redis.lock(
            name,
            timeout=self.timeout_seconds,
            blocking_timeout=self.timeout_seconds,
        )
        try:
            if await lock.acquire():
                return lock
            logger.error(f"Timed out waiting for lock {name} - continuing with local lock only")
        except RedisError as e:
            logger.error(f"Redis lock {name} unavailable: {e} - continuing with local lock only")
        return None

    async def _release_distributed(self, name: str, lock) -> None:
        try:
            await lock.release()
        except (LockError, RedisError) as e:
            logger.warning(f"Failed to release lock {name}: {e}")

    def is_held(self, scope: str, key: str) -> bool:
        """Check if the local lock for a key is currently held."""
        lock = self._local.get(self._key(scope, key))
        return lock is not None and lock.locked()


class MonitoringFlagStore:
    """
    Enhanced-monitoring flags per user, with expiry.

    Key: sparq:safety:v1:monitoring:{user_id} -> reason

    Falls back to an in-memory map when Redis is unavailable.
    """

    MONITORING_PREFIX = f"{APP_PREFIX}monitoring:"

    def __init__(self, redis_client: Optional[Redis] = None):
        self.redis = redis_client
        # user_id -> (expires_at monotonic, reason)
        self._in_memory_fallback: dict[str, tuple[float, str]] = {}

    def _key(self, user_id: str) -> str:
        """Generate monitoring key with namespace."""
        return f"{self.MONITORING_PREFIX}{user_id}"

    async def set_flag(self, user_id: str, ttl: timedelta, reason: str) -> None:
        """
        Put a user under enhanced monitoring.

        Args:
            user_id: User identifier
            ttl: How long the flag lasts
            reason: Why monitoring was started
        """
        if self.redis is not None:
            try:
                await self.redis.setex(self._key(user_id), ttl, reason)
                logger.info(f"Enhanced monitoring enabled for user={user_id}: {reason}")
                return
            except RedisError as e:
                logger.error(f"Failed to store monitoring flag for {user_id}: {e} - using memory")

        self._in_memory_fallback[user_id] = (time.monotonic() + ttl.total_seconds(), reason)
        logger.info(f"Enhanced monitoring enabled for user={user_id} (in-memory): {reason}")

    async def is_flagged(self, user_id: str) -> bool:
        """Check if a user is under enhanced monitoring."""
        if self.redis is not None:
            try:
                return bool(await self.redis.exists(self._key(user_id)))
            except RedisError as e:
                logger.error(f"Failed to read monitoring flag for {user_id}: {e}")

        entry = self._in_memory_fallback.get(user_id)
        if entry is None:
            return False
        expires_at, _ = entry
        if time.monotonic() >= expires_at:
            del self._in_memory_fallback[user_id]
            return False
        return True

    async def clear_flag(self, user_id: str) -> None:
        """Take a user off enhanced monitoring."""
        self._in_memory_fallback.pop(user_id, None)
        if self.redis is None:
            return
        try:
            await self.redis.delete(self._key(user_id))
        except RedisError as e:
            logger.error(f"Failed to clear monitoring flag for {user_id}: {e}")


async def check_redis_health(client: Optional[Redis]) -> bool:
    """
    Check Redis connectivity for health checks.

    Returns:
        True if Redis is accessible and responding, False otherwise
    """
    try:
        if client is None:
            return False

        await client.ping()
        return True

    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
