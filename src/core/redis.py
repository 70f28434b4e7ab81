"""
Redis connection used for short-lived shared state (authorization codes).

Redis is optional at runtime: when it is disabled or unreachable every command
returns a neutral value (None/False) and logs a warning, and callers decide what
a miss means for them.
"""
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from core.config import Settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisClient:
    """Pooled async Redis connection that degrades to no-ops on failure."""

    def __init__(self, url: str, enabled: bool = True, pool_size: int = 20) -> None:
        self._url = url
        self._enabled = enabled
        self._pool_size = pool_size
        self._pool: ConnectionPool | None = None
        self._client: Redis | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "RedisClient":
        """Build a client from the REDIS_* settings."""
        return cls(
            settings.redis_url,
            enabled=settings.redis_enabled,
            pool_size=settings.redis_pool_size,
        )

    async def __aenter__(self) -> "RedisClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def connect(self) -> None:
        """Open the pool and check the server answers. Failure leaves the client offline."""
        if not self._enabled:
            logger.info("redis_disabled")
            return
        try:
            self._pool = ConnectionPool.from_url(self._url, max_connections=self._pool_size)
            self._client = Redis(connection_pool=self._pool)
            await self._client.ping()
        except RedisError as e:
            logger.warning("redis_unavailable url=%s error=%s", self._url, e)
            await self.close()
            return
        logger.info("redis_connected")

    async def close(self) -> None:
        """Release the pool."""
        client, self._client, self._pool = self._client, None, None
        if client is not None:
            await client.aclose()

    @property
    def is_connected(self) -> bool:
        """Whether commands are sent to a server."""
        return self._client is not None

    async def _run(
        self,
        command: str,
        call: Callable[[Redis], Awaitable[T]],
        fallback: T,
    ) -> T:
        if self._client is None:
            return fallback
        try:
            return await call(self._client)
        except RedisError as e:
            logger.warning("redis_command_failed command=%s error=%s", command, e)
            return fallback

    async def ping(self) -> bool:
        """True if the server answered a PING."""
        return await self._run("PING", lambda r: r.ping(), False)

    async def setex(self, key: str, seconds: int, value: str | bytes) -> bool:
        """Store a value with a TTL. False if it was not stored."""

        async def call(r: Redis) -> bool:
            await r.setex(key, seconds, value)
            return True

        return await self._run("SETEX", call, False)

    async def getdel(self, key: str) -> bytes | None:
        """Read and remove a value in one step. None if missing or offline."""
        return await self._run("GETDEL", lambda r: r.getdel(key), None)

    async def delete(self, *keys: str) -> bool:
        """Remove keys. False if the command could not be sent."""

        async def call(r: Redis) -> bool:
            await r.delete(*keys)
            return True

        return await self._run("DEL", call, False)


class _RedisState:
    """Process-wide client registered at startup."""

    client: RedisClient | None = None


_state = _RedisState()


def get_redis_client() -> RedisClient | None:
    """Return the registered client, if any."""
    return _state.client


def set_redis_client(client: RedisClient | None) -> None:
    """Register (or clear) the process-wide client."""
    _state.client = client
