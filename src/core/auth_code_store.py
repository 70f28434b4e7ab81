"""
Shared store for short-lived OAuth authorization codes.

Codes live in Redis rather than process memory so that an exchange can land on
any instance and survive a restart. Each code is single use: consume() reads
and deletes it in one GETDEL round trip.
"""
import json
import logging
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from core.redis import RedisClient

logger = logging.getLogger(__name__)

# Included in every key (e.g., "auth:v1:code:...").
# Bump when AuthCodeGrant fields change so entries written by older code are ignored.
CODE_SCHEMA_VERSION = 1


@dataclass
class AuthCodeGrant:
    """What an authorization code is bound to until it is exchanged."""

    user_id: str
    email: str | None
    code_challenge: str


class AuthCodeStore:
    """TTL-bounded, single-use storage of authorization codes keyed by code."""

    def __init__(self, redis_client: "RedisClient", ttl_seconds: int = 600) -> None:
        self._redis = redis_client
        self._ttl = ttl_seconds

    def _key(self, code: str) -> str:
        return f"auth:v{CODE_SCHEMA_VERSION}:code:{code}"

    async def save(self, code: str, grant: AuthCodeGrant) -> bool:
        """
        Store a grant under its code with the configured TTL.

        Returns:
            False if Redis is unavailable and the code could not be stored.
        """
        stored = await self._redis.setex(self._key(code), self._ttl, json.dumps(asdict(grant)))
        if not stored:
            logger.warning("auth_code_store_unavailable action=save")
        return stored

    async def consume(self, code: str) -> AuthCodeGrant | None:
        """
        Return and remove the grant for a code.

        Returns None for unknown, expired, or already consumed codes, and when
        Redis is unavailable.
        """
        data = await self._redis.getdel(self._key(code))
        if data is None:
            logger.debug("auth_code_miss")
            return None
        return AuthCodeGrant(**json.loads(data))

    async def revoke(self, code: str) -> None:
        """Invalidate a code before it is exchanged."""
        await self._redis.delete(self._key(code))


# Global store instance (set during startup)
class _AuthCodeStoreState:
    """Container for global auth code store state."""

    store: AuthCodeStore | None = None


_state = _AuthCodeStoreState()


def get_auth_code_store() -> AuthCodeStore | None:
    """Get the global auth code store instance."""
    return _state.store


def set_auth_code_store(store: AuthCodeStore | None) -> None:
    """Set the global auth code store instance."""
    _state.store = store
