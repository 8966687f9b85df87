"""
Redis identity cache for the ACL service.
"""

from datetime import datetime, timezone
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

from shared.logging import get_logger
from shared.errors import StoreUnavailableError
from ..models import ClientIdentity


class RedisIdentityCache:
    """Redis-backed cache of verified identities and user handle mappings.

    Two kinds of hashes are kept:

    - ``mapping:<username>``: durable link from an external user handle to
      the internal client id, along with the last verified fields.
    - ``token:<credential>``: the identity a credential resolved to, with a
      TTL so that expiry is handled by Redis itself.
    """

    MAPPING_PREFIX = "mapping:"
    TOKEN_PREFIX = "token:"
    CLIENT_ID_FIELD = "internalWaveUserID"

    def __init__(self, redis_url: str, token_ttl: int = 3600, client: Optional[redis.Redis] = None):
        self.redis_url = redis_url
        self.token_ttl = token_ttl
        self.logger = get_logger("acl.cache.identity")
        self.redis: Optional[redis.Redis] = client

    async def start(self):
        """Start the Redis cache."""
        try:
            if self.redis is None:
                self.redis = redis.from_url(
                    self.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    health_check_interval=30
                )

            # Test connection
            await self.redis.ping()

            self.logger.info("Identity cache started")

        except RedisError as e:
            self.logger.error("Failed to start identity cache", error=str(e))
            raise StoreUnavailableError("redis", str(e))

    async def stop(self):
        """Stop the Redis cache."""
        if self.redis:
            await self.redis.aclose()
            self.logger.info("Identity cache stopped")

    async def exists(self, key: str) -> bool:
        try:
            return bool(await self.redis.exists(key))
        except RedisError as e:
            self.logger.error("Error checking cache key", key=key, error=str(e))
            raise StoreUnavailableError("redis", str(e))

    async def get(self, key: str, field: str) -> Optional[str]:
        try:
            return await self.redis.hget(key, field)
        except RedisError as e:
            self.logger.error("Error reading cache field", key=key, field=field, error=str(e))
            raise StoreUnavailableError("redis", str(e))

    async def get_all(self, key: str) -> Dict[str, str]:
        try:
            return await self.redis.hgetall(key)
        except RedisError as e:
            self.logger.error("Error reading cache entry", key=key, error=str(e))
            raise StoreUnavailableError("redis", str(e))

    async def set(self, key: str, fields: Dict[str, str], ttl: Optional[int] = None) -> None:
        """Write hash fields, replacing their previous values."""
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.hset(key, mapping=fields)
                if ttl:
                    pipe.expire(key, ttl)
                await pipe.execute()
        except RedisError as e:
            self.logger.error("Error writing cache entry", key=key, error=str(e))
            raise StoreUnavailableError("redis", str(e))

    async def get_token_identity(self, credential: str) -> Optional[ClientIdentity]:
        """Identity a credential last resolved to, if still cached."""
        fields = await self.get_all(self._token_key(credential))
        return ClientIdentity.from_cache_fields(fields) if fields else None

    async def set_token_identity(self, credential: str, identity: ClientIdentity) -> None:
        await self.set(self._token_key(credential), self._entry_fields(identity), ttl=self.token_ttl)

    async def get_user_identity(self, username: str) -> Optional[ClientIdentity]:
        """Last verified identity for an external user handle."""
        fields = await self.get_all(self._mapping_key(username))
        return ClientIdentity.from_cache_fields(fields) if fields else None

    async def set_user_identity(self, identity: ClientIdentity) -> None:
        await self.set(self._mapping_key(identity.username), self._entry_fields(identity))

    async def resolve_mapping(self, handle: str) -> Optional[str]:
        """Internal client id mapped to an external handle, or None."""
        key = self._mapping_key(handle)
        if not await self.exists(key):
            return None
        client_id = await self.get(key, self.CLIENT_ID_FIELD)
        return client_id or None

    async def health_check(self) -> bool:
        """Check Redis health."""
        try:
            await self.redis.ping()
            return True
        except (RedisError, AttributeError):
            return False

    def _entry_fields(self, identity: ClientIdentity) -> Dict[str, str]:
        fields = identity.to_cache_fields()
        fields["verified_at"] = datetime.now(timezone.utc).isoformat()
        return fields

    def _mapping_key(self, handle: str) -> str:
        return f"{self.MAPPING_PREFIX}{handle}"

    def _token_key(self, credential: str) -> str:
        return f"{self.TOKEN_PREFIX}{credential}"
