"""
Per-key generation lease with a staleness TTL.

Keeps two requests for the same user from generating the same document at
once. A lease older than the TTL is considered abandoned and may be taken
over, so a crashed generation never blocks the user for good.

With Redis configured the lease is a `SET key token NX PX ttl` shared by all
instances. Without it the lease lives in this process only, which is correct
for a single-instance deployment and nothing more.
"""
import time
import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Optional, Tuple

import redis.asyncio as aioredis

from app.config import get_settings
from app.services.redis_client import get_redis
from app.utils.logger import get_logger

logger = get_logger("lock")

# Delete only if we still own the lease
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class GenerationLock:
    def __init__(self, namespace: str, ttl_seconds: float):
        self.namespace = namespace
        self.ttl_seconds = ttl_seconds
        # key -> (token, acquired_at monotonic)
        self._local: Dict[str, Tuple[str, float]] = {}

    def _redis_key(self, key: str) -> str:
        return f"lock:{self.namespace}:{key}"

    def _acquire_local(self, key: str, token: str) -> bool:
        held = self._local.get(key)
        now = time.monotonic()
        if held and now - held[1] < self.ttl_seconds:
            return False
        if held:
            logger.warning("lock.stale_taken_over", extra={"task": self.namespace, "keys": key})
        self._local[key] = (token, now)
        return True

    async def acquire(self, key: str) -> Optional[str]:
        """Return a lease token, or None while another holder's lease is fresh"""
        token = uuid.uuid4().hex
        redis = get_redis()
        acquired: Optional[bool] = None
        if redis is not None:
            try:
                acquired = bool(await redis.set(self._redis_key(key), token, nx=True,
                                                px=int(self.ttl_seconds * 1000)))
            except (aioredis.RedisError, OSError) as exc:
                logger.warning("lock.redis_unavailable", extra={"task": self.namespace, "error": str(exc)})
        if acquired is None:
            acquired = self._acquire_local(key, token)
        return token if acquired else None

    async def release(self, key: str, token: str) -> None:
        held = self._local.get(key)
        if held and held[0] == token:
            del self._local[key]
            return
        redis = get_redis()
        if redis is not None:
            try:
                await redis.eval(_RELEASE_SCRIPT, 1, self._redis_key(key), token)
            except (aioredis.RedisError, OSError) as exc:
                # The TTL frees it anyway
                logger.warning("lock.release_failed", extra={"task": self.namespace, "error": str(exc)})

    def is_held(self, key: str) -> bool:
        """Process-local view, used by tests and the health endpoint"""
        held = self._local.get(key)
        return bool(held) and time.monotonic() - held[1] < self.ttl_seconds

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[bool]:
        """
        Usage:
            async with lock.hold(user_id) as acquired:
                if not acquired:
                    return
                ...
        """
        token = await self.acquire(key)
        try:
            yield token is not None
        finally:
            if token is not None:
                await self.release(key, token)


_dossier_lock: Optional[GenerationLock] = None


def get_dossier_lock() -> GenerationLock:
    global _dossier_lock
    if _dossier_lock is None:
        _dossier_lock = GenerationLock("dossier", get_settings().dossier_lock_stale_seconds)
    return _dossier_lock
