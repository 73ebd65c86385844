"""Per-user Redis lock for deduplication runs.

Two concurrent runs for one user would process the same candidate set and race
on the same rows. Acquisition is SET NX with a TTL so a crashed worker cannot
hold a user forever; release deletes the key only while it still carries this
run's token.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

import redis
from loguru import logger

from activity_dedup.config.settings import settings

# Compare-and-delete in one round trip
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def dedup_lock_key(user_id: str) -> str:
    """Redis key guarding deduplication runs of one user."""
    return f"lock:dedup:user:{user_id}"


class RedisLockManager:
    def __init__(self, redis_url: str | None = None, ttl_seconds: int | None = None) -> None:
        self.redis = redis.from_url(redis_url or settings.redis_url, decode_responses=True)
        self.ttl_seconds = ttl_seconds or settings.dedup_lock_ttl_seconds

    @contextmanager
    def acquire(self, key: str) -> Iterator[bool]:
        """Try to take the lock without waiting.

        Yields:
            True when this caller holds the lock for the duration of the block,
            False when another run holds it
        """
        token = str(uuid.uuid4())
        acquired = self.redis.set(key, token, nx=True, ex=self.ttl_seconds)

        if not acquired:
            logger.debug(f"[DEDUP_LOCK] Lock busy, skipping: {key}")
            yield False
            return

        logger.debug(f"[DEDUP_LOCK] Lock acquired: {key} (ttl={self.ttl_seconds}s)")
        try:
            yield True
        finally:
            if self.redis.eval(_RELEASE_SCRIPT, 1, key, token):
                logger.debug(f"[DEDUP_LOCK] Lock released: {key}")
            else:
                logger.warning(
                    f"[DEDUP_LOCK] Lock {key} expired before the run finished; "
                    f"raise DEDUP_LOCK_TTL_SECONDS above {self.ttl_seconds}s"
                )


lock_manager = RedisLockManager()
