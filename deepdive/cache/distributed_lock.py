"""Distributed locking using Valkey.

Serializes overlapping stage invocations against the same run. The
per-item database claim remains the correctness guarantee; this lock only
keeps two batches from racing for the same finalists.
"""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import AsyncIterator

from redis.exceptions import RedisError

from deepdive.core.config import settings
from deepdive.core.exceptions import ConflictError
from deepdive.core.logging import get_logger

from .client import get_valkey_client


logger = get_logger("cache.lock")

LOCK_PREFIX = "deepdive:lock"

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class DistributedLock:
    """Non-blocking Valkey lock (SET NX EX with a release token)."""

    def __init__(self, name: str, timeout: int = 30):
        """
        Initialize distributed lock.

        Args:
            name: Lock name (will be prefixed)
            timeout: Lock expiration in seconds (auto-release if holder dies)
        """
        self.name = name
        self.key = f"{LOCK_PREFIX}:{name}"
        self.timeout = timeout
        self.token = str(uuid.uuid4())
        self._acquired = False

    @property
    def acquired(self) -> bool:
        return self._acquired

    async def acquire(self) -> bool:
        """Try once to acquire the lock. Returns True on success."""
        client = await get_valkey_client()
        acquired = await client.set(self.key, self.token, ex=self.timeout, nx=True)
        self._acquired = bool(acquired)
        if self._acquired:
            logger.debug(f"Lock acquired: {self.name}")
        return self._acquired

    async def release(self) -> bool:
        """Release the lock if we still hold it (token matches)."""
        if not self._acquired:
            return False

        client = await get_valkey_client()
        try:
            result = await client.eval(_RELEASE_SCRIPT, 1, self.key, self.token)
        except RedisError as e:
            logger.error(f"Lock release error: {e}")
            return False
        finally:
            self._acquired = False

        if result:
            logger.debug(f"Lock released: {self.name}")
            return True
        logger.warning(f"Lock release failed (token mismatch): {self.name}")
        return False


@asynccontextmanager
async def run_lock(run_id: str, stage: int) -> AsyncIterator[DistributedLock | None]:
    """
    Hold the per-run stage lock for the duration of a batch.

    Raises:
        ConflictError: Another invocation currently holds the lock

    Yields None when locking is disabled or Valkey is unreachable.
    """
    if not settings.run_lock_enabled:
        yield None
        return

    lock = DistributedLock(f"run:{run_id}:stage{stage}", timeout=settings.run_lock_timeout_seconds)
    try:
        acquired = await lock.acquire()
    except (RedisError, OSError) as e:
        logger.warning(
            "Run lock unavailable, relying on item claims",
            extra={"run_id": run_id, "error": str(e)},
        )
        yield None
        return

    if not acquired:
        raise ConflictError(
            message="Run is already being processed",
            error_code="RUN_LOCKED",
            details={"run_id": run_id, "stage": stage},
        )

    try:
        yield lock
    finally:
        await lock.release()
