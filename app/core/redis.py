# app/core/redis.py
"""
Redis connection and named locks.

Redis is used for locks that must hold across worker processes:
- per-medication mapping promotion
- per-order / per-prescription transitions
- scheduler runs and provider syncs (one at a time)

The app should boot even if Redis is unavailable (degraded mode): locks then
fall back to process-local threading locks, which still serialize work inside
a single process.
"""

import logging
import threading
from contextlib import contextmanager
from functools import lru_cache
from typing import Iterator, Optional

import redis

from app.core.config import get_settings
from app.core.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)

_redis_client: Optional[redis.Redis] = None
_redis_available: bool = False

_local_locks: dict[str, threading.Lock] = {}
_local_locks_guard = threading.Lock()

LOCK_KEY_PREFIX = "lock:"


@lru_cache
def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client instance.
    Returns None if Redis is not configured or unavailable.
    """
    global _redis_client, _redis_available

    if _redis_client is not None:
        return _redis_client if _redis_available else None

    settings = get_settings()

    if not settings.redis_url:
        logger.warning("REDIS_URL not set. Using process-local locks.")
        return None

    try:
        _redis_client = redis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        # Test connection
        _redis_client.ping()
        _redis_available = True
        logger.info("Redis connection established successfully.")
        return _redis_client
    except Exception as e:
        logger.warning(
            f"Failed to connect to Redis: {e}. Running in degraded mode (process-local locks)."
        )
        _redis_available = False
        return None


def _local_lock(name: str) -> threading.Lock:
    with _local_locks_guard:
        lock = _local_locks.get(name)
        if lock is None:
            lock = threading.Lock()
            _local_locks[name] = lock
        return lock


@contextmanager
def named_lock(name: str, *, blocking: bool = True, wait: float | None = None) -> Iterator[bool]:
    """
    Hold an exclusive lock called `name` for the duration of the block.

    - blocking=True: waits up to `wait` seconds (settings.lock_wait_seconds by
      default) and raises ConcurrencyConflict if the lock is still held.
    - blocking=False: yields False immediately when the lock is taken, so
      callers can skip the work (scheduler runs, provider syncs).

    Locks are not re-entrant; callers must not nest the same name.
    """
    settings = get_settings()
    wait = settings.lock_wait_seconds if wait is None else wait
    client = get_redis_client()

    if client is not None:
        lock = client.lock(
            f"{LOCK_KEY_PREFIX}{name}",
            timeout=settings.lock_timeout_seconds,
            blocking=blocking,
            blocking_timeout=wait if blocking else None,
        )
        acquired = lock.acquire()
        if not acquired and blocking:
            raise ConcurrencyConflict(f"Timed out waiting for lock '{name}'")
        try:
            yield bool(acquired)
        finally:
            if acquired:
                try:
                    lock.release()
                except redis.exceptions.LockError as e:
                    logger.warning(f"Lock '{name}' expired before release: {e}")
        return

    lock = _local_lock(name)
    acquired = lock.acquire(blocking=blocking, timeout=wait if blocking else -1)
    if not acquired and blocking:
        raise ConcurrencyConflict(f"Timed out waiting for lock '{name}'")
    try:
        yield acquired
    finally:
        if acquired:
            lock.release()
