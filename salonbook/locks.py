"""
Per-staff mutual exclusion for writes that must not interleave.

With REDIS_URL set the lock is a redis-py Lock shared by every worker
process; without it a process-local lock is used, which is only correct
for a single-process deployment. Both give up after a bounded wait.
"""

import threading
import weakref
from contextlib import contextmanager
from functools import lru_cache

import redis
import structlog

from .config import settings
from .errors import CONFLICT_LOCK_TIMEOUT, ConflictError, ConsistencyError

logger = structlog.get_logger("salonbook.locks")

# entries disappear once no thread holds or waits on the lock
_local_locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
_registry_lock = threading.Lock()


def staff_lock_key(tenant_id: int, staff_id: int) -> str:
    return f"salonbook:lock:staff:{int(tenant_id)}:{int(staff_id)}"


@lru_cache(maxsize=4)
def _redis_client_for(url: str) -> redis.Redis:
    return redis.from_url(url)


def _redis_client() -> redis.Redis | None:
    redis_url = (settings.REDIS_URL or "").strip()
    if not redis_url:
        return None
    return _redis_client_for(redis_url)


def _local_lock(key: str) -> threading.Lock:
    with _registry_lock:
        lock = _local_locks.get(key)
        if lock is None:
            lock = threading.Lock()
            _local_locks[key] = lock
        return lock


@contextmanager
def staff_lock(tenant_id: int, staff_id: int, timeout: float | None = None):
    key = staff_lock_key(tenant_id, staff_id)
    wait_seconds = float(settings.RESERVATION_LOCK_TIMEOUT_SECONDS if timeout is None else timeout)

    client = _redis_client()
    if client is None:
        lock = _local_lock(key)
        if not lock.acquire(timeout=max(0.0, wait_seconds)):
            logger.warning("staff_lock_timeout", key=key, backend="local", wait_seconds=wait_seconds)
            raise ConflictError(CONFLICT_LOCK_TIMEOUT, "Staff calendar is busy, try again")
        try:
            yield
        finally:
            lock.release()
        return

    lock = client.lock(
        key,
        timeout=max(1, int(settings.RESERVATION_LOCK_TTL_SECONDS)),
        blocking_timeout=max(0.0, wait_seconds),
    )
    try:
        acquired = lock.acquire(blocking=True)
    except redis.RedisError as exc:
        logger.error("staff_lock_backend_error", key=key, error=str(exc))
        raise ConsistencyError("Lock store unavailable") from exc
    if not acquired:
        logger.warning("staff_lock_timeout", key=key, backend="redis", wait_seconds=wait_seconds)
        raise ConflictError(CONFLICT_LOCK_TIMEOUT, "Staff calendar is busy, try again")
    try:
        yield
    finally:
        try:
            lock.release()
        except redis.exceptions.LockError:
            # TTL ran out while the transaction was still open
            logger.warning("staff_lock_expired_before_release", key=key)
