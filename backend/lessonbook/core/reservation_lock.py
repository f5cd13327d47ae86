"""
Advisory Redis lock around reservation commits for one resource/day.

The slot lock compare-and-set in the database is what actually prevents
double booking. This lock only narrows contention so concurrent writers
queue instead of burning compare-and-set retries. When Redis is not
configured or unreachable the lock degrades to a no-op.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date
import logging
import threading
import time
from typing import Iterator, Optional

from redis import Redis

from lessonbook.core.config import settings
from lessonbook.monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

_SYNC_REDIS: Optional[Redis] = None
_SYNC_REDIS_LOCK = threading.Lock()


def _lock_key(resource_id: str, lock_date: date) -> str:
    return f"{settings.lock_namespace}:lock:slot:{resource_id}:{lock_date.isoformat()}"


def _get_sync_redis() -> Optional[Redis]:
    global _SYNC_REDIS
    if not settings.redis_url:
        return None
    if _SYNC_REDIS is not None:
        return _SYNC_REDIS
    with _SYNC_REDIS_LOCK:
        if _SYNC_REDIS is not None:
            return _SYNC_REDIS
        try:
            client = Redis.from_url(
                settings.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            client.ping()
        except Exception as exc:
            logger.warning("reservation_lock_redis_unavailable: %s", exc)
            return None
        _SYNC_REDIS = client
        return _SYNC_REDIS


def acquire_reservation_lock(
    resource_id: str, lock_date: date, ttl_s: Optional[int] = None
) -> bool:
    """Try to take the advisory lock. Returns True when Redis is not in play."""
    client = _get_sync_redis()
    if client is None:
        prometheus_metrics.inc_reservation_lock("skipped")
        return True
    ttl = ttl_s or settings.reservation_lock_ttl_seconds
    try:
        acquired = bool(
            client.set(_lock_key(resource_id, lock_date), str(time.time()), nx=True, ex=ttl)
        )
    except Exception as exc:
        prometheus_metrics.inc_reservation_lock("error")
        logger.warning(
            "reservation_lock_acquire_failed",
            extra={
                "resource_id": resource_id,
                "lock_date": lock_date.isoformat(),
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )
        return True
    prometheus_metrics.inc_reservation_lock("acquired" if acquired else "contended")
    return acquired


def release_reservation_lock(resource_id: str, lock_date: date) -> None:
    client = _get_sync_redis()
    if client is None:
        return
    try:
        client.delete(_lock_key(resource_id, lock_date))
    except Exception as exc:
        logger.warning(
            "reservation_lock_release_failed",
            extra={
                "resource_id": resource_id,
                "lock_date": lock_date.isoformat(),
                "error": str(exc),
                "error_type": type(exc).__name__,
            },
        )


@contextmanager
def reservation_lock(
    resource_id: str, lock_date: date, ttl_s: Optional[int] = None
) -> Iterator[bool]:
    """
    Hold the advisory lock for the duration of the block.

    Yields whether the lock was acquired; a contended lock is not an error,
    the caller proceeds and relies on the database compare-and-set.
    """
    acquired = acquire_reservation_lock(resource_id, lock_date, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_reservation_lock(resource_id, lock_date)
