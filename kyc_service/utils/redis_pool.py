"""
Shared async Redis access for KYC notifications and readiness checks.

Pool size, timeouts and retry budget come from ``Settings`` (``REDIS_*``).
The pool is created on first use and torn down from the FastAPI lifespan.
Callers go through ``publish`` and ``ping`` rather than holding clients.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import BusyLoadingError, ConnectionError, TimeoutError

from kyc_service.core.config import settings

log = logging.getLogger(__name__)

TRANSIENT_ERRORS = (ConnectionError, TimeoutError, BusyLoadingError)

_pool: Optional[redis.ConnectionPool] = None


def _get_pool() -> redis.ConnectionPool:
    global _pool
    if _pool is None:
        _pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=settings.REDIS_POOL_MAX_CONNECTIONS,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
            health_check_interval=settings.REDIS_HEALTH_CHECK_INTERVAL,
            decode_responses=True,
        )
        log.info(f"KYC Redis pool created (max_connections={settings.REDIS_POOL_MAX_CONNECTIONS})")
    return _pool


async def get_redis() -> redis.Redis:
    return redis.Redis(
        connection_pool=_get_pool(),
        retry=Retry(
            backoff=ExponentialBackoff(cap=0.5, base=0.1),
            retries=settings.REDIS_RETRY_ATTEMPTS,
            supported_errors=TRANSIENT_ERRORS,
        ),
        retry_on_error=list(TRANSIENT_ERRORS),
    )


async def publish(channel: str, message: str) -> int:
    """Returns the number of subscribers that received the message."""
    client = await get_redis()
    return await client.publish(channel, message)


async def ping() -> bool:
    client = await get_redis()
    return bool(await client.ping())


async def close_redis() -> None:
    global _pool
    if _pool is not None:
        await _pool.disconnect()
        _pool = None
        log.info("KYC Redis pool closed")
