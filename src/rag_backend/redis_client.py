"""Shared async Redis client provider for the Redis-backed metadata store."""

import asyncio
from typing import Optional

from loguru import logger
from redis import asyncio as aioredis

from .config import Config

_redis_client: Optional[aioredis.Redis] = None
_redis_pool: Optional[aioredis.ConnectionPool] = None


async def get_redis_client() -> aioredis.Redis:
    """Get or create a shared Redis client with connection pooling."""
    global _redis_client, _redis_pool

    if _redis_client is not None:
        return _redis_client

    for attempt in range(1, Config.REDIS_CONNECT_RETRIES + 1):
        try:
            if _redis_pool is None:
                _redis_pool = aioredis.ConnectionPool.from_url(
                    Config.REDIS_URL,
                    encoding="utf-8",
                    decode_responses=True,
                    max_connections=Config.REDIS_MAX_CONNECTIONS,
                    socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
                    socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                )
            _redis_client = aioredis.Redis(connection_pool=_redis_pool)
            await _redis_client.ping()
            logger.debug(f"Redis client ready (max_connections={Config.REDIS_MAX_CONNECTIONS})")
            break
        except (aioredis.ConnectionError, aioredis.TimeoutError) as exc:
            logger.warning(
                f"Redis connection attempt {attempt}/{Config.REDIS_CONNECT_RETRIES} failed: {exc}"
            )
            await close_redis_client()
            if attempt >= Config.REDIS_CONNECT_RETRIES:
                logger.error("Redis connection retries exhausted")
                raise
            backoff = min(
                Config.REDIS_CONNECT_RETRY_DELAY * (2 ** (attempt - 1)),
                Config.REDIS_CONNECT_RETRY_MAX_DELAY,
            )
            await asyncio.sleep(backoff)

    return _redis_client


async def close_redis_client() -> None:
    """Close the shared Redis client and connection pool."""
    global _redis_client, _redis_pool

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
    if _redis_pool is not None:
        await _redis_pool.disconnect()
        _redis_pool = None

