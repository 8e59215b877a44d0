"""
Redis client manager for the agent's summary store.

One pooled async client per process. Callers get None when Redis is not
configured or unreachable and fall back to in-memory storage; under
AGENT_APP_ENV=test the client is fakeredis.
"""

from typing import Optional

import redis.asyncio as redis
import structlog

from libs.common.settings import get_settings

logger = structlog.get_logger(__name__)

POOL_OPTIONS = {
    "encoding": "utf-8",
    "decode_responses": True,
    "max_connections": 20,
    "socket_timeout": 5,
    "socket_connect_timeout": 5,
    "retry_on_timeout": True,
}

_redis_client: Optional[redis.Redis] = None
# Set after a failed connect so later calls return None without retrying
_connection_failed = False


def _redact(url: str) -> str:
    return url.split("@")[-1] if "@" in url else url.split("//")[-1]


async def _connect(redis_url: str) -> Optional[redis.Redis]:
    client = redis.from_url(redis_url, **POOL_OPTIONS)
    try:
        await client.ping()
    except redis.ConnectionError as e:
        logger.error(
            "Redis unreachable",
            error=str(e),
            redis_url=_redact(redis_url),
            hint="Check AGENT_REDIS_URL and that the server is running",
        )
    except Exception as e:
        logger.error("Redis initialization failed", error=str(e), error_type=type(e).__name__)
    else:
        logger.info("Redis connected", url=_redact(redis_url), max_connections=POOL_OPTIONS["max_connections"])
        return client

    await client.aclose()
    return None


async def get_redis_client(use_fake: Optional[bool] = None) -> Optional[redis.Redis]:
    """
    Return the shared Redis client, connecting on first use.

    Args:
        use_fake: Force fakeredis on or off; defaults to settings.is_test

    Returns:
        The client, or None when Redis is unavailable
    """
    global _redis_client, _connection_failed

    settings = get_settings()
    if use_fake is None:
        use_fake = settings.is_test

    if use_fake:
        from fakeredis import aioredis as fakeredis

        if _redis_client is None:
            _redis_client = fakeredis.FakeRedis(decode_responses=True)
            logger.debug("fakeredis client created")
        return _redis_client

    if _connection_failed:
        return None

    if _redis_client is not None:
        try:
            await _redis_client.ping()
            return _redis_client
        except Exception as e:
            logger.warning("Redis connection lost, reconnecting", error=str(e))
            _redis_client = None

    if not settings.redis_url:
        logger.warning("AGENT_REDIS_URL not set, conversation summaries stay in process memory")
        _connection_failed = True
        return None

    _redis_client = await _connect(settings.redis_url)
    _connection_failed = _redis_client is None
    return _redis_client


async def close_redis_client() -> None:
    """Close the shared client and clear the failure latch."""
    global _redis_client, _connection_failed

    client, _redis_client = _redis_client, None
    _connection_failed = False
    if client is None:
        return
    try:
        await client.aclose()
    except Exception as e:
        logger.warning("Error closing Redis client", error=str(e))
