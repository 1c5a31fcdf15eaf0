"""Redis client configuration and utilities."""

import redis.asyncio as redis

from admission.config import settings

# Global Redis client instance
_redis_client: redis.Redis | None = None


def redis_configured() -> bool:
    """Check whether a Redis host is configured."""
    return bool(settings.redis_host)


def get_redis_client() -> redis.Redis:
    """
    Get or create Redis client instance.

    Returns:
        Redis client instance

    Raises:
        RuntimeError: If no Redis host is configured
    """
    global _redis_client

    if not redis_configured():
        raise RuntimeError("REDIS_HOST is not configured")

    if _redis_client is None:
        _redis_client = redis.Redis(
            host=settings.redis_host,
            port=settings.redis_port,
            username=settings.redis_username,
            password=settings.redis_password,
            decode_responses=settings.redis_decode_responses,
            socket_connect_timeout=5,
            socket_keepalive=True,
            health_check_interval=30,
        )

    return _redis_client


async def check_redis_connection() -> bool:
    """
    Check if Redis connection is healthy.

    Returns:
        True if connection is healthy, False otherwise
    """
    try:
        client = get_redis_client()
        await client.ping()
        return True
    except Exception:
        return False


async def close_redis_connection() -> None:
    """Close Redis connection."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.aclose()
        _redis_client = None
