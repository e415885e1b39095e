"""Redis connection helpers for the Redis-backed adapters."""

import logging
from contextlib import contextmanager

import redis
from redis.exceptions import RedisError

from ..errors import ConnectionFailure

logger = logging.getLogger(__name__)


def connect_redis(url: str, timeout: float) -> redis.Redis:
    try:
        return redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
    except ValueError as e:
        raise ConnectionFailure(f"invalid redis URL: {e}") from e


@contextmanager
def redis_errors(operation: str):
    """Translate redis client errors into ConnectionFailure."""
    try:
        yield
    except RedisError as e:
        logger.error(f"Redis error during {operation}: {e}")
        raise ConnectionFailure(f"{operation}: {e}") from e
