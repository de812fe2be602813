"""
Redis connection for session storage: pooled, TLS-aware, retried on
transient network errors.
"""
import time
import random
import logging
from typing import Any, Optional

import redis
from redis.exceptions import (
    AuthenticationError,
    ConnectionError,
    RedisError,
    TimeoutError,
)

from storefront.config import Config
from storefront.exceptions import RedisConnectionError

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (ConnectionError, TimeoutError)


def build_redis_url() -> str:
    scheme = "rediss" if Config.REDIS_SSL else "redis"
    auth = f":{Config.REDIS_AUTH_TOKEN}@" if Config.REDIS_AUTH_TOKEN else ""
    return f"{scheme}://{auth}{Config.REDIS_HOST}:{Config.REDIS_PORT}/{Config.REDIS_DB}"


def backoff_delays(attempts: int, initial: float = 0.1, ceiling: float = 2.0):
    """Sleep durations between attempts: doubling, capped, with 10% jitter"""
    delay = initial
    for _ in range(attempts - 1):
        yield delay + random.uniform(0, delay * 0.1)
        delay = min(delay * 2, ceiling)


class RedisClient:
    """Session storage connection with reconnect-and-retry on network errors"""

    def __init__(self, url: Optional[str] = None, max_attempts: int = 3):
        self.url = url or build_redis_url()
        self.max_attempts = max_attempts
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = None
        self.connect()

    def connect(self) -> None:
        """Open a fresh pool and check it answers"""
        pool_options = {
            "max_connections": Config.REDIS_MAX_CONNECTIONS,
            "socket_connect_timeout": Config.REDIS_SOCKET_CONNECT_TIMEOUT,
            "socket_timeout": Config.REDIS_SOCKET_TIMEOUT,
            "retry_on_timeout": Config.REDIS_RETRY_ON_TIMEOUT,
            "decode_responses": True,
        }
        if self.url.startswith("rediss://"):
            # ElastiCache in-transit encryption presents a self-signed cert
            pool_options["ssl_cert_reqs"] = None

        try:
            self.pool = redis.ConnectionPool.from_url(self.url, **pool_options)
            self.client = redis.Redis(connection_pool=self.pool)
            self.client.ping()
        except (ConnectionError, TimeoutError, AuthenticationError) as e:
            raise RedisConnectionError(f"Failed to connect to Redis: {e}")

    def _execute(self, command: str, *args: Any, **kwargs: Any) -> Any:
        """
        Run one redis-py command, reconnecting between attempts.

        Raises:
            RedisConnectionError: attempts exhausted, or a non-network Redis error
        """
        delays = backoff_delays(self.max_attempts)
        attempt = 0
        while True:
            attempt += 1
            try:
                return getattr(self.client, command)(*args, **kwargs)
            except TRANSIENT_ERRORS as e:
                delay = next(delays, None)
                if delay is None:
                    raise RedisConnectionError(
                        f"Redis {command.upper()} failed after {attempt} attempts: {e}"
                    )
                logger.warning(f"Redis {command.upper()} attempt {attempt} failed, retrying in {delay:.2f}s")
                time.sleep(delay)
                try:
                    self.connect()
                except RedisConnectionError as reconnect_error:
                    logger.warning(f"Redis reconnect failed: {reconnect_error}")
            except RedisError as e:
                raise RedisConnectionError(f"Redis error: {e}")

    def get(self, key: str) -> Optional[str]:
        return self._execute("get", key)

    def set(self, key: str, value: str, ex: Optional[int] = None) -> bool:
        return self._execute("set", key, value, ex=ex)

    def delete(self, *keys: str) -> int:
        return self._execute("delete", *keys)

    def ping(self) -> bool:
        """Health probe; never raises"""
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        if self.pool:
            self.pool.disconnect()


_redis_client: Optional[RedisClient] = None

def get_redis_client() -> RedisClient:
    """Shared connection for the process, created on first use"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
