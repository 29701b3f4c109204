"""
Redis client wrapper with connection pooling, retry logic, and error handling.
"""
import redis
import time
import random
import logging
from typing import Optional, Any, Callable, List
from redis.exceptions import (
    ConnectionError,
    TimeoutError,
    RedisError,
    AuthenticationError
)

from pos_engine.config import Config
from pos_engine.exceptions import InfrastructureError

logger = logging.getLogger(__name__)


class RedisClient:
    """Redis client with connection pooling and retry logic"""

    def __init__(self, client: Optional[redis.Redis] = None):
        self.pool: Optional[redis.ConnectionPool] = None
        self.client: Optional[redis.Redis] = client
        if client is None:
            self._connect()

    def _redis_url(self) -> str:
        scheme = "rediss" if Config.REDIS_USE_TLS else "redis"
        auth = f":{Config.REDIS_AUTH_TOKEN}@" if Config.REDIS_AUTH_TOKEN else ""
        return f"{scheme}://{auth}{Config.REDIS_HOST}:{Config.REDIS_PORT}/{Config.REDIS_DB}"

    def _connect(self):
        """Initialize Redis connection pool"""
        try:
            options = dict(
                max_connections=Config.REDIS_MAX_CONNECTIONS,
                socket_connect_timeout=Config.REDIS_SOCKET_CONNECT_TIMEOUT,
                socket_timeout=Config.REDIS_SOCKET_TIMEOUT,
                retry_on_timeout=Config.REDIS_RETRY_ON_TIMEOUT,
                decode_responses=True,
            )
            if Config.REDIS_USE_TLS:
                # ElastiCache in-transit encryption uses certificates we do not verify
                options["ssl_cert_reqs"] = None

            self.pool = redis.ConnectionPool.from_url(self._redis_url(), **options)
            self.client = redis.Redis(connection_pool=self.pool)

            # Test connection
            self.client.ping()

        except (ConnectionError, AuthenticationError) as e:
            raise InfrastructureError(f"Failed to connect to Redis: {e}")

    def _retry_with_backoff(
        self,
        func: Callable,
        max_retries: int = 3,
        initial_backoff: float = 0.1,
        max_backoff: float = 2.0
    ) -> Any:
        """
        Execute function with exponential backoff retry.

        Args:
            func: Function to execute
            max_retries: Maximum number of retry attempts
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds

        Returns:
            Result of function execution

        Raises:
            InfrastructureError: If all retries fail
        """
        backoff = initial_backoff

        for attempt in range(max_retries):
            try:
                return func()
            except (ConnectionError, TimeoutError) as e:
                if attempt == max_retries - 1:
                    raise InfrastructureError(f"Redis operation failed after {max_retries} retries: {e}")

                # Exponential backoff with jitter
                jitter = random.uniform(0, backoff * 0.1)
                time.sleep(backoff + jitter)
                backoff = min(backoff * 2, max_backoff)

                try:
                    self._connect()
                except InfrastructureError as reconnect_error:
                    logger.warning(f"Redis reconnect failed: {reconnect_error}")

            except RedisError as e:
                # Non-retryable errors
                raise InfrastructureError(f"Redis error: {e}")

    def hget(self, key: str, field: str) -> Optional[str]:
        """Get field from hash"""
        def _hget():
            return self.client.hget(key, field)
        return self._retry_with_backoff(_hget)

    def hmget(self, key: str, fields: List[str]) -> List[Optional[str]]:
        """Get several fields from hash"""
        def _hmget():
            return self.client.hmget(key, fields)
        return self._retry_with_backoff(_hmget)

    def zrevrange(self, key: str, start: int, end: int) -> List[str]:
        """Get sorted set members, highest score first"""
        def _zrevrange():
            return self.client.zrevrange(key, start, end)
        return self._retry_with_backoff(_zrevrange)

    def eval(self, script: str, num_keys: int, *keys_and_args) -> Any:
        """Execute Lua script"""
        def _eval():
            return self.client.eval(script, num_keys, *keys_and_args)
        return self._retry_with_backoff(_eval)

    def ping(self) -> bool:
        """Test Redis connection"""
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self):
        """Close connection pool"""
        if self.pool:
            self.pool.disconnect()


# Global Redis client instance
_redis_client: Optional[RedisClient] = None

def get_redis_client() -> RedisClient:
    """Get or create Redis client instance (singleton)"""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient()
    return _redis_client
