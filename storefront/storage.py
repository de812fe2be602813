"""
Key-value storage port and its adapters.

The cart engine and the auth session manager only ever talk to a
KeyValueStore; which backend sits behind it is decided at wiring time.
"""
import time
import logging
from typing import Dict, Optional, Protocol

from storefront.config import Config
from storefront.exceptions import StorageUnavailableError

logger = logging.getLogger(__name__)

CART_KEY = "food_order_cart"
AUTH_TOKEN_KEY = "auth_token"
USER_KEY = "user_data"
OTP_PHONE_KEY = "otp_pending_phone"


class KeyValueStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class InMemoryStore:
    """Dict-backed store for tests and single-process development"""

    def __init__(self):
        self.data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class NullStore:
    """Store for contexts with no storage at all"""

    def get(self, key: str) -> Optional[str]:
        raise StorageUnavailableError("No storage available")

    def set(self, key: str, value: str) -> None:
        raise StorageUnavailableError("No storage available")

    def delete(self, key: str) -> None:
        raise StorageUnavailableError("No storage available")


class RedisStore:
    """Redis-backed store; every write refreshes the session TTL"""

    def __init__(self, redis_client=None, ttl: Optional[int] = None):
        if redis_client is None:
            from storefront.redis_client import get_redis_client
            redis_client = get_redis_client()
        self.redis = redis_client
        self.ttl = ttl if ttl is not None else Config.SESSION_TTL_SECONDS

    def get(self, key: str) -> Optional[str]:
        return self.redis.get(key)

    def set(self, key: str, value: str) -> None:
        self.redis.set(key, value, ex=self.ttl)

    def delete(self, key: str) -> None:
        self.redis.delete(key)


class DeviceStore:
    """View of a backend store scoped to a single browsing device"""

    def __init__(self, backend: KeyValueStore, device_id: str):
        self.backend = backend
        self.device_id = device_id

    def _scoped(self, key: str) -> str:
        return f"storefront:{self.device_id}:{key}"

    def get(self, key: str) -> Optional[str]:
        return self.backend.get(self._scoped(key))

    def set(self, key: str, value: str) -> None:
        self.backend.set(self._scoped(key), value)

    def delete(self, key: str) -> None:
        self.backend.delete(self._scoped(key))


_backend: Optional[KeyValueStore] = None
_backend_failure: Optional[StorageUnavailableError] = None
_backend_failed_at: float = 0.0

def get_backend_store() -> KeyValueStore:
    """
    Get or create the process-wide backend store (singleton).

    A failed connect is cached for Config.STORAGE_RETRY_SECONDS and raised
    again without reconnecting, so an outage does not cost every request
    a connect timeout.
    """
    global _backend, _backend_failure, _backend_failed_at
    if _backend is not None:
        return _backend

    if _backend_failure is not None and time.monotonic() - _backend_failed_at < Config.STORAGE_RETRY_SECONDS:
        raise _backend_failure

    try:
        if Config.STORAGE_BACKEND == "memory":
            _backend = InMemoryStore()
        else:
            _backend = RedisStore()
    except StorageUnavailableError as e:
        logger.error(f"Storage backend unavailable, retrying in {Config.STORAGE_RETRY_SECONDS}s: {e}")
        _backend_failure = e
        _backend_failed_at = time.monotonic()
        raise

    _backend_failure = None
    logger.info(f"Using {type(_backend).__name__} storage backend")
    return _backend
