"""TTL cache for the current rate set.

Two backends share one interface: a file backend with atomic writes (the
default, fine for a single host) and a Redis backend for multi-process
deployments. Every write replaces the whole value under its key.
"""
import json
import logging
import os
import tempfile
import time

import redis

from jewelry_pricing.constants import RATE_CACHE_TTL_SECONDS, CURRENT_RATES_CACHE_PREFIX
from jewelry_pricing.services.config import PricingConfig

logger = logging.getLogger(__name__)

CACHE_DIR = 'cache'


class CacheError(Exception):
    """Cache backend failed to read or write."""
    pass


def make_cache_key(*parts) -> str:
    """Join non-empty parts with ':' ('gold_rates', 'current' -> 'gold_rates:current')."""
    return ':'.join(str(p) for p in parts if p not in (None, ''))


CURRENT_RATES_KEY = make_cache_key(CURRENT_RATES_CACHE_PREFIX, 'current')


class FileRateCache:
    """JSON-file cache, one file per key, expiry stored alongside the value."""

    backend = 'file'

    def __init__(self, directory: str, clock=time.time):
        self._directory = directory
        self._clock = clock

    def get_path(self, key: str) -> str:
        return os.path.join(self._directory, key.replace(':', '_') + '.json')

    def get(self, key: str):
        """Read a value, return None if missing/expired/invalid."""
        path = self.get_path(key)
        if not os.path.exists(path):
            return None
        try:
            with open(path, 'r') as f:
                entry = json.load(f)
        except (ValueError, OSError):
            return None
        if not self.is_entry_valid(entry):
            return None
        return entry['value']

    def set(self, key: str, value, ttl: int = RATE_CACHE_TTL_SECONDS) -> None:
        """Atomic write: temp file then rename."""
        entry = {'expires_at': self._clock() + ttl, 'value': value}
        path = self.get_path(key)
        try:
            os.makedirs(self._directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(dir=self._directory, suffix='.tmp')
        except OSError as e:
            raise CacheError(f"Cache write failed: {e}") from e
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(entry, f)
            os.replace(temp_path, path)
        except Exception as e:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise CacheError(f"Cache write failed: {e}") from e

    def delete(self, key: str) -> None:
        path = self.get_path(key)
        try:
            if os.path.exists(path):
                os.unlink(path)
        except OSError as e:
            raise CacheError(f"Cache delete failed: {e}") from e

    def is_entry_valid(self, entry) -> bool:
        """Check if entry TTL has not expired."""
        if not isinstance(entry, dict) or 'expires_at' not in entry or 'value' not in entry:
            return False
        try:
            return self._clock() < float(entry['expires_at'])
        except (TypeError, ValueError):
            return False

    def ping(self) -> bool:
        """Cache directory exists (or can be created) and is writable."""
        try:
            os.makedirs(self._directory, exist_ok=True)
        except OSError:
            return False
        return os.access(self._directory, os.W_OK)


class RedisRateCache:
    """Redis-backed cache using SETEX so expiry is enforced server-side."""

    backend = 'redis'

    def __init__(self, client):
        self._client = client

    @classmethod
    def from_url(cls, url: str, timeout: float) -> 'RedisRateCache':
        client = redis.Redis.from_url(
            url,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        return cls(client)

    def get(self, key: str):
        try:
            raw = self._client.get(key)
        except redis.RedisError as e:
            raise CacheError(f"Redis read failed: {e}") from e
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except (ValueError, TypeError):
            logger.warning(f"Discarding unreadable cache entry {key}")
            return None

    def set(self, key: str, value, ttl: int = RATE_CACHE_TTL_SECONDS) -> None:
        try:
            self._client.setex(key, ttl, json.dumps(value))
        except redis.RedisError as e:
            raise CacheError(f"Redis write failed: {e}") from e

    def delete(self, key: str) -> None:
        try:
            self._client.delete(key)
        except redis.RedisError as e:
            raise CacheError(f"Redis delete failed: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError:
            return False


def get_rate_cache(config: PricingConfig, data_dir: str):
    """Build the cache backend selected by configuration."""
    if config.cache_backend == 'redis':
        return RedisRateCache.from_url(config.redis_url, config.store_timeout_seconds)
    return FileRateCache(os.path.join(data_dir, CACHE_DIR))
