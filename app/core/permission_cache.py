# app/core/permission_cache.py
"""
Time-boxed cache for the RBAC catalog and resolved permissions.

Keys are grouped into logical domains:
- "resources" / "resources_tree"
- "role_permissions:<role>"
- "hospital_overrides:<hospital_id>"
- "user_overrides:<user_id>"
- "user_permissions:<user_id>:<hospital_id|global>"

Invalidation is coarse: every key containing the given pattern is dropped.
Values must be JSON-compatible (dicts, lists, strings, numbers) so every
backend can store them.
"""

import json
import logging
import threading
import time
from functools import lru_cache
from typing import Any, Callable, Optional, Protocol
from uuid import UUID

import redis

from app.core.config import get_settings
from app.core.redis import get_redis_client
from app.services.rbac_errors import PermissionBackendError

logger = logging.getLogger(__name__)

RESOURCES_KEY = "resources"
RESOURCES_TREE_KEY = "resources_tree"
ROLE_PERMISSIONS_DOMAIN = "role_permissions"
HOSPITAL_OVERRIDES_DOMAIN = "hospital_overrides"
USER_OVERRIDES_DOMAIN = "user_overrides"
USER_PERMISSIONS_DOMAIN = "user_permissions"


def role_permissions_key(role: str) -> str:
    return f"{ROLE_PERMISSIONS_DOMAIN}:{role}"


def hospital_overrides_key(hospital_id: UUID) -> str:
    return f"{HOSPITAL_OVERRIDES_DOMAIN}:{hospital_id}"


def user_overrides_key(user_id: UUID) -> str:
    return f"{USER_OVERRIDES_DOMAIN}:{user_id}"


def user_permissions_key(user_id: UUID, hospital_id: Optional[UUID]) -> str:
    return f"{USER_PERMISSIONS_DOMAIN}:{user_id}:{hospital_id or 'global'}"


class PermissionCache(Protocol):
    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Any) -> None: ...

    def invalidate(self, pattern: Optional[str] = None) -> None: ...


class InMemoryPermissionCache:
    """
    Single-process TTL cache. Expired entries are dropped lazily on read.
    """

    def __init__(
        self,
        ttl_seconds: int = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if self._clock() > expires_at:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def invalidate(self, pattern: Optional[str] = None) -> None:
        with self._lock:
            if pattern is None:
                self._entries.clear()
                return
            for key in [k for k in self._entries if pattern in k]:
                del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class RedisPermissionCache:
    """
    Redis-backed cache shared by all API workers.

    Read/write failures degrade to a cache miss. Invalidation failures are
    raised: a dropped invalidation could keep serving a revoked grant.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: int = 300, key_prefix: str = "rbac:"):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}{key}"

    def get(self, key: str) -> Optional[Any]:
        try:
            raw = self.client.get(self._key(key))
        except redis.RedisError as e:
            logger.warning(f"Redis GET error for key '{key}': {e}")
            return None
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.warning(f"Discarding unreadable cache entry '{key}': {e}")
            try:
                self.client.delete(self._key(key))
            except redis.RedisError as delete_error:
                logger.warning(f"Redis DEL error for key '{key}': {delete_error}")
            return None

    def set(self, key: str, value: Any) -> None:
        try:
            self.client.setex(self._key(key), self.ttl_seconds, json.dumps(value))
        except redis.RedisError as e:
            logger.warning(f"Redis SET error for key '{key}': {e}")

    def invalidate(self, pattern: Optional[str] = None) -> None:
        match = f"{self.key_prefix}*{pattern}*" if pattern else f"{self.key_prefix}*"
        try:
            keys = list(self.client.scan_iter(match=match))
            if keys:
                self.client.delete(*keys)
        except redis.RedisError as e:
            logger.error(f"Redis invalidation failed for pattern '{pattern}': {e}")
            raise PermissionBackendError("Permission cache invalidation failed") from e


class NullPermissionCache:
    """Cache that never stores anything. Every read recomputes."""

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, value: Any) -> None:
        return None

    def invalidate(self, pattern: Optional[str] = None) -> None:
        return None


@lru_cache
def get_permission_cache() -> PermissionCache:
    """
    Process-wide cache instance, selected by RBAC_CACHE_BACKEND.
    Used as a FastAPI dependency so tests can override it.
    """
    settings = get_settings()
    backend = settings.rbac_cache_backend.lower()

    if backend == "none":
        return NullPermissionCache()

    if backend == "redis":
        client = get_redis_client()
        if client is not None:
            return RedisPermissionCache(
                client,
                ttl_seconds=settings.rbac_cache_ttl_seconds,
                key_prefix=settings.rbac_cache_key_prefix,
            )
        logger.warning("Redis permission cache requested but Redis is unavailable; using in-memory cache.")
    elif backend != "memory":
        raise ValueError(f"Unknown RBAC cache backend: {settings.rbac_cache_backend}")

    return InMemoryPermissionCache(ttl_seconds=settings.rbac_cache_ttl_seconds)
