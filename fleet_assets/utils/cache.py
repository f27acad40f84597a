"""对象缓存 — 显式注入的 get/set/invalidate 接口，按资产 object_key 分区"""

import time
from abc import ABC, abstractmethod
from typing import Any

from fleet_assets.config import settings


class CacheBackend(ABC):
    """缓存服务接口。资产变更时由调用方显式失效。"""

    @abstractmethod
    def get(self, key: str) -> Any | None:
        ...

    @abstractmethod
    def set(self, key: str, value: Any, expires_in: float | None = None) -> None:
        ...

    @abstractmethod
    def invalidate(self, key: str) -> None:
        ...

    @abstractmethod
    def invalidate_prefix(self, prefix: str) -> int:
        """删除所有以 prefix 开头的键，返回删除数量"""
        ...

    @abstractmethod
    def clear(self) -> None:
        ...


class InMemoryCache(CacheBackend):
    """进程内 TTL 缓存"""

    def __init__(self, default_expires_in: float = 300):
        self.default_expires_in = default_expires_in
        self._items: dict[str, tuple[float, Any]] = {}

    def get(self, key: str) -> Any | None:
        item = self._items.get(key)
        if item is None:
            return None
        expires_at, value = item
        if expires_at <= time.monotonic():
            del self._items[key]
            return None
        return value

    def set(self, key: str, value: Any, expires_in: float | None = None) -> None:
        ttl = self.default_expires_in if expires_in is None else expires_in
        self._items[key] = (time.monotonic() + ttl, value)

    def invalidate(self, key: str) -> None:
        self._items.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> int:
        keys = [k for k in self._items if k.startswith(prefix)]
        for k in keys:
            del self._items[k]
        return len(keys)

    def clear(self) -> None:
        self._items.clear()

    def __len__(self) -> int:
        return len(self._items)


def asset_cache_key(object_key: str, attribute: str) -> str:
    return f"{object_key}:{attribute}"


def invalidate_asset(cache: CacheBackend | None, object_key: str) -> None:
    """资产变更后清空该资产的全部缓存项"""
    if cache is not None:
        cache.invalidate_prefix(f"{object_key}:")


object_cache = InMemoryCache(settings.OBJECT_CACHE_EXPIRE_SECONDS)


def get_cache() -> CacheBackend:
    """FastAPI 依赖：返回进程级缓存实例"""
    return object_cache
