# 进程内TTL缓存层
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional

from ..config import CACHE_TTL_SECONDS
from .monitoring import RepositoryMonitor

logger = logging.getLogger(__name__)


class CacheError(Exception):
    """缓存相关异常"""
    pass


@dataclass(frozen=True)
class CacheEntry:
    """缓存条目"""
    key: str
    value: Any
    cached_at: float

    def is_expired(self, now: float, ttl: float) -> bool:
        return now - self.cached_at >= ttl


def _json_default(value: Any) -> str:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


class CachingRepository:
    """数据服务前的读穿透缓存

    只在当前进程内存中保存，重启后为空。写操作完成前必须调用
    invalidate(collection) 使对应集合的全部条目失效。
    """

    def __init__(
        self,
        ttl_seconds: float = CACHE_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        monitor: Optional[RepositoryMonitor] = None
    ):
        if ttl_seconds <= 0:
            raise CacheError("Cache TTL must be positive")
        self.ttl = ttl_seconds
        self._clock = clock
        self._entries: Dict[str, CacheEntry] = {}
        self._generation = 0
        self.monitor = monitor or RepositoryMonitor()

    @staticmethod
    def make_key(collection: str, operation: str, params: Optional[Dict[str, Any]] = None) -> str:
        """生成缓存键：集合前缀 + 操作 + 排序后的参数JSON"""
        encoded = json.dumps(params or {}, sort_keys=True, default=_json_default, ensure_ascii=False)
        return f"{collection}:{operation}:{encoded}"

    def peek(self, key: str) -> Optional[CacheEntry]:
        """读取未过期条目，不触发加载"""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock(), self.ttl):
            del self._entries[key]
            return None
        return entry

    async def get(self, key: str, fetch_fn: Callable[[], Awaitable[Any]]) -> Any:
        """命中则返回缓存值，否则调用fetch_fn；只缓存成功的结果"""
        entry = self.peek(key)
        if entry is not None:
            self.monitor.record_cache_access(key, hit=True)
            logger.debug(f"Cache hit: {key}")
            return entry.value

        self.monitor.record_cache_access(key, hit=False)
        logger.debug(f"Cache miss: {key}")
        generation = self._generation
        value = await fetch_fn()
        # 加载期间发生过失效时不回填，避免写入过期数据
        if generation == self._generation:
            self._entries[key] = CacheEntry(key=key, value=value, cached_at=self._clock())
        return value

    def invalidate(self, prefix: Optional[str] = None) -> int:
        """删除以prefix开头的条目；不传prefix时清空全部"""
        if prefix is None:
            removed = len(self._entries)
            self._entries.clear()
        else:
            keys = [k for k in self._entries if k.startswith(prefix)]
            for key in keys:
                del self._entries[key]
            removed = len(keys)
        self._generation += 1
        self.monitor.record_invalidation(prefix, removed)
        if removed:
            logger.info(f"Invalidated {removed} cache entries for prefix '{prefix or '*'}'")
        return removed

    def invalidate_collection(self, *collections: str) -> int:
        """按集合名失效（键以 "集合:" 开头）"""
        return sum(self.invalidate(f"{collection}:") for collection in collections)

    def purge_expired(self) -> int:
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now, self.ttl)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> Dict[str, Any]:
        perf = self.monitor.get_performance_stats()
        return {
            "entries": len(self._entries),
            "ttl_seconds": self.ttl,
            "hits": perf["cache_hits"],
            "misses": perf["cache_misses"],
            "hit_rate": perf["cache_hit_rate"],
            "invalidations": perf["invalidations"]
        }

    def __len__(self) -> int:
        return len(self._entries)
