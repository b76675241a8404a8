# 缓存层测试
import asyncio
from unittest.mock import AsyncMock

import pytest

from aptitude_service.database.cache import CacheError, CachingRepository


class TestCachingRepository:
    """读穿透缓存测试"""

    @pytest.fixture(autouse=True)
    def setup(self, clock, cache):
        self.clock = clock
        self.cache = cache

    def test_make_key_is_order_independent(self):
        first = CachingRepository.make_key("resultados", "list", {"b": 2, "a": 1})
        second = CachingRepository.make_key("resultados", "list", {"a": 1, "b": 2})
        assert first == second
        assert first.startswith("resultados:list:")

    def test_invalid_ttl(self):
        with pytest.raises(CacheError):
            CachingRepository(ttl_seconds=0)

    @pytest.mark.asyncio
    async def test_miss_then_hit(self):
        """第二次读取命中缓存"""
        fetch = AsyncMock(return_value=[{"id": 1}])

        first = await self.cache.get("resultados:list:{}", fetch)
        second = await self.cache.get("resultados:list:{}", fetch)

        assert first == second == [{"id": 1}]
        fetch.assert_awaited_once()
        stats = self.cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["hit_rate"] == 0.5
        assert stats["entries"] == 1

    @pytest.mark.asyncio
    async def test_entry_expires_after_ttl(self):
        fetch = AsyncMock(side_effect=["old", "new"])

        assert await self.cache.get("k", fetch) == "old"
        self.clock.advance(299)
        assert await self.cache.get("k", fetch) == "old"
        self.clock.advance(1)
        assert await self.cache.get("k", fetch) == "new"
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_invalidate_collection_forces_refetch(self):
        """失效后下一次读取必须重新加载"""
        fetch = AsyncMock(side_effect=[1, 2])

        await self.cache.get("pacientes:get:{}", fetch)
        removed = self.cache.invalidate_collection("pacientes")

        assert removed == 1
        assert await self.cache.get("pacientes:get:{}", fetch) == 2

    @pytest.mark.asyncio
    async def test_invalidate_prefix_leaves_other_collections(self):
        await self.cache.get("pacientes:get:{}", AsyncMock(return_value="subject"))
        await self.cache.get("resultados:list:{}", AsyncMock(return_value="results"))

        self.cache.invalidate("pacientes:")

        assert self.cache.peek("pacientes:get:{}") is None
        assert self.cache.peek("resultados:list:{}").value == "results"

    @pytest.mark.asyncio
    async def test_invalidate_all(self):
        await self.cache.get("a:x:{}", AsyncMock(return_value=1))
        await self.cache.get("b:x:{}", AsyncMock(return_value=2))

        assert self.cache.invalidate() == 2
        assert len(self.cache) == 0

    @pytest.mark.asyncio
    async def test_failed_fetch_is_not_cached(self):
        fetch = AsyncMock(side_effect=[RuntimeError("boom"), "ok"])

        with pytest.raises(RuntimeError):
            await self.cache.get("k", fetch)

        assert self.cache.peek("k") is None
        assert await self.cache.get("k", fetch) == "ok"

    @pytest.mark.asyncio
    async def test_invalidation_during_fetch_skips_writeback(self):
        """加载过程中发生失效时不写入缓存"""
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_fetch():
            started.set()
            await release.wait()
            return "stale"

        task = asyncio.create_task(self.cache.get("resultados:list:{}", slow_fetch))
        await started.wait()
        self.cache.invalidate_collection("resultados")
        release.set()

        assert await task == "stale"
        assert self.cache.peek("resultados:list:{}") is None

    @pytest.mark.asyncio
    async def test_purge_expired(self):
        await self.cache.get("a", AsyncMock(return_value=1))
        self.clock.advance(100)
        await self.cache.get("b", AsyncMock(return_value=2))
        self.clock.advance(250)

        assert self.cache.purge_expired() == 1
        assert len(self.cache) == 1
