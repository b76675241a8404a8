# 数据访问监控测试
from aptitude_service.database.monitoring import MAX_METRICS, MAX_OPERATION_SAMPLES, RepositoryMonitor


class TestRepositoryMonitor:
    """查询耗时与缓存命中统计测试"""

    def setup_method(self):
        self.monitor = RepositoryMonitor(slow_query_threshold=0.5)

    def test_performance_stats(self):
        self.monitor.record_query("fetch_results", 0.2)
        self.monitor.record_query("fetch_results", 0.8)
        self.monitor.record_cache_access("results:1", hit=True)
        self.monitor.record_cache_access("results:2", hit=False)

        stats = self.monitor.get_performance_stats()

        assert stats["total_queries"] == 2
        assert stats["max_query_time"] == 0.8
        assert stats["slow_queries_count"] == 1
        assert stats["cache_hit_rate"] == 0.5
        assert stats["operation_breakdown"]["fetch_results"]["count"] == 2

    def test_history_is_bounded(self):
        """长时间运行时记录条数保持有界"""
        for index in range(MAX_METRICS + 50):
            self.monitor.record_query("fetch_subject", 0.01)
            self.monitor.record_query(f"op_{index % 3}", 0.01)

        assert len(self.monitor.query_metrics) == MAX_METRICS
        assert len(self.monitor.operation_stats["fetch_subject"]) == MAX_OPERATION_SAMPLES
        assert all(len(s) <= MAX_OPERATION_SAMPLES for s in self.monitor.operation_stats.values())

    def test_reset(self):
        self.monitor.record_query("fetch_results", 0.1)
        self.monitor.record_error("fetch_results", RuntimeError("boom"))

        self.monitor.reset()

        stats = self.monitor.get_performance_stats()
        assert stats["total_queries"] == 0
        assert stats["error_count"] == 0
        assert stats["operation_breakdown"] == {}
