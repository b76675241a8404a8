# 数据访问与缓存性能监控
import logging
import statistics
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

# 保留的最近记录条数
MAX_METRICS = 1000
# 每种操作保留的最近耗时样本数
MAX_OPERATION_SAMPLES = 200


@dataclass
class QueryMetrics:
    """查询指标数据类"""
    operation: str
    duration: float
    timestamp: datetime
    query_info: Optional[Dict[str, Any]] = None
    cache_hit: bool = False


class RepositoryMonitor:
    """数据访问监控器：记录查询耗时、缓存命中与错误"""

    def __init__(self, slow_query_threshold: float = 1.0):
        self.slow_query_threshold = slow_query_threshold
        self.query_metrics: List[QueryMetrics] = []
        self.operation_stats = defaultdict(list)
        self.error_count = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.invalidations = 0

    def record_query(
        self,
        operation: str,
        duration: float,
        query_info: Optional[Dict[str, Any]] = None
    ) -> None:
        """记录数据服务查询耗时"""
        self.query_metrics.append(QueryMetrics(
            operation=operation,
            duration=duration,
            timestamp=datetime.now(),
            query_info=query_info
        ))
        samples = self.operation_stats[operation]
        samples.append(duration)
        if len(samples) > MAX_OPERATION_SAMPLES:
            del samples[:-MAX_OPERATION_SAMPLES]

        level = logging.WARNING if duration > self.slow_query_threshold else logging.DEBUG
        logger.log(level, f"Query {operation} completed in {duration:.3f}s")

        if len(self.query_metrics) > MAX_METRICS:
            self.query_metrics = self.query_metrics[-MAX_METRICS:]

    def record_cache_access(self, key: str, hit: bool) -> None:
        """记录缓存访问"""
        if hit:
            self.cache_hits += 1
        else:
            self.cache_misses += 1

    def record_invalidation(self, prefix: Optional[str], removed: int) -> None:
        self.invalidations += 1
        logger.debug(f"Cache invalidation '{prefix or '*'}' removed {removed} entries")

    def record_error(self, operation: str, error: Exception) -> None:
        """记录错误"""
        self.error_count += 1
        logger.error(f"Error in {operation}: {str(error)}")

    def get_performance_stats(self) -> Dict[str, Any]:
        """获取性能统计"""
        total_requests = self.cache_hits + self.cache_misses
        stats = {
            "total_queries": len(self.query_metrics),
            "average_query_time": 0.0,
            "max_query_time": 0.0,
            "slow_queries_count": 0,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": (self.cache_hits / total_requests) if total_requests > 0 else 0.0,
            "invalidations": self.invalidations,
            "error_count": self.error_count,
            "operation_breakdown": self._get_operation_breakdown()
        }
        if self.query_metrics:
            durations = [m.duration for m in self.query_metrics]
            stats["average_query_time"] = statistics.mean(durations)
            stats["max_query_time"] = max(durations)
            stats["slow_queries_count"] = len(
                [d for d in durations if d > self.slow_query_threshold]
            )
        return stats

    def _get_operation_breakdown(self) -> Dict[str, Dict[str, float]]:
        """按操作类型统计"""
        breakdown = {}
        for operation, durations in self.operation_stats.items():
            if durations:
                breakdown[operation] = {
                    "count": len(durations),
                    "avg_duration": statistics.mean(durations),
                    "max_duration": max(durations)
                }
        return breakdown

    def reset(self) -> None:
        self.query_metrics.clear()
        self.operation_stats.clear()
        self.error_count = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.invalidations = 0
