# 计算模块初始化
from .catalog import AptitudeCatalog, AptitudeDefinition, PercentileBand, get_catalog
from .score_processor import ScoreProcessor
from .index_aggregator import IndexAggregator
from .results import (
    RawResult, NormalizedResult, DerivedMetrics, BatchProcessingResult,
    ConsistencyReport, SubjectSummary
)

__all__ = [
    "AptitudeCatalog", "AptitudeDefinition", "PercentileBand", "get_catalog",
    "ScoreProcessor", "IndexAggregator",
    "RawResult", "NormalizedResult", "DerivedMetrics", "BatchProcessingResult",
    "ConsistencyReport", "SubjectSummary"
]
