# 计算结果数据类
from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from .catalog import AptitudeDefinition, PercentileBand


@dataclass(frozen=True)
class RawResult:
    """一次施测的原始结果（规范化后的字段名）"""
    subject_id: Any
    aptitude_code: Optional[str]
    raw_score: Optional[float] = None
    correct_count: Optional[int] = None
    incorrect_count: Optional[int] = None
    omitted_count: Optional[int] = None
    elapsed_seconds: Optional[float] = None
    percentile: Optional[float] = None
    timestamp: Optional[datetime] = None
    result_id: Any = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat() if self.timestamp else None
        return data


@dataclass(frozen=True)
class DerivedMetrics:
    """衍生指标"""
    total_items: int = 0
    accuracy_pct: int = 0
    time_per_item: float = 0.0
    efficiency_score: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class NormalizedResult:
    """经过校验和分级的结果，只在内存中按需计算"""
    raw: RawResult
    aptitude: Optional[AptitudeDefinition]
    percentile_band: PercentileBand
    derived_metrics: DerivedMetrics
    is_valid: bool
    validation_errors: Tuple[str, ...] = ()

    @property
    def subject_id(self) -> Any:
        return self.raw.subject_id

    @property
    def aptitude_code(self) -> Optional[str]:
        return self.aptitude.code if self.aptitude else self.raw.aptitude_code

    @property
    def percentile(self) -> Optional[float]:
        return self.raw.percentile

    @property
    def raw_score(self) -> Optional[float]:
        return self.raw.raw_score

    @property
    def timestamp(self) -> Optional[datetime]:
        return self.raw.timestamp

    def to_dict(self) -> Dict[str, Any]:
        return {
            **self.raw.to_dict(),
            "aptitude": self.aptitude.to_dict() if self.aptitude else None,
            "percentile_band": self.percentile_band.to_dict(),
            "derived_metrics": self.derived_metrics.to_dict(),
            "is_valid": self.is_valid,
            "validation_errors": list(self.validation_errors)
        }


@dataclass
class BatchProcessingResult:
    """批量处理结果"""
    valid_results: List[NormalizedResult]
    invalid_results: List[NormalizedResult]
    total_processed: int
    valid_count: int
    invalid_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid_results": [r.to_dict() for r in self.valid_results],
            "invalid_results": [r.to_dict() for r in self.invalid_results],
            "total_processed": self.total_processed,
            "valid_count": self.valid_count,
            "invalid_count": self.invalid_count
        }


@dataclass
class ConsistencyReport:
    """一致性校验报告"""
    is_consistent: bool = True
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


COMPOSITE_INDEX_NAMES = ("general", "fluid", "crystallized", "processing", "quantitative")


@dataclass
class SubjectSummary:
    """受试者汇总（纯函数结果）"""
    subject_id: Any
    has_results: bool = False
    avg_percentile: int = 0
    avg_raw_score: int = 0
    band_counts: Dict[str, int] = field(default_factory=lambda: {"high": 0, "medium": 0, "low": 0})
    aptitudes_tested: List[str] = field(default_factory=list)
    composite_indices: Dict[str, int] = field(
        default_factory=lambda: {name: 0 for name in COMPOSITE_INDEX_NAMES}
    )
    overall_band: Optional[PercentileBand] = None
    last_test_timestamp: Optional[datetime] = None
    total_tests: int = 0
    valid_tests: int = 0
    invalid_tests: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "has_results": self.has_results,
            "avg_percentile": self.avg_percentile,
            "avg_raw_score": self.avg_raw_score,
            "band_counts": dict(self.band_counts),
            "aptitudes_tested": list(self.aptitudes_tested),
            "composite_indices": dict(self.composite_indices),
            "overall_band": self.overall_band.to_dict() if self.overall_band else None,
            "last_test_timestamp": self.last_test_timestamp.isoformat() if self.last_test_timestamp else None,
            "total_tests": self.total_tests,
            "valid_tests": self.valid_tests,
            "invalid_tests": self.invalid_tests
        }
