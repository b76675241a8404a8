# 分数处理器：校验原始结果并计算衍生指标与等级
import logging
import math
import numbers
from collections import Counter, defaultdict
from typing import Any, Dict, Iterable, List, Optional

from .catalog import AptitudeCatalog, get_catalog
from .field_aliases import normalize_record
from .formulas import round_half_up, safe_divide
from .results import (
    BatchProcessingResult, ConsistencyReport, DerivedMetrics, NormalizedResult, RawResult
)

logger = logging.getLogger(__name__)

# 百分位极差超过该值视为施测条件不一致
PERCENTILE_SPREAD_WARNING = 80


def _is_number(value: Any) -> bool:
    return isinstance(value, numbers.Real) and not isinstance(value, bool)


def _is_finite(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value)


def _count(value: Any) -> float:
    """答题计数，缺失、非数值或非有限值按0处理"""
    return value if _is_finite(value) else 0


class ScoreProcessor:
    """分数处理器（纯函数，无I/O）"""

    def __init__(self, catalog: Optional[AptitudeCatalog] = None):
        self.catalog = catalog or get_catalog()

    def normalize_record(self, row: Any) -> RawResult:
        return normalize_record(row)

    def validate(self, raw: RawResult) -> List[str]:
        """返回校验错误列表（空列表表示有效）"""
        errors = []
        if raw.aptitude_code is None:
            errors.append("Missing aptitude code")
        elif not self.catalog.is_known(raw.aptitude_code):
            errors.append(f"Unknown aptitude code: {raw.aptitude_code}")

        if raw.raw_score is None:
            errors.append("Missing raw score")
        elif not _is_number(raw.raw_score):
            errors.append(f"Raw score is not numeric: {raw.raw_score}")
        elif not math.isfinite(raw.raw_score):
            errors.append("Raw score is not a finite number")
        elif raw.raw_score < 0:
            errors.append("Raw score cannot be negative")

        if raw.percentile is not None:
            if not _is_number(raw.percentile):
                errors.append(f"Percentile is not numeric: {raw.percentile}")
            elif not math.isfinite(raw.percentile):
                errors.append("Percentile is not a finite number")
            elif raw.percentile < 0 or raw.percentile > 100:
                errors.append("Percentile must be between 0 and 100")

        # 计数与用时可缺失，存在时必须为非负有限数
        for label, value in (("Correct count", raw.correct_count),
                             ("Incorrect count", raw.incorrect_count),
                             ("Elapsed time", raw.elapsed_seconds)):
            if value is None or not _is_number(value):
                continue
            if not math.isfinite(value):
                errors.append(f"{label} is not a finite number")
            elif value < 0:
                errors.append(f"{label} cannot be negative")
        return errors

    def derive_metrics(self, raw: RawResult) -> DerivedMetrics:
        """计算衍生指标，分母为0时全部返回0"""
        correct = _count(raw.correct_count)
        incorrect = _count(raw.incorrect_count)
        total_items = int(correct + incorrect)
        elapsed = _count(raw.elapsed_seconds)

        accuracy_pct = round_half_up(safe_divide(correct, total_items) * 100) if total_items > 0 else 0
        time_per_item = safe_divide(elapsed, total_items) if total_items > 0 else 0.0
        if accuracy_pct > 0 and time_per_item > 0:
            efficiency_score = round_half_up(accuracy_pct / time_per_item * 1000)
        else:
            efficiency_score = 0

        return DerivedMetrics(
            total_items=max(total_items, 0),
            accuracy_pct=max(accuracy_pct, 0),
            time_per_item=max(time_per_item, 0.0),
            efficiency_score=max(efficiency_score, 0)
        )

    def process_one(self, raw: Any) -> NormalizedResult:
        """校验并分级单个结果；校验失败作为数据返回，不抛异常"""
        record = normalize_record(raw)
        errors = self.validate(record)

        if errors:
            logger.debug(f"Invalid result for subject {record.subject_id}: {errors}")
            return NormalizedResult(
                raw=record,
                aptitude=self.catalog.get(record.aptitude_code),
                percentile_band=self.catalog.band_for(0),
                derived_metrics=DerivedMetrics(),
                is_valid=False,
                validation_errors=tuple(errors)
            )

        return NormalizedResult(
            raw=record,
            aptitude=self.catalog.get(record.aptitude_code),
            percentile_band=self.catalog.band_for(record.percentile or 0),
            derived_metrics=self.derive_metrics(record),
            is_valid=True
        )

    def process_many(self, raws: Iterable[Any]) -> BatchProcessingResult:
        """批量处理，每条输入对应一条输出，遇到无效记录不中断"""
        processed = [self.process_one(raw) for raw in raws]
        valid_results = [r for r in processed if r.is_valid]
        invalid_results = [r for r in processed if not r.is_valid]

        return BatchProcessingResult(
            valid_results=valid_results,
            invalid_results=invalid_results,
            total_processed=len(processed),
            valid_count=len(valid_results),
            invalid_count=len(invalid_results)
        )

    def validate_consistency(self, results: Iterable[Any]) -> ConsistencyReport:
        """跨测验一致性校验：重复与极差为警告，缺少分数为错误

        重复与极差按受试者分别检查；输入包含多个受试者时警告带受试者前缀。
        """
        report = ConsistencyReport()
        records = [r.raw if isinstance(r, NormalizedResult) else normalize_record(r) for r in results]
        if not records:
            return report

        by_subject: Dict[Any, List[RawResult]] = defaultdict(list)
        for record in records:
            by_subject[record.subject_id].append(record)

        for subject_id, subject_records in by_subject.items():
            prefix = f"Subject {subject_id}: " if len(by_subject) > 1 else ""

            # 重复施测
            code_counts = Counter(r.aptitude_code for r in subject_records if r.aptitude_code)
            for code, count in code_counts.items():
                if count > 1:
                    report.warnings.append(
                        f"{prefix}Aptitude {code} has {count} results; only the most recent will be used"
                    )

            # 百分位极差
            percentiles = [r.percentile for r in subject_records if _is_finite(r.percentile)]
            if len(percentiles) > 1:
                low, high = min(percentiles), max(percentiles)
                if high - low > PERCENTILE_SPREAD_WARNING:
                    report.warnings.append(
                        f"{prefix}Large percentile spread ({low}-{high}); review administration conditions"
                    )

        # 缺少关键数据
        for index, record in enumerate(records, start=1):
            if record.percentile is None and record.raw_score is None:
                report.errors.append(f"Result {index}: missing both percentile and raw score")

        report.is_consistent = len(report.errors) == 0
        return report

    @staticmethod
    def latest_per_aptitude(results: Iterable[NormalizedResult]) -> List[NormalizedResult]:
        """每个能力倾向只保留最近一次结果，保持首次出现的顺序"""
        latest: Dict[str, NormalizedResult] = {}
        order: List[str] = []
        for result in results:
            code = result.aptitude_code
            if code not in latest:
                latest[code] = result
                order.append(code)
            elif _is_newer(result, latest[code]):
                latest[code] = result
        return [latest[code] for code in order]


def _is_newer(candidate: NormalizedResult, current: NormalizedResult) -> bool:
    if candidate.timestamp is None:
        return False
    if current.timestamp is None:
        return True
    return candidate.timestamp > current.timestamp
