# 综合指数汇总器
import logging
from typing import Any, Iterable, List, Optional

import numpy as np
import pandas as pd

from .catalog import AptitudeCatalog, get_catalog
from .formulas import round_half_up
from .results import NormalizedResult, SubjectSummary
from .score_processor import ScoreProcessor

logger = logging.getLogger(__name__)


class IndexAggregator:
    """根据规范化结果计算受试者汇总与综合智力指数"""

    def __init__(self, catalog: Optional[AptitudeCatalog] = None):
        self.catalog = catalog or get_catalog()

    def _to_frame(self, results: List[NormalizedResult]) -> pd.DataFrame:
        rows = [
            {
                "code": r.aptitude_code,
                "percentile": float(r.percentile) if r.percentile is not None else 0.0,
                "raw_score": float(r.raw_score) if r.raw_score is not None else 0.0,
                "timestamp": r.timestamp
            }
            for r in results
        ]
        return pd.DataFrame(rows, columns=["code", "percentile", "raw_score", "timestamp"])

    def summarize(self, subject_id: Any, normalized_results: Iterable[NormalizedResult]) -> SubjectSummary:
        """计算受试者汇总；没有有效结果时返回全零汇总"""
        all_results = list(normalized_results or [])
        valid = [r for r in all_results if r.is_valid]
        invalid_count = len(all_results) - len(valid)

        if not valid:
            return SubjectSummary(
                subject_id=subject_id,
                has_results=False,
                total_tests=len(all_results),
                valid_tests=0,
                invalid_tests=invalid_count
            )

        # 重复施测只保留最近一次
        latest = ScoreProcessor.latest_per_aptitude(valid)
        df = self._to_frame(latest)

        avg_percentile = round_half_up(df["percentile"].mean())
        avg_raw_score = round_half_up(df["raw_score"].mean())

        levels = np.select(
            [df["percentile"] >= self.catalog.SUMMARY_HIGH_THRESHOLD,
             df["percentile"] >= self.catalog.SUMMARY_LOW_THRESHOLD],
            ["high", "medium"],
            default="low"
        )
        counts = pd.Series(levels).value_counts()
        band_counts = {level: int(counts.get(level, 0)) for level in ("high", "medium", "low")}

        composite_indices = {"general": avg_percentile}
        for index_name, codes in self.catalog.composite_groupings().items():
            subset = df.loc[df["code"].isin(codes), "percentile"]
            # 分组中没有任何测验时回退到总体平均
            composite_indices[index_name] = round_half_up(subset.mean()) if not subset.empty else avg_percentile

        tested = set(df["code"])
        aptitudes_tested = [code for code in self.catalog.codes() if code in tested]

        timestamps = [t for t in df["timestamp"] if t is not None and not pd.isna(t)]
        last_test = max(timestamps) if timestamps else None
        if isinstance(last_test, pd.Timestamp):
            last_test = last_test.to_pydatetime()

        return SubjectSummary(
            subject_id=subject_id,
            has_results=True,
            avg_percentile=avg_percentile,
            avg_raw_score=avg_raw_score,
            band_counts=band_counts,
            aptitudes_tested=aptitudes_tested,
            composite_indices=composite_indices,
            overall_band=self.catalog.band_for(avg_percentile),
            last_test_timestamp=last_test,
            total_tests=len(all_results),
            valid_tests=len(valid),
            invalid_tests=invalid_count
        )
