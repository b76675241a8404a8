# 综合指数汇总测试
from datetime import datetime

from aptitude_service.calculation.index_aggregator import IndexAggregator
from aptitude_service.calculation.results import RawResult
from aptitude_service.calculation.score_processor import ScoreProcessor


class TestIndexAggregator:
    """受试者汇总测试"""

    def setup_method(self):
        self.processor = ScoreProcessor()
        self.aggregator = IndexAggregator()

    def _normalize(self, percentiles, subject_id=1, timestamp=datetime(2025, 1, 1, 10, 0)):
        return [
            self.processor.process_one(RawResult(
                subject_id=subject_id,
                aptitude_code=code,
                raw_score=20,
                correct_count=20,
                incorrect_count=5,
                elapsed_seconds=600,
                percentile=percentile,
                timestamp=timestamp
            ))
            for code, percentile in percentiles.items()
        ]

    def test_composite_indices(self):
        """测试综合指数计算"""
        results = self._normalize({"V": 90, "E": 85, "R": 30, "N": 40})

        summary = self.aggregator.summarize(1, results)

        assert summary.has_results is True
        assert summary.avg_percentile == 61
        assert summary.composite_indices["general"] == 61
        assert summary.composite_indices["fluid"] == 58
        assert summary.composite_indices["crystallized"] == 90
        assert summary.composite_indices["quantitative"] == 40
        # 没有注意/专注测验时回退到总体平均
        assert summary.composite_indices["processing"] == 61
        assert summary.band_counts == {"high": 2, "medium": 2, "low": 0}
        assert summary.overall_band.key == "medium_high"
        assert summary.aptitudes_tested == ["V", "E", "R", "N"]
        assert summary.avg_raw_score == 20

    def test_empty_input(self):
        summary = self.aggregator.summarize(5, [])

        assert summary.has_results is False
        assert summary.avg_percentile == 0
        assert summary.band_counts == {"high": 0, "medium": 0, "low": 0}
        assert all(value == 0 for value in summary.composite_indices.values())
        assert summary.overall_band is None
        assert summary.aptitudes_tested == []
        assert summary.last_test_timestamp is None

    def test_only_invalid_results(self):
        results = self._normalize({"ZZ": 50, "QQ": 70})

        summary = self.aggregator.summarize(1, results)

        assert summary.has_results is False
        assert summary.total_tests == 2
        assert summary.invalid_tests == 2

    def test_invalid_results_excluded_from_means(self):
        results = self._normalize({"V": 80, "ZZ": 10})

        summary = self.aggregator.summarize(1, results)

        assert summary.avg_percentile == 80
        assert summary.valid_tests == 1
        assert summary.invalid_tests == 1
        assert summary.total_tests == 2

    def test_missing_percentile_counts_as_zero(self):
        results = self._normalize({"V": 80, "O": None})

        summary = self.aggregator.summarize(1, results)

        assert summary.avg_percentile == 40
        assert summary.composite_indices["crystallized"] == 40
        assert summary.band_counts["low"] == 1

    def test_duplicates_use_most_recent(self):
        """重复施测只计入最近一次"""
        older = self._normalize({"V": 20}, timestamp=datetime(2025, 1, 1))
        newer = self._normalize({"V": 80}, timestamp=datetime(2025, 3, 1))

        summary = self.aggregator.summarize(1, newer + older)

        assert summary.avg_percentile == 80
        assert summary.aptitudes_tested == ["V"]
        assert summary.last_test_timestamp == datetime(2025, 3, 1)
        assert summary.total_tests == 2

    def test_to_dict(self):
        summary = self.aggregator.summarize(1, self._normalize({"A": 50}))
        data = summary.to_dict()

        assert data["overall_band"]["key"] == "medium"
        assert data["last_test_timestamp"] == "2025-01-01T10:00:00"
        assert data["composite_indices"]["processing"] == 50
