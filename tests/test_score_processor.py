# 分数处理器测试
from datetime import datetime

import pytest

from aptitude_service.calculation.field_aliases import normalize_record
from aptitude_service.calculation.formulas import round_half_up
from aptitude_service.calculation.results import RawResult
from aptitude_service.calculation.score_processor import ScoreProcessor


def make_raw(**overrides) -> RawResult:
    values = dict(
        subject_id=1,
        aptitude_code="N",
        raw_score=15,
        correct_count=15,
        incorrect_count=3,
        omitted_count=0,
        elapsed_seconds=300,
        percentile=None,
        timestamp=datetime(2025, 1, 1, 10, 0)
    )
    values.update(overrides)
    return RawResult(**values)


class TestRoundHalfUp:
    """取整规则测试"""

    def test_half_rounds_up(self):
        assert round_half_up(57.5) == 58
        assert round_half_up(0.5) == 1
        assert round_half_up(2.5) == 3

    def test_regular_rounding(self):
        assert round_half_up(83.33) == 83
        assert round_half_up(83.7) == 84

    def test_non_finite(self):
        assert round_half_up(float("nan")) == 0
        assert round_half_up(float("inf")) == 0


class TestProcessOne:
    """单个结果处理测试"""

    def setup_method(self):
        self.processor = ScoreProcessor()

    def test_numeric_example(self):
        """测试数字能力倾向示例"""
        result = self.processor.process_one(make_raw())

        assert result.is_valid is True
        assert result.validation_errors == ()
        assert result.derived_metrics.total_items == 18
        assert result.derived_metrics.accuracy_pct == 83
        assert result.derived_metrics.time_per_item == pytest.approx(16.67, abs=0.01)
        assert result.derived_metrics.efficiency_score == round_half_up(83 / (300 / 18) * 1000)
        assert result.aptitude.code == "N"

    def test_percentile_band_assigned(self):
        result = self.processor.process_one(make_raw(percentile=85))
        assert result.percentile_band.key == "high"
        assert result.percentile_band.label == "Alto"

    def test_zero_items_never_divides(self):
        """答题数为0时指标为0"""
        result = self.processor.process_one(make_raw(correct_count=0, incorrect_count=0, raw_score=0))
        metrics = result.derived_metrics
        assert result.is_valid is True
        assert metrics.total_items == 0
        assert metrics.accuracy_pct == 0
        assert metrics.time_per_item == 0
        assert metrics.efficiency_score == 0

    def test_missing_counts_treated_as_zero(self):
        result = self.processor.process_one(make_raw(correct_count=None, incorrect_count=None, elapsed_seconds=None))
        assert result.derived_metrics.total_items == 0
        assert result.derived_metrics.time_per_item == 0

    def test_efficiency_zero_without_time(self):
        result = self.processor.process_one(make_raw(elapsed_seconds=0))
        assert result.derived_metrics.accuracy_pct == 83
        assert result.derived_metrics.efficiency_score == 0

    def test_unknown_aptitude_is_invalid(self):
        """未知代码作为校验错误返回，不抛异常"""
        result = self.processor.process_one(make_raw(aptitude_code="ZZ"))
        assert result.is_valid is False
        assert any("Unknown aptitude code" in e for e in result.validation_errors)
        assert result.percentile_band.key == "very_low"
        assert result.aptitude is None

    def test_negative_raw_score_is_invalid(self):
        result = self.processor.process_one(make_raw(raw_score=-1))
        assert result.is_valid is False
        assert "Raw score cannot be negative" in result.validation_errors

    @pytest.mark.parametrize("percentile", [-1, 100.5, 150])
    def test_out_of_range_percentile_is_invalid(self, percentile):
        result = self.processor.process_one(make_raw(percentile=percentile))
        assert result.is_valid is False
        assert "Percentile must be between 0 and 100" in result.validation_errors

    def test_nan_percentile_from_legacy_row_is_invalid(self):
        """历史数据中的"NaN"百分位不能被当作有效分数"""
        row = {"paciente_id": 3, "test": "V", "puntaje_directo": 20, "percentil": "NaN"}
        result = self.processor.process_one(row)
        assert result.is_valid is False
        assert result.validation_errors == ("Percentile is not a finite number",)
        assert result.percentile_band.key == "very_low"

    @pytest.mark.parametrize("raw_score", [float("inf"), float("-inf"), float("nan")])
    def test_non_finite_raw_score_is_invalid(self, raw_score):
        result = self.processor.process_one(make_raw(raw_score=raw_score))
        assert result.is_valid is False
        assert result.validation_errors == ("Raw score is not a finite number",)

    def test_non_finite_counts_are_invalid(self):
        result = self.processor.process_one(
            make_raw(correct_count=float("inf"), incorrect_count=float("nan"))
        )
        assert result.is_valid is False
        assert result.validation_errors == (
            "Correct count is not a finite number",
            "Incorrect count is not a finite number",
        )
        assert result.derived_metrics.total_items == 0

    def test_negative_elapsed_time_is_invalid(self):
        result = self.processor.process_one(make_raw(elapsed_seconds=-5))
        assert result.is_valid is False
        assert "Elapsed time cannot be negative" in result.validation_errors

    def test_derive_metrics_ignores_non_finite_counts(self):
        metrics = self.processor.derive_metrics(make_raw(correct_count=float("inf"), elapsed_seconds=float("nan")))
        assert metrics.total_items == 3
        assert metrics.accuracy_pct == 0
        assert metrics.time_per_item == 0
        assert metrics.efficiency_score == 0

    def test_multiple_errors_collected(self):
        result = self.processor.process_one(make_raw(aptitude_code=None, raw_score=None, percentile="abc"))
        assert len(result.validation_errors) == 3

    def test_accepts_legacy_row(self):
        """兼容历史字段名"""
        row = {
            "paciente_id": 7,
            "aptitudes": {"codigo": "v"},
            "puntaje_directo": "22",
            "puntaje_pc": 64,
            "respuestas_correctas": 22,
            "respuestas_incorrecas": 8,
            "tiempo_total": 450,
            "created_at": "2025-02-01T10:00:00Z"
        }
        result = self.processor.process_one(row)
        assert result.is_valid is True
        assert result.subject_id == 7
        assert result.aptitude_code == "V"
        assert result.raw_score == 22
        assert result.percentile == 64
        assert result.derived_metrics.total_items == 30
        assert result.timestamp == datetime(2025, 2, 1, 10, 0)


class TestNormalizeRecord:
    """字段别名映射测试"""

    def test_canonical_fields_take_priority(self):
        record = normalize_record({"percentile": 40, "percentil": 90, "aptitude_code": "E", "subject_id": 1})
        assert record.percentile == 40

    def test_zero_values_preserved(self):
        record = normalize_record({"paciente_id": 1, "test": "R", "percentil": 0, "puntaje_directo": 0})
        assert record.percentile == 0
        assert record.raw_score == 0

    def test_raw_result_passthrough(self):
        raw = make_raw()
        assert normalize_record(raw) is raw

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            normalize_record(["not", "a", "row"])


class TestProcessMany:
    """批量处理测试"""

    def setup_method(self):
        self.processor = ScoreProcessor()

    def test_counts_partition_input(self):
        raws = [
            make_raw(aptitude_code="V", percentile=90),
            make_raw(aptitude_code="??"),
            make_raw(aptitude_code="E", raw_score=-4),
            make_raw(aptitude_code="R", percentile=30),
        ]
        result = self.processor.process_many(raws)

        assert result.total_processed == 4
        assert result.valid_count == 2
        assert result.invalid_count == 2
        assert result.valid_count + result.invalid_count == len(raws)

    def test_non_finite_rows_do_not_abort_batch(self):
        """非有限计数作为无效记录返回，其余记录照常处理"""
        raws = [
            {"paciente_id": 1, "test": "V", "puntaje_directo": 20, "percentil": 60,
             "respuestas_correctas": 20, "respuestas_incorrectas": 5},
            {"paciente_id": 1, "test": "N", "puntaje_directo": 20, "percentil": 50,
             "respuestas_correctas": "inf", "respuestas_incorrectas": 5},
            {"paciente_id": 1, "test": "R", "puntaje_directo": 20, "percentil": "NaN"},
            make_raw(aptitude_code="E", percentile=40),
        ]
        result = self.processor.process_many(raws)

        assert result.total_processed == 4
        assert [r.aptitude_code for r in result.valid_results] == ["V", "E"]
        assert [r.aptitude_code for r in result.invalid_results] == ["N", "R"]
        assert result.invalid_results[0].validation_errors == ("Correct count is not a finite number",)

    def test_empty_input(self):
        result = self.processor.process_many([])
        assert result.total_processed == 0
        assert result.valid_results == []

    def test_order_independent(self):
        raws = [make_raw(aptitude_code=c, percentile=p) for c, p in (("V", 10), ("XX", 20), ("M", 30))]
        forward = self.processor.process_many(raws)
        backward = self.processor.process_many(list(reversed(raws)))
        assert forward.valid_count == backward.valid_count
        assert {r.aptitude_code for r in forward.valid_results} == {r.aptitude_code for r in backward.valid_results}


class TestValidateConsistency:
    """一致性校验测试"""

    def setup_method(self):
        self.processor = ScoreProcessor()

    def test_consistent_results(self):
        report = self.processor.validate_consistency([
            make_raw(aptitude_code="V", percentile=60),
            make_raw(aptitude_code="E", percentile=70),
        ])
        assert report.is_consistent is True
        assert report.warnings == []
        assert report.errors == []

    def test_duplicates_are_warnings(self):
        report = self.processor.validate_consistency([
            make_raw(aptitude_code="V", percentile=60),
            make_raw(aptitude_code="V", percentile=65),
        ])
        assert report.is_consistent is True
        assert len(report.warnings) == 1
        assert "Aptitude V has 2 results" in report.warnings[0]

    def test_large_spread_warning(self):
        report = self.processor.validate_consistency([
            make_raw(aptitude_code="V", percentile=5),
            make_raw(aptitude_code="E", percentile=90),
        ])
        assert report.is_consistent is True
        assert any("Large percentile spread (5-90)" in w for w in report.warnings)

    def test_spread_of_exactly_80_is_accepted(self):
        report = self.processor.validate_consistency([
            make_raw(aptitude_code="V", percentile=10),
            make_raw(aptitude_code="E", percentile=90),
        ])
        assert report.warnings == []

    def test_checks_are_grouped_by_subject(self):
        """不同受试者的同一能力倾向不算重复"""
        report = self.processor.validate_consistency([
            make_raw(subject_id=1, aptitude_code="V", percentile=5),
            make_raw(subject_id=2, aptitude_code="V", percentile=95),
            make_raw(subject_id=2, aptitude_code="E", percentile=90),
        ])
        assert report.warnings == []

    def test_multi_subject_warnings_name_the_subject(self):
        report = self.processor.validate_consistency([
            make_raw(subject_id=1, aptitude_code="V", percentile=60),
            make_raw(subject_id=2, aptitude_code="V", percentile=60),
            make_raw(subject_id=2, aptitude_code="V", percentile=65),
        ])
        assert report.warnings == ["Subject 2: Aptitude V has 2 results; only the most recent will be used"]

    def test_missing_scores_are_errors(self):
        report = self.processor.validate_consistency([
            make_raw(aptitude_code="V", percentile=None, raw_score=None),
            make_raw(aptitude_code="E", percentile=None, raw_score=12),
        ])
        assert report.is_consistent is False
        assert report.errors == ["Result 1: missing both percentile and raw score"]

    def test_empty_input_is_consistent(self):
        assert self.processor.validate_consistency([]).is_consistent is True


class TestLatestPerAptitude:
    """重复施测取最近一次"""

    def test_keeps_most_recent(self):
        processor = ScoreProcessor()
        older = processor.process_one(make_raw(aptitude_code="V", percentile=40, timestamp=datetime(2025, 1, 1)))
        newer = processor.process_one(make_raw(aptitude_code="V", percentile=70, timestamp=datetime(2025, 2, 1)))
        other = processor.process_one(make_raw(aptitude_code="E", percentile=50))

        latest = ScoreProcessor.latest_per_aptitude([older, other, newer])

        assert [r.aptitude_code for r in latest] == ["V", "E"]
        assert latest[0].percentile == 70
