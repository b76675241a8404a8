# 数据流完整性审计服务
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..calculation.formulas import round_half_up
from ..calculation.index_aggregator import IndexAggregator
from ..calculation.results import RawResult
from ..calculation.score_processor import ScoreProcessor
from ..database.data_service import DataServiceError
from ..database.enums import IntegrityStage
from ..database.repositories import ResultRepository, SubjectRepository
from .interpretation_service import InterpretationService
from .norms_service import NormsService

logger = logging.getLogger(__name__)

REQUIRED_IDENTITY_FIELDS = ("nombre", "apellido", "documento")
MIN_NAME_LENGTH = 2
MIN_DOCUMENT_LENGTH = 5

# 失败阶段 -> 处理建议
STAGE_RECOMMENDATIONS = {
    IntegrityStage.IDENTITY: "Complete the subject's basic identity information",
    IntegrityStage.ADMINISTRATION: "Complete pending tests or remove duplicate results",
    IntegrityStage.STORAGE: "Review and correct corrupted result records",
    IntegrityStage.SCORING: "Recalculate scores for results with processing errors",
    IntegrityStage.VISUALIZATION: "Verify that summary data is available for visualization",
    IntegrityStage.REPORTING: "Add the missing qualitative interpretations",
}
CONSISTENT_RECOMMENDATION = "Data flow is complete and consistent"


@dataclass
class StageReport:
    """单个审计阶段结果"""
    valid: bool
    data: Dict[str, Any] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"valid": self.valid, "data": self.data, "errors": list(self.errors)}


@dataclass
class IntegrityReport:
    """完整性审计报告（每次实时生成，不缓存）"""
    subject_id: Any
    stages: Dict[str, StageReport]
    recommendations: List[str]

    @property
    def is_valid(self) -> bool:
        return all(stage.valid for stage in self.stages.values())

    @property
    def overall_errors(self) -> List[str]:
        return [f"{name}: {error}" for name, stage in self.stages.items() for error in stage.errors]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "is_valid": self.is_valid,
            "stages": {name: stage.to_dict() for name, stage in self.stages.items()},
            "recommendations": list(self.recommendations),
            "overall_errors": self.overall_errors
        }


@dataclass
class RepairResult:
    """修复结果"""
    subject_id: Any
    success: bool
    repairs_performed: List[str] = field(default_factory=list)
    manual_review: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    is_valid_after: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_id": self.subject_id,
            "success": self.success,
            "repairs_performed": self.repairs_performed,
            "manual_review": self.manual_review,
            "errors": self.errors,
            "is_valid_after": self.is_valid_after
        }


def _label(record: RawResult) -> str:
    return f"Result {record.result_id} ({record.aptitude_code or '?'})"


def _negative(value: Any) -> bool:
    return isinstance(value, (int, float)) and value < 0


class IntegrityChecker:
    """六阶段数据流审计：各阶段独立执行，不短路"""

    def __init__(
        self,
        subject_repo: SubjectRepository,
        result_repo: ResultRepository,
        interpretation_service: InterpretationService,
        processor: Optional[ScoreProcessor] = None,
        aggregator: Optional[IndexAggregator] = None,
        norms_service: Optional[NormsService] = None
    ):
        self.subject_repo = subject_repo
        self.result_repo = result_repo
        self.interpretations = interpretation_service
        self.processor = processor or ScoreProcessor()
        self.aggregator = aggregator or IndexAggregator(self.processor.catalog)
        self.norms_service = norms_service

    async def audit_subject(self, subject_id: Any) -> IntegrityReport:
        """审计受试者数据；数据服务不可用时直接抛出"""
        subject = await self.subject_repo.get_subject(subject_id)
        rows = await self.result_repo.get_results(subject_id)
        records = [self.processor.normalize_record(row) for row in rows]

        stage_checks: Dict[IntegrityStage, Callable[[], Awaitable[StageReport]]] = {
            IntegrityStage.IDENTITY: lambda: self._check_identity(subject),
            IntegrityStage.ADMINISTRATION: lambda: self._check_administration(records),
            IntegrityStage.STORAGE: lambda: self._check_storage(records),
            IntegrityStage.SCORING: lambda: self._check_scoring(records),
            IntegrityStage.VISUALIZATION: lambda: self._check_visualization(subject_id, records),
            IntegrityStage.REPORTING: lambda: self._check_reporting(records),
        }

        stages: Dict[str, StageReport] = {}
        for stage, check in stage_checks.items():
            stages[stage.value] = await self._run_stage(subject_id, stage, check)

        failing = [stage for stage in IntegrityStage if not stages[stage.value].valid]
        recommendations = [STAGE_RECOMMENDATIONS[stage] for stage in failing] or [CONSISTENT_RECOMMENDATION]

        report = IntegrityReport(subject_id=subject_id, stages=stages, recommendations=recommendations)
        logger.info(
            f"Integrity audit for subject {subject_id}: "
            f"{'valid' if report.is_valid else 'failed stages ' + ', '.join(s.value for s in failing)}"
        )
        return report

    async def _run_stage(self, subject_id: Any, stage: IntegrityStage, check) -> StageReport:
        try:
            return await check()
        except DataServiceError:
            raise
        except Exception as e:
            logger.error(f"Integrity stage {stage.value} failed for subject {subject_id}: {str(e)}")
            return StageReport(valid=False, errors=[f"Stage check raised an error: {str(e)}"])

    async def _check_identity(self, subject: Optional[Dict[str, Any]]) -> StageReport:
        if subject is None:
            return StageReport(valid=False, errors=["Subject record not found"])

        errors = []
        for name in REQUIRED_IDENTITY_FIELDS:
            if not str(subject.get(name) or "").strip():
                errors.append(f"Missing required field: {name}")

        name = str(subject.get("nombre") or "").strip()
        if name and len(name) < MIN_NAME_LENGTH:
            errors.append("Name is too short")
        document = str(subject.get("documento") or "").strip()
        if document and len(document) < MIN_DOCUMENT_LENGTH:
            errors.append("External ID is malformed (too short)")

        return StageReport(
            valid=not errors,
            data={
                "subject_id": subject.get("id"),
                "name": " ".join(p for p in (subject.get("nombre"), subject.get("apellido")) if p),
                "document": subject.get("documento")
            },
            errors=errors
        )

    async def _check_administration(self, records: List[RawResult]) -> StageReport:
        if not records:
            return StageReport(valid=False, data={"total_tests": 0}, errors=["No test results recorded"])

        errors = []
        incomplete = []
        for record in records:
            missing_answers = record.correct_count is None and record.incorrect_count is None
            if record.elapsed_seconds is None or missing_answers:
                incomplete.append(record.result_id)
                errors.append(f"{_label(record)} is missing timing or answer-count data")

        # 审计阶段对重复施测从严处理
        counts = Counter(r.aptitude_code for r in records if r.aptitude_code)
        duplicates = {code: count for code, count in counts.items() if count > 1}
        for code, count in duplicates.items():
            errors.append(f"Duplicate results for aptitude {code} ({count})")

        return StageReport(
            valid=not errors,
            data={
                "total_tests": len(records),
                "aptitudes": sorted(counts),
                "incomplete_tests": incomplete,
                "duplicates": duplicates
            },
            errors=errors
        )

    async def _check_storage(self, records: List[RawResult]) -> StageReport:
        errors = []
        corrupt = set()
        for record in records:
            counts = (record.correct_count, record.incorrect_count, record.omitted_count,
                      record.raw_score, record.elapsed_seconds)
            if any(_negative(v) for v in counts):
                corrupt.add(record.result_id)
                errors.append(f"{_label(record)} has negative counts")
            answered = (record.correct_count or 0) + (record.incorrect_count or 0)
            if answered == 0 and isinstance(record.raw_score, (int, float)) and record.raw_score > 0:
                corrupt.add(record.result_id)
                errors.append(f"{_label(record)} has a positive raw score with no answered items")

        total = len(records)
        score = round_half_up((total - len(corrupt)) / total * 100) if total else 100
        return StageReport(
            valid=not errors,
            data={"total_records": total, "corrupt_records": sorted(corrupt, key=str), "data_integrity_score": score},
            errors=errors
        )

    async def _check_scoring(self, records: List[RawResult]) -> StageReport:
        processed = self.processor.process_many(records)
        errors = [
            f"{_label(r.raw)}: {'; '.join(r.validation_errors)}"
            for r in processed.invalid_results
        ]
        missing = [r.result_id for r in records if r.percentile is None]
        return StageReport(
            valid=not errors,
            data={
                "processed": processed.total_processed,
                "valid": processed.valid_count,
                "invalid": processed.invalid_count,
                "missing_percentiles": missing
            },
            errors=errors
        )

    async def _check_visualization(self, subject_id: Any, records: List[RawResult]) -> StageReport:
        processed = self.processor.process_many(records)
        summary = self.aggregator.summarize(subject_id, processed.valid_results)
        if not summary.has_results:
            return StageReport(valid=False, data=summary.to_dict(), errors=["No valid results to summarize"])

        data = summary.to_dict()
        required = ("avg_percentile", "avg_raw_score", "band_counts", "composite_indices", "overall_band")
        errors = [f"Summary field missing: {name}" for name in required if data.get(name) is None]
        return StageReport(valid=not errors, data=data, errors=errors)

    async def _check_reporting(self, records: List[RawResult]) -> StageReport:
        codes = sorted({r.aptitude_code for r in records if r.aptitude_code})
        if not codes:
            return StageReport(valid=False, data={"aptitudes_checked": []},
                               errors=["No results available for reporting"])

        missing = []
        for code in codes:
            text = await self.interpretations.get_interpretation(code)
            if not text:
                missing.append(code)
        return StageReport(
            valid=not missing,
            data={"aptitudes_checked": codes, "missing_interpretations": missing},
            errors=[f"Missing interpretation for aptitude {code}" for code in missing]
        )

    async def repair_subject(self, subject_id: Any) -> RepairResult:
        """修复可自动处理的问题：补算百分位、移除较早的重复结果"""
        report = await self.audit_subject(subject_id)
        result = RepairResult(subject_id=subject_id, success=True)

        if report.is_valid and not report.stages[IntegrityStage.SCORING.value].data.get("missing_percentiles"):
            result.is_valid_after = True
            result.repairs_performed.append("No repairs needed")
            return result

        missing = report.stages[IntegrityStage.SCORING.value].data.get("missing_percentiles") or []
        if missing:
            if self.norms_service is None:
                result.errors.append("Norms service not configured; cannot recalculate percentiles")
            else:
                outcome = await self.norms_service.recalculate_missing_percentiles(subject_id)
                if outcome["updated"]:
                    result.repairs_performed.append(f"Recalculated {len(outcome['updated'])} percentile(s)")
                for result_id in outcome["unresolved"]:
                    result.manual_review.append(f"Result {result_id}: no matching norm for raw score")

        duplicates = report.stages[IntegrityStage.ADMINISTRATION.value].data.get("duplicates") or {}
        if duplicates:
            removed = await self._remove_older_duplicates(subject_id, set(duplicates))
            result.repairs_performed.append(f"Removed {removed} older duplicate result(s)")

        storage = report.stages[IntegrityStage.STORAGE.value]
        for result_id in storage.data.get("corrupt_records", []):
            result.manual_review.append(f"Result {result_id}: corrupted counts require manual correction")
        if not report.stages[IntegrityStage.IDENTITY.value].valid:
            result.manual_review.append("Identity information must be completed manually")
        reporting = report.stages[IntegrityStage.REPORTING.value]
        for code in reporting.data.get("missing_interpretations", []):
            result.manual_review.append(f"Aptitude {code}: qualitative interpretation must be added")

        after = await self.audit_subject(subject_id)
        result.is_valid_after = after.is_valid
        result.success = not result.errors
        logger.info(f"Repair for subject {subject_id}: {result.repairs_performed or 'nothing repaired'}")
        return result

    async def _remove_older_duplicates(self, subject_id: Any, codes: set) -> int:
        rows = await self.result_repo.get_results(subject_id)
        processed = [self.processor.process_one(row) for row in rows if
                     self.processor.normalize_record(row).aptitude_code in codes]
        keep = {r.raw.result_id for r in self.processor.latest_per_aptitude(processed)}
        stale = [r.raw.result_id for r in processed if r.raw.result_id not in keep]
        deletion = await self.result_repo.delete_result_records(stale)
        return deletion.deleted_count
