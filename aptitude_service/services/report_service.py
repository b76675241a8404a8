# 报告生成与管理服务
import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from ..calculation.index_aggregator import IndexAggregator
from ..calculation.results import BatchProcessingResult, SubjectSummary
from ..calculation.score_processor import ScoreProcessor
from ..database.enums import DeletionMode, ReportStatus, ReportType
from ..database.repositories import ReportRepository, ResultRepository, SubjectRepository
from ..database.schemas import OperationResult
from .interpretation_service import InterpretationService

logger = logging.getLogger(__name__)


class SubjectDataError(Exception):
    """单个受试者的数据问题（缺少身份信息或结果）"""

    def __init__(self, subject_id: Any, message: str):
        super().__init__(message)
        self.subject_id = subject_id


def to_jsonable(value: Any) -> Any:
    """把日期等对象转换为可写入JSON列的值"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    if hasattr(value, "to_dict"):
        return to_jsonable(value.to_dict())
    return value


def subject_full_name(subject: Dict[str, Any]) -> str:
    return " ".join(p for p in (subject.get("nombre"), subject.get("apellido")) if p).strip()


class ReportService:
    """报告持久化与管理"""

    def __init__(
        self,
        subject_repo: SubjectRepository,
        result_repo: ResultRepository,
        report_repo: ReportRepository,
        interpretation_service: InterpretationService,
        processor: Optional[ScoreProcessor] = None,
        aggregator: Optional[IndexAggregator] = None
    ):
        self.subject_repo = subject_repo
        self.result_repo = result_repo
        self.report_repo = report_repo
        self.interpretations = interpretation_service
        self.processor = processor or ScoreProcessor()
        self.aggregator = aggregator or IndexAggregator(self.processor.catalog)

    async def load_subject_data(self, subject_id: Any) -> Tuple[Dict[str, Any], BatchProcessingResult, SubjectSummary]:
        """读取受试者及其结果并完成计算"""
        rows = await self.result_repo.get_results(subject_id)
        if not rows:
            raise SubjectDataError(subject_id, f"No results available for subject {subject_id}")

        subject = await self.subject_repo.get_subject(subject_id)
        if subject is None:
            raise SubjectDataError(subject_id, f"Subject information not found: {subject_id}")

        processed = self.processor.process_many(rows)
        summary = self.aggregator.summarize(subject_id, processed.valid_results + processed.invalid_results)
        return subject, processed, summary

    async def subject_summary(self, subject_id: Any) -> SubjectSummary:
        """受试者汇总（没有结果时返回全零汇总）"""
        rows = await self.result_repo.get_results(subject_id)
        processed = self.processor.process_many(rows)
        return self.aggregator.summarize(subject_id, processed.valid_results + processed.invalid_results)

    async def build_report_content(
        self,
        subject: Dict[str, Any],
        processed: BatchProcessingResult,
        summary: SubjectSummary
    ) -> Dict[str, Any]:
        """组装报告内容"""
        latest = self.processor.latest_per_aptitude(processed.valid_results)
        scored = [
            {"aptitude_code": r.aptitude_code, "percentile": r.percentile}
            for r in latest
        ]
        interpretations = await self.interpretations.get_many(scored)

        return to_jsonable({
            "subject": subject,
            "results": [r.to_dict() for r in latest],
            "invalid_results": [r.to_dict() for r in processed.invalid_results],
            "summary": summary.to_dict(),
            "consistency": self.processor.validate_consistency(processed.valid_results).to_dict(),
            "interpretations": interpretations,
            "profile": self.interpretations.strengths_and_weaknesses(scored)
        })

    async def generate_report(
        self,
        subject_id: Any,
        title: Optional[str] = None,
        description: Optional[str] = None,
        report_type: ReportType = ReportType.COMPLETE,
        metadata: Optional[Dict[str, Any]] = None
    ) -> Dict[str, Any]:
        """生成并持久化一份完整报告"""
        subject, processed, summary = await self.load_subject_data(subject_id)
        name = subject_full_name(subject)
        content = await self.build_report_content(subject, processed, summary)

        report = await self.report_repo.create_report({
            "paciente_id": subject_id,
            "tipo_informe": report_type.value,
            "titulo": title or f"Informe BAT-7 - {name}",
            "descripcion": description or "Informe completo de aptitudes",
            "contenido": content,
            "estado": ReportStatus.GENERATED.value,
            "metadatos": to_jsonable({
                "version": "1.0",
                "total_tests": summary.total_tests,
                "valid_tests": summary.valid_tests,
                "generated_at": datetime.now(),
                **(metadata or {})
            })
        })
        return {"report_id": report["id"], "subject_id": subject_id, "subject_name": name}

    async def delete_subject_reports(self, subject_id: Any, mode: DeletionMode = DeletionMode.SINGLE) -> OperationResult:
        """软删除受试者报告：single只删最新一份，all删除全部"""
        reports = await self.report_repo.get_subject_reports(subject_id)
        if not reports:
            return OperationResult(success=False, message=f"No reports found for subject {subject_id}")

        targets = reports[:1] if mode == DeletionMode.SINGLE else reports
        deletion = await self.report_repo.delete_reports([r["id"] for r in targets])
        logger.info(f"Deleted {deletion.deleted_count} report(s) for subject {subject_id} ({mode.value})")
        return OperationResult(
            success=True,
            message=f"{deletion.deleted_count} report(s) deleted",
            count=deletion.deleted_count,
            details=deletion.to_dict()
        )

    async def batch_delete_reports(self, subject_ids: List[Any], mode: DeletionMode = DeletionMode.ALL) -> OperationResult:
        """批量删除多个受试者的报告，单个失败不影响其余"""
        total = 0
        per_subject: Dict[str, Any] = {}
        for subject_id in subject_ids:
            try:
                result = await self.delete_subject_reports(subject_id, mode)
            except SubjectDataError as e:
                per_subject[str(subject_id)] = {"success": False, "message": str(e)}
                continue
            total += result.count
            per_subject[str(subject_id)] = {"success": result.success, "count": result.count}
        return OperationResult(
            success=total > 0,
            message=f"{total} report(s) deleted for {len(subject_ids)} subject(s)",
            count=total,
            details=per_subject
        )

    async def restore_subject_reports(self, subject_id: Any) -> OperationResult:
        restored = await self.report_repo.restore_subject_reports(subject_id)
        if not restored:
            return OperationResult(success=False, message=f"No deleted reports for subject {subject_id}")
        logger.info(f"Restored {len(restored)} report(s) for subject {subject_id}")
        return OperationResult(success=True, message=f"{len(restored)} report(s) restored", count=len(restored))

    async def report_history(self, subject_id: Any) -> List[Dict[str, Any]]:
        """包含已删除报告的历史记录"""
        reports = await self.report_repo.get_subject_reports(subject_id, include_deleted=True)
        return [
            {
                "id": r["id"],
                "title": r.get("titulo"),
                "type": r.get("tipo_informe"),
                "status": r.get("estado"),
                "generated_at": r.get("fecha_generacion"),
                "deleted_at": r.get("fecha_eliminacion")
            }
            for r in reports
        ]

    async def test_summary(self, subject_id: Any) -> Dict[str, Any]:
        """受试者施测概况"""
        rows = await self.result_repo.get_results(subject_id)
        records = [self.processor.normalize_record(row) for row in rows]
        timestamps = [r.timestamp for r in records if r.timestamp is not None]
        return {
            "subject_id": subject_id,
            "has_results": bool(records),
            "test_count": len(records),
            "aptitudes": sorted({r.aptitude_code for r in records if r.aptitude_code}),
            "last_test_date": max(timestamps) if timestamps else None
        }
