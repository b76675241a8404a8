# 批量报告生成服务
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

import pandas as pd

from ..calculation.formulas import round_half_up
from ..config import (
    BATCH_DELAY_SECONDS, GROUP_RECOMMENDATION_THRESHOLD, SIGNIFICANT_DIFFERENCE_THRESHOLD
)
from ..database.data_service import DataServiceError
from ..database.enums import BatchStatus, GroupingKey, ReportType
from ..database.repositories import InstitutionRepository
from .report_service import ReportService

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[Dict[str, Any]], Any]


class CancellationToken:
    """批处理取消令牌，在每个受试者边界检查"""

    def __init__(self):
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled


@dataclass(frozen=True)
class BatchOptions:
    """批处理选项"""
    delay_seconds: float = BATCH_DELAY_SECONDS
    report_type: ReportType = ReportType.COMPLETE
    title: Optional[str] = None
    description: Optional[str] = None


@dataclass(frozen=True)
class SuccessEntry:
    subject_id: Any
    report_id: Any
    subject_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"subject_id": self.subject_id, "report_id": self.report_id, "subject_name": self.subject_name}


@dataclass(frozen=True)
class FailureEntry:
    subject_id: Any
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"subject_id": self.subject_id, "error": self.error}


@dataclass(frozen=True)
class BatchRunResult:
    """批处理结果，返回后不可变"""
    successful: Tuple[SuccessEntry, ...] = ()
    failed: Tuple[FailureEntry, ...] = ()
    total: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    cancelled: bool = False

    @property
    def processed(self) -> int:
        return len(self.successful) + len(self.failed)

    def with_success(self, entry: SuccessEntry) -> "BatchRunResult":
        return replace(self, successful=self.successful + (entry,))

    def with_failure(self, entry: FailureEntry) -> "BatchRunResult":
        return replace(self, failed=self.failed + (entry,))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "successful": [e.to_dict() for e in self.successful],
            "failed": [e.to_dict() for e in self.failed],
            "total": self.total,
            "success_count": len(self.successful),
            "failure_count": len(self.failed),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "cancelled": self.cancelled
        }


# 年龄分组：(上限(不含), 标签)
AGE_GROUPS = ((12, "<12"), (15, "12-14"), (18, "15-17"), (25, "18-24"))
AGE_GROUP_OLDEST = "25+"
UNKNOWN_GROUP = "unknown"


def age_on(birth_date: Optional[date], today: date) -> Optional[int]:
    if birth_date is None:
        return None
    if isinstance(birth_date, datetime):
        birth_date = birth_date.date()
    if isinstance(birth_date, str):
        birth_date = date.fromisoformat(birth_date[:10])
    years = today.year - birth_date.year
    if (today.month, today.day) < (birth_date.month, birth_date.day):
        years -= 1
    return years


def age_group_for(age: Optional[int]) -> str:
    if age is None:
        return UNKNOWN_GROUP
    for upper, label in AGE_GROUPS:
        if age < upper:
            return label
    return AGE_GROUP_OLDEST


class BatchReportGenerator:
    """逐个受试者生成报告，隔离单个受试者失败"""

    def __init__(
        self,
        report_service: ReportService,
        institution_repo: Optional[InstitutionRepository] = None,
        significant_threshold: float = SIGNIFICANT_DIFFERENCE_THRESHOLD,
        recommendation_threshold: float = GROUP_RECOMMENDATION_THRESHOLD
    ):
        self.report_service = report_service
        self.institution_repo = institution_repo
        self.significant_threshold = significant_threshold
        self.recommendation_threshold = recommendation_threshold

    @staticmethod
    def _emit(on_progress: Optional[ProgressCallback], payload: Dict[str, Any]) -> None:
        if on_progress is None:
            return
        try:
            on_progress(payload)
        except Exception as e:
            logger.error(f"Progress callback failed: {str(e)}")

    async def _generate_one(self, run: BatchRunResult, subject_id: Any, options: BatchOptions) -> BatchRunResult:
        """处理单个受试者，返回新的累积结果"""
        try:
            report = await self.report_service.generate_report(
                subject_id,
                title=options.title,
                description=options.description,
                report_type=options.report_type,
                metadata={"batch": True}
            )
        except DataServiceError:
            # 系统性错误终止整个批次
            raise
        except Exception as e:
            logger.error(f"Report generation failed for subject {subject_id}: {str(e)}")
            return run.with_failure(FailureEntry(subject_id=subject_id, error=str(e)))
        return run.with_success(SuccessEntry(
            subject_id=subject_id,
            report_id=report["report_id"],
            subject_name=report.get("subject_name", "")
        ))

    async def generate(
        self,
        subject_ids: List[Any],
        on_progress: Optional[ProgressCallback] = None,
        options: Optional[BatchOptions] = None,
        cancel_token: Optional[CancellationToken] = None
    ) -> BatchRunResult:
        """顺序生成报告；每个受试者之后回调进度，结束时回调completed"""
        options = options or BatchOptions()
        ids = list(subject_ids)
        total = len(ids)
        run = BatchRunResult(total=total, started_at=datetime.now())
        logger.info(f"Starting batch report generation for {total} subjects")

        for index, subject_id in enumerate(ids):
            if cancel_token is not None and cancel_token.is_cancelled:
                logger.info(f"Batch cancelled after {run.processed} of {total} subjects")
                run = replace(run, cancelled=True)
                break

            run = await self._generate_one(run, subject_id, options)
            current = index + 1
            self._emit(on_progress, {
                "current": current,
                "total": total,
                "percentage": round_half_up(current / total * 100),
                "current_subject_id": subject_id,
                "status": BatchStatus.PROCESSING.value
            })

            if options.delay_seconds > 0 and current < total:
                await asyncio.sleep(options.delay_seconds)

        run = replace(run, finished_at=datetime.now())
        status = BatchStatus.CANCELLED if run.cancelled else BatchStatus.COMPLETED
        self._emit(on_progress, {
            "current": run.processed,
            "total": total,
            "percentage": round_half_up(run.processed / total * 100) if total else 100,
            "current_subject_id": None,
            "status": status.value,
            "result": run
        })
        logger.info(
            f"Batch finished: {len(run.successful)} successful, {len(run.failed)} failed, "
            f"{total - run.processed} skipped"
        )
        return run

    def _group_label(self, subject: Dict[str, Any], group_by: GroupingKey,
                     institution_names: Dict[Any, str], today: date) -> str:
        if group_by == GroupingKey.INSTITUTION:
            return institution_names.get(subject.get("institucion_id"), UNKNOWN_GROUP)
        if group_by == GroupingKey.GENDER:
            gender = str(subject.get("genero") or "").strip().lower()
            return gender or UNKNOWN_GROUP
        return age_group_for(age_on(subject.get("fecha_nacimiento"), today))

    async def compare(
        self,
        subject_ids: List[Any],
        group_by: GroupingKey,
        today: Optional[date] = None
    ) -> Dict[str, Any]:
        """按分组键对比各组的能力倾向与综合指数（描述统计）"""
        today = today or date.today()
        subjects = await self.report_service.subject_repo.get_subjects(list(subject_ids))
        institution_names: Dict[Any, str] = {}
        if group_by == GroupingKey.INSTITUTION and self.institution_repo is not None:
            institution_names = await self.institution_repo.get_institution_names(
                [s.get("institucion_id") for s in subjects]
            )

        aptitude_rows: List[Dict[str, Any]] = []
        subject_rows: List[Dict[str, Any]] = []
        excluded: List[Dict[str, Any]] = []
        processor = self.report_service.processor
        aggregator = self.report_service.aggregator

        for subject in subjects:
            rows = await self.report_service.result_repo.get_results(subject["id"])
            processed = processor.process_many(rows)
            if not processed.valid_results:
                excluded.append({"subject_id": subject["id"], "reason": "No valid results available"})
                continue
            group = self._group_label(subject, group_by, institution_names, today)
            summary = aggregator.summarize(subject["id"], processed.valid_results)
            subject_rows.append({
                "group": group,
                "subject_id": subject["id"],
                "gender": str(subject.get("genero") or UNKNOWN_GROUP).lower(),
                "age": age_on(subject.get("fecha_nacimiento"), today),
                "institution_id": subject.get("institucion_id"),
                "tests": summary.total_tests,
                **{f"index_{name}": value for name, value in summary.composite_indices.items()}
            })
            for result in processor.latest_per_aptitude(processed.valid_results):
                aptitude_rows.append({
                    "group": group,
                    "code": result.aptitude_code,
                    "percentile": float(result.percentile or 0),
                    "raw_score": float(result.raw_score or 0)
                })

        found = {s["id"] for s in subjects}
        for subject_id in subject_ids:
            if subject_id not in found:
                excluded.append({"subject_id": subject_id, "reason": "Subject information not found"})

        return self._build_comparison(group_by, subject_rows, aptitude_rows, excluded)

    def _build_comparison(
        self,
        group_by: GroupingKey,
        subject_rows: List[Dict[str, Any]],
        aptitude_rows: List[Dict[str, Any]],
        excluded: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        catalog = self.report_service.processor.catalog
        if not subject_rows:
            return {
                "grouping_key": group_by.value,
                "groups": {},
                "aptitude_comparison": {},
                "composite_comparison": {},
                "significant_differences": [],
                "executive_summary": {"total_subjects": 0, "groups": 0},
                "recommendations": ["No subjects with valid results to compare"],
                "excluded": excluded
            }

        subjects_df = pd.DataFrame(subject_rows)
        aptitudes_df = pd.DataFrame(aptitude_rows)
        index_columns = [c for c in subjects_df.columns if c.startswith("index_")]

        groups: Dict[str, Any] = {}
        for group, frame in subjects_df.groupby("group", sort=True):
            apt_frame = aptitudes_df[aptitudes_df["group"] == group]
            stats = apt_frame.groupby("code").agg(
                mean_percentile=("percentile", "mean"),
                min_percentile=("percentile", "min"),
                max_percentile=("percentile", "max"),
                mean_raw_score=("raw_score", "mean"),
                count=("percentile", "size")
            )
            groups[group] = {
                "subject_count": int(len(frame)),
                "aptitudes": {
                    code: {
                        "mean_percentile": round_half_up(row["mean_percentile"]),
                        "min_percentile": round_half_up(row["min_percentile"]),
                        "max_percentile": round_half_up(row["max_percentile"]),
                        "mean_raw_score": round_half_up(row["mean_raw_score"]),
                        "count": int(row["count"])
                    }
                    for code, row in stats.iterrows()
                },
                "composite_indices": {
                    column[len("index_"):]: round_half_up(frame[column].mean()) for column in index_columns
                },
                "gender_distribution": {k: int(v) for k, v in frame["gender"].value_counts().sort_index().items()}
            }

        aptitude_comparison = self._compare_across_groups(
            {g: {c: s["mean_percentile"] for c, s in data["aptitudes"].items()} for g, data in groups.items()}
        )
        composite_comparison = self._compare_across_groups(
            {g: data["composite_indices"] for g, data in groups.items()}
        )

        significant = [
            {"aptitude": code, "display_name": catalog.display_name(code), **details}
            for code, details in aptitude_comparison.items() if details["significant"]
        ]
        recommendations = [
            f"Review {catalog.display_name(code)}: group '{details['worst_group']}' scores "
            f"{details['spread']} points below '{details['best_group']}'"
            for code, details in aptitude_comparison.items()
            if details["spread"] > self.recommendation_threshold
        ] or ["No substantial differences between groups"]

        ages = subjects_df["age"].dropna()
        executive_summary = {
            "total_subjects": int(len(subjects_df)),
            "groups": len(groups),
            "gender_distribution": {k: int(v) for k, v in subjects_df["gender"].value_counts().sort_index().items()},
            "age_range": {"min": int(ages.min()), "max": int(ages.max())} if not ages.empty else None,
            "institutions_represented": int(subjects_df["institution_id"].dropna().nunique()),
            "average_tests_per_subject": round_half_up(subjects_df["tests"].mean() * 10) / 10,
            "significant_difference_count": len(significant)
        }

        return {
            "grouping_key": group_by.value,
            "groups": groups,
            "aptitude_comparison": aptitude_comparison,
            "composite_comparison": composite_comparison,
            "significant_differences": significant,
            "executive_summary": executive_summary,
            "recommendations": recommendations,
            "excluded": excluded
        }

    def _compare_across_groups(self, means_by_group: Dict[str, Dict[str, int]]) -> Dict[str, Any]:
        """对每个指标计算组间极差与最优组"""
        keys = sorted({key for means in means_by_group.values() for key in means})
        comparison = {}
        for key in keys:
            values = {group: means[key] for group, means in means_by_group.items() if key in means}
            best_group = max(values, key=lambda g: (values[g], g))
            worst_group = min(values, key=lambda g: (values[g], g))
            spread = values[best_group] - values[worst_group]
            comparison[key] = {
                "groups": values,
                "best_group": best_group,
                "worst_group": worst_group,
                "spread": spread,
                "significant": spread > self.significant_threshold
            }
        return comparison
