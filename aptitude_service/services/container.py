# 服务装配：缓存为进程级单例，数据会话按请求注入
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from ..calculation.catalog import get_catalog
from ..calculation.index_aggregator import IndexAggregator
from ..calculation.score_processor import ScoreProcessor
from ..database.cache import CachingRepository
from ..database.data_service import DataService, SqlAlchemyDataService
from ..database.repositories import (
    InstitutionRepository, InterpretationRepository, NormsRepository,
    ReportRepository, ResultRepository, SubjectRepository
)
from .batch_report_service import BatchReportGenerator
from .integrity_service import IntegrityChecker
from .interpretation_service import InterpretationService
from .norms_service import NormsService
from .report_service import ReportService
from .task_manager import BatchJobManager

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """一次请求（或一个后台任务）使用的服务集合"""
    data_service: DataService
    cache: CachingRepository
    subjects: SubjectRepository
    results: ResultRepository
    reports: ReportRepository
    institutions: InstitutionRepository
    interpretation_service: InterpretationService
    norms_service: NormsService
    report_service: ReportService
    integrity_checker: IntegrityChecker
    batch_generator: BatchReportGenerator
    processor: ScoreProcessor
    aggregator: IndexAggregator


def build_container(data_service: DataService, cache: CachingRepository) -> ServiceContainer:
    """用给定数据服务和缓存装配全部服务"""
    catalog = get_catalog()
    processor = ScoreProcessor(catalog)
    aggregator = IndexAggregator(catalog)

    subjects = SubjectRepository(data_service, cache)
    results = ResultRepository(data_service, cache)
    reports = ReportRepository(data_service, cache)
    institutions = InstitutionRepository(data_service, cache)
    interpretation_repo = InterpretationRepository(data_service, cache)
    interpretation_service = InterpretationService(interpretation_repo, catalog)
    norms_service = NormsService(NormsRepository(data_service, cache), results)

    report_service = ReportService(
        subjects, results, reports, interpretation_service, processor, aggregator
    )
    # 审计只认可数据库中的解释，不使用内置兜底
    integrity_checker = IntegrityChecker(
        subjects, results, InterpretationService(interpretation_repo, catalog, use_builtin_fallback=False),
        processor, aggregator, norms_service
    )
    batch_generator = BatchReportGenerator(report_service, institutions)

    return ServiceContainer(
        data_service=data_service,
        cache=cache,
        subjects=subjects,
        results=results,
        reports=reports,
        institutions=institutions,
        interpretation_service=interpretation_service,
        norms_service=norms_service,
        report_service=report_service,
        integrity_checker=integrity_checker,
        batch_generator=batch_generator,
        processor=processor,
        aggregator=aggregator
    )


_shared_cache: Optional[CachingRepository] = None
_job_manager: Optional[BatchJobManager] = None


def get_shared_cache() -> CachingRepository:
    """进程级缓存（重启后为空）"""
    global _shared_cache
    if _shared_cache is None:
        _shared_cache = CachingRepository()
    return _shared_cache


def container_for_session(db: Session) -> ServiceContainer:
    return build_container(SqlAlchemyDataService(db, get_shared_cache().monitor), get_shared_cache())


def get_job_manager() -> BatchJobManager:
    """后台任务管理器使用独立的长生命周期会话"""
    global _job_manager
    if _job_manager is None:
        from ..database.connection import SessionLocal
        container = container_for_session(SessionLocal())
        _job_manager = BatchJobManager(container.batch_generator)
        logger.info("Batch job manager initialized")
    return _job_manager


def set_job_manager(manager: Optional[BatchJobManager]) -> None:
    global _job_manager
    _job_manager = manager


def set_shared_cache(cache: Optional[CachingRepository]) -> None:
    global _shared_cache
    _shared_cache = cache
