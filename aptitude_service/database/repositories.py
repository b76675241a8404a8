# 数据仓库层：经由缓存读取，写操作后使集合缓存失效
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..calculation.formulas import round_half_up
from .cache import CachingRepository
from .data_service import DataService, DataServiceError
from .enums import ReportStatus
from .schemas import DeletionResult, Page

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Repository层异常基类"""
    pass


class DataIntegrityError(RepositoryError):
    """数据完整性异常"""
    pass


class BaseRepository:
    """基础仓库类"""

    COLLECTION = ""

    def __init__(self, data_service: DataService, cache: CachingRepository):
        self.data = data_service
        self.cache = cache

    def _handle_error(self, error: Exception, operation: str) -> None:
        """统一处理异常：系统性错误原样抛出，其余包装为RepositoryError"""
        logger.error(f"Repository error in {self.COLLECTION}.{operation}: {str(error)}")
        if isinstance(error, (DataServiceError, RepositoryError)):
            raise error
        raise RepositoryError(f"{operation} failed: {str(error)}") from error

    async def _cached(self, operation: str, params: Dict[str, Any], fetch: Callable[[], Awaitable[Any]]) -> Any:
        key = self.cache.make_key(self.COLLECTION, operation, params)
        try:
            return await self.cache.get(key, fetch)
        except Exception as e:
            self._handle_error(e, operation)

    def _invalidate(self, *collections: str) -> None:
        self.cache.invalidate_collection(*(collections or (self.COLLECTION,)))


class InstitutionRepository(BaseRepository):
    """机构数据仓库"""

    COLLECTION = "instituciones"

    async def get_institution(self, institution_id: Any) -> Optional[Dict[str, Any]]:
        async def fetch():
            rows = await self.data.select(self.COLLECTION, {"id": institution_id}, limit=1)
            return rows[0] if rows else None
        return await self._cached("get", {"id": institution_id}, fetch)

    async def get_institution_names(self, institution_ids: List[Any]) -> Dict[Any, str]:
        ids = sorted({i for i in institution_ids if i is not None})
        if not ids:
            return {}

        async def fetch():
            rows = await self.data.select(self.COLLECTION, {"id": ids}, fields=["id", "nombre"])
            return {row["id"]: row["nombre"] for row in rows}
        return await self._cached("names", {"ids": ids}, fetch)


class SubjectRepository(BaseRepository):
    """受试者数据仓库"""

    COLLECTION = "pacientes"

    async def get_subject(self, subject_id: Any) -> Optional[Dict[str, Any]]:
        """获取受试者"""
        async def fetch():
            rows = await self.data.select(self.COLLECTION, {"id": subject_id}, limit=1)
            return rows[0] if rows else None
        return await self._cached("get", {"id": subject_id}, fetch)

    async def get_subjects(self, subject_ids: List[Any]) -> List[Dict[str, Any]]:
        ids = list(subject_ids)
        if not ids:
            return []

        async def fetch():
            return await self.data.select(self.COLLECTION, {"id": ids}, order_by="id")
        return await self._cached("many", {"ids": sorted(ids, key=str)}, fetch)

    async def update_subject(self, subject_id: Any, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            rows = await self.data.update(self.COLLECTION, {"id": subject_id}, patch)
        except Exception as e:
            self._handle_error(e, "update_subject")
        self._invalidate()
        return rows[0] if rows else None


class ResultRepository(BaseRepository):
    """施测结果数据仓库"""

    COLLECTION = "resultados"

    async def get_results(self, subject_id: Any) -> List[Dict[str, Any]]:
        """获取受试者全部结果（最新在前）"""
        async def fetch():
            return await self.data.select(
                self.COLLECTION, {"paciente_id": subject_id},
                order_by="created_at", descending=True
            )
        return await self._cached("by_subject", {"subject_id": subject_id}, fetch)

    async def count_results(self, subject_id: Any) -> int:
        async def fetch():
            return await self.data.count(self.COLLECTION, {"paciente_id": subject_id})
        return await self._cached("count", {"subject_id": subject_id}, fetch)

    async def create_results(self, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        try:
            created = await self.data.insert(self.COLLECTION, rows)
        except Exception as e:
            self._handle_error(e, "create_results")
        self._invalidate()
        return created

    async def update_result(self, result_id: Any, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            rows = await self.data.update(self.COLLECTION, {"id": result_id}, patch)
        except Exception as e:
            self._handle_error(e, "update_result")
        self._invalidate()
        return rows[0] if rows else None

    async def delete_results(self, subject_id: Any) -> int:
        """软删除受试者全部结果"""
        try:
            count = await self.data.soft_delete(self.COLLECTION, {"paciente_id": subject_id})
        except Exception as e:
            self._handle_error(e, "delete_results")
        self._invalidate()
        return count

    async def delete_result_records(self, result_ids: List[Any]) -> DeletionResult:
        """按ID软删除结果"""
        ids = list(result_ids)
        if not ids:
            return DeletionResult(deleted_count=0)
        try:
            count = await self.data.soft_delete(self.COLLECTION, {"id": ids})
        except Exception as e:
            self._handle_error(e, "delete_result_records")
        self._invalidate()
        return DeletionResult(deleted_count=count, deleted_ids=ids)

    async def restore_results(self, subject_id: Any) -> int:
        try:
            rows = await self.data.update(
                self.COLLECTION,
                {"paciente_id": subject_id, "deleted_at": {"is_null": False}},
                {"deleted_at": None}
            )
        except Exception as e:
            self._handle_error(e, "restore_results")
        self._invalidate()
        return len(rows)


class ReportRepository(BaseRepository):
    """生成报告数据仓库"""

    COLLECTION = "informes_generados"
    SORTABLE_FIELDS = ("fecha_generacion", "titulo", "tipo_informe", "id")
    RECENT_DAYS = 7
    STATS_WINDOW_DAYS = 30

    async def list_reports(
        self,
        page: int = 1,
        page_size: int = 10,
        search_term: Optional[str] = None,
        sort_by: str = "fecha_generacion",
        sort_order: str = "desc",
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None
    ) -> Page:
        """分页查询报告"""
        if page < 1 or page_size < 1:
            raise RepositoryError("page and page_size must be positive")
        if sort_by not in self.SORTABLE_FIELDS:
            raise RepositoryError(f"Unsupported sort field: {sort_by}")

        filters: Dict[str, Any] = {}
        if search_term:
            filters["titulo"] = {"like": search_term}
        date_range = {}
        if date_from:
            date_range["gte"] = date_from
        if date_to:
            date_range["lte"] = date_to
        if date_range:
            filters["fecha_generacion"] = date_range

        params = {
            "page": page, "page_size": page_size, "search": search_term,
            "sort_by": sort_by, "sort_order": sort_order,
            "date_from": date_from, "date_to": date_to
        }

        async def fetch():
            total = await self.data.count(self.COLLECTION, filters)
            items = await self.data.select(
                self.COLLECTION, filters,
                order_by=sort_by, descending=sort_order.lower() == "desc",
                limit=page_size, offset=(page - 1) * page_size
            )
            return Page(items=items, total=total, page=page, page_size=page_size)

        return await self._cached("list", params, fetch)

    async def get_report(self, report_id: Any) -> Optional[Dict[str, Any]]:
        async def fetch():
            rows = await self.data.select(self.COLLECTION, {"id": report_id}, limit=1)
            return rows[0] if rows else None
        return await self._cached("get", {"id": report_id}, fetch)

    async def get_subject_reports(self, subject_id: Any, include_deleted: bool = False) -> List[Dict[str, Any]]:
        """获取受试者的报告（最新在前）"""
        async def fetch():
            return await self.data.select(
                self.COLLECTION, {"paciente_id": subject_id},
                order_by="fecha_generacion", descending=True,
                include_deleted=include_deleted
            )
        return await self._cached(
            "by_subject", {"subject_id": subject_id, "include_deleted": include_deleted}, fetch
        )

    async def recent_reports(self, limit: int = 5, days: int = RECENT_DAYS) -> List[Dict[str, Any]]:
        """最近N天的报告"""
        since = datetime.now() - timedelta(days=days)

        async def fetch():
            return await self.data.select(
                self.COLLECTION, {"fecha_generacion": {"gte": since}},
                order_by="fecha_generacion", descending=True, limit=limit
            )
        return await self._cached("recent", {"limit": limit, "days": days}, fetch)

    async def report_stats(self) -> Dict[str, Any]:
        """报告统计：总数、最近30天数量、日均数量"""
        since = datetime.now() - timedelta(days=self.STATS_WINDOW_DAYS)

        async def fetch():
            # 互不依赖的计数并发执行
            total, last_month, deleted = await asyncio.gather(
                self.data.count(self.COLLECTION),
                self.data.count(self.COLLECTION, {"fecha_generacion": {"gte": since}}),
                self.data.count(self.COLLECTION, {"deleted_at": {"is_null": False}}, include_deleted=True)
            )
            return {
                "total": total,
                "last_month": last_month,
                "deleted": deleted,
                "average_per_day": round_half_up(last_month / self.STATS_WINDOW_DAYS * 10) / 10
            }
        return await self._cached("stats", {}, fetch)

    async def create_report(self, report: Dict[str, Any]) -> Dict[str, Any]:
        try:
            rows = await self.data.insert(self.COLLECTION, [report])
        except Exception as e:
            self._handle_error(e, "create_report")
        self._invalidate()
        if not rows:
            raise DataIntegrityError("Report insert returned no rows")
        logger.info(f"Created report {rows[0].get('id')} for subject {report.get('paciente_id')}")
        return rows[0]

    async def update_report(self, report_id: Any, patch: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            rows = await self.data.update(self.COLLECTION, {"id": report_id}, patch)
        except Exception as e:
            self._handle_error(e, "update_report")
        self._invalidate()
        return rows[0] if rows else None

    async def delete_reports(self, report_ids: List[Any]) -> DeletionResult:
        """软删除报告（批量）"""
        ids = list(report_ids)
        if not ids:
            return DeletionResult(deleted_count=0)
        try:
            count = await self.data.soft_delete(self.COLLECTION, {"id": ids})
        except Exception as e:
            self._handle_error(e, "delete_reports")
        self._invalidate()
        return DeletionResult(deleted_count=count, deleted_ids=ids)

    async def delete_report(self, report_id: Any) -> DeletionResult:
        return await self.delete_reports([report_id])

    async def restore_subject_reports(self, subject_id: Any) -> List[Dict[str, Any]]:
        """恢复受试者已删除的报告"""
        try:
            rows = await self.data.update(
                self.COLLECTION,
                {"paciente_id": subject_id, "estado": ReportStatus.DELETED.value},
                {
                    "estado": ReportStatus.GENERATED.value,
                    "fecha_eliminacion": None,
                    "deleted_at": None
                }
            )
        except Exception as e:
            self._handle_error(e, "restore_subject_reports")
        self._invalidate()
        return rows


class InterpretationRepository(BaseRepository):
    """定性解释数据仓库"""

    COLLECTION = "interpretaciones_cualitativas"

    async def get_for_aptitude(self, aptitude_code: str, level: Optional[str] = None) -> List[Dict[str, Any]]:
        filters: Dict[str, Any] = {"aptitud_codigo": aptitude_code}
        if level:
            filters["nivel"] = level

        async def fetch():
            return await self.data.select(self.COLLECTION, filters)
        return await self._cached("by_aptitude", filters, fetch)


class NormsRepository(BaseRepository):
    """常模数据仓库（PD -> PC）"""

    COLLECTION = "baremos"

    async def find_percentile(self, aptitude_code: str, raw_score: float) -> Optional[float]:
        params = {"aptitude_code": aptitude_code, "raw_score": raw_score}

        async def fetch():
            return await self.data.lookup("norm_percentile", params)
        return await self._cached("percentile", params, fetch)
