# 外部数据服务接口及其SQLAlchemy实现
import logging
import time
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import Date, DateTime, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .models import (
    Institution, Subject, Aptitude, AptitudeResult, GeneratedReport,
    QualitativeInterpretation, Norm
)
from .enums import ReportStatus
from .monitoring import RepositoryMonitor

logger = logging.getLogger(__name__)


class DataServiceError(Exception):
    """数据服务系统性异常（不可达、表或查询函数不存在）"""
    pass


class DataService(ABC):
    """通用关系型数据服务接口"""

    @abstractmethod
    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        fields: Optional[List[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        include_deleted: bool = False
    ) -> List[Dict[str, Any]]:
        """查询行"""

    @abstractmethod
    async def count(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        include_deleted: bool = False
    ) -> int:
        """统计行数"""

    @abstractmethod
    async def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """插入行并返回插入结果"""

    @abstractmethod
    async def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> List[Dict[str, Any]]:
        """更新行（包括已软删除的行）"""

    @abstractmethod
    async def soft_delete(self, table: str, filters: Dict[str, Any]) -> int:
        """软删除并返回影响行数"""

    @abstractmethod
    async def lookup(self, name: str, params: Dict[str, Any]) -> Any:
        """服务端计算值查询"""


class SqlAlchemyDataService(DataService):
    """基于SQLAlchemy Session的数据服务实现"""

    TABLES = {
        "instituciones": Institution,
        "pacientes": Subject,
        "aptitudes": Aptitude,
        "resultados": AptitudeResult,
        "informes_generados": GeneratedReport,
        "interpretaciones_cualitativas": QualitativeInterpretation,
        "baremos": Norm,
    }

    # 比较操作符
    OPERATORS = {
        "eq": lambda column, value: column == value,
        "ne": lambda column, value: column != value,
        "gt": lambda column, value: column > value,
        "gte": lambda column, value: column >= value,
        "lt": lambda column, value: column < value,
        "lte": lambda column, value: column <= value,
        "like": lambda column, value: column.ilike(f"%{value}%"),
        "in": lambda column, value: column.in_(list(value)),
        "is_null": lambda column, value: column.is_(None) if value else column.isnot(None),
    }

    def __init__(self, db_session: Session, monitor: Optional[RepositoryMonitor] = None):
        self.db = db_session
        self.monitor = monitor or RepositoryMonitor()
        self._lookups: Dict[str, Callable[[Dict[str, Any]], Any]] = {
            "subject_login_identifier": self._lookup_subject_login_identifier,
            "norm_percentile": self._lookup_norm_percentile,
        }

    def register_lookup(self, name: str, handler: Callable[[Dict[str, Any]], Any]) -> None:
        self._lookups[name] = handler

    def _model(self, table: str):
        model = self.TABLES.get(table)
        if model is None:
            raise DataServiceError(f"Unknown table: {table}")
        return model

    def _column(self, model, name: str):
        column = model.__table__.columns.get(name)
        if column is None:
            raise DataServiceError(f"Unknown column {name} on table {model.__tablename__}")
        return getattr(model, name)

    def _conditions(self, model, filters: Optional[Dict[str, Any]], include_deleted: bool) -> List[Any]:
        conditions = []
        for name, value in (filters or {}).items():
            column = self._column(model, name)
            if isinstance(value, dict):
                for op, operand in value.items():
                    if op not in self.OPERATORS:
                        raise DataServiceError(f"Unsupported filter operator: {op}")
                    conditions.append(self.OPERATORS[op](column, operand))
            elif isinstance(value, (list, tuple, set)):
                conditions.append(column.in_(list(value)))
            elif value is None:
                conditions.append(column.is_(None))
            else:
                conditions.append(column == value)
        if not include_deleted and "deleted_at" in model.__table__.columns:
            conditions.append(model.deleted_at.is_(None))
        return conditions

    @staticmethod
    def _to_dict(obj, fields: Optional[List[str]] = None) -> Dict[str, Any]:
        names = fields or [c.name for c in obj.__table__.columns]
        return {name: getattr(obj, name) for name in names}

    def _coerce(self, model, row: Dict[str, Any]) -> Dict[str, Any]:
        """把ISO字符串转换为日期类型，其余原样保留"""
        values = {}
        for name, value in row.items():
            column = model.__table__.columns.get(name)
            if column is None:
                raise DataServiceError(f"Unknown column {name} on table {model.__tablename__}")
            if isinstance(value, str) and isinstance(column.type, DateTime):
                value = datetime.fromisoformat(value.replace("Z", "+00:00"))
            elif isinstance(value, str) and isinstance(column.type, Date):
                value = date.fromisoformat(value[:10])
            values[name] = value
        return values

    def _run(self, operation: str, table: str, fn: Callable[[], Any]) -> Any:
        started = time.perf_counter()
        try:
            result = fn()
        except DataServiceError:
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            self.monitor.record_error(f"{operation}:{table}", e)
            raise DataServiceError(f"Data service {operation} on {table} failed: {str(e)}") from e
        self.monitor.record_query(f"{operation}:{table}", time.perf_counter() - started)
        return result

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        fields: Optional[List[str]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        include_deleted: bool = False
    ) -> List[Dict[str, Any]]:
        model = self._model(table)
        for name in fields or []:
            self._column(model, name)

        def query():
            stmt = select(model).where(*self._conditions(model, filters, include_deleted))
            if order_by:
                column = self._column(model, order_by)
                stmt = stmt.order_by(column.desc() if descending else column.asc())
                # 同值时按主键保证顺序稳定
                stmt = stmt.order_by(model.id.desc() if descending else model.id.asc())
            if offset:
                stmt = stmt.offset(offset)
            if limit is not None:
                stmt = stmt.limit(limit)
            return [self._to_dict(obj, fields) for obj in self.db.execute(stmt).scalars().all()]

        return self._run("select", table, query)

    async def count(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        include_deleted: bool = False
    ) -> int:
        model = self._model(table)

        def query():
            stmt = select(func.count()).select_from(model).where(
                *self._conditions(model, filters, include_deleted)
            )
            return int(self.db.execute(stmt).scalar() or 0)

        return self._run("count", table, query)

    async def insert(self, table: str, rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        model = self._model(table)

        def write():
            objects = [model(**self._coerce(model, row)) for row in rows]
            self.db.add_all(objects)
            self.db.commit()
            for obj in objects:
                self.db.refresh(obj)
            return [self._to_dict(obj) for obj in objects]

        return self._run("insert", table, write)

    async def update(self, table: str, filters: Dict[str, Any], patch: Dict[str, Any]) -> List[Dict[str, Any]]:
        model = self._model(table)
        values = self._coerce(model, patch)

        def write():
            stmt = select(model).where(*self._conditions(model, filters, include_deleted=True))
            objects = self.db.execute(stmt).scalars().all()
            for obj in objects:
                for name, value in values.items():
                    setattr(obj, name, value)
            self.db.commit()
            return [self._to_dict(obj) for obj in objects]

        return self._run("update", table, write)

    async def soft_delete(self, table: str, filters: Dict[str, Any]) -> int:
        model = self._model(table)
        if "deleted_at" not in model.__table__.columns:
            raise DataServiceError(f"Table {table} does not support soft delete")

        def write():
            stmt = select(model).where(*self._conditions(model, filters, include_deleted=False))
            objects = self.db.execute(stmt).scalars().all()
            now = datetime.now()
            columns = model.__table__.columns
            for obj in objects:
                obj.deleted_at = now
                # 报告表同时维护状态字段
                if "estado" in columns:
                    obj.estado = ReportStatus.DELETED.value
                if "fecha_eliminacion" in columns:
                    obj.fecha_eliminacion = now
            self.db.commit()
            return len(objects)

        return self._run("soft_delete", table, write)

    async def lookup(self, name: str, params: Dict[str, Any]) -> Any:
        handler = self._lookups.get(name)
        if handler is None:
            raise DataServiceError(f"Unknown lookup: {name}")
        return self._run("lookup", name, lambda: handler(params))

    def _lookup_subject_login_identifier(self, params: Dict[str, Any]) -> Optional[str]:
        """受试者登录标识：优先邮箱，其次证件号"""
        subject = self.db.get(Subject, params.get("subject_id"))
        if subject is None:
            return None
        return subject.email or subject.documento

    def _lookup_norm_percentile(self, params: Dict[str, Any]) -> Optional[float]:
        """按能力倾向与原始分查找常模百分位"""
        stmt = select(Norm.percentil).where(
            Norm.factor == params.get("aptitude_code"),
            Norm.puntaje_minimo <= params.get("raw_score"),
            Norm.puntaje_maximo >= params.get("raw_score")
        ).limit(1)
        return self.db.execute(stmt).scalar()

