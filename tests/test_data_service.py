# 数据服务测试（内存sqlite）
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from aptitude_service.database.data_service import DataServiceError, SqlAlchemyDataService


class TestSqlAlchemyDataService:
    """SQLAlchemy数据服务测试"""

    @pytest.fixture(autouse=True)
    def setup(self, data_service, seed):
        self.data = data_service
        self.seed = seed

    @pytest.mark.asyncio
    async def test_select_with_filters(self):
        subject_id = self.seed.subject()
        self.seed.results(subject_id, {"V": 80, "E": 40, "R": 10})

        rows = await self.data.select("resultados", {"paciente_id": subject_id, "percentil": {"gte": 40}})

        assert {row["aptitud_codigo"] for row in rows} == {"V", "E"}

    @pytest.mark.asyncio
    async def test_list_filter_means_in(self):
        subject_id = self.seed.subject()
        self.seed.results(subject_id, {"V": 80, "E": 40, "R": 10})

        rows = await self.data.select("resultados", {"aptitud_codigo": ["V", "R"]}, fields=["aptitud_codigo"])

        assert sorted(row["aptitud_codigo"] for row in rows) == ["R", "V"]
        assert all(set(row) == {"aptitud_codigo"} for row in rows)

    @pytest.mark.asyncio
    async def test_ordering_and_paging(self):
        subject_id = self.seed.subject()
        self.seed.results(subject_id, {"V": 1, "E": 2, "R": 3, "N": 4})

        rows = await self.data.select(
            "resultados", {"paciente_id": subject_id},
            order_by="created_at", descending=True, limit=2, offset=1
        )

        assert [row["aptitud_codigo"] for row in rows] == ["R", "E"]

    @pytest.mark.asyncio
    async def test_soft_delete_hides_rows(self):
        """软删除后默认查询不再返回"""
        subject_id = self.seed.subject()
        self.seed.results(subject_id, {"V": 80, "E": 40})

        deleted = await self.data.soft_delete("resultados", {"aptitud_codigo": "V"})

        assert deleted == 1
        assert await self.data.count("resultados") == 1
        assert await self.data.count("resultados", include_deleted=True) == 2
        hidden = await self.data.select("resultados", {"deleted_at": {"is_null": False}}, include_deleted=True)
        assert hidden[0]["aptitud_codigo"] == "V"

    @pytest.mark.asyncio
    async def test_soft_delete_report_sets_status(self):
        subject_id = self.seed.subject()
        created = await self.data.insert("informes_generados", [{"paciente_id": subject_id, "titulo": "Informe"}])

        await self.data.soft_delete("informes_generados", {"id": created[0]["id"]})

        rows = await self.data.select("informes_generados", include_deleted=True)
        assert rows[0]["estado"] == "eliminado"
        assert rows[0]["fecha_eliminacion"] is not None

    @pytest.mark.asyncio
    async def test_soft_delete_unsupported_table(self):
        with pytest.raises(DataServiceError):
            await self.data.soft_delete("baremos", {"id": 1})

    @pytest.mark.asyncio
    async def test_insert_coerces_iso_dates(self):
        rows = await self.data.insert("pacientes", [{
            "nombre": "Luis",
            "fecha_nacimiento": "2007-01-15",
            "created_at": "2025-01-01T08:30:00"
        }])

        assert rows[0]["id"] is not None
        assert rows[0]["created_at"] == datetime(2025, 1, 1, 8, 30)
        assert rows[0]["fecha_nacimiento"].year == 2007

    @pytest.mark.asyncio
    async def test_update_reaches_deleted_rows(self):
        subject_id = self.seed.subject()
        await self.data.soft_delete("pacientes", {"id": subject_id})

        rows = await self.data.update("pacientes", {"id": subject_id}, {"deleted_at": None})

        assert len(rows) == 1
        assert await self.data.count("pacientes") == 1

    @pytest.mark.asyncio
    async def test_unknown_table(self):
        with pytest.raises(DataServiceError, match="Unknown table"):
            await self.data.select("no_such_table")

    @pytest.mark.asyncio
    async def test_unknown_column(self):
        with pytest.raises(DataServiceError, match="Unknown column"):
            await self.data.select("pacientes", {"missing": 1})

    @pytest.mark.asyncio
    async def test_unsupported_operator(self):
        with pytest.raises(DataServiceError, match="Unsupported filter operator"):
            await self.data.select("pacientes", {"id": {"between": [1, 2]}})

    @pytest.mark.asyncio
    async def test_database_failure_becomes_data_service_error(self):
        """底层数据库异常转换为系统性错误"""
        session = MagicMock()
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection lost"))
        service = SqlAlchemyDataService(session)

        with pytest.raises(DataServiceError):
            await service.select("pacientes")

        session.rollback.assert_called_once()
        assert service.monitor.error_count == 1


class TestLookups:
    """服务端查询函数测试"""

    @pytest.fixture(autouse=True)
    def setup(self, data_service, seed):
        self.data = data_service
        self.seed = seed

    @pytest.mark.asyncio
    async def test_login_identifier_prefers_email(self):
        with_email = self.seed.subject(email="ana@example.com")
        without_email = self.seed.subject(documento="87654321")

        assert await self.data.lookup("subject_login_identifier", {"subject_id": with_email}) == "ana@example.com"
        assert await self.data.lookup("subject_login_identifier", {"subject_id": without_email}) == "87654321"
        assert await self.data.lookup("subject_login_identifier", {"subject_id": 999}) is None

    @pytest.mark.asyncio
    async def test_norm_percentile(self):
        self.seed.norm("V", 0, 10, 15)
        self.seed.norm("V", 11, 20, 45)

        assert await self.data.lookup("norm_percentile", {"aptitude_code": "V", "raw_score": 14}) == 45
        assert await self.data.lookup("norm_percentile", {"aptitude_code": "V", "raw_score": 40}) is None

    @pytest.mark.asyncio
    async def test_unknown_lookup(self):
        with pytest.raises(DataServiceError, match="Unknown lookup"):
            await self.data.lookup("nope", {})

    @pytest.mark.asyncio
    async def test_register_lookup(self):
        self.data.register_lookup("answer", lambda params: params["x"] * 2)
        assert await self.data.lookup("answer", {"x": 21}) == 42
