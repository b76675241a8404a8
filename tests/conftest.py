# 测试公共夹具
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

from datetime import date, datetime, timedelta
from typing import Any, Dict, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from aptitude_service.database.cache import CachingRepository
from aptitude_service.database.connection import Base
from aptitude_service.database import models
from aptitude_service.database.data_service import SqlAlchemyDataService
from aptitude_service.services.container import build_container


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class Seeder:
    """向测试数据库写入受试者、结果和常模"""

    BASE_TIME = datetime(2025, 3, 1, 9, 0, 0)

    def __init__(self, session):
        self.session = session
        self._offset = 0

    def institution(self, nombre: str) -> int:
        row = models.Institution(nombre=nombre)
        self.session.add(row)
        self.session.commit()
        return row.id

    def subject(self, **fields) -> int:
        values = {
            "nombre": "Ana",
            "apellido": "García",
            "documento": "12345678",
            "email": None,
            "genero": "femenino",
            "fecha_nacimiento": date(2008, 5, 20),
            "institucion_id": None,
        }
        values.update(fields)
        row = models.Subject(**values)
        self.session.add(row)
        self.session.commit()
        return row.id

    def result(self, subject_id: int, code: str, percentile: Optional[float] = 50, **fields) -> int:
        self._offset += 1
        values: Dict[str, Any] = {
            "paciente_id": subject_id,
            "aptitud_codigo": code,
            "puntaje_directo": 20,
            "percentil": percentile,
            "respuestas_correctas": 20,
            "respuestas_incorrectas": 5,
            "respuestas_omitidas": 0,
            "tiempo_total": 600,
            "created_at": self.BASE_TIME + timedelta(minutes=self._offset),
        }
        values.update(fields)
        row = models.AptitudeResult(**values)
        self.session.add(row)
        self.session.commit()
        return row.id

    def results(self, subject_id: int, percentiles: Dict[str, float]) -> None:
        for code, percentile in percentiles.items():
            self.result(subject_id, code, percentile)

    def norm(self, code: str, low: float, high: float, percentile: float) -> None:
        self.session.add(models.Norm(factor=code, puntaje_minimo=low, puntaje_maximo=high, percentil=percentile))
        self.session.commit()

    def interpretation(self, code: str, level: str, text: str) -> None:
        self.session.add(models.QualitativeInterpretation(aptitud_codigo=code, nivel=level, rendimiento=text))
        self.session.commit()


@pytest.fixture
def engine():
    """内存sqlite数据库"""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(engine):
    session = sessionmaker(bind=engine, autoflush=False, future=True)()
    yield session
    session.close()


@pytest.fixture
def data_service(db_session):
    return SqlAlchemyDataService(db_session)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return CachingRepository(ttl_seconds=300, clock=clock)


@pytest.fixture
def services(data_service, cache):
    return build_container(data_service, cache)


@pytest.fixture
def seed(db_session):
    return Seeder(db_session)
