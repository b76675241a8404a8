# SQLAlchemy模型定义（外部评估数据库的表结构）
from sqlalchemy import Column, Integer, String, DateTime, Text, Float, JSON, ForeignKey, Date
from sqlalchemy.sql import func
from .connection import Base


class Institution(Base):
    """机构模型"""
    __tablename__ = "instituciones"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(255), nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    deleted_at = Column(DateTime, nullable=True)


class Subject(Base):
    """受试者（患者）模型"""
    __tablename__ = "pacientes"

    id = Column(Integer, primary_key=True, index=True)
    nombre = Column(String(100))
    apellido = Column(String(100))
    documento = Column(String(50), index=True)
    email = Column(String(255))
    genero = Column(String(20))
    fecha_nacimiento = Column(Date)
    institucion_id = Column(Integer, ForeignKey("instituciones.id"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    deleted_at = Column(DateTime, nullable=True)


class Aptitude(Base):
    """能力倾向模型"""
    __tablename__ = "aptitudes"

    id = Column(Integer, primary_key=True, index=True)
    codigo = Column(String(10), unique=True, nullable=False)
    nombre = Column(String(100))
    descripcion = Column(Text)


class AptitudeResult(Base):
    """施测结果模型"""
    __tablename__ = "resultados"

    id = Column(Integer, primary_key=True, index=True)
    paciente_id = Column(Integer, ForeignKey("pacientes.id"), index=True, nullable=False)
    aptitud_codigo = Column(String(10), index=True)
    puntaje_directo = Column(Float)
    percentil = Column(Float)
    respuestas_correctas = Column(Integer)
    respuestas_incorrectas = Column(Integer)
    respuestas_omitidas = Column(Integer)
    tiempo_total = Column(Float)
    created_at = Column(DateTime, server_default=func.now())
    deleted_at = Column(DateTime, nullable=True)


class GeneratedReport(Base):
    """生成报告模型"""
    __tablename__ = "informes_generados"

    id = Column(Integer, primary_key=True, index=True)
    paciente_id = Column(Integer, ForeignKey("pacientes.id"), index=True)
    tipo_informe = Column(String(50))
    titulo = Column(String(255))
    descripcion = Column(Text)
    contenido = Column(JSON)
    metadatos = Column(JSON)
    estado = Column(String(20), default="generado")
    fecha_generacion = Column(DateTime, server_default=func.now())
    fecha_eliminacion = Column(DateTime, nullable=True)
    deleted_at = Column(DateTime, nullable=True)


class QualitativeInterpretation(Base):
    """定性解释模型"""
    __tablename__ = "interpretaciones_cualitativas"

    id = Column(Integer, primary_key=True, index=True)
    aptitud_codigo = Column(String(10), index=True)
    nivel = Column(String(20))            # high / medium / low
    rendimiento = Column(Text)
    academico = Column(Text)
    vocacional = Column(Text)


class Norm(Base):
    """常模（PD -> PC 转换表）"""
    __tablename__ = "baremos"

    id = Column(Integer, primary_key=True, index=True)
    factor = Column(String(10), index=True)       # 能力倾向代码
    puntaje_minimo = Column(Float)
    puntaje_maximo = Column(Float)
    percentil = Column(Float)
    interpretacion = Column(String(50))
