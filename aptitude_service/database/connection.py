# 数据库连接配置
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool
import logging
from typing import Generator

from ..config import DATABASE_URL

logger = logging.getLogger(__name__)


def build_engine(database_url: str = DATABASE_URL) -> Engine:
    """创建数据库引擎（sqlite用于本地与测试）"""
    if database_url.startswith("sqlite"):
        return create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            echo=False,
            future=True
        )
    return create_engine(
        database_url,
        poolclass=QueuePool,
        pool_size=10,                    # 连接池大小
        max_overflow=20,                 # 最大溢出连接
        pool_pre_ping=True,              # 连接健康检查
        pool_recycle=3600,               # 连接回收时间(1小时)
        echo=False,
        future=True
    )


# 创建数据库引擎
engine = build_engine(DATABASE_URL)

# 创建会话工厂
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True
)

# 创建声明性基类
Base = declarative_base()


def get_db() -> Generator:
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_database(bind: Engine = None) -> None:
    """创建所有数据表"""
    from . import models  # noqa: F401  注册模型
    target = bind or engine
    Base.metadata.create_all(bind=target)
    logger.info(f"Database tables ensured on {target.url.render_as_string(hide_password=True)}")
