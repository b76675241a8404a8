# 服务运行配置
import os
import logging

# 数据库连接配置
DATABASE_HOST = os.getenv("DATABASE_HOST", "localhost")
DATABASE_PORT = os.getenv("DATABASE_PORT", "3306")
DATABASE_USER = os.getenv("DATABASE_USER", "root")
DATABASE_PASSWORD = os.getenv("DATABASE_PASSWORD", "")
DATABASE_NAME = os.getenv("DATABASE_NAME", "bat7_evaluations")

# 显式提供DATABASE_URL时优先使用（测试中可指向sqlite）
DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"mysql+pymysql://{DATABASE_USER}:{DATABASE_PASSWORD}"
    f"@{DATABASE_HOST}:{DATABASE_PORT}/{DATABASE_NAME}"
    "?charset=utf8mb4"
)

# 缓存与批处理配置
CACHE_TTL_SECONDS = float(os.getenv("CACHE_TTL_SECONDS", "300"))      # 5分钟
BATCH_DELAY_SECONDS = float(os.getenv("BATCH_DELAY_SECONDS", "0.1"))  # 每个受试者之间的间隔
SIGNIFICANT_DIFFERENCE_THRESHOLD = float(os.getenv("SIGNIFICANT_DIFFERENCE_THRESHOLD", "20"))
GROUP_RECOMMENDATION_THRESHOLD = float(os.getenv("GROUP_RECOMMENDATION_THRESHOLD", "25"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

_logging_configured = False


def configure_logging(level: str = None) -> None:
    """初始化日志配置（只执行一次）"""
    global _logging_configured
    if _logging_configured:
        return
    logging.basicConfig(
        level=getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )
    _logging_configured = True
