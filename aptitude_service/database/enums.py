# 数据库枚举定义
import enum


class ReportStatus(enum.Enum):
    """报告状态枚举"""
    GENERATED = "generado"
    DELETED = "eliminado"


class ReportType(enum.Enum):
    """报告类型枚举"""
    COMPLETE = "completo"
    BATCH = "batch"
    COMPARATIVE = "comparativo"


class IntegrityStage(enum.Enum):
    """数据流完整性审计阶段（按顺序）"""
    IDENTITY = "identity"
    ADMINISTRATION = "administration"
    STORAGE = "storage"
    SCORING = "scoring"
    VISUALIZATION = "visualization"
    REPORTING = "reporting"


class GroupingKey(enum.Enum):
    """对比分析分组键"""
    INSTITUTION = "institution"
    GENDER = "gender"
    AGE_GROUP = "age_group"


class BatchStatus(enum.Enum):
    """批处理状态枚举"""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class DeletionMode(enum.Enum):
    """报告删除模式"""
    SINGLE = "single"
    ALL = "all"
