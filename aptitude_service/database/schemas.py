# 数据库层结果类
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass
class DeletionResult:
    """删除操作结果"""
    deleted_count: int
    deleted_ids: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "deleted_count": self.deleted_count,
            "deleted_ids": self.deleted_ids
        }


@dataclass
class Page:
    """分页查询结果"""
    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size

    @property
    def has_next(self) -> bool:
        return self.page < self.total_pages

    @property
    def has_previous(self) -> bool:
        return self.page > 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "items": self.items,
            "total": self.total,
            "page": self.page,
            "page_size": self.page_size,
            "total_pages": self.total_pages,
            "has_next": self.has_next,
            "has_previous": self.has_previous
        }


@dataclass
class OperationResult:
    """报告管理操作结果"""
    success: bool
    message: str
    count: int = 0
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "count": self.count,
            "details": self.details
        }
