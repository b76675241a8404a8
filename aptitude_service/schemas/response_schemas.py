from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional
from datetime import datetime


class ApiResponse(BaseModel):
    """统一响应模型"""
    code: int = Field(200, description="业务状态码")
    message: str = Field("success", description="响应消息")
    data: Any = Field(None, description="响应数据")
    timestamp: str = Field(..., description="响应时间(UTC ISO)")


class BatchProgress(BaseModel):
    """批处理进度模型"""
    current: int = 0
    total: int = 0
    percentage: float = Field(0, ge=0.0, le=100.0, description="进度百分比")
    current_subject_id: Optional[int] = None
    status: str


class BatchTaskResponse(BaseModel):
    """批处理任务响应模型"""
    id: str
    status: str
    progress: BatchProgress
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(from_attributes=True)


class ReportPageResponse(BaseModel):
    """报告分页响应模型"""
    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int
    total_pages: int
    has_next: bool
    has_previous: bool
