from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Optional

from ..database.enums import DeletionMode, GroupingKey


class BatchCreateRequest(BaseModel):
    """批量生成报告请求模型"""
    subject_ids: List[int] = Field(..., description="受试者ID列表", min_length=1)
    delay_seconds: Optional[float] = Field(None, description="受试者之间的间隔(秒)", ge=0, le=10)
    title: Optional[str] = Field(None, description="报告标题", max_length=255)
    description: Optional[str] = Field(None, description="报告描述", max_length=1000)

    model_config = ConfigDict(json_schema_extra={
        "example": {
            "subject_ids": [101, 102, 103],
            "delay_seconds": 0.1,
            "title": "Informe BAT-7"
        }
    })

    @field_validator("subject_ids")
    @classmethod
    def validate_unique_ids(cls, v):
        """受试者ID不能重复"""
        if len(set(v)) != len(v):
            raise ValueError("subject_ids must be unique")
        return v


class ComparisonRequest(BaseModel):
    """分组对比请求模型"""
    subject_ids: List[int] = Field(..., description="受试者ID列表", min_length=1)
    group_by: GroupingKey = Field(..., description="分组键: institution / gender / age_group")


class BatchDeleteRequest(BaseModel):
    """批量删除报告请求模型"""
    subject_ids: List[int] = Field(..., description="受试者ID列表", min_length=1)
    mode: DeletionMode = Field(DeletionMode.ALL, description="single只删除最新报告，all删除全部")
