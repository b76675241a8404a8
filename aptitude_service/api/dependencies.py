# API依赖注入
from datetime import datetime, timezone
from typing import Any

from fastapi import Depends
from sqlalchemy.orm import Session

from ..database.connection import get_db
from ..schemas.response_schemas import ApiResponse
from ..services.container import ServiceContainer, container_for_session


def get_services(db: Session = Depends(get_db)) -> ServiceContainer:
    """按请求装配服务（共享进程级缓存）"""
    return container_for_session(db)


def ok(data: Any = None, message: str = "success") -> ApiResponse:
    return ApiResponse(
        code=200,
        message=message,
        data=data,
        timestamp=datetime.now(timezone.utc).isoformat()
    )
