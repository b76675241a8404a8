from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from datetime import datetime

from ..database.data_service import DataServiceError
from ..database.repositories import RepositoryError
from ..schemas.response_schemas import ApiResponse
from ..services.container import ServiceContainer
from .dependencies import get_services, ok

router = APIRouter(tags=["报告API"])


@router.get("/reports", response_model=ApiResponse)
async def list_reports(
    page: int = Query(1, ge=1, description="页码"),
    page_size: int = Query(10, ge=1, le=100, description="每页数量"),
    search: Optional[str] = Query(None, description="标题关键字"),
    sort_by: str = Query("fecha_generacion", description="排序字段"),
    sort_order: str = Query("desc", pattern="^(asc|desc)$", description="排序方向"),
    date_from: Optional[datetime] = Query(None, description="起始时间"),
    date_to: Optional[datetime] = Query(None, description="结束时间"),
    services: ServiceContainer = Depends(get_services)
):
    """分页查询报告"""
    try:
        result = await services.reports.list_reports(
            page=page, page_size=page_size, search_term=search,
            sort_by=sort_by, sort_order=sort_order,
            date_from=date_from, date_to=date_to
        )
        return ok(result.to_dict())
    except RepositoryError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")


@router.get("/reports/recent", response_model=ApiResponse)
async def recent_reports(
    limit: int = Query(5, ge=1, le=50),
    services: ServiceContainer = Depends(get_services)
):
    """最近7天的报告"""
    try:
        return ok(await services.reports.recent_reports(limit=limit))
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")


@router.get("/reports/stats", response_model=ApiResponse)
async def report_stats(services: ServiceContainer = Depends(get_services)):
    """报告统计"""
    try:
        return ok(await services.reports.report_stats())
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")


@router.get("/reports/{report_id}", response_model=ApiResponse)
async def get_report(report_id: int, services: ServiceContainer = Depends(get_services)):
    """获取单个报告"""
    try:
        report = await services.reports.get_report(report_id)
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")
    if report is None:
        raise HTTPException(status_code=404, detail=f"Report not found: {report_id}")
    return ok(report)


@router.get("/cache/stats", response_model=ApiResponse)
async def cache_stats(services: ServiceContainer = Depends(get_services)):
    """缓存命中统计"""
    return ok(services.cache.stats())
