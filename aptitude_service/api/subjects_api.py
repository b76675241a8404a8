from fastapi import APIRouter, Depends, HTTPException, Query
import logging

from ..database.data_service import DataServiceError
from ..database.enums import DeletionMode
from ..database.repositories import RepositoryError
from ..schemas.response_schemas import ApiResponse
from ..services.container import ServiceContainer
from ..services.report_service import SubjectDataError
from .dependencies import get_services, ok

logger = logging.getLogger(__name__)

router = APIRouter(tags=["受试者API"])


@router.get("/subjects/{subject_id}/summary", response_model=ApiResponse)
async def get_subject_summary(subject_id: int, services: ServiceContainer = Depends(get_services)):
    """获取受试者汇总与综合指数"""
    try:
        summary = await services.report_service.subject_summary(subject_id)
        return ok(summary.to_dict())
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")


@router.get("/subjects/{subject_id}/audit", response_model=ApiResponse)
async def audit_subject(subject_id: int, services: ServiceContainer = Depends(get_services)):
    """数据流完整性审计（实时，不缓存结果）"""
    try:
        report = await services.integrity_checker.audit_subject(subject_id)
        return ok(report.to_dict())
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")


@router.post("/subjects/{subject_id}/repair", response_model=ApiResponse)
async def repair_subject(subject_id: int, services: ServiceContainer = Depends(get_services)):
    """自动修复可处理的数据问题"""
    try:
        result = await services.integrity_checker.repair_subject(subject_id)
        return ok(result.to_dict())
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")
    except RepositoryError as e:
        raise HTTPException(status_code=500, detail=f"Repair failed: {str(e)}")


@router.post("/subjects/{subject_id}/reports", response_model=ApiResponse)
async def generate_subject_report(subject_id: int, services: ServiceContainer = Depends(get_services)):
    """生成单个受试者的完整报告"""
    try:
        report = await services.report_service.generate_report(subject_id)
        return ok(report, message="Report generated")
    except SubjectDataError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")
    except RepositoryError as e:
        raise HTTPException(status_code=500, detail=f"Report persistence failed: {str(e)}")


@router.delete("/subjects/{subject_id}/reports", response_model=ApiResponse)
async def delete_subject_reports(
    subject_id: int,
    mode: DeletionMode = Query(DeletionMode.SINGLE, description="single只删除最新报告，all删除全部"),
    services: ServiceContainer = Depends(get_services)
):
    """软删除受试者报告"""
    try:
        result = await services.report_service.delete_subject_reports(subject_id, mode)
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")
    if not result.success:
        raise HTTPException(status_code=404, detail=result.message)
    return ok(result.to_dict(), message=result.message)


@router.post("/subjects/{subject_id}/reports/restore", response_model=ApiResponse)
async def restore_subject_reports(subject_id: int, services: ServiceContainer = Depends(get_services)):
    """恢复已删除的报告"""
    try:
        result = await services.report_service.restore_subject_reports(subject_id)
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")
    if not result.success:
        raise HTTPException(status_code=404, detail=result.message)
    return ok(result.to_dict(), message=result.message)


@router.get("/subjects/{subject_id}/reports/history", response_model=ApiResponse)
async def get_report_history(subject_id: int, services: ServiceContainer = Depends(get_services)):
    """报告历史（含已删除）"""
    try:
        return ok(await services.report_service.report_history(subject_id))
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")


@router.get("/subjects/{subject_id}/tests", response_model=ApiResponse)
async def get_test_summary(subject_id: int, services: ServiceContainer = Depends(get_services)):
    """施测概况"""
    try:
        return ok(await services.report_service.test_summary(subject_id))
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")
