from fastapi import APIRouter, Depends, HTTPException
import logging

from ..database.data_service import DataServiceError
from ..schemas.request_schemas import BatchCreateRequest, BatchDeleteRequest, ComparisonRequest
from ..schemas.response_schemas import ApiResponse
from ..services.batch_report_service import BatchOptions
from ..services.container import ServiceContainer, get_job_manager
from ..services.task_manager import BatchJobManager
from .dependencies import get_services, ok

logger = logging.getLogger(__name__)

router = APIRouter(tags=["批量报告API"])


def job_manager() -> BatchJobManager:
    return get_job_manager()


@router.post("/batches", response_model=ApiResponse, status_code=202)
async def start_batch(request: BatchCreateRequest, manager: BatchJobManager = Depends(job_manager)):
    """启动后台批量报告任务"""
    options_kwargs = {"title": request.title, "description": request.description}
    if request.delay_seconds is not None:
        options_kwargs["delay_seconds"] = request.delay_seconds
    task = await manager.start_batch(request.subject_ids, BatchOptions(**options_kwargs))
    return ok(task, message="Batch started")


@router.get("/batches", response_model=ApiResponse)
async def list_batches(manager: BatchJobManager = Depends(job_manager)):
    """任务列表"""
    return ok(manager.list_tasks())


@router.get("/batches/{task_id}", response_model=ApiResponse)
async def get_batch(task_id: str, manager: BatchJobManager = Depends(job_manager)):
    """查询任务进度与结果"""
    task = manager.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail=f"Batch task not found: {task_id}")
    return ok(task)


@router.post("/batches/{task_id}/cancel", response_model=ApiResponse)
async def cancel_batch(task_id: str, manager: BatchJobManager = Depends(job_manager)):
    """取消任务（在下一个受试者边界生效）"""
    if not manager.cancel_task(task_id):
        raise HTTPException(status_code=409, detail=f"Batch task {task_id} cannot be cancelled")
    return ok({"task_id": task_id}, message="Cancellation requested")


@router.post("/comparisons", response_model=ApiResponse)
async def compare_groups(request: ComparisonRequest, services: ServiceContainer = Depends(get_services)):
    """分组对比分析"""
    try:
        comparison = await services.batch_generator.compare(request.subject_ids, request.group_by)
        return ok(comparison)
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")


@router.post("/reports/batch-delete", response_model=ApiResponse)
async def batch_delete_reports(request: BatchDeleteRequest, services: ServiceContainer = Depends(get_services)):
    """批量软删除报告"""
    try:
        result = await services.report_service.batch_delete_reports(request.subject_ids, request.mode)
        return ok(result.to_dict(), message=result.message)
    except DataServiceError as e:
        raise HTTPException(status_code=503, detail=f"Data service unavailable: {str(e)}")
