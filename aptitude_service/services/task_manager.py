# 批处理任务管理器服务
import asyncio
import logging
import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .batch_report_service import BatchOptions, BatchReportGenerator, BatchRunResult, CancellationToken

logger = logging.getLogger(__name__)


class TaskStatus(str, Enum):
    """任务状态枚举"""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


FINISHED_STATUSES = (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED)

# 保留的已结束任务数，超出后淘汰最早结束的任务
MAX_FINISHED_JOBS = 100


class BatchJobManager:
    """后台批量报告任务管理：启动、进度查询、取消"""

    def __init__(self, generator: BatchReportGenerator, max_finished_jobs: int = MAX_FINISHED_JOBS):
        self.generator = generator
        self.max_finished_jobs = max_finished_jobs

        # 任务状态跟踪
        self._jobs: Dict[str, Dict[str, Any]] = {}
        self._tokens: Dict[str, CancellationToken] = {}
        self._handles: Dict[str, asyncio.Task] = {}

        self._system_stats = {
            "total_tasks": 0,
            "completed_tasks": 0,
            "failed_tasks": 0,
            "cancelled_tasks": 0,
            "system_start_time": datetime.now()
        }

    async def start_batch(self, subject_ids: List[Any], options: Optional[BatchOptions] = None) -> Dict[str, Any]:
        """启动批量报告任务（需在事件循环中调用）"""
        if not subject_ids:
            raise ValueError("subject_ids must not be empty")

        task_id = str(uuid.uuid4())
        self._jobs[task_id] = {
            "id": task_id,
            "status": TaskStatus.PENDING,
            "subject_ids": list(subject_ids),
            "progress": {"current": 0, "total": len(subject_ids), "percentage": 0,
                         "current_subject_id": None, "status": TaskStatus.PENDING.value},
            "started_at": datetime.now(),
            "completed_at": None,
            "error_message": None,
            "result": None
        }
        self._tokens[task_id] = CancellationToken()
        self._handles[task_id] = asyncio.create_task(self._execute(task_id, options))
        self._system_stats["total_tasks"] += 1

        logger.info(f"Started batch task {task_id} for {len(subject_ids)} subjects")
        return self.get_task(task_id)

    def _progress_hook(self, task_id: str):
        def on_progress(progress: Dict[str, Any]) -> None:
            job = self._jobs[task_id]
            job["progress"] = {k: v for k, v in progress.items() if k != "result"}
        return on_progress

    async def _execute(self, task_id: str, options: Optional[BatchOptions]) -> None:
        """执行批量任务"""
        job = self._jobs[task_id]
        job["status"] = TaskStatus.RUNNING
        try:
            result: BatchRunResult = await self.generator.generate(
                job["subject_ids"],
                on_progress=self._progress_hook(task_id),
                options=options,
                cancel_token=self._tokens[task_id]
            )
        except Exception as e:
            job["status"] = TaskStatus.FAILED
            job["error_message"] = str(e)
            job["completed_at"] = datetime.now()
            self._system_stats["failed_tasks"] += 1
            logger.error(f"Batch task {task_id} failed: {str(e)}")
            self._release(task_id)
            return

        job["result"] = result
        job["completed_at"] = datetime.now()
        if result.cancelled:
            job["status"] = TaskStatus.CANCELLED
            self._system_stats["cancelled_tasks"] += 1
        else:
            job["status"] = TaskStatus.COMPLETED
            self._system_stats["completed_tasks"] += 1
        logger.info(f"Batch task {task_id} finished with status {job['status'].value}")
        self._release(task_id)

    def _release(self, task_id: str) -> None:
        """释放已结束任务的取消令牌与句柄，并淘汰过旧的任务记录"""
        self._tokens.pop(task_id, None)
        self._handles.pop(task_id, None)

        finished = [j for j in self._jobs.values() if j["status"] in FINISHED_STATUSES]
        if len(finished) <= self.max_finished_jobs:
            return
        finished.sort(key=lambda j: j["completed_at"])
        for job in finished[:len(finished) - self.max_finished_jobs]:
            del self._jobs[job["id"]]
            logger.debug(f"Evicted finished batch task {job['id']}")

    def cancel_task(self, task_id: str) -> bool:
        """请求取消；在下一个受试者边界生效"""
        job = self._jobs.get(task_id)
        if job is None or job["status"] in FINISHED_STATUSES:
            return False
        self._tokens[task_id].cancel()
        logger.info(f"Cancellation requested for batch task {task_id}")
        return True

    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        """获取任务状态"""
        job = self._jobs.get(task_id)
        if job is None:
            return None
        result: Optional[BatchRunResult] = job["result"]
        return {
            "id": job["id"],
            "status": job["status"].value,
            "progress": dict(job["progress"]),
            "started_at": job["started_at"],
            "completed_at": job["completed_at"],
            "error_message": job["error_message"],
            "result": result.to_dict() if result else None
        }

    def list_tasks(self, status: Optional[TaskStatus] = None) -> List[Dict[str, Any]]:
        jobs = sorted(self._jobs.values(), key=lambda j: j["started_at"], reverse=True)
        return [self.get_task(j["id"]) for j in jobs if status is None or j["status"] == status]

    async def wait_for(self, task_id: str) -> Optional[Dict[str, Any]]:
        """等待任务结束并返回最终状态"""
        handle = self._handles.get(task_id)
        if handle is not None:
            await handle
        return self.get_task(task_id)

    def get_system_status(self) -> Dict[str, Any]:
        """获取系统状态"""
        running = len([j for j in self._jobs.values() if j["status"] == TaskStatus.RUNNING])
        uptime = datetime.now() - self._system_stats["system_start_time"]
        return {
            "system_status": "healthy",
            "uptime_seconds": uptime.total_seconds(),
            "running_tasks": running,
            "statistics": {k: v for k, v in self._system_stats.items() if k != "system_start_time"},
            "last_updated": datetime.now().isoformat()
        }
