"""异步任务定义：在 worker 进程内执行已入库的工作流运行。"""

from __future__ import annotations

import logging

from skillflow.application.container import get_run_executor
from skillflow.infra.logging.context import bind_log_context
from skillflow.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


@celery_app.task(bind=True, name="skillflow.worker.tasks.run_workflow_task")
def run_workflow_task(self, run_id: str) -> str | None:
    """执行一条运行并返回整体状态；运行已是终态时返回 None。"""
    with bind_log_context(run_id=run_id):
        logger.info(
            "worker task started",
            extra={"event": "run.task.started", "detail": {"celery_task_id": self.request.id}},
        )
        try:
            report = get_run_executor().run_sync(run_id)
        except Exception as exc:
            logger.exception(
                "worker task failed",
                extra={"event": "run.task.failed", "error_type": type(exc).__name__, "error": str(exc)},
            )
            raise
        if report is None:
            logger.info("worker task skipped", extra={"event": "run.task.skipped"})
            return None
        logger.info(
            "worker task finished",
            extra={"event": "run.task.succeeded", "overall_status": report.overall_status.value},
        )
        return report.overall_status.value
