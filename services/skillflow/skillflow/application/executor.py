from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

from skillflow.domain.enums import RunStatus
from skillflow.domain.errors import SkillflowError
from skillflow.domain.models import Failure, Report, RunResult, Success, TaskOutcome, TimedOut
from skillflow.domain.skills.registry import SkillRegistry
from skillflow.domain.skills.router import SkillRouter
from skillflow.infra.db.repository import RunRepository
from skillflow.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)


def outcome_to_dict(task_id: str, outcome: TaskOutcome) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "task_id": task_id,
        "status": outcome.status.value,
        "elapsed": round(outcome.elapsed, 3),
    }
    if isinstance(outcome, Success):
        entry["result"] = outcome.result
    elif isinstance(outcome, Failure):
        entry["error_kind"] = outcome.error_kind
        entry["message"] = outcome.message
    elif isinstance(outcome, TimedOut):
        entry["reason"] = outcome.reason.value
    return entry


def result_to_outcomes(result: RunResult) -> list[dict[str, Any]]:
    return [outcome_to_dict(task_id, outcome) for task_id, outcome in zip(result.task_ids, result.outcomes)]


class RunExecutor:
    """执行一条已入库的运行：路由到工作流、派发、综合并落库。"""
    def __init__(self, *, repository: RunRepository, registry: SkillRegistry, router: SkillRouter) -> None:
        self._repository = repository
        self._registry = registry
        self._router = router

    async def run(self, run_id: str) -> Report | None:
        """执行运行；已处于终态时直接返回 None，其余异常记为 errored 后继续抛出。

        仓储是同步 SQLAlchemy 会话，读写都放到线程池，派发期间事件循环不被数据库阻塞。
        """
        run = await asyncio.to_thread(self._repository.get_run, run_id)
        if run is None:
            raise KeyError(f"run not found: {run_id}")
        if RunStatus(run.status).is_terminal:
            return None

        with bind_log_context(run_id=run_id, workflow_id=run.workflow_id):
            started = time.perf_counter()
            if not await asyncio.to_thread(self._repository.set_status, run_id, RunStatus.running):
                return None
            try:
                workflow = self._registry.get_workflow(run.skill_id, run.workflow_id)
                result = await self._router.execute(workflow, run.user_input, run.requested_mode, run_id=run_id)
                report = self._router.synthesize(workflow, result)
            except asyncio.CancelledError:
                # 已被取消的协程里不能再可靠地 await，这里同步写入终态。
                self._repository.set_status(run_id, RunStatus.errored, error_code="cancelled", error_message="run cancelled")
                raise
            except Exception as exc:
                error_code = type(exc).__name__ if isinstance(exc, SkillflowError) else "internal_error"
                logger.exception(
                    "run execution failed",
                    extra={
                        "event": "run.execute.failed",
                        "skill_id": run.skill_id,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "error_type": type(exc).__name__,
                        "error": str(exc),
                    },
                )
                await asyncio.to_thread(
                    self._repository.set_status,
                    run_id,
                    RunStatus.errored,
                    error_code=error_code,
                    error_message=str(exc),
                )
                raise

            await asyncio.to_thread(
                self._repository.save_result,
                run_id,
                status=RunStatus.from_overall(result.overall_status),
                mode=result.mode,
                outcomes=result_to_outcomes(result),
                report=report.to_dict(),
                report_text=report.render_text(),
                elapsed_seconds=round(result.elapsed, 3),
            )
            logger.info(
                "run execution finished",
                extra={
                    "event": "run.execute.succeeded",
                    "skill_id": workflow.skill_id,
                    "mode": result.mode,
                    "overall_status": result.overall_status.value,
                    "success_count": result.success_count,
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "detail": {"missing": list(report.missing)},
                },
            )
            return report

    def run_sync(self, run_id: str) -> Report | None:
        """供 Celery 同步任务调用，每次使用新的事件循环。"""
        return asyncio.run(self.run(run_id))
