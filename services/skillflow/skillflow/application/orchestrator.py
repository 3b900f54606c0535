"""工作流服务门面：处理意图解析、运行提交、入队、内联执行与技能信息查询。"""

from __future__ import annotations

import asyncio
import logging
from typing import Any
from uuid import uuid4

from skillflow.domain.models import Report, WorkflowDescriptor
from skillflow.domain.skills.registry import SkillRegistry, describe_skill
from skillflow.domain.skills.router import SkillRouter
from skillflow.application.executor import RunExecutor
from skillflow.infra.db.models import RunORM
from skillflow.infra.db.repository import RunRepository

logger = logging.getLogger(__name__)


class WorkflowService:
    """应用服务门面，对外提供运行生命周期相关能力。"""
    def __init__(
        self,
        *,
        repository: RunRepository,
        registry: SkillRegistry,
        router: SkillRouter,
        executor: RunExecutor,
    ) -> None:
        self._repository = repository
        self._registry = registry
        self._router = router
        self._executor = executor

    def resolve(self, intent_text: str) -> WorkflowDescriptor:
        return self._router.resolve(intent_text)

    def _target_workflow(
        self,
        *,
        intent_text: str | None,
        skill_id: str | None,
        workflow_id: str | None,
    ) -> WorkflowDescriptor:
        # 显式指定技能时跳过意图匹配。
        if skill_id:
            return self._registry.get_workflow(skill_id, workflow_id)
        if not intent_text or not intent_text.strip():
            raise ValueError("intent or skill_id is required")
        return self._router.resolve(intent_text)

    def create_run(
        self,
        *,
        user_input: Any,
        intent_text: str | None = None,
        skill_id: str | None = None,
        workflow_id: str | None = None,
        mode: str | None = None,
    ) -> RunORM:
        """解析目标工作流并写入 queued 运行；模式在入库前即校验。"""
        workflow = self._target_workflow(intent_text=intent_text, skill_id=skill_id, workflow_id=workflow_id)
        self._router.select_policy(workflow, mode)
        return self._repository.create_run(
            run_id=str(uuid4()),
            skill_id=workflow.skill_id,
            workflow_id=workflow.id,
            requested_mode=mode,
            intent_text=intent_text,
            user_input=user_input,
        )

    def submit_run(self, **kwargs: Any) -> RunORM:
        """创建运行并投递到 Celery。"""
        run = self.create_run(**kwargs)

        from skillflow.worker.tasks import run_workflow_task

        task = run_workflow_task.delay(run.id)
        logger.info(
            "run enqueued",
            extra={"event": "run.enqueued", "run_id": run.id, "detail": {"celery_task_id": task.id}},
        )
        self._repository.add_event(
            run.id,
            source="api",
            event_type="run.enqueued",
            status=run.status,
            message=task.id,
            payload={"task_id": task.id},
        )
        return run

    async def execute_run(self, run_id: str) -> Report | None:
        return await self._executor.run(run_id)

    async def run_inline(self, **kwargs: Any) -> tuple[RunORM, Report | None]:
        """在当前事件循环内创建并执行运行，不经过队列；仓储读写放到线程池，不阻塞事件循环。"""
        run = await asyncio.to_thread(self.create_run, **kwargs)
        report = await self._executor.run(run.id)
        return await asyncio.to_thread(self.get_run, run.id), report

    def get_run(self, run_id: str) -> RunORM:
        run = self._repository.get_run(run_id)
        if run is None:
            raise KeyError(f"run not found: {run_id}")
        return run

    def list_run_events(self, run_id: str, after_id: int = 0, limit: int = 200) -> list[dict[str, Any]]:
        """按游标分页返回运行事件。"""
        self.get_run(run_id)
        events = self._repository.list_events(run_id, after_id=after_id, limit=limit)
        return [
            {
                "id": event.id,
                "run_id": event.run_id,
                "status": event.status,
                "source": event.source,
                "event_type": event.event_type,
                "message": event.message,
                "payload": event.payload,
                "created_at": event.created_at,
            }
            for event in events
        ]

    def list_skills(self) -> list[dict[str, Any]]:
        return self._registry.list_descriptors()

    def get_skill(self, skill_id: str) -> dict[str, Any]:
        return describe_skill(self._registry.get(skill_id))
