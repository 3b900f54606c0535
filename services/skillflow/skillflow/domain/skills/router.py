"""技能路由器：把意图文本解析为工作流，按模式构建任务并驱动派发与综合。"""

from __future__ import annotations

import logging
from typing import Any

from skillflow.domain.errors import AmbiguousIntentError, NoMatchError, TaskBuilderError, UnknownModeError
from skillflow.domain.models import ModePolicy, Report, RunResult, WorkflowDescriptor
from skillflow.domain.skills.registry import SkillRegistry
from skillflow.domain.synthesis.synthesizer import Synthesizer
from skillflow.domain.workers.dispatcher import Dispatcher
from skillflow.domain.workers.tasks import TaskBuilder

logger = logging.getLogger(__name__)


class SkillRouter:
    """技能路由器，最高分与次高分差距小于 ambiguity_margin 时拒绝自行挑选。"""
    def __init__(
        self,
        registry: SkillRegistry,
        dispatcher: Dispatcher,
        task_builder: TaskBuilder,
        synthesizer: Synthesizer,
        *,
        ambiguity_margin: float,
    ) -> None:
        if ambiguity_margin < 0:
            raise ValueError("ambiguity_margin must not be negative")
        self._registry = registry
        self._dispatcher = dispatcher
        self._task_builder = task_builder
        self._synthesizer = synthesizer
        self._ambiguity_margin = ambiguity_margin

    def resolve(self, intent_text: str) -> WorkflowDescriptor:
        """解析意图；无命中抛 NoMatchError，存在势均力敌的候选时抛 AmbiguousIntentError。"""
        matches = self._registry.find_by_intent(intent_text)
        if not matches:
            raise NoMatchError(intent_text)
        best = matches[0]
        contenders = [item for item in matches if best.score - item.score < self._ambiguity_margin]
        if len(contenders) > 1:
            logger.info(
                "intent ambiguous",
                extra={
                    "event": "router.resolve.ambiguous",
                    "score": best.score,
                    "detail": [f"{item.skill.id}/{item.workflow.id}={item.score:.3f}" for item in contenders],
                },
            )
            raise AmbiguousIntentError(intent_text, contenders)
        logger.info(
            "intent resolved",
            extra={
                "event": "router.resolve.matched",
                "skill_id": best.skill.id,
                "workflow_id": best.workflow.id,
                "score": best.score,
            },
        )
        return best.workflow

    @staticmethod
    def select_policy(workflow: WorkflowDescriptor, mode_override: str | None = None) -> tuple[str, ModePolicy]:
        """返回 (模式名, 策略)；覆盖模式不存在时抛 UnknownModeError。"""
        if mode_override is None:
            return workflow.default_mode, workflow.modes[workflow.default_mode]
        try:
            return mode_override, workflow.modes[mode_override]
        except KeyError as exc:
            raise UnknownModeError(workflow.id, mode_override, workflow.mode_names()) from exc

    async def execute(
        self,
        workflow: WorkflowDescriptor,
        user_input: Any,
        mode_override: str | None = None,
        *,
        run_id: str | None = None,
    ) -> RunResult:
        """选择模式策略、构建任务并交给派发器；自身不做 I/O。"""
        mode, policy = self.select_policy(workflow, mode_override)
        tasks = list(self._task_builder.build(user_input, policy.worker_count, workflow))
        if len(tasks) != policy.worker_count:
            raise TaskBuilderError(
                f"task builder returned {len(tasks)} tasks for workflow {workflow.id}, expected {policy.worker_count}"
            )
        task_ids = [task.task_id for task in tasks]
        if len(set(task_ids)) != len(task_ids):
            raise TaskBuilderError(f"task builder returned duplicate task ids for workflow {workflow.id}")
        return await self._dispatcher.run_all(tasks, policy, workflow_id=workflow.id, mode=mode, run_id=run_id)

    def synthesize(self, workflow: WorkflowDescriptor, result: RunResult) -> Report:
        return self._synthesizer.combine(result, merge_policy=workflow.merge_policy)

    async def handle(self, intent_text: str, user_input: Any, mode_override: str | None = None) -> Report:
        """完整链路：resolve → execute → combine。"""
        workflow = self.resolve(intent_text)
        result = await self.execute(workflow, user_input, mode_override)
        return self.synthesize(workflow, result)
