"""工作任务协作方接口：执行器与任务构建器，以及默认的广播式构建器。"""

from __future__ import annotations

import asyncio
from typing import Any, Protocol, Sequence

from skillflow.domain.models import TaskSpec, WorkflowDescriptor


class TaskExecutor(Protocol):
    """外部执行器：返回文本结果，或抛出 TaskExecutionError 表示任务级失败。

    cancel_signal 被置位时必须尽快停止并释放资源。
    """

    async def execute(self, spec: TaskSpec, cancel_signal: asyncio.Event) -> str:
        ...


class TaskBuilder(Protocol):
    """外部任务构建器：根据用户输入生成恰好 worker_count 个任务。"""

    def build(self, user_input: Any, worker_count: int, workflow: WorkflowDescriptor) -> Sequence[TaskSpec]:
        ...


class BroadcastTaskBuilder:
    """把同一份输入交给每个 worker，用于多路独立采样的工作流。"""

    def build(self, user_input: Any, worker_count: int, workflow: WorkflowDescriptor) -> list[TaskSpec]:
        return [TaskSpec(task_id=f"{workflow.id}-{number}", payload=user_input) for number in range(1, worker_count + 1)]
