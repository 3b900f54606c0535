"""测试公共夹具：基于 SQLite 临时库与内存执行器构建完整的应用服务。"""

import asyncio
from pathlib import Path

import pytest

from skillflow.application.executor import RunExecutor
from skillflow.application.orchestrator import WorkflowService
from skillflow.domain.errors import TaskExecutionError
from skillflow.domain.models import ModePolicy, SkillDescriptor, TaskSpec, WorkflowDescriptor
from skillflow.domain.skills.matching import ExactPhraseStrategy
from skillflow.domain.skills.registry import SkillRegistry
from skillflow.domain.skills.router import SkillRouter
from skillflow.domain.synthesis.synthesizer import Synthesizer
from skillflow.domain.workers.dispatcher import Dispatcher
from skillflow.domain.workers.tasks import BroadcastTaskBuilder
from skillflow.infra.db.repository import RunRepository
from skillflow.infra.db.session import build_engine, build_session_factory, init_db


class EchoExecutor:
    """第 2 个任务失败，其余返回输入回显。"""

    async def execute(self, spec: TaskSpec, cancel_signal: asyncio.Event) -> str:
        await asyncio.sleep(0)
        if spec.task_id.endswith("-2"):
            raise TaskExecutionError("empty_result", "nothing came back")
        return f"{spec.task_id} saw {spec.payload['question']}"


def _registry() -> SkillRegistry:
    registry = SkillRegistry(ExactPhraseStrategy(), min_score=0.5)
    research = WorkflowDescriptor(
        id="deep-research",
        skill_id="research",
        modes={
            "quick": ModePolicy(worker_count=3, per_worker_timeout=1.0, overall_timeout=2.0, required_successes=2),
            "strict": ModePolicy(worker_count=3, per_worker_timeout=1.0, overall_timeout=2.0),
        },
        default_mode="quick",
    )
    registry.register(SkillDescriptor(id="research", triggers=("research",), workflows={research.id: research}))
    report = WorkflowDescriptor(
        id="sales-report",
        skill_id="sales",
        modes={"quick": ModePolicy(worker_count=1, per_worker_timeout=1.0, overall_timeout=1.0)},
        default_mode="quick",
    )
    registry.register(SkillDescriptor(id="sales", triggers=("sales report",), workflows={report.id: report}))
    return registry


@pytest.fixture
def make_service(tmp_path: Path):
    """返回 (service, repository) 的工厂，可替换任务构建器。"""

    def factory(builder=None) -> tuple[WorkflowService, RunRepository]:
        engine = build_engine(f"sqlite:///{tmp_path / 'service.db'}")
        init_db(engine)
        repository = RunRepository(build_session_factory(engine))
        registry = _registry()
        router = SkillRouter(
            registry,
            Dispatcher(EchoExecutor(), max_pool_size=4, cancel_grace_seconds=0.05),
            builder or BroadcastTaskBuilder(),
            Synthesizer(),
            ambiguity_margin=0.05,
        )
        executor = RunExecutor(repository=repository, registry=registry, router=router)
        service = WorkflowService(repository=repository, registry=registry, router=router, executor=executor)
        return service, repository

    return factory
