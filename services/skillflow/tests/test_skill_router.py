"""技能路由测试：意图解析、歧义与无命中、模式选择及任务构建校验。"""

import asyncio

import pytest

from skillflow.domain.enums import OverallStatus
from skillflow.domain.errors import AmbiguousIntentError, NoMatchError, TaskBuilderError, UnknownModeError
from skillflow.domain.models import ModePolicy, SkillDescriptor, TaskSpec, WorkflowDescriptor
from skillflow.domain.skills.matching import ExactPhraseStrategy, FuzzyPhraseStrategy
from skillflow.domain.skills.registry import SkillRegistry
from skillflow.domain.skills.router import SkillRouter
from skillflow.domain.synthesis.synthesizer import Synthesizer
from skillflow.domain.workers.dispatcher import Dispatcher
from skillflow.domain.workers.tasks import BroadcastTaskBuilder


class _EchoExecutor:
    async def execute(self, spec: TaskSpec, cancel_signal: asyncio.Event) -> str:
        await asyncio.sleep(0)
        return f"{spec.task_id}:{spec.payload}"


class _FixedBuilder:
    def __init__(self, task_ids: list[str]) -> None:
        self._task_ids = task_ids

    def build(self, user_input, worker_count, workflow):
        return [TaskSpec(task_id=task_id, payload=user_input) for task_id in self._task_ids]


def _skill(skill_id: str, trigger: str) -> SkillDescriptor:
    workflow = WorkflowDescriptor(
        id=f"{skill_id}-flow",
        skill_id=skill_id,
        modes={
            "quick": ModePolicy(worker_count=3, per_worker_timeout=1.0, overall_timeout=2.0),
            "extensive": ModePolicy(worker_count=5, per_worker_timeout=2.0, overall_timeout=3.0, required_successes=4),
        },
        default_mode="quick",
    )
    return SkillDescriptor(id=skill_id, triggers=(trigger,), workflows={workflow.id: workflow})


def _router(*skills: SkillDescriptor, margin: float = 0.05, builder=None, strategy=None) -> SkillRouter:
    registry = SkillRegistry(strategy or ExactPhraseStrategy(), min_score=0.5)
    for skill in skills:
        registry.register(skill)
    dispatcher = Dispatcher(_EchoExecutor(), max_pool_size=8, cancel_grace_seconds=0.1)
    return SkillRouter(
        registry,
        dispatcher,
        builder or BroadcastTaskBuilder(),
        Synthesizer(),
        ambiguity_margin=margin,
    )


def test_resolve_returns_unique_best_match() -> None:
    """唯一命中时直接返回对应工作流。"""
    router = _router(_skill("research", "research"), _skill("review", "code review"))
    assert router.resolve("please research solar panels").id == "research-flow"


def test_resolve_raises_no_match() -> None:
    """没有任何候选时抛 NoMatchError。"""
    router = _router(_skill("research", "research"))
    with pytest.raises(NoMatchError):
        router.resolve("bake a cake")


def test_resolve_rejects_tied_candidates() -> None:
    """得分并列时不自行挑选，而是返回全部候选。"""
    router = _router(_skill("research", "report"), _skill("sales", "sales report"))
    with pytest.raises(AmbiguousIntentError) as excinfo:
        router.resolve("write a sales report")
    assert [item.skill.id for item in excinfo.value.candidates] == ["research", "sales"]


def test_resolve_with_zero_margin_prefers_registration_order() -> None:
    """歧义阈值为 0 时同分按注册顺序取第一个。"""
    router = _router(_skill("research", "report"), _skill("sales", "sales report"), margin=0.0)
    assert router.resolve("write a sales report").skill_id == "research"


def test_resolve_accepts_clear_winner_within_fuzzy_scores() -> None:
    """精确包含与模糊命中分差足够大时不算歧义。"""
    router = _router(_skill("review", "code review"), _skill("typo", "code reveiw"), strategy=FuzzyPhraseStrategy())
    assert router.resolve("do a code review").skill_id == "review"


def test_select_policy_uses_default_and_rejects_unknown_mode() -> None:
    """未覆盖时使用默认模式，未知模式列出可用模式。"""
    workflow = _skill("research", "research").default_workflow
    mode, policy = SkillRouter.select_policy(workflow)
    assert mode == "quick"
    assert policy.worker_count == 3

    mode, policy = SkillRouter.select_policy(workflow, "extensive")
    assert (mode, policy.required_successes) == ("extensive", 4)

    with pytest.raises(UnknownModeError) as excinfo:
        SkillRouter.select_policy(workflow, "turbo")
    assert excinfo.value.available == ("quick", "extensive")


def test_execute_validates_builder_output() -> None:
    """构建器返回数量不符或 ID 重复时报错，不会派发。"""
    skill = _skill("research", "research")
    short = _router(skill, builder=_FixedBuilder(["a", "b"]))
    duplicated = _router(skill, builder=_FixedBuilder(["a", "a", "b"]))

    with pytest.raises(TaskBuilderError):
        asyncio.run(short.execute(skill.default_workflow, "q"))
    with pytest.raises(TaskBuilderError):
        asyncio.run(duplicated.execute(skill.default_workflow, "q"))


def test_handle_runs_full_pipeline() -> None:
    """resolve → execute → combine 全链路产出 complete 报告。"""
    router = _router(_skill("research", "research"))

    report = asyncio.run(router.handle("research tides", "tides", mode_override="extensive"))

    assert report.overall_status is OverallStatus.complete
    assert report.mode == "extensive"
    assert [section.task_id for section in report.sections] == [f"research-flow-{n}" for n in range(1, 6)]
    assert report.sections[0].body == "research-flow-1:tides"
    assert report.missing == ()
