"""领域数据结构定义：技能与工作流描述、模式策略、任务规格、任务结果与报告等值对象。"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, ClassVar, Mapping, Union

from skillflow.domain.enums import OutcomeStatus, OverallStatus, TimeoutReason
from skillflow.domain.errors import InvalidPolicyError
from skillflow.domain.skills.matching import normalize_phrase


def _normalize_triggers(triggers: tuple[str, ...] | list[str]) -> tuple[str, ...]:
    """归一化并按首次出现顺序去重。"""
    seen: dict[str, None] = {}
    for trigger in triggers:
        normalized = normalize_phrase(trigger)
        if normalized:
            seen.setdefault(normalized, None)
    return tuple(seen)


@dataclass(frozen=True, slots=True)
class ModePolicy:
    """一种运行模式的并发与超时策略，时间单位为秒。"""
    worker_count: int
    per_worker_timeout: float
    overall_timeout: float
    required_successes: int | None = None

    def __post_init__(self) -> None:
        if self.worker_count <= 0:
            raise InvalidPolicyError("worker_count must be positive")
        if self.per_worker_timeout <= 0 or self.overall_timeout <= 0:
            raise InvalidPolicyError("timeouts must be strictly positive")
        if self.overall_timeout < self.per_worker_timeout:
            raise InvalidPolicyError("overall_timeout must be >= per_worker_timeout")
        if self.required_successes is None:
            object.__setattr__(self, "required_successes", self.worker_count)
        elif not 1 <= self.required_successes <= self.worker_count:
            raise InvalidPolicyError("required_successes must be within [1, worker_count]")


@dataclass(frozen=True, slots=True)
class WorkflowDescriptor:
    """技能下的一个工作流，持有按名称索引的模式策略。"""
    id: str
    skill_id: str
    modes: Mapping[str, ModePolicy]
    default_mode: str
    triggers: tuple[str, ...] = ()
    merge_policy: str = "concatenate"
    description: str = ""

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidPolicyError("workflow id is required")
        if not self.modes:
            raise InvalidPolicyError(f"workflow {self.id} declares no modes")
        if self.default_mode not in self.modes:
            raise InvalidPolicyError(f"default mode {self.default_mode!r} missing in workflow {self.id}")
        object.__setattr__(self, "modes", MappingProxyType(dict(self.modes)))
        object.__setattr__(self, "triggers", _normalize_triggers(self.triggers))

    def mode_names(self) -> list[str]:
        return list(self.modes)


@dataclass(frozen=True, slots=True)
class SkillDescriptor:
    """已注册技能的元信息，workflows 保持声明顺序。"""
    id: str
    triggers: tuple[str, ...]
    workflows: Mapping[str, WorkflowDescriptor]
    name: str = ""
    description: str = ""
    version: str = "1.0.0"

    def __post_init__(self) -> None:
        if not self.id:
            raise InvalidPolicyError("skill id is required")
        if not self.workflows:
            raise InvalidPolicyError(f"skill {self.id} declares no workflows")
        for workflow_id, workflow in self.workflows.items():
            if workflow.id != workflow_id:
                raise InvalidPolicyError(f"workflow key {workflow_id!r} does not match id {workflow.id!r}")
            if workflow.skill_id != self.id:
                raise InvalidPolicyError(f"workflow {workflow_id} belongs to skill {workflow.skill_id}")
        object.__setattr__(self, "workflows", MappingProxyType(dict(self.workflows)))
        object.__setattr__(self, "triggers", _normalize_triggers(self.triggers))

    @property
    def default_workflow(self) -> WorkflowDescriptor:
        return next(iter(self.workflows.values()))


@dataclass(frozen=True, slots=True)
class IntentMatch:
    """注册中心的一条匹配结果。"""
    skill: SkillDescriptor
    workflow: WorkflowDescriptor
    score: float


@dataclass(frozen=True, slots=True)
class TaskSpec:
    """一次运行中的单个可派发任务；deadline 由派发器在任务开始时按单任务超时写入。"""
    task_id: str
    payload: Any
    deadline: float | None = None


@dataclass(frozen=True, slots=True)
class Success:
    result: str
    elapsed: float
    status: ClassVar[OutcomeStatus] = OutcomeStatus.success


@dataclass(frozen=True, slots=True)
class Failure:
    error_kind: str
    elapsed: float
    message: str = ""
    status: ClassVar[OutcomeStatus] = OutcomeStatus.failure


@dataclass(frozen=True, slots=True)
class TimedOut:
    elapsed: float
    reason: TimeoutReason = TimeoutReason.task
    status: ClassVar[OutcomeStatus] = OutcomeStatus.timed_out


TaskOutcome = Union[Success, Failure, TimedOut]


@dataclass(frozen=True, slots=True)
class RunResult:
    """派发器产出的一轮运行结果，outcomes 与 task_ids 均按提交顺序排列。"""
    workflow_id: str
    mode: str
    task_ids: tuple[str, ...]
    outcomes: tuple[TaskOutcome, ...]
    overall_status: OverallStatus
    required_successes: int
    elapsed: float = 0.0
    run_id: str | None = None

    def __post_init__(self) -> None:
        if len(self.task_ids) != len(self.outcomes):
            raise ValueError("every task must have exactly one outcome")

    @property
    def success_count(self) -> int:
        return sum(1 for outcome in self.outcomes if isinstance(outcome, Success))

    def incomplete_indices(self) -> list[int]:
        return [index for index, outcome in enumerate(self.outcomes) if not isinstance(outcome, Success)]


@dataclass(frozen=True, slots=True)
class SourceSection:
    """报告中的单个来源段落，label 形如 "Source 2"。"""
    index: int
    label: str
    task_id: str
    status: OutcomeStatus
    body: str | None
    error_kind: str | None = None
    detail: str = ""
    elapsed: float = 0.0

    def describe(self) -> str:
        if self.status is OutcomeStatus.timed_out:
            return "timed out"
        if self.status is OutcomeStatus.failure:
            return f"failed ({self.error_kind})"
        return "succeeded"


@dataclass(frozen=True, slots=True)
class Report:
    """综合器输出，内容只依赖 RunResult 与合并策略。"""
    workflow_id: str
    mode: str
    overall_status: OverallStatus
    sections: tuple[SourceSection, ...]
    combined: str
    merge_policy: str
    missing: tuple[int, ...] = field(default_factory=tuple)

    def missing_sections(self) -> list[SourceSection]:
        return [self.sections[index] for index in self.missing]

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "mode": self.mode,
            "overall_status": self.overall_status.value,
            "merge_policy": self.merge_policy,
            "sections": [
                {
                    "index": section.index,
                    "label": section.label,
                    "task_id": section.task_id,
                    "status": section.status.value,
                    "body": section.body,
                    "error_kind": section.error_kind,
                    "detail": section.detail,
                    "elapsed": round(section.elapsed, 3),
                }
                for section in self.sections
            ],
            "missing": [
                {"label": section.label, "task_id": section.task_id, "status": section.status.value}
                for section in self.missing_sections()
            ],
            "combined": self.combined,
        }

    def render_text(self) -> str:
        lines = [f"# {self.workflow_id} ({self.mode}): {self.overall_status.value}", "", "## Sources"]
        for section in self.sections:
            lines.append(f"### {section.label} ({section.task_id}) [{section.status.value}]")
            lines.append(section.body if section.body is not None else f"_no result: {section.describe()}_")
            lines.append("")
        if self.missing:
            lines.append("## Missing sources")
            lines.extend(
                f"- {section.label} ({section.task_id}): {section.describe()}" for section in self.missing_sections()
            )
            lines.append("")
        lines.append("## Combined")
        lines.append(self.combined)
        return "\n".join(lines) + "\n"
