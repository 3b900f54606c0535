"""领域异常定义：注册、路由、模式选择与任务执行的可捕获错误。"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from skillflow.domain.models import IntentMatch


class SkillflowError(Exception):
    """所有业务异常的基类。"""


class DuplicateSkillError(SkillflowError):
    """同一技能 ID 被重复注册。"""

    def __init__(self, skill_id: str) -> None:
        super().__init__(f"skill already registered: {skill_id}")
        self.skill_id = skill_id


class NoMatchError(SkillflowError):
    """意图文本没有命中任何技能触发词。"""

    def __init__(self, text: str) -> None:
        super().__init__(f"no workflow matches intent: {text!r}")
        self.text = text


class AmbiguousIntentError(SkillflowError):
    """最高分与次高分差距小于歧义阈值，需要调用方澄清。"""

    def __init__(self, text: str, candidates: Sequence[IntentMatch]) -> None:
        labels = ", ".join(f"{item.skill.id}/{item.workflow.id}={item.score:.2f}" for item in candidates)
        super().__init__(f"ambiguous intent {text!r}: {labels}")
        self.text = text
        self.candidates = list(candidates)


class UnknownModeError(SkillflowError):
    """请求的运行模式不属于该工作流。"""

    def __init__(self, workflow_id: str, mode: str, available: Sequence[str]) -> None:
        super().__init__(f"unknown mode {mode!r} for workflow {workflow_id}; available: {', '.join(available)}")
        self.workflow_id = workflow_id
        self.mode = mode
        self.available = tuple(available)


class InvalidPolicyError(SkillflowError, ValueError):
    """模式策略或描述对象不满足约束。"""


class TaskBuilderError(SkillflowError):
    """任务构建器返回的任务列表违反数量或 ID 唯一性约束。"""


class RegistryLoadError(SkillflowError):
    """启动时无法加载技能注册表，属于致命错误。"""


class TaskExecutionError(SkillflowError):
    """执行器上报的任务级失败，kind 为执行器自定义的失败类别。"""

    def __init__(self, kind: str, message: str = "") -> None:
        super().__init__(message or kind)
        self.kind = kind
        self.message = message
