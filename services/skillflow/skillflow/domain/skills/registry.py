"""技能注册中心：管理技能描述注册、查询与按意图文本的触发词匹配。"""

from __future__ import annotations

from skillflow.domain.errors import DuplicateSkillError
from skillflow.domain.models import IntentMatch, SkillDescriptor, WorkflowDescriptor
from skillflow.domain.skills.matching import MatchStrategy


class SkillRegistry:
    """技能注册中心，启动时一次性注册，之后只读查询。"""
    def __init__(self, strategy: MatchStrategy, min_score: float) -> None:
        if not 0.0 <= min_score <= 1.0:
            raise ValueError("min_score must be within [0, 1]")
        self._strategy = strategy
        self._min_score = min_score
        self._skills: dict[str, SkillDescriptor] = {}

    def register(self, skill: SkillDescriptor) -> None:
        """注册技能描述；ID 已存在时抛出 DuplicateSkillError。"""
        if skill.id in self._skills:
            raise DuplicateSkillError(skill.id)
        self._skills[skill.id] = skill

    def get(self, skill_id: str) -> SkillDescriptor:
        try:
            return self._skills[skill_id]
        except KeyError as exc:
            raise KeyError(f"unknown skill_id: {skill_id}") from exc

    def get_workflow(self, skill_id: str, workflow_id: str | None = None) -> WorkflowDescriptor:
        """按技能与工作流 ID 查询；未指定工作流时返回技能的首个工作流。"""
        skill = self.get(skill_id)
        if workflow_id is None:
            return skill.default_workflow
        try:
            return skill.workflows[workflow_id]
        except KeyError as exc:
            raise KeyError(f"unknown workflow_id: {skill_id}/{workflow_id}") from exc

    def all(self) -> list[SkillDescriptor]:
        """按注册顺序返回全部技能。"""
        return list(self._skills.values())

    def __len__(self) -> int:
        return len(self._skills)

    def find_by_intent(self, text: str) -> list[IntentMatch]:
        """按分数降序返回不低于阈值的候选；同分时先注册者在前。"""
        matches: list[IntentMatch] = []
        for skill in self._skills.values():
            for position, workflow in enumerate(skill.workflows.values()):
                # 技能级触发词只路由到该技能的首个工作流。
                triggers = workflow.triggers + (skill.triggers if position == 0 else ())
                if not triggers:
                    continue
                best = max(self._strategy.score(text, trigger) for trigger in triggers)
                if best >= self._min_score and best > 0.0:
                    matches.append(IntentMatch(skill=skill, workflow=workflow, score=best))
        # sort 是稳定排序，注册顺序即同分时的先后顺序。
        matches.sort(key=lambda item: item.score, reverse=True)
        return matches

    def list_descriptors(self) -> list[dict[str, object]]:
        """返回全部技能的可序列化描述。"""
        return [describe_skill(skill) for skill in self._skills.values()]


def describe_workflow(workflow: WorkflowDescriptor) -> dict[str, object]:
    return {
        "skill_id": workflow.skill_id,
        "workflow_id": workflow.id,
        "description": workflow.description,
        "default_mode": workflow.default_mode,
        "merge_policy": workflow.merge_policy,
        "triggers": list(workflow.triggers),
        "modes": {
            name: {
                "worker_count": policy.worker_count,
                "per_worker_timeout": policy.per_worker_timeout,
                "overall_timeout": policy.overall_timeout,
                "required_successes": policy.required_successes,
            }
            for name, policy in workflow.modes.items()
        },
    }


def describe_skill(skill: SkillDescriptor) -> dict[str, object]:
    return {
        "id": skill.id,
        "name": skill.name,
        "description": skill.description,
        "version": skill.version,
        "triggers": list(skill.triggers),
        "workflows": [describe_workflow(workflow) for workflow in skill.workflows.values()],
    }
