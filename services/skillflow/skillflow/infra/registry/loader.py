"""技能注册表加载：从 JSON 文件校验并构建进程级 SkillRegistry，失败即启动失败。"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Collection

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from skillflow.domain.errors import DuplicateSkillError, InvalidPolicyError, RegistryLoadError
from skillflow.domain.models import ModePolicy, SkillDescriptor, WorkflowDescriptor
from skillflow.domain.skills.matching import MatchStrategy
from skillflow.domain.skills.registry import SkillRegistry

logger = logging.getLogger(__name__)


class ModeFile(BaseModel):
    """注册表文件中的模式策略。"""
    model_config = ConfigDict(extra="forbid")

    worker_count: int = Field(gt=0)
    per_worker_timeout_seconds: float = Field(gt=0)
    overall_timeout_seconds: float = Field(gt=0)
    required_successes: int | None = Field(default=None, ge=1)


class WorkflowFile(BaseModel):
    """注册表文件中的工作流。"""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    description: str = ""
    triggers: list[str] = Field(default_factory=list)
    default_mode: str
    merge_policy: str = "concatenate"
    modes: dict[str, ModeFile] = Field(min_length=1)


class SkillFile(BaseModel):
    """注册表文件中的技能。"""
    model_config = ConfigDict(extra="forbid")

    id: str = Field(min_length=1)
    name: str = ""
    description: str = ""
    version: str = "1.0.0"
    triggers: list[str] = Field(default_factory=list)
    workflows: list[WorkflowFile] = Field(min_length=1)


class RegistryFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    schema_version: str = "1"
    skills: list[SkillFile] = Field(default_factory=list)


def _to_descriptor(item: SkillFile, known_merge_policies: Collection[str] | None) -> SkillDescriptor:
    workflows: dict[str, WorkflowDescriptor] = {}
    for workflow in item.workflows:
        if workflow.id in workflows:
            raise InvalidPolicyError(f"duplicate workflow id {workflow.id} in skill {item.id}")
        if known_merge_policies is not None and workflow.merge_policy not in known_merge_policies:
            raise InvalidPolicyError(f"unknown merge policy {workflow.merge_policy!r} in workflow {workflow.id}")
        workflows[workflow.id] = WorkflowDescriptor(
            id=workflow.id,
            skill_id=item.id,
            description=workflow.description,
            triggers=tuple(workflow.triggers),
            default_mode=workflow.default_mode,
            merge_policy=workflow.merge_policy,
            modes={
                name: ModePolicy(
                    worker_count=mode.worker_count,
                    per_worker_timeout=mode.per_worker_timeout_seconds,
                    overall_timeout=mode.overall_timeout_seconds,
                    required_successes=mode.required_successes,
                )
                for name, mode in workflow.modes.items()
            },
        )
    return SkillDescriptor(
        id=item.id,
        name=item.name or item.id,
        description=item.description,
        version=item.version,
        triggers=tuple(item.triggers),
        workflows=workflows,
    )


def build_registry(
    document: dict[str, Any],
    *,
    strategy: MatchStrategy,
    min_score: float,
    known_merge_policies: Collection[str] | None = None,
) -> SkillRegistry:
    """按文件顺序注册全部技能；任何校验或重复错误都转换为 RegistryLoadError。"""
    try:
        parsed = RegistryFile.model_validate(document)
        registry = SkillRegistry(strategy, min_score)
        for item in parsed.skills:
            registry.register(_to_descriptor(item, known_merge_policies))
    except (ValidationError, InvalidPolicyError, DuplicateSkillError, ValueError) as exc:
        raise RegistryLoadError(f"invalid skill registry: {exc}") from exc
    return registry


def load_registry(
    path: Path,
    *,
    strategy: MatchStrategy,
    min_score: float,
    known_merge_policies: Collection[str] | None = None,
) -> SkillRegistry:
    """读取并构建注册中心，记录结构化日志。"""
    started = time.perf_counter()
    try:
        document = json.loads(path.read_text(encoding="utf-8"))
        registry = build_registry(
            document,
            strategy=strategy,
            min_score=min_score,
            known_merge_policies=known_merge_policies,
        )
    except (OSError, json.JSONDecodeError, RegistryLoadError) as exc:
        logger.error(
            "skill registry load failed",
            extra={
                "event": "registry.load.failed",
                "op": str(path),
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "error_type": type(exc).__name__,
                "error": str(exc),
            },
        )
        if isinstance(exc, RegistryLoadError):
            raise
        raise RegistryLoadError(f"cannot read skill registry {path}: {exc}") from exc
    logger.info(
        "skill registry loaded",
        extra={
            "event": "registry.load.succeeded",
            "op": str(path),
            "duration_ms": round((time.perf_counter() - started) * 1000, 2),
            "detail": {"skills": [skill.id for skill in registry.all()], "strategy": strategy.name},
        },
    )
    return registry
