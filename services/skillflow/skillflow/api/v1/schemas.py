"""API 请求与响应数据模型定义，约束技能、意图解析与运行等接口结构。"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class ModeResponse(BaseModel):
    worker_count: int
    per_worker_timeout: float
    overall_timeout: float
    required_successes: int | None


class WorkflowResponse(BaseModel):
    """工作流元数据接口响应模型。"""
    skill_id: str
    workflow_id: str
    description: str
    default_mode: str
    merge_policy: str
    triggers: list[str]
    modes: dict[str, ModeResponse]


class SkillResponse(BaseModel):
    """技能元数据接口响应模型。"""
    id: str
    name: str
    description: str
    version: str
    triggers: list[str]
    workflows: list[WorkflowResponse]


class ResolveRequest(BaseModel):
    intent: str = Field(min_length=1)


class CandidateResponse(BaseModel):
    skill_id: str
    workflow_id: str
    score: float


class ResolveResponse(BaseModel):
    """意图解析接口响应模型。"""
    skill_id: str
    workflow_id: str
    default_mode: str
    modes: list[str]


class RunCreateRequest(BaseModel):
    """创建运行请求：intent 与 skill_id 至少提供一个。"""
    input: Any
    intent: str | None = None
    skill_id: str | None = None
    workflow_id: str | None = None
    mode: str | None = None


class RunCreateResponse(BaseModel):
    run_id: str
    status: str
    skill_id: str
    workflow_id: str


class RunDetailResponse(BaseModel):
    """运行详情接口响应模型。"""
    run_id: str
    status: str
    skill_id: str
    workflow_id: str
    requested_mode: str | None
    mode: str | None
    outcomes: list[dict[str, Any]] | None
    report: dict[str, Any] | None
    report_text: str | None
    elapsed_seconds: float | None
    error_code: str | None
    error_message: str | None
    created_at: datetime
    updated_at: datetime


class RunEventResponse(BaseModel):
    id: int
    run_id: str
    status: str | None
    source: str
    event_type: str
    message: str | None
    payload: dict[str, Any] | None
    created_at: datetime
