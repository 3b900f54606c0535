"""技能目录与意图解析接口：列出技能、查询技能元数据、把意图文本解析为工作流。"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from skillflow.api.v1.schemas import CandidateResponse, ResolveRequest, ResolveResponse, SkillResponse
from skillflow.application.container import get_workflow_service
from skillflow.application.orchestrator import WorkflowService
from skillflow.domain.errors import AmbiguousIntentError, NoMatchError

router = APIRouter()


def _service() -> WorkflowService:
    return get_workflow_service()


@router.get("/skills", response_model=list[SkillResponse])
def list_skills(service: WorkflowService = Depends(_service)) -> list[SkillResponse]:
    """按注册顺序返回技能列表。"""
    return [SkillResponse(**item) for item in service.list_skills()]


@router.get("/skills/{skill_id}", response_model=SkillResponse)
def get_skill(
    skill_id: str,
    service: WorkflowService = Depends(_service),
) -> SkillResponse:
    try:
        return SkillResponse(**service.get_skill(skill_id))
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc


@router.post("/intents/resolve", response_model=ResolveResponse)
def resolve_intent(
    body: ResolveRequest,
    service: WorkflowService = Depends(_service),
) -> ResolveResponse | JSONResponse:
    """解析意图；无命中返回 404，歧义返回 409 并附带候选列表。"""
    try:
        workflow = service.resolve(body.intent)
    except NoMatchError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AmbiguousIntentError as exc:
        candidates = [
            CandidateResponse(skill_id=item.skill.id, workflow_id=item.workflow.id, score=item.score).model_dump()
            for item in exc.candidates
        ]
        return JSONResponse(status_code=409, content={"detail": str(exc), "candidates": candidates})
    return ResolveResponse(
        skill_id=workflow.skill_id,
        workflow_id=workflow.id,
        default_mode=workflow.default_mode,
        modes=workflow.mode_names(),
    )
