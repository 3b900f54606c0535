"""运行管理接口：提交运行（入队或内联执行）、查询状态与事件。"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from fastapi.responses import JSONResponse

from skillflow.api.v1.schemas import (
    CandidateResponse,
    RunCreateRequest,
    RunCreateResponse,
    RunDetailResponse,
    RunEventResponse,
)
from skillflow.application.container import get_workflow_service
from skillflow.application.orchestrator import WorkflowService
from skillflow.domain.errors import AmbiguousIntentError, NoMatchError, SkillflowError, UnknownModeError
from skillflow.infra.db.models import RunORM

router = APIRouter()
logger = logging.getLogger(__name__)


def _service() -> WorkflowService:
    return get_workflow_service()


def _detail(run: RunORM) -> RunDetailResponse:
    return RunDetailResponse(
        run_id=run.id,
        status=run.status,
        skill_id=run.skill_id,
        workflow_id=run.workflow_id,
        requested_mode=run.requested_mode,
        mode=run.mode,
        outcomes=run.outcomes_json,
        report=run.report_json,
        report_text=run.report_text,
        elapsed_seconds=run.elapsed_seconds,
        error_code=run.error_code,
        error_message=run.error_message,
        created_at=run.created_at,
        updated_at=run.updated_at,
    )


@router.post("/runs", response_model=None, status_code=status.HTTP_202_ACCEPTED)
async def create_run(
    body: RunCreateRequest,
    response: Response,
    wait: bool = False,
    service: WorkflowService = Depends(_service),
) -> RunCreateResponse | RunDetailResponse | JSONResponse:
    """创建运行；wait=true 时在当前请求内执行并返回详情，否则投递到队列。"""
    kwargs = {
        "user_input": body.input,
        "intent_text": body.intent,
        "skill_id": body.skill_id,
        "workflow_id": body.workflow_id,
        "mode": body.mode,
    }
    try:
        if wait:
            run, _report = await service.run_inline(**kwargs)
            response.status_code = status.HTTP_200_OK
            return _detail(run)
        run = await asyncio.to_thread(service.submit_run, **kwargs)
    except NoMatchError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except AmbiguousIntentError as exc:
        candidates = [
            CandidateResponse(skill_id=item.skill.id, workflow_id=item.workflow.id, score=item.score).model_dump()
            for item in exc.candidates
        ]
        return JSONResponse(status_code=409, content={"detail": str(exc), "candidates": candidates})
    except (UnknownModeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except SkillflowError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    logger.info("create_run accepted", extra={"event": "api.run.accepted", "run_id": run.id})
    return RunCreateResponse(run_id=run.id, status=run.status, skill_id=run.skill_id, workflow_id=run.workflow_id)


@router.get("/runs/{run_id}", response_model=RunDetailResponse)
def get_run(
    run_id: str,
    service: WorkflowService = Depends(_service),
) -> RunDetailResponse:
    try:
        run = service.get_run(run_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return _detail(run)


@router.get("/runs/{run_id}/events", response_model=list[RunEventResponse])
def list_run_events(
    run_id: str,
    after_id: int = 0,
    limit: int = 200,
    service: WorkflowService = Depends(_service),
) -> list[RunEventResponse]:
    """按游标分页返回运行事件。"""
    try:
        events = service.list_run_events(run_id, after_id=after_id, limit=limit)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return [RunEventResponse(**item) for item in events]
