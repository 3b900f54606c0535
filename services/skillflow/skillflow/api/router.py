"""API 总路由配置，按业务域注册 skills 与 runs 子路由。"""

from __future__ import annotations

from fastapi import APIRouter

from skillflow.api.v1.runs import router as runs_router
from skillflow.api.v1.skills import router as skills_router
from skillflow.config import get_settings

settings = get_settings()

api_router = APIRouter(prefix=settings.api_prefix)
api_router.include_router(skills_router, tags=["skills"])
api_router.include_router(runs_router, tags=["runs"])
