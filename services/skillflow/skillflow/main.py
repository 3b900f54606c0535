"""HTTP 服务入口：create_app 组装生命周期、请求 ID 中间件、健康检查与 v1 路由。"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
import logging
import time
from uuid import uuid4

from fastapi import FastAPI, Request

from skillflow.api.router import api_router
from skillflow.application.container import get_skill_registry, shutdown_container_resources
from skillflow.config import Settings, get_settings
from skillflow.infra.db.session import init_db
from skillflow.infra.logging.context import bind_log_context
from skillflow.infra.logging.setup import configure_logging, shutdown_logging

logger = logging.getLogger(__name__)


def _route_label(request: Request) -> str:
    # 用路由模板而不是实际路径，run_id 不会让 op 取值无限增长。
    route = request.scope.get("route")
    return f"{request.method} {getattr(route, 'path', request.url.path)}"


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        configure_logging(settings, process_role="api")
        init_db()
        # 注册文件非法时启动直接失败，不带着空注册中心对外服务。
        app.state.registry = get_skill_registry()
        logger.info(
            "api ready",
            extra={
                "event": "api.startup.succeeded",
                "detail": {"skills": [skill.id for skill in app.state.registry.all()]},
            },
        )
        try:
            yield
        finally:
            logger.info("api stopping", extra={"event": "api.shutdown.started"})
            shutdown_container_resources()
            shutdown_logging()

    app = FastAPI(title=settings.app_name, lifespan=lifespan)

    @app.middleware("http")
    async def attach_request_id(request: Request, call_next):
        """透传或生成 X-Request-Id，并记录每个请求的耗时与状态码。"""
        request_id = request.headers.get("X-Request-Id") or str(uuid4())
        started = time.perf_counter()
        with bind_log_context(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception as exc:
                logger.exception(
                    "http request failed",
                    extra={
                        "event": "http.request.failed",
                        "op": _route_label(request),
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                        "error_type": type(exc).__name__,
                    },
                )
                raise
            logger.info(
                "http request completed",
                extra={
                    "event": "http.request.completed",
                    "op": _route_label(request),
                    "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    "status_code": response.status_code,
                },
            )
        response.headers["X-Request-Id"] = request_id
        return response

    @app.get("/health")
    def health(request: Request) -> dict[str, str | int]:
        registry = getattr(request.app.state, "registry", None)
        return {
            "status": "ok",
            "environment": settings.environment,
            "skills": 0 if registry is None else len(registry),
        }

    app.include_router(api_router)
    return app


app = create_app()
