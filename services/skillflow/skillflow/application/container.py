"""依赖容器模块，负责单例化创建注册中心、派发器、路由器、仓储与应用服务对象。"""

from __future__ import annotations

from functools import lru_cache

from skillflow.application.executor import RunExecutor
from skillflow.application.orchestrator import WorkflowService
from skillflow.config import get_settings
from skillflow.domain.skills.matching import build_strategy
from skillflow.domain.skills.registry import SkillRegistry
from skillflow.domain.skills.router import SkillRouter
from skillflow.domain.synthesis.synthesizer import Synthesizer
from skillflow.domain.workers.dispatcher import Dispatcher
from skillflow.domain.workers.tasks import BroadcastTaskBuilder
from skillflow.infra.db.repository import RunRepository
from skillflow.infra.db.session import SessionLocal
from skillflow.infra.opencode.client import OpenCodeCredentials
from skillflow.infra.opencode.executor import OpenCodeTaskExecutor
from skillflow.infra.registry.loader import load_registry


@lru_cache(maxsize=1)
def get_synthesizer() -> Synthesizer:
    return Synthesizer()


@lru_cache(maxsize=1)
def get_skill_registry() -> SkillRegistry:
    """获取技能注册中心单例；注册文件非法时抛出 RegistryLoadError。"""
    settings = get_settings()
    return load_registry(
        settings.resolved_registry_path(),
        strategy=build_strategy(settings.match_strategy),
        min_score=settings.min_match_score,
        known_merge_policies=get_synthesizer().policy_names(),
    )


@lru_cache(maxsize=1)
def get_repository() -> RunRepository:
    return RunRepository(SessionLocal)


@lru_cache(maxsize=1)
def get_opencode_credentials() -> OpenCodeCredentials:
    settings = get_settings()
    return OpenCodeCredentials(
        username=settings.opencode_server_username,
        password=settings.opencode_server_password,
    )


@lru_cache(maxsize=1)
def get_task_executor() -> OpenCodeTaskExecutor:
    settings = get_settings()
    return OpenCodeTaskExecutor(
        base_url=settings.opencode_base_url,
        credentials=get_opencode_credentials(),
        agent=settings.default_agent,
        request_timeout_seconds=settings.opencode_request_timeout_seconds,
        poll_interval_seconds=settings.opencode_poll_interval_seconds,
        directory=settings.opencode_directory,
    )


@lru_cache(maxsize=1)
def get_dispatcher() -> Dispatcher:
    """获取派发器单例；工作池容量跨运行共享。"""
    settings = get_settings()
    return Dispatcher(
        get_task_executor(),
        max_pool_size=settings.max_pool_size,
        cancel_grace_seconds=settings.cancel_grace_seconds,
    )


@lru_cache(maxsize=1)
def get_skill_router() -> SkillRouter:
    settings = get_settings()
    return SkillRouter(
        get_skill_registry(),
        get_dispatcher(),
        BroadcastTaskBuilder(),
        get_synthesizer(),
        ambiguity_margin=settings.ambiguity_margin,
    )


@lru_cache(maxsize=1)
def get_run_executor() -> RunExecutor:
    return RunExecutor(repository=get_repository(), registry=get_skill_registry(), router=get_skill_router())


@lru_cache(maxsize=1)
def get_workflow_service() -> WorkflowService:
    return WorkflowService(
        repository=get_repository(),
        registry=get_skill_registry(),
        router=get_skill_router(),
        executor=get_run_executor(),
    )


def shutdown_container_resources() -> None:
    """清理依赖容器缓存，后续请求会重新构建全新实例。"""
    # 按依赖顺序清理。
    for provider in (
        get_workflow_service,
        get_run_executor,
        get_skill_router,
        get_dispatcher,
        get_task_executor,
        get_opencode_credentials,
        get_repository,
        get_skill_registry,
        get_synthesizer,
    ):
        provider.cache_clear()
