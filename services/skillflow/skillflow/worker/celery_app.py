"""Celery 应用配置：定义队列路由、确认策略与关闭资源回收。"""

from __future__ import annotations

import logging
import sys

from celery import Celery
from celery.signals import worker_process_shutdown

from skillflow.application.container import shutdown_container_resources
from skillflow.config import get_settings
from skillflow.infra.logging.setup import configure_logging, shutdown_logging

settings = get_settings()


def _detect_process_role() -> str | None:
    argv = " ".join(sys.argv[1:]).lower()
    if "worker" in argv:
        return "worker"
    return None


process_role = _detect_process_role()
logger = logging.getLogger(__name__)
if process_role:
    configure_logging(settings, process_role=process_role)

celery_app = Celery("skillflow", broker=settings.redis_url, backend=settings.redis_url)
celery_app.conf.update(
    imports=("skillflow.worker.tasks",),
    task_default_queue="default",
    task_routes={"skillflow.worker.tasks.run_workflow_task": {"queue": "default"}},
    # 一条运行内部已并发派发，worker 不预取更多运行。
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    broker_connection_retry_on_startup=True,
    task_track_started=True,
)

if settings.celery_task_always_eager:
    celery_app.conf.update(task_always_eager=True, task_eager_propagates=True)

if process_role:
    logger.info(
        "celery app configured",
        extra={
            "event": "celery.config.loaded",
            "op": process_role,
            "detail": {"broker": settings.redis_url, "always_eager": settings.celery_task_always_eager},
        },
    )


@worker_process_shutdown.connect
def _shutdown_worker_resources(**_: object) -> None:
    """Worker 进程关闭时释放共享资源。"""
    shutdown_container_resources()
    shutdown_logging()
