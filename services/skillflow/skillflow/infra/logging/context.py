"""日志上下文：基于 contextvars 透传 request/run/workflow/task 标识。"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

_UNSET = object()

_request_id_var: ContextVar[str | None] = ContextVar("log_request_id", default=None)
_run_id_var: ContextVar[str | None] = ContextVar("log_run_id", default=None)
_workflow_id_var: ContextVar[str | None] = ContextVar("log_workflow_id", default=None)
_task_id_var: ContextVar[str | None] = ContextVar("log_task_id", default=None)

CONTEXT_FIELDS = ("request_id", "run_id", "workflow_id", "task_id")


def get_log_context() -> dict[str, str | None]:
    """返回当前协程/线程下的日志上下文字段。"""
    return {
        "request_id": _request_id_var.get(),
        "run_id": _run_id_var.get(),
        "workflow_id": _workflow_id_var.get(),
        "task_id": _task_id_var.get(),
    }


@contextmanager
def bind_log_context(
    *,
    request_id: str | None | object = _UNSET,
    run_id: str | None | object = _UNSET,
    workflow_id: str | None | object = _UNSET,
    task_id: str | None | object = _UNSET,
) -> Iterator[None]:
    """在上下文范围内绑定日志字段，并在退出时自动恢复。

    asyncio 任务创建时复制当前上下文，因此各 worker 任务内绑定的 task_id 互不干扰。
    """
    tokens: list[tuple[ContextVar[Any], Token[Any]]] = []
    if request_id is not _UNSET:
        tokens.append((_request_id_var, _request_id_var.set(request_id)))
    if run_id is not _UNSET:
        tokens.append((_run_id_var, _run_id_var.set(run_id)))
    if workflow_id is not _UNSET:
        tokens.append((_workflow_id_var, _workflow_id_var.set(workflow_id)))
    if task_id is not _UNSET:
        tokens.append((_task_id_var, _task_id_var.set(task_id)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)
