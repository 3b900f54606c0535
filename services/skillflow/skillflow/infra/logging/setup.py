"""结构化日志：把运行上下文与派发结果字段写成 JSON 行，经队列由后台线程落盘。"""

from __future__ import annotations

import json
import logging
import re
import sys
from datetime import datetime, timezone
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import SimpleQueue
from typing import Any

from skillflow.config import Settings
from skillflow.infra.logging.context import CONTEXT_FIELDS, get_log_context

# 派发与运行字段作为顶层键输出，可直接按任务序号、结果或整体状态检索。
RUN_FIELDS = (
    "skill_id",
    "mode",
    "index",
    "outcome",
    "timeout_reason",
    "overall_status",
    "worker_count",
    "required_successes",
    "success_count",
    "grace_seconds",
    "score",
)
CALL_FIELDS = ("op", "duration_ms", "status_code", "error_type")

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "celery", "sqlalchemy.engine")

_SECRET_PATTERN = re.compile(
    r"(?i)\b(authorization\s*[:=]\s*(?:basic|bearer)\s+|password\s*[:=]\s*|token\s*[:=]\s*|secret\s*[:=]\s*)[^\s,;\"']+"
)

_listener: QueueListener | None = None


def redact(text: str) -> str:
    """遮蔽 OpenCode basic auth 口令与各类 token。"""
    return _SECRET_PATTERN.sub(r"\1***", text)


def render_detail(detail: Any, *, max_chars: int) -> str | None:
    if detail is None:
        return None
    text = detail if isinstance(detail, str) else json.dumps(detail, ensure_ascii=False, sort_keys=True, default=str)
    if len(text) <= max_chars:
        return text
    return f"{text[:max_chars]}...(truncated)"


class RunContextFilter(logging.Filter):
    """入队前补齐上下文字段，并决定是否放行 DEBUG。

    监听线程看不到调用方的 contextvars，所以 run_id/task_id 等必须在入队前写入 record。
    低于 min_level 的记录只有 DEBUG 且属于 debug_modules 下的模块或 debug_run_ids 中的运行时才放行。
    """

    def __init__(
        self,
        *,
        min_level: int,
        debug_modules: frozenset[str] = frozenset(),
        debug_run_ids: frozenset[str] = frozenset(),
    ) -> None:
        super().__init__()
        self._min_level = min_level
        self._debug_modules = debug_modules
        self._debug_run_ids = debug_run_ids

    def _debug_allowed(self, record: logging.LogRecord) -> bool:
        if record.levelno != logging.DEBUG:
            return False
        if getattr(record, "run_id", None) in self._debug_run_ids:
            return True
        return any(record.name == name or record.name.startswith(f"{name}.") for name in self._debug_modules)

    def filter(self, record: logging.LogRecord) -> bool:
        ctx = get_log_context()
        for key in CONTEXT_FIELDS:
            if getattr(record, key, None) is None and ctx[key] is not None:
                setattr(record, key, ctx[key])
        return record.levelno >= self._min_level or self._debug_allowed(record)


class JsonLineFormatter(logging.Formatter):
    """每条记录一行 JSON；值为 None 的可选字段不输出。"""

    def __init__(self, *, role: str, environment: str, redact_secrets: bool, detail_chars: int) -> None:
        super().__init__()
        self._role = role
        self._environment = environment
        self._redact = redact_secrets
        self._detail_chars = detail_chars

    def _clean(self, text: str) -> str:
        return redact(text) if self._redact else text

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "service": "skillflow",
            "environment": self._environment,
            "role": self._role,
            "logger": record.name,
            "event": getattr(record, "event", None),
            "message": self._clean(record.getMessage()),
        }
        ctx = get_log_context()
        for key in CONTEXT_FIELDS:
            value = getattr(record, key, None) or ctx[key]
            if value is not None:
                entry[key] = value
        for key in RUN_FIELDS + CALL_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value

        error = getattr(record, "error", None)
        if error is None and record.exc_info:
            error = self.formatException(record.exc_info)
        if error is not None:
            entry["error"] = self._clean(str(error))
        detail = render_detail(getattr(record, "detail", None), max_chars=self._detail_chars)
        if detail is not None:
            entry["detail"] = self._clean(detail)
        return json.dumps(entry, ensure_ascii=False, default=str)


def _parse_level(level_text: str) -> int:
    return getattr(logging, str(level_text).upper(), logging.INFO)


def configure_logging(settings: Settings, *, process_role: str) -> Path:
    """为当前进程安装队列日志：<log_dir>/<role>.jsonl 全量，stderr 只输出 log_stderr_level 及以上。"""
    global _listener
    shutdown_logging()

    log_dir = settings.log_dir if settings.log_dir.is_absolute() else (Path.cwd() / settings.log_dir).resolve()
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{process_role}.jsonl"

    formatter = JsonLineFormatter(
        role=process_role,
        environment=settings.environment,
        redact_secrets=settings.log_redact_secrets,
        detail_chars=settings.log_detail_chars,
    )
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=settings.log_max_bytes,
        backupCount=settings.log_backup_count,
        encoding="utf-8",
    )
    file_handler.setFormatter(formatter)
    stderr_handler = logging.StreamHandler(stream=sys.stderr)
    stderr_handler.setLevel(_parse_level(settings.log_stderr_level))
    stderr_handler.setFormatter(formatter)

    records: SimpleQueue[logging.LogRecord] = SimpleQueue()
    queue_handler = QueueHandler(records)
    queue_handler.addFilter(
        RunContextFilter(
            min_level=_parse_level(settings.log_level),
            debug_modules=frozenset(settings.log_debug_modules_list()),
            debug_run_ids=frozenset(settings.log_debug_run_ids_list()),
        )
    )
    root_logger = logging.getLogger()
    for handler in [item for item in root_logger.handlers if isinstance(item, QueueHandler)]:
        root_logger.removeHandler(handler)
    root_logger.addHandler(queue_handler)
    root_logger.setLevel(logging.DEBUG)

    _listener = QueueListener(records, file_handler, stderr_handler, respect_handler_level=True)
    _listener.start()
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return log_file


def shutdown_logging() -> None:
    """停止监听线程，排空队列后关闭文件句柄。"""
    global _listener
    listener, _listener = _listener, None
    if listener is None:
        return
    listener.stop()
    for handler in listener.handlers:
        handler.close()
