"""日志测试：上下文字段注入、派发字段顶层输出、凭据遮蔽与 DEBUG 放行。"""

import json
import logging

from skillflow.infra.logging.context import bind_log_context, get_log_context
from skillflow.infra.logging.setup import JsonLineFormatter, RunContextFilter, render_detail


def _record(level: int = logging.INFO, name: str = "skillflow.domain.workers.dispatcher", **extra) -> logging.LogRecord:
    record = logging.LogRecord(name, level, __file__, 1, "password=hunter2 dispatched", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _formatter(**overrides) -> JsonLineFormatter:
    options = {"role": "worker", "environment": "test", "redact_secrets": True, "detail_chars": 2000}
    options.update(overrides)
    return JsonLineFormatter(**options)


def test_bind_log_context_nests_and_restores() -> None:
    """嵌套绑定退出后恢复外层值。"""
    with bind_log_context(run_id="run-1", workflow_id="wf"):
        with bind_log_context(task_id="wf-1"):
            assert get_log_context()["task_id"] == "wf-1"
            assert get_log_context()["run_id"] == "run-1"
        assert get_log_context()["task_id"] is None
    assert get_log_context()["run_id"] is None


def test_task_outcome_fields_are_top_level_keys() -> None:
    """任务序号、结果与超时原因作为顶层键输出，未提供的可选字段不出现。"""
    with bind_log_context(run_id="run-7", task_id="wf-3"):
        entry = json.loads(
            _formatter().format(
                _record(
                    event="dispatcher.task.timed_out",
                    index=0,
                    outcome="timed_out",
                    timeout_reason="task",
                    duration_ms=12.5,
                )
            )
        )

    assert entry["run_id"] == "run-7"
    assert entry["task_id"] == "wf-3"
    assert entry["index"] == 0
    assert entry["outcome"] == "timed_out"
    assert entry["timeout_reason"] == "task"
    assert entry["duration_ms"] == 12.5
    assert entry["environment"] == "test"
    assert entry["role"] == "worker"
    assert "overall_status" not in entry
    assert "detail" not in entry


def test_run_summary_carries_overall_status_and_detail() -> None:
    """整轮结束日志带整体状态，其余统计进入 detail。"""
    entry = json.loads(
        _formatter().format(
            _record(
                event="dispatcher.run.finished",
                overall_status="partial_success",
                success_count=2,
                detail={"failures": 1, "timed_out": 0},
            )
        )
    )

    assert entry["overall_status"] == "partial_success"
    assert entry["success_count"] == 2
    assert json.loads(entry["detail"]) == {"failures": 1, "timed_out": 0}


def test_secrets_are_masked_unless_disabled() -> None:
    """默认遮蔽口令；关闭后原样输出。"""
    masked = json.loads(_formatter().format(_record()))
    plain = json.loads(_formatter(redact_secrets=False).format(_record()))

    assert "hunter2" not in masked["message"]
    assert plain["message"] == "password=hunter2 dispatched"


def test_detail_is_truncated() -> None:
    """超长明细截断并带标记。"""
    detail = render_detail({"text": "x" * 50}, max_chars=20)
    assert detail is not None
    assert detail.endswith("...(truncated)")
    assert len(detail) == 20 + len("...(truncated)")


def test_filter_injects_context_and_routes_debug() -> None:
    """入队前写入上下文字段；DEBUG 仅对指定模块或运行放行。"""
    routing = RunContextFilter(
        min_level=logging.INFO,
        debug_modules=frozenset({"skillflow.infra"}),
        debug_run_ids=frozenset({"run-9"}),
    )

    assert not routing.filter(_record(logging.DEBUG))
    assert routing.filter(_record(logging.DEBUG, name="skillflow.infra.opencode.client"))
    assert routing.filter(_record(logging.WARNING))

    record = _record(logging.DEBUG)
    with bind_log_context(run_id="run-9", task_id="wf-1"):
        assert routing.filter(record)
    assert record.run_id == "run-9"
    assert record.task_id == "wf-1"
