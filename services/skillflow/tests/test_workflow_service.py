"""应用服务测试：运行提交、内联执行、终态落库与异常记录。"""

import asyncio
import threading

import pytest

from skillflow.domain.enums import RunStatus
from skillflow.domain.errors import AmbiguousIntentError, UnknownModeError


class _BrokenBuilder:
    def build(self, user_input, worker_count, workflow):
        raise RuntimeError("builder exploded")


def test_run_inline_persists_partial_success(make_service) -> None:
    """内联执行：一个来源失败但满足要求数，落库为 partial_success 并含缺失来源。"""
    service, _ = make_service()

    run, report = asyncio.run(service.run_inline(user_input={"question": "tides"}, intent_text="research tides"))

    assert report is not None
    assert run.status == RunStatus.partial_success.value
    assert run.mode == "quick"
    assert [item["status"] for item in run.outcomes_json] == ["success", "failure", "success"]
    assert run.outcomes_json[1]["error_kind"] == "empty_result"
    assert run.outcomes_json[0]["result"] == "deep-research-1 saw tides"
    assert run.report_json["missing"] == [
        {"label": "Source 2", "task_id": "deep-research-2", "status": "failure"}
    ]
    assert "## Missing sources" in run.report_text
    events = [item["event_type"] for item in service.list_run_events(run.id)]
    assert events == ["run.created", "run.status.changed", "run.finished"]


def test_run_inline_strict_mode_fails(make_service) -> None:
    """要求全部成功的模式下同样的失败让运行整体失败。"""
    service, _ = make_service()

    run, _ = asyncio.run(service.run_inline(user_input={"question": "tides"}, skill_id="research", mode="strict"))

    assert run.status == RunStatus.failed.value
    assert run.requested_mode == "strict"


def test_unknown_mode_is_rejected_before_persisting(make_service) -> None:
    """未知模式在创建运行前即报错。"""
    service, _ = make_service()
    with pytest.raises(UnknownModeError):
        service.create_run(user_input={"question": "x"}, skill_id="research", mode="turbo")


def test_ambiguous_intent_is_not_persisted(make_service) -> None:
    """歧义意图直接抛出，由调用方澄清。"""
    service, _ = make_service()
    with pytest.raises(AmbiguousIntentError):
        service.create_run(user_input={"question": "x"}, intent_text="research for the sales report")


def test_create_run_requires_intent_or_skill(make_service) -> None:
    """既无意图也无技能 ID 时报错。"""
    service, _ = make_service()
    with pytest.raises(ValueError):
        service.create_run(user_input="x", intent_text="   ")


def test_executor_error_marks_run_errored(make_service) -> None:
    """执行链路异常时记为 errored 并继续抛出。"""
    service, repository = make_service(builder=_BrokenBuilder())
    run = service.create_run(user_input={"question": "x"}, skill_id="research")

    with pytest.raises(RuntimeError):
        asyncio.run(service.execute_run(run.id))

    stored = repository.get_run(run.id)
    assert stored is not None
    assert stored.status == RunStatus.errored.value
    assert stored.error_code == "internal_error"
    assert stored.error_message == "builder exploded"


def test_finished_run_is_not_executed_again(make_service) -> None:
    """已是终态的运行再次执行时直接跳过。"""
    service, _ = make_service()
    run, _ = asyncio.run(service.run_inline(user_input={"question": "tides"}, skill_id="research"))

    assert asyncio.run(service.execute_run(run.id)) is None
    assert service.get_run(run.id).status == RunStatus.partial_success.value


def test_submit_run_enqueues_worker_task(make_service, monkeypatch: pytest.MonkeyPatch) -> None:
    """提交运行写入 queued 记录并投递队列任务。"""
    service, _ = make_service()
    enqueued: list[str] = []

    class _FakeAsyncResult:
        id = "celery-1"

    class _FakeTask:
        def delay(self, run_id: str) -> _FakeAsyncResult:
            enqueued.append(run_id)
            return _FakeAsyncResult()

    monkeypatch.setattr("skillflow.worker.tasks.run_workflow_task", _FakeTask())

    run = service.submit_run(user_input={"question": "tides"}, intent_text="research tides")

    assert enqueued == [run.id]
    assert service.get_run(run.id).status == RunStatus.queued.value
    events = service.list_run_events(run.id)
    assert events[-1]["event_type"] == "run.enqueued"
    assert events[-1]["payload"] == {"task_id": "celery-1"}


def test_run_inline_keeps_store_calls_off_the_event_loop(make_service, monkeypatch: pytest.MonkeyPatch) -> None:
    """内联执行时仓储读写都在线程池里完成，事件循环线程不碰数据库。"""
    service, repository = make_service()
    store_threads: list[int] = []
    for name in ("create_run", "get_run", "set_status", "save_result", "add_event"):
        original = getattr(repository, name)

        def recording(*args, _original=original, **kwargs):
            store_threads.append(threading.get_ident())
            return _original(*args, **kwargs)

        monkeypatch.setattr(repository, name, recording)

    async def scenario():
        loop_thread = threading.get_ident()
        run, _ = await service.run_inline(user_input={"question": "tides"}, skill_id="research")
        return loop_thread, run

    loop_thread, run = asyncio.run(scenario())

    assert run.status == RunStatus.partial_success.value
    assert len(store_threads) >= 4
    assert loop_thread not in store_threads
