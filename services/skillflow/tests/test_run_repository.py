"""运行仓储测试：创建、状态流转、终态保护与事件分页。"""

from pathlib import Path

import pytest

from skillflow.domain.enums import RunStatus
from skillflow.infra.db.repository import RunRepository
from skillflow.infra.db.session import build_engine, build_session_factory, init_db


def _repository(tmp_path: Path) -> RunRepository:
    engine = build_engine(f"sqlite:///{tmp_path / 'runs.db'}")
    init_db(engine)
    return RunRepository(build_session_factory(engine))


def _create(repo: RunRepository, run_id: str = "run-1") -> None:
    repo.create_run(
        run_id=run_id,
        skill_id="research",
        workflow_id="deep-research",
        requested_mode=None,
        intent_text="deep research on tides",
        user_input={"question": "tides"},
    )


def test_create_run_starts_queued_with_event(tmp_path: Path) -> None:
    """新建运行为 queued，并写入 run.created 事件。"""
    repo = _repository(tmp_path)
    _create(repo)

    run = repo.get_run("run-1")
    events = repo.list_events("run-1")

    assert run is not None
    assert run.status == RunStatus.queued.value
    assert run.user_input == {"question": "tides"}
    assert [event.event_type for event in events] == ["run.created"]


def test_terminal_status_cannot_be_overwritten(tmp_path: Path) -> None:
    """进入终态后状态与结果都不能被覆盖。"""
    repo = _repository(tmp_path)
    _create(repo)

    assert repo.set_status("run-1", RunStatus.running)
    assert repo.save_result(
        "run-1",
        status=RunStatus.partial_success,
        mode="quick",
        outcomes=[{"task_id": "deep-research-1", "status": "success"}],
        report={"missing": [{"label": "Source 2"}]},
        report_text="# report",
        elapsed_seconds=1.25,
    )
    changed = repo.set_status("run-1", RunStatus.errored, error_code="late", error_message="late failure")
    saved_again = repo.save_result(
        "run-1",
        status=RunStatus.complete,
        mode="quick",
        outcomes=[],
        report={},
        report_text="",
        elapsed_seconds=0.0,
    )
    run = repo.get_run("run-1")

    assert changed is False
    assert saved_again is False
    assert run is not None
    assert run.status == RunStatus.partial_success.value
    assert run.mode == "quick"
    assert run.report_text == "# report"
    assert run.error_code is None


def test_set_status_unknown_run_raises(tmp_path: Path) -> None:
    """不存在的运行报 KeyError。"""
    repo = _repository(tmp_path)
    with pytest.raises(KeyError):
        repo.set_status("missing", RunStatus.running)


def test_list_events_paginates_by_cursor(tmp_path: Path) -> None:
    """事件按 ID 升序，after_id 作为游标。"""
    repo = _repository(tmp_path)
    _create(repo)
    repo.add_event("run-1", source="worker", event_type="custom.one")
    repo.add_event("run-1", source="worker", event_type="custom.two", payload={"n": 2})

    first_page = repo.list_events("run-1", limit=2)
    second_page = repo.list_events("run-1", after_id=first_page[-1].id)

    assert [event.event_type for event in first_page] == ["run.created", "custom.one"]
    assert [event.event_type for event in second_page] == ["custom.two"]
    assert second_page[0].payload == {"n": 2}


def test_sqlite_file_store_uses_wal(tmp_path: Path) -> None:
    """文件型 SQLite 开启 WAL，API 与 worker 可以同时读写。"""
    engine = build_engine(f"sqlite:///{tmp_path / 'wal.db'}")
    init_db(engine)

    with engine.connect() as conn:
        assert conn.exec_driver_sql("PRAGMA journal_mode").scalar() == "wal"
