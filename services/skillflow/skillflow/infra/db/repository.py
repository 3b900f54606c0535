"""仓储实现：封装运行记录生命周期、结果落库与事件流持久化操作。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from skillflow.domain.enums import RunStatus
from skillflow.infra.db.models import RunEventORM, RunORM


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunRepository:
    """运行仓储实现，封装数据库读写与状态流转；终态一旦写入不可被覆盖。"""
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get_run(self, run_id: str) -> RunORM | None:
        with self._session_factory() as db:
            return db.get(RunORM, run_id)

    def create_run(
        self,
        *,
        run_id: str,
        skill_id: str,
        workflow_id: str,
        requested_mode: str | None,
        intent_text: str | None,
        user_input: Any,
    ) -> RunORM:
        """在一个事务内创建运行记录与首条事件。"""
        with self._session_factory.begin() as db:
            run = RunORM(
                id=run_id,
                status=RunStatus.queued.value,
                skill_id=skill_id,
                workflow_id=workflow_id,
                requested_mode=requested_mode,
                intent_text=intent_text,
                user_input=user_input,
            )
            db.add(run)
            db.flush()
            db.add(
                RunEventORM(
                    run_id=run.id,
                    status=RunStatus.queued.value,
                    source="api",
                    event_type="run.created",
                    message="run created",
                    payload={"skill_id": skill_id, "workflow_id": workflow_id, "requested_mode": requested_mode},
                )
            )
            db.flush()
            return run

    def set_status(
        self,
        run_id: str,
        status: RunStatus,
        *,
        error_code: str | None = None,
        error_message: str | None = None,
    ) -> bool:
        """更新运行状态；已处于终态时拒绝并返回 False。"""
        with self._session_factory.begin() as db:
            run = db.get(RunORM, run_id)
            if run is None:
                raise KeyError(f"run not found: {run_id}")
            if RunStatus(run.status).is_terminal:
                return False
            run.status = status.value
            run.error_code = error_code
            run.error_message = error_message
            run.updated_at = utcnow()
            db.add(run)
            db.add(
                RunEventORM(
                    run_id=run_id,
                    status=status.value,
                    source="worker",
                    event_type="run.status.changed",
                    message=error_message or status.value,
                )
            )
            return True

    def save_result(
        self,
        run_id: str,
        *,
        status: RunStatus,
        mode: str,
        outcomes: list[dict[str, Any]],
        report: dict[str, Any],
        report_text: str,
        elapsed_seconds: float,
    ) -> bool:
        """写入派发结果与报告并置为终态；已是终态时返回 False。"""
        with self._session_factory.begin() as db:
            run = db.get(RunORM, run_id)
            if run is None:
                raise KeyError(f"run not found: {run_id}")
            if RunStatus(run.status).is_terminal:
                return False
            run.status = status.value
            run.mode = mode
            run.outcomes_json = outcomes
            run.report_json = report
            run.report_text = report_text
            run.elapsed_seconds = elapsed_seconds
            run.updated_at = utcnow()
            db.add(run)
            db.add(
                RunEventORM(
                    run_id=run_id,
                    status=status.value,
                    source="worker",
                    event_type="run.finished",
                    message=status.value,
                    payload={"mode": mode, "missing": report.get("missing", [])},
                )
            )
            return True

    def add_event(
        self,
        run_id: str,
        *,
        source: str,
        event_type: str,
        status: str | None = None,
        message: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> RunEventORM:
        with self._session_factory.begin() as db:
            event = RunEventORM(
                run_id=run_id,
                status=status,
                source=source,
                event_type=event_type,
                message=message,
                payload=payload,
            )
            db.add(event)
            db.flush()
            db.refresh(event)
            return event

    def list_events(self, run_id: str, after_id: int = 0, limit: int = 200) -> list[RunEventORM]:
        """按游标分页查询事件流。"""
        with self._session_factory() as db:
            stmt = (
                select(RunEventORM)
                .where(RunEventORM.run_id == run_id, RunEventORM.id > after_id)
                .order_by(RunEventORM.id.asc())
                .limit(limit)
            )
            return list(db.execute(stmt).scalars().all())
