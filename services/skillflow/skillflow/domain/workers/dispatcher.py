"""并行派发器：按模式策略并发执行任务，施加单任务与整轮超时，并按提交顺序收集结果。"""

from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import replace
from typing import Sequence

from skillflow.domain.enums import OverallStatus, TimeoutReason
from skillflow.domain.errors import TaskExecutionError
from skillflow.domain.models import Failure, ModePolicy, RunResult, Success, TaskOutcome, TaskSpec, TimedOut
from skillflow.domain.workers.tasks import TaskExecutor
from skillflow.infra.logging.context import bind_log_context

logger = logging.getLogger(__name__)


def compute_overall_status(success_count: int, worker_count: int, required_successes: int) -> OverallStatus:
    """成功数低于要求为 failed，全部成功为 complete，其余为 partial_success。"""
    if success_count < required_successes:
        return OverallStatus.failed
    if success_count == worker_count:
        return OverallStatus.complete
    return OverallStatus.partial_success


class OutcomeSlots:
    """按提交序号固定存放任务结果；每个槽位只接受第一次写入，封存后拒绝一切写入。"""

    def __init__(self, size: int) -> None:
        self._slots: list[TaskOutcome | None] = [None] * size
        self._lock = threading.Lock()
        self._sealed = False

    def settle(self, index: int, outcome: TaskOutcome) -> bool:
        """写入终态；槽位已有结果或已封存时忽略并返回 False。"""
        with self._lock:
            if self._sealed or self._slots[index] is not None:
                return False
            self._slots[index] = outcome
            return True

    def get(self, index: int) -> TaskOutcome | None:
        with self._lock:
            return self._slots[index]

    def pending_indices(self) -> list[int]:
        with self._lock:
            return [index for index, outcome in enumerate(self._slots) if outcome is None]

    @property
    def sealed(self) -> bool:
        return self._sealed

    def seal(self) -> tuple[TaskOutcome, ...]:
        with self._lock:
            missing = [index for index, outcome in enumerate(self._slots) if outcome is None]
            if missing:
                raise RuntimeError(f"cannot seal run with unsettled slots: {missing}")
            self._sealed = True
            return tuple(outcome for outcome in self._slots if outcome is not None)


class _RunState:
    """单轮运行的可变状态，仅由派发器持有。"""

    def __init__(self, size: int) -> None:
        self.slots = OutcomeSlots(size)
        self.signals = [asyncio.Event() for _ in range(size)]
        self.started_at: list[float | None] = [None] * size
        self.executions: dict[int, asyncio.Future[str]] = {}

    def broadcast_cancel(self) -> None:
        for index in self.slots.pending_indices():
            self.signals[index].set()


def _consume_result(future: asyncio.Future) -> None:
    # 被放弃的执行在迟到完成时不再被读取，这里取走异常以免事件循环告警。
    if not future.cancelled():
        future.exception()


def _outcome_from(execution: asyncio.Future[str], elapsed: float) -> TaskOutcome:
    if execution.cancelled():
        return Failure(error_kind="cancelled", elapsed=elapsed, message="executor cancelled the task itself")
    exc = execution.exception()
    if exc is None:
        result = execution.result()
        return Success(result=result if isinstance(result, str) else str(result), elapsed=elapsed)
    if isinstance(exc, TaskExecutionError):
        return Failure(error_kind=exc.kind, elapsed=elapsed, message=exc.message)
    return Failure(error_kind=type(exc).__name__, elapsed=elapsed, message=str(exc))


class Dispatcher:
    """并行派发器。

    - 一轮运行的全部任务同时提交；实际并发受 max_pool_size 限制，超出部分按提交顺序排队。
    - 单任务超时从该任务真正开始执行时计时。
    - 整轮超时从运行开始计时，到期时广播取消所有未完成任务并记为 TimedOut。
    - 取消是协作式的：先置位 cancel_signal 再取消协程，最多等待 cancel_grace_seconds。
    - 池槽位在执行真正结束时才归还，忽略取消的执行器会一直占用容量。
    - 单个任务的失败或超时不会影响同轮其他任务；Failed 作为结果返回而不是抛出。
    """

    def __init__(self, executor: TaskExecutor, *, max_pool_size: int, cancel_grace_seconds: float) -> None:
        if max_pool_size <= 0:
            raise ValueError("max_pool_size must be positive")
        if cancel_grace_seconds < 0:
            raise ValueError("cancel_grace_seconds must not be negative")
        self._executor = executor
        self._max_pool_size = max_pool_size
        self._cancel_grace = cancel_grace_seconds
        self._pool_loop: asyncio.AbstractEventLoop | None = None
        self._pool_semaphore: asyncio.Semaphore | None = None

    @property
    def max_pool_size(self) -> int:
        return self._max_pool_size

    def _pool(self) -> asyncio.Semaphore:
        """按事件循环懒加载共享信号量；Celery 每个任务一个新循环。"""
        loop = asyncio.get_running_loop()
        if self._pool_semaphore is None or self._pool_loop is not loop:
            self._pool_loop = loop
            self._pool_semaphore = asyncio.Semaphore(self._max_pool_size)
        return self._pool_semaphore

    async def run_all(
        self,
        tasks: Sequence[TaskSpec],
        policy: ModePolicy,
        *,
        workflow_id: str,
        mode: str,
        run_id: str | None = None,
    ) -> RunResult:
        """执行一轮任务并返回按提交顺序排列的 RunResult。"""
        specs = list(tasks)
        if len(specs) != policy.worker_count:
            raise ValueError(f"expected {policy.worker_count} tasks, got {len(specs)}")
        task_ids = tuple(spec.task_id for spec in specs)
        if len(set(task_ids)) != len(task_ids):
            raise ValueError("task ids must be unique within a run")

        loop = asyncio.get_running_loop()
        pool = self._pool()
        state = _RunState(len(specs))
        run_started = loop.time()
        logger.info(
            "dispatch started",
            extra={
                "event": "dispatcher.run.started",
                "mode": mode,
                "worker_count": policy.worker_count,
                "required_successes": policy.required_successes,
                "detail": {
                    "per_worker_timeout": policy.per_worker_timeout,
                    "overall_timeout": policy.overall_timeout,
                    "max_pool_size": self._max_pool_size,
                },
            },
        )

        workers = [
            asyncio.create_task(self._run_one(index, spec, policy, pool, state), name=f"skillflow:{spec.task_id}")
            for index, spec in enumerate(specs)
        ]
        try:
            _done, pending = await asyncio.wait(workers, timeout=policy.overall_timeout)
        except asyncio.CancelledError:
            state.broadcast_cancel()
            for worker in workers:
                worker.cancel()
            raise

        if pending:
            await self._cancel_outstanding(pending, state, loop)
        self._absorb_worker_errors(workers, state, loop)

        outcomes = state.slots.seal()
        elapsed = loop.time() - run_started
        required = policy.required_successes or policy.worker_count
        success_count = sum(1 for outcome in outcomes if isinstance(outcome, Success))
        overall_status = compute_overall_status(success_count, len(outcomes), required)
        logger.info(
            "dispatch finished",
            extra={
                "event": "dispatcher.run.finished",
                "mode": mode,
                "overall_status": overall_status.value,
                "success_count": success_count,
                "duration_ms": round(elapsed * 1000, 2),
                "detail": {
                    "failures": sum(1 for outcome in outcomes if isinstance(outcome, Failure)),
                    "timed_out": sum(1 for outcome in outcomes if isinstance(outcome, TimedOut)),
                },
            },
        )
        return RunResult(
            workflow_id=workflow_id,
            mode=mode,
            task_ids=task_ids,
            outcomes=outcomes,
            overall_status=overall_status,
            required_successes=required,
            elapsed=elapsed,
            run_id=run_id,
        )

    async def _run_one(
        self,
        index: int,
        spec: TaskSpec,
        policy: ModePolicy,
        pool: asyncio.Semaphore,
        state: _RunState,
    ) -> None:
        loop = asyncio.get_running_loop()
        with bind_log_context(task_id=spec.task_id):
            execution = await self._start(index, spec, policy, pool, state)
            started = state.started_at[index]
            signal = state.signals[index]
            try:
                done, _ = await asyncio.wait({execution}, timeout=policy.per_worker_timeout)
            except asyncio.CancelledError:
                signal.set()
                execution.cancel()
                execution.add_done_callback(_consume_result)
                raise

            elapsed = loop.time() - started
            if not done:
                state.slots.settle(index, TimedOut(elapsed=elapsed, reason=TimeoutReason.task))
                logger.warning(
                    "worker task timed out",
                    extra={
                        "event": "dispatcher.task.timed_out",
                        "index": index,
                        "outcome": "timed_out",
                        "timeout_reason": TimeoutReason.task.value,
                        "duration_ms": round(elapsed * 1000, 2),
                    },
                )
                signal.set()
                execution.cancel()
                await self._await_release(index, execution)
                return

            outcome = _outcome_from(execution, elapsed)
            if not state.slots.settle(index, outcome):
                return
            if isinstance(outcome, Failure):
                logger.warning(
                    "worker task failed",
                    extra={
                        "event": "dispatcher.task.failed",
                        "index": index,
                        "outcome": "failure",
                        "duration_ms": round(elapsed * 1000, 2),
                        "error_type": outcome.error_kind,
                        "error": outcome.message,
                    },
                )
            else:
                logger.info(
                    "worker task settled",
                    extra={
                        "event": "dispatcher.task.succeeded",
                        "index": index,
                        "outcome": "success",
                        "duration_ms": round(elapsed * 1000, 2),
                    },
                )

    async def _start(
        self,
        index: int,
        spec: TaskSpec,
        policy: ModePolicy,
        pool: asyncio.Semaphore,
        state: _RunState,
    ) -> asyncio.Future[str]:
        """占用一个池槽位并启动执行；槽位在执行真正结束时才归还。"""
        await pool.acquire()
        started = asyncio.get_running_loop().time()
        state.started_at[index] = started
        dispatched = replace(spec, deadline=started + policy.per_worker_timeout)
        try:
            execution = asyncio.ensure_future(self._executor.execute(dispatched, state.signals[index]))
        except BaseException:
            pool.release()
            raise
        # 忽略取消的执行器在宽限期后仍占着槽位，排队任务要等它真正退出。
        execution.add_done_callback(lambda _execution: pool.release())
        state.executions[index] = execution
        return execution

    async def _await_release(self, index: int, execution: asyncio.Future[str]) -> None:
        """等待执行器确认取消，最多 cancel_grace_seconds。"""
        execution.add_done_callback(_consume_result)
        if execution.done():
            return
        _, lingering = await asyncio.wait({execution}, timeout=self._cancel_grace)
        if lingering:
            logger.warning(
                "executor ignored cancellation within grace period, pool slot stays held",
                extra={"event": "dispatcher.task.cancel_ignored", "index": index, "grace_seconds": self._cancel_grace},
            )

    async def _cancel_outstanding(
        self,
        pending: set[asyncio.Task[None]],
        state: _RunState,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        outstanding = state.slots.pending_indices()
        logger.warning(
            "overall timeout reached, cancelling outstanding tasks",
            extra={
                "event": "dispatcher.run.timed_out",
                "timeout_reason": TimeoutReason.run.value,
                "detail": {"outstanding": outstanding},
            },
        )
        state.broadcast_cancel()
        for worker in pending:
            worker.cancel()
        waiters: set[asyncio.Future] = set(pending)
        waiters.update(execution for execution in state.executions.values() if not execution.done())
        _, lingering = await asyncio.wait(waiters, timeout=self._cancel_grace) if self._cancel_grace else (set(), waiters)
        if lingering:
            logger.warning(
                "tasks still running after cancel grace period",
                extra={
                    "event": "dispatcher.run.cancel_grace_exceeded",
                    "grace_seconds": self._cancel_grace,
                    "detail": {"lingering": len(lingering)},
                },
            )
        for future in lingering:
            future.add_done_callback(_consume_result)

        now = loop.time()
        for index in state.slots.pending_indices():
            started = state.started_at[index]
            elapsed = 0.0 if started is None else now - started
            state.slots.settle(index, TimedOut(elapsed=elapsed, reason=TimeoutReason.run))

    def _absorb_worker_errors(
        self,
        workers: list[asyncio.Task[None]],
        state: _RunState,
        loop: asyncio.AbstractEventLoop,
    ) -> None:
        for index, worker in enumerate(workers):
            if not worker.done():
                worker.add_done_callback(_consume_result)
                continue
            if worker.cancelled() or worker.exception() is None:
                continue
            exc = worker.exception()
            logger.error(
                "worker wrapper crashed",
                extra={
                    "event": "dispatcher.task.crashed",
                    "index": index,
                    "error_type": type(exc).__name__,
                    "error": str(exc),
                },
            )
            started = state.started_at[index]
            elapsed = 0.0 if started is None else loop.time() - started
            state.slots.settle(index, Failure(error_kind=type(exc).__name__, elapsed=elapsed, message=str(exc)))
