"""领域枚举定义：统一任务结果、运行总体状态与运行生命周期取值。"""

from __future__ import annotations

from enum import Enum


class OutcomeStatus(str, Enum):
    """单个工作任务的终态。"""
    success = "success"
    failure = "failure"
    timed_out = "timed_out"


class TimeoutReason(str, Enum):
    """超时来源：任务自身超时或整轮运行超时。"""
    task = "task"
    run = "run"


class OverallStatus(str, Enum):
    """一轮并行运行的总体状态。"""
    complete = "complete"
    partial_success = "partial_success"
    failed = "failed"


class RunStatus(str, Enum):
    """持久化运行记录的生命周期状态。"""
    queued = "queued"
    running = "running"
    complete = "complete"
    partial_success = "partial_success"
    failed = "failed"
    errored = "errored"

    @classmethod
    def from_overall(cls, status: OverallStatus) -> "RunStatus":
        return cls(status.value)

    @property
    def is_terminal(self) -> bool:
        return self not in {RunStatus.queued, RunStatus.running}
