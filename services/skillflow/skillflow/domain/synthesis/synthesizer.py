"""结果综合器：把 RunResult 确定性地归并为带来源标注的报告。"""

from __future__ import annotations

from typing import Mapping

from skillflow.domain.enums import OutcomeStatus, OverallStatus
from skillflow.domain.models import Failure, Report, RunResult, SourceSection, Success, TaskOutcome, TimedOut
from skillflow.domain.synthesis.merge import DEFAULT_MERGE_POLICIES, MergePolicy

EMPTY_COMBINED = "_no source produced a result_"


def _section(index: int, task_id: str, outcome: TaskOutcome) -> SourceSection:
    label = f"Source {index + 1}"
    if isinstance(outcome, Success):
        return SourceSection(
            index=index,
            label=label,
            task_id=task_id,
            status=OutcomeStatus.success,
            body=outcome.result,
            elapsed=outcome.elapsed,
        )
    if isinstance(outcome, Failure):
        return SourceSection(
            index=index,
            label=label,
            task_id=task_id,
            status=OutcomeStatus.failure,
            body=None,
            error_kind=outcome.error_kind,
            detail=outcome.message,
            elapsed=outcome.elapsed,
        )
    if isinstance(outcome, TimedOut):
        return SourceSection(
            index=index,
            label=label,
            task_id=task_id,
            status=OutcomeStatus.timed_out,
            body=None,
            detail=f"{outcome.reason.value} timeout",
            elapsed=outcome.elapsed,
        )
    raise TypeError(f"unsupported outcome type: {type(outcome).__name__}")


class Synthesizer:
    """结果综合器；输出只依赖输入的 RunResult 与合并策略，不读时钟也不含随机性。"""
    def __init__(
        self,
        merge_policies: Mapping[str, MergePolicy] | None = None,
        default_policy: str = "concatenate",
    ) -> None:
        self._policies = dict(merge_policies or DEFAULT_MERGE_POLICIES)
        if default_policy not in self._policies:
            raise ValueError(f"unknown default merge policy: {default_policy}")
        self._default_policy = default_policy

    def policy_names(self) -> list[str]:
        return list(self._policies)

    def combine(self, result: RunResult, merge_policy: str | None = None) -> Report:
        """生成报告：每个来源一段（原始顺序），再加一个仅含成功结果的综合段。"""
        policy_name = merge_policy or self._default_policy
        try:
            policy = self._policies[policy_name]
        except KeyError as exc:
            raise ValueError(f"unknown merge policy: {policy_name}") from exc

        sections = tuple(
            _section(index, task_id, outcome)
            for index, (task_id, outcome) in enumerate(zip(result.task_ids, result.outcomes))
        )
        succeeded = [section for section in sections if section.status is OutcomeStatus.success]
        combined = policy.merge(succeeded) if succeeded else EMPTY_COMBINED
        # 非 complete 时必须显式列出缺失来源。
        missing: tuple[int, ...] = ()
        if result.overall_status is not OverallStatus.complete:
            missing = tuple(section.index for section in sections if section.status is not OutcomeStatus.success)
        return Report(
            workflow_id=result.workflow_id,
            mode=result.mode,
            overall_status=result.overall_status,
            sections=sections,
            combined=combined,
            merge_policy=policy_name,
            missing=missing,
        )
