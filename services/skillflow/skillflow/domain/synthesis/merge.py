"""合并策略：把成功来源的结果合成为综合段落，每段都保留来源标注。"""

from __future__ import annotations

from typing import Protocol, Sequence

from skillflow.domain.models import SourceSection


class MergePolicy(Protocol):
    """按原始顺序接收成功来源段落，返回综合正文。"""
    name: str

    def merge(self, sections: Sequence[SourceSection]) -> str:
        ...


def _heading(sections: Sequence[SourceSection]) -> str:
    labels = ", ".join(section.label for section in sections)
    task_ids = ", ".join(section.task_id for section in sections)
    return f"### {labels} ({task_ids})"


class ConcatenateMerge:
    """逐个拼接成功结果。"""
    name = "concatenate"

    def merge(self, sections: Sequence[SourceSection]) -> str:
        return "\n\n".join(f"{_heading([section])}\n{section.body or ''}" for section in sections)


class DeduplicateMerge:
    """内容相同（忽略首尾空白）的结果只保留一份，标题列出全部贡献来源。"""
    name = "deduplicate"

    def merge(self, sections: Sequence[SourceSection]) -> str:
        groups: dict[str, list[SourceSection]] = {}
        for section in sections:
            groups.setdefault((section.body or "").strip(), []).append(section)
        return "\n\n".join(f"{_heading(members)}\n{members[0].body or ''}" for members in groups.values())


DEFAULT_MERGE_POLICIES: dict[str, MergePolicy] = {
    ConcatenateMerge.name: ConcatenateMerge(),
    DeduplicateMerge.name: DeduplicateMerge(),
}
