"""触发词匹配策略：将意图文本与单个触发词打分，精确包含优先于模糊相似。"""

from __future__ import annotations

import re
from difflib import SequenceMatcher
from typing import Protocol

_PUNCTUATION_RE = re.compile(r"[^\w\s]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_phrase(text: str) -> str:
    """小写、去标点并折叠空白，得到可比较的短语形式。"""
    lowered = _PUNCTUATION_RE.sub(" ", text.lower())
    return _WHITESPACE_RE.sub(" ", lowered).strip()


def contains_phrase(text: str, phrase: str) -> bool:
    """按词边界判断归一化文本是否包含归一化短语。"""
    if not text or not phrase:
        return False
    return f" {phrase} " in f" {text} "


class MatchStrategy(Protocol):
    """可插拔的匹配策略，返回 [0, 1] 区间的分数。"""
    name: str

    def score(self, text: str, trigger: str) -> float:
        ...


class ExactPhraseStrategy:
    """仅识别短语包含，命中为 1.0，否则为 0.0。"""
    name = "exact"

    def score(self, text: str, trigger: str) -> float:
        return 1.0 if contains_phrase(normalize_phrase(text), normalize_phrase(trigger)) else 0.0


class FuzzyPhraseStrategy:
    """短语包含记 1.0；否则取词重合率与滑窗字符相似度的较大者，并乘以上限系数。"""
    name = "fuzzy"

    def __init__(self, fuzzy_ceiling: float = 0.9) -> None:
        if not 0.0 < fuzzy_ceiling < 1.0:
            raise ValueError("fuzzy_ceiling must be in (0, 1)")
        self._fuzzy_ceiling = fuzzy_ceiling

    def score(self, text: str, trigger: str) -> float:
        normalized_text = normalize_phrase(text)
        normalized_trigger = normalize_phrase(trigger)
        if not normalized_text or not normalized_trigger:
            return 0.0
        if contains_phrase(normalized_text, normalized_trigger):
            return 1.0

        trigger_tokens = normalized_trigger.split()
        text_tokens = normalized_text.split()
        text_token_set = set(text_tokens)
        overlap = sum(1 for token in trigger_tokens if token in text_token_set) / len(trigger_tokens)

        # 以触发词长度为窗口在文本上滑动，容忍拼写错误而不被长文本稀释。
        width = len(trigger_tokens)
        windows = [" ".join(text_tokens[i : i + width]) for i in range(max(1, len(text_tokens) - width + 1))]
        similarity = max(SequenceMatcher(None, normalized_trigger, window).ratio() for window in windows)
        return round(self._fuzzy_ceiling * max(overlap, similarity), 6)


_STRATEGIES = {
    ExactPhraseStrategy.name: ExactPhraseStrategy,
    FuzzyPhraseStrategy.name: FuzzyPhraseStrategy,
}


def build_strategy(name: str) -> MatchStrategy:
    """按配置名称构建匹配策略。"""
    try:
        return _STRATEGIES[name.strip().lower()]()
    except KeyError as exc:
        raise ValueError(f"unknown match strategy: {name}") from exc
