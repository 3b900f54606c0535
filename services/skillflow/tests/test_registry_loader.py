"""注册表加载测试：文件校验、策略转换与失败即报错。"""

import json
from pathlib import Path

import pytest

from skillflow.domain.errors import RegistryLoadError
from skillflow.domain.skills.matching import ExactPhraseStrategy, FuzzyPhraseStrategy
from skillflow.domain.synthesis.synthesizer import Synthesizer
from skillflow.infra.registry.loader import build_registry, load_registry

SAMPLE_REGISTRY = Path(__file__).resolve().parents[1] / "registry" / "skills.json"


def _document(**workflow_overrides) -> dict:
    workflow = {
        "id": "deep-research",
        "triggers": ["deep research"],
        "default_mode": "quick",
        "modes": {
            "quick": {"worker_count": 3, "per_worker_timeout_seconds": 120, "overall_timeout_seconds": 150},
        },
    }
    workflow.update(workflow_overrides)
    return {"schema_version": "1", "skills": [{"id": "research", "triggers": ["research"], "workflows": [workflow]}]}


def test_build_registry_converts_modes() -> None:
    """文件中的模式转换为策略对象，秒数原样保留。"""
    registry = build_registry(_document(), strategy=ExactPhraseStrategy(), min_score=0.5)

    workflow = registry.get_workflow("research")
    policy = workflow.modes["quick"]
    assert (policy.worker_count, policy.per_worker_timeout, policy.overall_timeout) == (3, 120, 150)
    assert policy.required_successes == 3
    assert workflow.merge_policy == "concatenate"


@pytest.mark.parametrize(
    "document",
    [
        _document(default_mode="extensive"),
        _document(merge_policy="vote"),
        _document(modes={"quick": {"worker_count": 0, "per_worker_timeout_seconds": 1, "overall_timeout_seconds": 1}}),
        _document(modes={"quick": {"worker_count": 2, "per_worker_timeout_seconds": 5, "overall_timeout_seconds": 1}}),
        _document(unexpected=True),
        {"skills": [{"id": "research", "workflows": []}]},
    ],
)
def test_build_registry_rejects_invalid_documents(document: dict) -> None:
    """任何非法内容都转换为 RegistryLoadError。"""
    with pytest.raises(RegistryLoadError):
        build_registry(
            document,
            strategy=ExactPhraseStrategy(),
            min_score=0.5,
            known_merge_policies=Synthesizer().policy_names(),
        )


def test_build_registry_rejects_duplicate_skills() -> None:
    """同一文件内重复技能 ID 报错。"""
    document = _document()
    document["skills"].append(document["skills"][0])
    with pytest.raises(RegistryLoadError):
        build_registry(document, strategy=ExactPhraseStrategy(), min_score=0.5)


def test_load_registry_reports_io_and_json_errors(tmp_path: Path) -> None:
    """文件缺失或 JSON 非法都在加载时失败。"""
    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")

    with pytest.raises(RegistryLoadError):
        load_registry(tmp_path / "missing.json", strategy=ExactPhraseStrategy(), min_score=0.5)
    with pytest.raises(RegistryLoadError):
        load_registry(broken, strategy=ExactPhraseStrategy(), min_score=0.5)


def test_load_registry_from_file(tmp_path: Path) -> None:
    """从磁盘文件加载并可按意图查询。"""
    path = tmp_path / "skills.json"
    path.write_text(json.dumps(_document()), encoding="utf-8")

    registry = load_registry(path, strategy=FuzzyPhraseStrategy(), min_score=0.5)

    assert [match.workflow.id for match in registry.find_by_intent("deep research on tides")] == ["deep-research"]


def test_bundled_sample_registry_is_valid() -> None:
    """随仓库提供的示例注册表可以加载。"""
    registry = load_registry(
        SAMPLE_REGISTRY,
        strategy=FuzzyPhraseStrategy(),
        min_score=0.5,
        known_merge_policies=Synthesizer().policy_names(),
    )

    assert [skill.id for skill in registry.all()] == ["research", "code-review"]
    extensive = registry.get_workflow("research").modes["extensive"]
    assert extensive.worker_count == 8
    assert extensive.required_successes < extensive.worker_count
