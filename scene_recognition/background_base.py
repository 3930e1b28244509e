"""
背景推理算法抽象基类 — 判断一组证据能否被解释为背景杂物。

当前实现:
  - PowerSetBackgroundInference  (kind="power_set", 默认; 枚举背景证据的幂集)

新策略只需继承 BackgroundInferenceAlgorithm 并在 create_background_algorithm()
中登记, Scene / SceneModel 无需改动。
"""

from abc import ABC, abstractmethod
from typing import Dict, Iterable, List, Optional, Tuple

from .evidence import ObjectEvidence
from .probability_table import ProbabilityTable

BACKGROUND_ROW = 0

BACKGROUND_KINDS = ("power_set",)
_KIND_ALIASES = {
    "power_set": "power_set",
    "powerset": "power_set",
}


def canonical_kind(name: str) -> str:
    """'power-set' / 'PowerSet' / 'power_set' → 'power_set'。"""
    key = str(name).strip().lower().replace("-", "_")
    kind = _KIND_ALIASES.get(key) or _KIND_ALIASES.get(key.replace("_", ""))
    if kind is None:
        raise ValueError(
            f"Unknown background inference algorithm '{name}' "
            f"(known: {', '.join(BACKGROUND_KINDS)})"
        )
    return kind


class BackgroundInferenceAlgorithm(ABC):
    """
    背景推理算法基类。

    持有背景概率表 (单行: 背景杂物的类型分布) 和当前背景证据集。
    证据集按证据身份 (type, observed_id) 去重, 新观测覆盖旧观测。
    observed_id 为空的证据共用身份 (type, ""): 同类型的多次无标识检测
    只保留最新一条, 在幂集推理中计为一个元素。需要逐条计数时,
    上游应为每个物理物体提供 observed_id。
    """

    kind: str = ""

    def __init__(self, table: Optional[ProbabilityTable] = None):
        self.table = table if table is not None else ProbabilityTable(rows=1)
        self.table.ensure_rows(BACKGROUND_ROW + 1)
        self._evidence: Dict[Tuple[str, str], ObjectEvidence] = {}
        self.probability: float = self.no_observation_probability

    # ── 背景词表 ──────────────────────────────────────────────

    @property
    def vocabulary(self) -> List[str]:
        """背景词表: 被视为杂物的对象类型。"""
        return self.table.known_types

    def accepts(self, object_type: str) -> bool:
        return self.table.has_type(object_type)

    # ── 学习 / 证据 ──────────────────────────────────────────────

    def learn(self, evidence: ObjectEvidence) -> bool:
        """学习阶段: 为背景词表内的类型累加计数。"""
        if not self.accepts(evidence.type):
            return False
        return self.table.increment(BACKGROUND_ROW, evidence.type, register=False)

    def add_evidence(self, evidence: ObjectEvidence) -> bool:
        """推理阶段: 把背景词表内的证据加入证据集。"""
        if not self.accepts(evidence.type):
            return False
        self._evidence[evidence.key] = evidence
        return True

    def clear_evidence(self) -> None:
        self._evidence.clear()
        self.probability = self.no_observation_probability

    @property
    def evidence(self) -> List[ObjectEvidence]:
        return list(self._evidence.values())

    def update(self) -> float:
        """对当前证据集重新推理, 返回并缓存背景概率。"""
        self.probability = self.infer(self.evidence)
        return self.probability

    # ── 子类接口 ──────────────────────────────────────────────

    @property
    def no_observation_probability(self) -> float:
        """空证据集的背景概率基线。"""
        return 0.5

    @abstractmethod
    def infer(self, evidence_set: Iterable[ObjectEvidence]) -> float:
        """
        计算证据集完全由背景杂物解释的概率。

        Args:
            evidence_set: 证据集合 (背景词表外的证据会被忽略)

        Returns:
            概率 [0, 1]
        """
        ...

    @abstractmethod
    def parameters(self) -> dict:
        """可序列化的算法参数。"""
        ...

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "parameters": self.parameters(),
            "table": self.table.to_dict(),
        }


# ══════════════════════════════════════════════════════════════════
#  工厂
# ══════════════════════════════════════════════════════════════════

def create_background_algorithm(
    kind: str,
    table: Optional[ProbabilityTable] = None,
    parameters: Optional[dict] = None,
) -> BackgroundInferenceAlgorithm:
    """
    创建背景推理算法。

    Args:
        kind: 算法类型 ("power_set")
        table: 背景概率表 (None = 空表)
        parameters: 算法参数

    Returns:
        算法实例
    """
    kind = canonical_kind(kind)
    parameters = parameters or {}
    if kind == "power_set":
        from .powerset_background import PowerSetBackgroundInference, PowerSetConfig
        return PowerSetBackgroundInference(table=table, config=PowerSetConfig.from_dict(parameters))
    raise ValueError(f"Unknown background inference algorithm: {kind}")


def background_algorithm_from_dict(
    data: dict,
    kind_override: Optional[str] = None,
    fallback_to_default: bool = True,
) -> BackgroundInferenceAlgorithm:
    """从模型文件的 background 段恢复算法 (kind_override 优先于文件中的 kind)。"""
    if not isinstance(data, dict):
        raise ValueError(f"Background section must be a mapping, got {type(data).__name__}")
    kind = kind_override or data.get("kind", "power_set")
    table = ProbabilityTable.from_dict(
        data.get("table", {}),
        fallback_to_default=fallback_to_default,
        min_rows=BACKGROUND_ROW + 1,
    )
    parameters = data.get("parameters", {})
    if not isinstance(parameters, dict):
        raise ValueError("Background 'parameters' must be a mapping")
    return create_background_algorithm(kind, table=table, parameters=parameters)
