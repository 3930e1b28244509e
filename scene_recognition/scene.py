"""
场景 (Scene) — 一个可识别的场景假设。

组成:
  - foreground: 前景概率表
      行 0 (MODEL_ROW):    从场景图样本学到的对象类型计数
      行 1 (EVIDENCE_ROW): 在线推理时观测到的对象类型计数
  - background: 背景推理算法 (背景杂物的类型分布 + 当前背景证据集)
  - prior: 先验概率

似然:
    foreground_match = Σ_{t 已观测, t ≠ 默认桶} P_model(t)
    likelihood       = prior × foreground_match × (1 − P_background)

foreground_match 是 "已观测到的前景类型在学习分布中所占的概率质量",
P_background 是当前背景证据完全由杂物解释的概率。
各场景的似然再由 SceneModel 跨场景归一化。
"""

import logging
import math
from typing import Dict, Optional, Set

import numpy as np

from .background_base import (
    BackgroundInferenceAlgorithm,
    background_algorithm_from_dict,
    create_background_algorithm,
)
from .evidence import ObjectEvidence, SceneGraphExample
from .probability_table import ProbabilityTable
from .vocabulary import DEFAULT_INDEX

logger = logging.getLogger(__name__)

MODEL_ROW = 0
EVIDENCE_ROW = 1
FOREGROUND_ROWS = 2


class Scene:
    """
    单个场景假设。

    用法:
        scene = Scene("breakfast", description="Breakfast table", prior=0.5)
        scene.update_from_scene_graph(example)     # 学习
        scene.update_from_evidence(evidence)       # 在线证据
        raw = scene.current_likelihood()
    """

    def __init__(
        self,
        scene_id: str,
        description: str = "",
        scene_type: str = "",
        prior: float = 1.0,
        foreground: Optional[ProbabilityTable] = None,
        background: Optional[BackgroundInferenceAlgorithm] = None,
    ):
        if not scene_id:
            raise ValueError("Scene id must be a non-empty string")
        if isinstance(prior, bool) or not isinstance(prior, (int, float)) or math.isnan(prior):
            raise ValueError(f"Scene '{scene_id}': prior must be a number, got {prior!r}")
        if not 0.0 <= prior <= 1.0:
            raise ValueError(f"Scene '{scene_id}': prior must be in [0, 1], got {prior}")

        self.scene_id = scene_id
        self.description = description or scene_id
        self.scene_type = scene_type
        self.prior = float(prior)

        self.foreground = foreground if foreground is not None else ProbabilityTable(rows=FOREGROUND_ROWS)
        self.foreground.ensure_rows(FOREGROUND_ROWS)
        self.background = background if background is not None else create_background_algorithm("power_set")

        # 最近一次 update() 的结果
        self.foreground_match = 0.0
        self.background_probability = self.background.probability
        self.raw_likelihood = 0.0
        self.likelihood = 0.0  # 跨场景归一化后, 由 SceneModel 写入

    # ── 类型路由 ──────────────────────────────────────────────

    @property
    def accepted_types(self) -> Set[str]:
        return set(self.foreground.known_types) | set(self.background.vocabulary)

    def accepts(self, object_type: str) -> bool:
        return self.foreground.has_type(object_type) or self.background.accepts(object_type)

    # ── 证据与学习 ──────────────────────────────────────────────

    def update_from_evidence(self, evidence: ObjectEvidence) -> None:
        """在线证据: 计入观测行 (不登记新类型), 背景类型转发给背景算法。"""
        self.foreground.increment(EVIDENCE_ROW, evidence.type, register=False)
        self.background.add_evidence(evidence)

    def update_from_scene_graph(self, example: SceneGraphExample) -> None:
        """学习: 每个物体计入学习行 (登记新类型), 背景类型同时计入背景表。"""
        for obj in example.objects:
            self.foreground.increment(MODEL_ROW, obj.type, register=True)
            self.background.learn(obj)
        logger.debug(
            f"Scene '{self.scene_id}' learned {len(example.objects)} objects "
            f"from scene graph '{example.identifier}'"
        )

    def clear_evidence(self) -> None:
        self.foreground.clear_row(EVIDENCE_ROW)
        self.background.clear_evidence()

    # ── 似然 ──────────────────────────────────────────────

    def compute_foreground_match(self) -> float:
        model = self.foreground.probabilities[MODEL_ROW]
        observed = self.foreground.counts[EVIDENCE_ROW] > 0
        observed[DEFAULT_INDEX] = False
        return float(np.clip(model[observed].sum(), 0.0, 1.0))

    def current_likelihood(self) -> float:
        """重新推理并返回未归一化似然 prior × foreground_match × (1 − P_bg)。"""
        self.foreground_match = self.compute_foreground_match()
        self.background_probability = self.background.update()
        self.raw_likelihood = (
            self.prior * self.foreground_match * (1.0 - self.background_probability)
        )
        return self.raw_likelihood

    # ── 可视化快照 ──────────────────────────────────────────────

    def snapshot(self) -> dict:
        return {
            "scene_id": self.scene_id,
            "description": self.description,
            "type": self.scene_type,
            "prior": self.prior,
            "likelihood": self.likelihood,
            "foreground_match": self.foreground_match,
            "background_probability": self.background_probability,
            "model_distribution": self.foreground.row_distribution(MODEL_ROW),
            "observed_counts": self.foreground.row_counts(EVIDENCE_ROW),
            "background_distribution": self.background.table.row_distribution(0),
            "background_evidence": [e.to_dict() for e in self.background.evidence],
        }

    # ── 序列化 ──────────────────────────────────────────────

    def to_dict(self, include_evidence: bool = False) -> dict:
        foreground = self.foreground.to_dict()
        if not include_evidence:
            foreground["rows"][EVIDENCE_ROW] = {}
        return {
            "id": self.scene_id,
            "description": self.description,
            "type": self.scene_type,
            "prior": self.prior,
            "foreground": foreground,
            "background": self.background.to_dict(),
        }

    @classmethod
    def from_dict(
        cls,
        data: dict,
        inference_algorithm: Optional[str] = None,
        fallback_to_default: bool = True,
    ) -> "Scene":
        if not isinstance(data, dict):
            raise ValueError(f"Scene entry must be a mapping, got {type(data).__name__}")
        scene_id = data.get("id")
        if not isinstance(scene_id, str) or not scene_id:
            raise ValueError(f"Scene entry without an id: {data!r}")
        if "prior" not in data:
            raise ValueError(f"Scene '{scene_id}' has no prior")

        foreground = ProbabilityTable.from_dict(
            data.get("foreground", {}),
            fallback_to_default=fallback_to_default,
            min_rows=FOREGROUND_ROWS,
        )
        background = background_algorithm_from_dict(
            data.get("background", {}),
            kind_override=inference_algorithm,
            fallback_to_default=fallback_to_default,
        )
        return cls(
            scene_id=scene_id,
            description=str(data.get("description", "")),
            scene_type=str(data.get("type", "")),
            prior=data["prior"],
            foreground=foreground,
            background=background,
        )

    def __repr__(self) -> str:
        return (
            f"Scene(id={self.scene_id!r}, prior={self.prior}, "
            f"likelihood={self.likelihood:.4f})"
        )
