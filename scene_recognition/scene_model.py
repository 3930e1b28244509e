"""
场景模型 (Scene Model) — 全部场景的集合。

职责:
  1. 从模型文件加载场景 (前景表、背景算法、先验)
  2. 将证据路由给接受该类型的场景, 将场景图样本路由给目标场景
  3. 重新计算各场景似然并跨场景归一化
  4. 输出按似然降序排列的 SceneIdentifier 列表
  5. 无损保存模型 (计数与先验)

模型文件 (JSON):
    {
      "version": 1,
      "scenes": [
        {
          "id": "breakfast", "description": "Breakfast table",
          "type": "kitchen", "prior": 0.5,
          "foreground": {"columns": [...], "rows": [{"cup": 4, ...}, {}]},
          "background": {"kind": "power_set", "parameters": {...},
                         "table": {"columns": [...], "rows": [{"napkin": 3}]}}
        }
      ]
    }
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterator, List, Optional, Set

from .evidence import ObjectEvidence, SceneGraphExample, SceneIdentifier
from .scene import Scene

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class ModelError(Exception):
    """模型文件缺失或格式错误 (启动期致命错误)。"""


class UnknownSceneError(KeyError):
    """场景图样本引用了不存在的场景 (配置错误)。"""


class SceneModel:
    """
    场景模型。

    用法:
        model = SceneModel.load_from_file("scene_model.json")
        model.integrate_evidence(evidence)
        model.recompute()
        for result in model.ranked_scenes():
            print(result.description, result.likelihood)
    """

    def __init__(self, scenes: Optional[List[Scene]] = None):
        self._scenes: Dict[str, Scene] = {}
        for scene in scenes or []:
            self.add_scene(scene)

    # ── 场景管理 ──────────────────────────────────────────────

    def add_scene(self, scene: Scene) -> None:
        if scene.scene_id in self._scenes:
            raise ValueError(f"Duplicate scene id '{scene.scene_id}'")
        self._scenes[scene.scene_id] = scene

    def get_scene(self, scene_id: str) -> Scene:
        scene = self._scenes.get(scene_id)
        if scene is None:
            raise UnknownSceneError(scene_id)
        return scene

    @property
    def scenes(self) -> List[Scene]:
        return list(self._scenes.values())

    @property
    def accepted_types(self) -> Set[str]:
        types: Set[str] = set()
        for scene in self._scenes.values():
            types |= scene.accepted_types
        return types

    def __len__(self) -> int:
        return len(self._scenes)

    def __iter__(self) -> Iterator[Scene]:
        return iter(self._scenes.values())

    # ── 证据 / 学习 ──────────────────────────────────────────────

    def integrate_evidence(self, evidence: ObjectEvidence) -> int:
        """
        将证据路由给所有接受该类型的场景。

        Returns:
            收到证据的场景数 (0 = 没有场景接受, 静默忽略)
        """
        routed = 0
        for scene in self._scenes.values():
            if scene.accepts(evidence.type):
                scene.update_from_evidence(evidence)
                routed += 1
        if routed == 0:
            logger.debug(f"No scene accepts object type '{evidence.type}', ignored")
        return routed

    def integrate_scene_graph(self, example: SceneGraphExample) -> Scene:
        """
        将场景图样本交给 identifier 对应的场景学习。

        Raises:
            UnknownSceneError: 没有该 id 的场景
        """
        scene = self._scenes.get(example.identifier)
        if scene is None:
            raise UnknownSceneError(
                f"Scene graph references unknown scene '{example.identifier}' "
                f"(known: {', '.join(self._scenes) or 'none'})"
            )
        scene.update_from_scene_graph(example)
        return scene

    def clear_evidence(self) -> None:
        for scene in self._scenes.values():
            scene.clear_evidence()

    # ── 推理 ──────────────────────────────────────────────

    def recompute(self) -> List[SceneIdentifier]:
        """
        重新计算各场景似然并归一化 (和为 1)。

        全部原始似然为 0 时 (例如尚无证据), 退回到归一化先验;
        先验也全为 0 时取均匀分布。先验本身不被修改。
        """
        scenes = list(self._scenes.values())
        if not scenes:
            return []

        raw = [scene.current_likelihood() for scene in scenes]
        total = sum(raw)
        if total <= 0:
            raw = [scene.prior for scene in scenes]
            total = sum(raw)
        if total <= 0:
            raw = [1.0] * len(scenes)
            total = float(len(scenes))

        for scene, value in zip(scenes, raw):
            scene.likelihood = value / total

        return self.ranked_scenes()

    def ranked_scenes(self) -> List[SceneIdentifier]:
        """按似然降序; 似然相同按场景 id 升序。"""
        ordered = sorted(
            self._scenes.values(),
            key=lambda s: (-s.likelihood, s.scene_id),
        )
        return [
            SceneIdentifier(
                scene_id=s.scene_id,
                description=s.description,
                type=s.scene_type,
                likelihood=s.likelihood,
                priori=s.prior,
            )
            for s in ordered
        ]

    def table_snapshots(self) -> List[dict]:
        return [scene.snapshot() for scene in self._scenes.values()]

    # ── 序列化 ──────────────────────────────────────────────

    def save_to_schema(self, include_evidence: bool = False) -> dict:
        return {
            "version": SCHEMA_VERSION,
            "scenes": [
                scene.to_dict(include_evidence=include_evidence)
                for scene in self._scenes.values()
            ],
        }

    @classmethod
    def load_from_schema(
        cls,
        doc: dict,
        inference_algorithm: Optional[str] = None,
        fallback_to_default: bool = True,
    ) -> "SceneModel":
        """
        从模型文档构造。

        Args:
            doc: 模型文档
            inference_algorithm: 非空时覆盖所有场景的背景算法类型
            fallback_to_default: 未知类型是否落入默认桶

        Raises:
            ModelError: 文档格式错误
        """
        if not isinstance(doc, dict):
            raise ModelError(f"Scene model must be a mapping, got {type(doc).__name__}")
        version = doc.get("version", SCHEMA_VERSION)
        if version != SCHEMA_VERSION:
            raise ModelError(f"Unsupported scene model version {version!r}")
        entries = doc.get("scenes")
        if not isinstance(entries, list) or not entries:
            raise ModelError("Scene model must contain a non-empty 'scenes' list")

        model = cls()
        for i, entry in enumerate(entries):
            try:
                scene = Scene.from_dict(
                    entry,
                    inference_algorithm=inference_algorithm,
                    fallback_to_default=fallback_to_default,
                )
                model.add_scene(scene)
            except (TypeError, ValueError) as e:
                raise ModelError(f"Invalid scene entry #{i}: {e}") from e
        return model

    @classmethod
    def load_from_file(
        cls,
        path: str,
        inference_algorithm: Optional[str] = None,
        fallback_to_default: bool = True,
    ) -> "SceneModel":
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                doc = json.load(f)
        except OSError as e:
            raise ModelError(f"Cannot read scene model {path}: {e}") from e
        except json.JSONDecodeError as e:
            raise ModelError(f"Malformed scene model {path}: {e}") from e

        model = cls.load_from_schema(
            doc,
            inference_algorithm=inference_algorithm,
            fallback_to_default=fallback_to_default,
        )
        logger.info(f"Loaded scene model with {len(model)} scenes from {path}")
        return model

    def save_to_file(self, path: str, include_evidence: bool = False) -> None:
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.save_to_schema(include_evidence), f, indent=2, ensure_ascii=False)
        logger.info(f"Saved scene model to {path}")
