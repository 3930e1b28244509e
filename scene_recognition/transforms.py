"""
坐标变换: 将物体观测变换到基坐标系 (base_frame)。

  - CoordinateTransformer: 抽象接口, lookup() 返回 frame → base 的 4x4 矩阵
  - StaticTransformer:     固定变换表 (离线批处理 / 测试)
  - tf2 实现见 scene_inference_node.Tf2Transformer

变换失败 (坐标系无法解析或朝向无效) 抛出 TransformError, 由推理周期丢弃该证据。
"""

from abc import ABC, abstractmethod
from typing import Dict, Optional, Sequence

import numpy as np
from scipy.spatial.transform import Rotation

from .evidence import ObjectEvidence, Pose


class TransformError(Exception):
    """无法把证据变换到目标坐标系。"""


def pose_matrix(
    translation: Sequence[float],
    rotation: Sequence[float] = (0.0, 0.0, 0.0, 1.0),
) -> np.ndarray:
    """平移 [x, y, z] + 四元数 [x, y, z, w] → 4x4 齐次矩阵。"""
    tf = np.eye(4)
    tf[:3, :3] = Rotation.from_quat(np.asarray(rotation, dtype=np.float64)).as_matrix()
    tf[:3, 3] = np.asarray(translation, dtype=np.float64)
    return tf


def transform_evidence(
    evidence: ObjectEvidence,
    tf_frame_to_base: np.ndarray,
    base_frame: str,
) -> ObjectEvidence:
    """
    用 4x4 矩阵变换一条证据 (位置、朝向、位置协方差)。

    协方差: Σ' = R Σ Rᵀ
    """
    R = tf_frame_to_base[:3, :3]
    t = tf_frame_to_base[:3, 3]

    position = R @ np.asarray(evidence.pose.position, dtype=np.float64) + t
    try:
        orientation = (
            Rotation.from_matrix(R) * Rotation.from_quat(np.asarray(evidence.pose.orientation))
        ).as_quat()
    except ValueError as e:
        # 零范数四元数等无效朝向
        raise TransformError(f"Invalid orientation {evidence.pose.orientation}: {e}") from e

    covariance = None
    if evidence.covariance is not None:
        cov = np.asarray(evidence.covariance, dtype=np.float64).reshape(3, 3)
        covariance = tuple(float(v) for v in (R @ cov @ R.T).ravel())

    pose = Pose(
        position=tuple(float(v) for v in position),
        orientation=tuple(float(v) for v in orientation),
    )
    return evidence.with_pose(pose, base_frame, covariance)


class CoordinateTransformer(ABC):
    """坐标变换服务接口。"""

    def __init__(self, base_frame: str):
        self.base_frame = base_frame

    @abstractmethod
    def lookup(self, frame_id: str, stamp: float) -> np.ndarray:
        """
        查询 frame_id → base_frame 的变换。

        Returns:
            4x4 变换矩阵

        Raises:
            TransformError: 坐标系无法解析
        """
        ...

    def transform(self, evidence: ObjectEvidence) -> ObjectEvidence:
        """变换证据; frame_id 为空或已是基坐标系时原样返回。"""
        if not evidence.frame_id or evidence.frame_id == self.base_frame:
            return evidence
        tf = self.lookup(evidence.frame_id, evidence.timestamp)
        return transform_evidence(evidence, tf, self.base_frame)


class StaticTransformer(CoordinateTransformer):
    """
    固定变换表。

    用法:
        tf = StaticTransformer("map", {"camera_link": pose_matrix([0, 0, 1.2])})
        evidence_in_map = tf.transform(evidence)
    """

    def __init__(self, base_frame: str, transforms: Optional[Dict[str, np.ndarray]] = None):
        super().__init__(base_frame)
        self._transforms: Dict[str, np.ndarray] = {}
        for frame_id, tf in (transforms or {}).items():
            self.set_transform(frame_id, tf)

    def set_transform(self, frame_id: str, tf_frame_to_base: np.ndarray) -> None:
        tf = np.asarray(tf_frame_to_base, dtype=np.float64)
        if tf.shape != (4, 4):
            raise ValueError(f"Transform for '{frame_id}' must be 4x4, got {tf.shape}")
        self._transforms[frame_id] = tf

    def lookup(self, frame_id: str, stamp: float) -> np.ndarray:
        tf = self._transforms.get(frame_id)
        if tf is None:
            raise TransformError(
                f"No transform from '{frame_id}' to '{self.base_frame}'"
            )
        return tf

    @classmethod
    def from_config(cls, base_frame: str, static_transforms: Optional[dict]) -> "StaticTransformer":
        """
        从配置构造。

        static_transforms:
          camera_link: {translation: [0, 0, 1.2], rotation: [0, 0, 0, 1]}
        """
        transformer = cls(base_frame)
        for frame_id, spec in (static_transforms or {}).items():
            transformer.set_transform(
                frame_id,
                pose_matrix(
                    spec.get("translation", (0.0, 0.0, 0.0)),
                    spec.get("rotation", (0.0, 0.0, 0.0, 1.0)),
                ),
            )
        return transformer
