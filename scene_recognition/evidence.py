"""
证据数据结构 — 物体观测、场景图样本、场景识别结果。

消息格式 (JSON over std_msgs/String):

  物体观测 (object_topic):
    {
      "type": "cup",
      "observed_id": "cup_0",
      "frame_id": "camera_link",
      "timestamp": 1700000000.0,
      "pose": {
        "position": {"x": 0.1, "y": 0.2, "z": 0.8},
        "orientation": {"x": 0.0, "y": 0.0, "z": 0.0, "w": 1.0}
      },
      "covariance": [9 个数, 3x3 位置协方差, 行优先]   (可选)
    }

  场景图 (scene_graph_topic):
    {"identifier": "breakfast", "objects": [<物体观测>, ...]}
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Tuple


@dataclass(frozen=True)
class Pose:
    """位姿: 位置 [x, y, z] + 四元数 [x, y, z, w]。"""
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    orientation: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)

    def to_dict(self) -> dict:
        x, y, z = self.position
        qx, qy, qz, qw = self.orientation
        return {
            "position": {"x": x, "y": y, "z": z},
            "orientation": {"x": qx, "y": qy, "z": qz, "w": qw},
        }

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "Pose":
        if not data:
            return cls()
        try:
            pos = data.get("position", {}) or {}
            ori = data.get("orientation", {}) or {}
            position = (
                float(pos.get("x", 0.0)),
                float(pos.get("y", 0.0)),
                float(pos.get("z", 0.0)),
            )
            orientation = (
                float(ori.get("x", 0.0)),
                float(ori.get("y", 0.0)),
                float(ori.get("z", 0.0)),
                float(ori.get("w", 1.0)),
            )
        except (AttributeError, TypeError, ValueError) as e:
            raise ValueError(f"Malformed pose: {data!r}") from e
        return cls(position=position, orientation=orientation)


@dataclass(frozen=True)
class ObjectEvidence:
    """单条物体观测 (不可变)。"""
    type: str
    pose: Pose = field(default_factory=Pose)
    timestamp: float = 0.0
    frame_id: str = ""           # 空 = 已在基坐标系
    observed_id: str = ""        # 物理物体标识, 可为空
    covariance: Optional[Tuple[float, ...]] = None  # 3x3 位置协方差, 行优先

    @property
    def key(self) -> Tuple[str, str]:
        """
        证据身份: 同一 (type, observed_id) 的新观测覆盖旧观测。

        observed_id 为空时同类型的所有观测身份相同。
        """
        return (self.type, self.observed_id)

    def with_pose(
        self,
        pose: Pose,
        frame_id: str,
        covariance: Optional[Tuple[float, ...]] = None,
    ) -> "ObjectEvidence":
        return replace(
            self,
            pose=pose,
            frame_id=frame_id,
            covariance=covariance if covariance is not None else self.covariance,
        )

    def to_dict(self) -> dict:
        data = {
            "type": self.type,
            "observed_id": self.observed_id,
            "frame_id": self.frame_id,
            "timestamp": self.timestamp,
            "pose": self.pose.to_dict(),
        }
        if self.covariance is not None:
            data["covariance"] = list(self.covariance)
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ObjectEvidence":
        """解析 JSON 负载; 格式错误抛出 ValueError。"""
        if not isinstance(data, dict):
            raise ValueError(f"Object evidence must be a mapping, got {type(data).__name__}")
        obj_type = data.get("type")
        if not isinstance(obj_type, str) or not obj_type:
            raise ValueError(f"Object evidence without a type: {data!r}")

        covariance = data.get("covariance")
        if covariance is not None:
            try:
                covariance = tuple(float(v) for v in covariance)
            except (TypeError, ValueError) as e:
                raise ValueError(f"Malformed covariance for '{obj_type}'") from e
            if len(covariance) != 9:
                raise ValueError(
                    f"Covariance for '{obj_type}' must have 9 entries, got {len(covariance)}"
                )

        try:
            timestamp = float(data.get("timestamp", 0.0))
        except (TypeError, ValueError) as e:
            raise ValueError(f"Malformed timestamp for '{obj_type}'") from e

        return cls(
            type=obj_type,
            pose=Pose.from_dict(data.get("pose")),
            timestamp=timestamp,
            frame_id=str(data.get("frame_id", "") or ""),
            observed_id=str(data.get("observed_id", "") or ""),
            covariance=covariance,
        )


@dataclass(frozen=True)
class SceneGraphExample:
    """带标签的历史场景实例, 仅用于学习。"""
    identifier: str
    objects: Tuple[ObjectEvidence, ...] = ()

    def to_dict(self) -> dict:
        return {
            "identifier": self.identifier,
            "objects": [obj.to_dict() for obj in self.objects],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "SceneGraphExample":
        if not isinstance(data, dict):
            raise ValueError(f"Scene graph must be a mapping, got {type(data).__name__}")
        identifier = data.get("identifier")
        if not isinstance(identifier, str) or not identifier:
            raise ValueError(f"Scene graph without an identifier: {data!r}")
        objects = data.get("objects", [])
        if not isinstance(objects, list):
            raise ValueError(f"Scene graph '{identifier}': 'objects' must be a list")
        return cls(
            identifier=identifier,
            objects=tuple(ObjectEvidence.from_dict(o) for o in objects),
        )


@dataclass
class SceneIdentifier:
    """场景识别结果 (每个推理周期重新计算, 不持久化)。"""
    scene_id: str
    description: str
    type: str
    likelihood: float
    priori: float

    def to_dict(self) -> dict:
        return {
            "scene_id": self.scene_id,
            "description": self.description,
            "type": self.type,
            "likelihood": self.likelihood,
            "priori": self.priori,
        }
