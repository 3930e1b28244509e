#!/usr/bin/env python3
"""
坐标变换与证据解析测试脚本

测试内容:
1. 位姿矩阵
2. 证据变换 (位置 / 朝向 / 协方差)
3. StaticTransformer: 直通、未知坐标系、从配置构造
4. 证据 JSON 解析与错误
"""

import sys
from pathlib import Path

import numpy as np
from scipy.spatial.transform import Rotation

sys.path.insert(0, str(Path(__file__).parent.parent))

from scene_recognition.evidence import ObjectEvidence, Pose, SceneGraphExample
from scene_recognition.transforms import (
    StaticTransformer,
    TransformError,
    pose_matrix,
    transform_evidence,
)


def test_pose_matrix():
    """测试位姿矩阵。"""
    print("=" * 60)
    print("测试 1: 位姿矩阵")
    print("=" * 60)

    tf = pose_matrix([1.0, 2.0, 3.0])
    assert np.allclose(tf[:3, :3], np.eye(3))
    assert np.allclose(tf[:3, 3], [1.0, 2.0, 3.0])

    yaw90 = Rotation.from_euler("z", 90, degrees=True).as_quat()
    tf = pose_matrix([0.0, 0.0, 0.0], yaw90)
    assert np.allclose(tf[:3, :3] @ [1.0, 0.0, 0.0], [0.0, 1.0, 0.0])

    print("✓ 平移 + 四元数")
    print()


def test_transform_evidence():
    """测试证据变换。"""
    print("=" * 60)
    print("测试 2: 证据变换")
    print("=" * 60)

    yaw90 = Rotation.from_euler("z", 90, degrees=True).as_quat()
    tf = pose_matrix([1.0, 0.0, 0.0], yaw90)
    evidence = ObjectEvidence(
        type="cup",
        observed_id="c0",
        frame_id="camera_link",
        timestamp=5.0,
        pose=Pose(position=(1.0, 0.0, 0.0)),
        covariance=tuple(np.diag([0.04, 0.01, 0.0]).ravel()),
    )

    result = transform_evidence(evidence, tf, "map")
    print(f"  position={result.pose.position}")
    assert result.frame_id == "map"
    assert np.allclose(result.pose.position, [1.0, 1.0, 0.0])
    assert np.allclose(
        Rotation.from_quat(result.pose.orientation).as_euler("xyz", degrees=True), [0, 0, 90]
    )
    cov = np.array(result.covariance).reshape(3, 3)
    assert np.allclose(np.diag(cov), [0.01, 0.04, 0.0]), "Σ' = R Σ Rᵀ"

    # 身份与时间戳不变, 原证据不可变
    assert result.key == evidence.key and result.timestamp == 5.0
    assert evidence.frame_id == "camera_link"

    zero = ObjectEvidence(type="cup", frame_id="camera_link", pose=Pose(orientation=(0.0, 0.0, 0.0, 0.0)))
    try:
        transform_evidence(zero, tf, "map")
    except TransformError as e:
        print(f"  {e}")
    else:
        raise AssertionError("零范数四元数应抛出 TransformError")

    print("✓ 位置 / 朝向 / 协方差")
    print()


def test_static_transformer():
    """测试固定变换表。"""
    print("=" * 60)
    print("测试 3: StaticTransformer")
    print("=" * 60)

    transformer = StaticTransformer.from_config("map", {
        "camera_link": {"translation": [0.0, 0.0, 1.2]},
        "base_link": {"rotation": [0.0, 0.0, 0.0, 1.0]},
    })

    in_map = ObjectEvidence(type="cup", frame_id="map")
    assert transformer.transform(in_map) is in_map, "已在基坐标系时原样返回"
    no_frame = ObjectEvidence(type="cup")
    assert transformer.transform(no_frame) is no_frame

    lifted = transformer.transform(ObjectEvidence(type="cup", frame_id="camera_link"))
    assert np.allclose(lifted.pose.position, [0.0, 0.0, 1.2])

    try:
        transformer.transform(ObjectEvidence(type="cup", frame_id="gripper"))
    except TransformError as e:
        print(f"  {e}")
    else:
        raise AssertionError("未知坐标系应抛出 TransformError")

    try:
        transformer.set_transform("bad", np.eye(3))
    except ValueError:
        pass
    else:
        raise AssertionError("非 4x4 矩阵应抛出 ValueError")

    print("✓ 直通 / 查表 / 错误")
    print()


def test_evidence_parsing():
    """测试证据 JSON 解析。"""
    print("=" * 60)
    print("测试 4: 证据解析")
    print("=" * 60)

    data = {
        "type": "cup",
        "observed_id": "cup_0",
        "frame_id": "camera_link",
        "timestamp": 12.5,
        "pose": {"position": {"x": 0.1, "y": 0.2, "z": 0.8}, "orientation": {"w": 1.0}},
        "covariance": [0.01, 0, 0, 0, 0.01, 0, 0, 0, 0.01],
    }
    evidence = ObjectEvidence.from_dict(data)
    assert evidence.key == ("cup", "cup_0")
    assert evidence.pose.position == (0.1, 0.2, 0.8)
    assert evidence.pose.orientation == (0.0, 0.0, 0.0, 1.0)
    assert ObjectEvidence.from_dict(evidence.to_dict()) == evidence

    minimal = ObjectEvidence.from_dict({"type": "plate"})
    assert minimal.frame_id == "" and minimal.covariance is None

    for bad in (
        "cup",
        {"observed_id": "x"},
        {"type": ""},
        {"type": "cup", "covariance": [1, 2, 3]},
        {"type": "cup", "covariance": "diag"},
        {"type": "cup", "timestamp": "noon"},
        {"type": "cup", "pose": {"position": {"x": "far"}}},
    ):
        try:
            ObjectEvidence.from_dict(bad)
        except ValueError:
            pass
        else:
            raise AssertionError(f"ObjectEvidence.from_dict({bad!r}) 应抛出 ValueError")

    graph = SceneGraphExample.from_dict({"identifier": "breakfast", "objects": [data, {"type": "plate"}]})
    assert graph.identifier == "breakfast" and len(graph.objects) == 2
    for bad in ({"objects": []}, {"identifier": "x", "objects": {}}, []):
        try:
            SceneGraphExample.from_dict(bad)
        except ValueError:
            pass
        else:
            raise AssertionError(f"SceneGraphExample.from_dict({bad!r}) 应抛出 ValueError")

    print("✓ 解析与校验")
    print()


def main():
    """运行所有测试。"""
    print("\n" + "=" * 60)
    print("坐标变换 / 证据测试套件")
    print("=" * 60 + "\n")

    try:
        test_pose_matrix()
        test_transform_evidence()
        test_static_transformer()
        test_evidence_parsing()

        print("=" * 60)
        print("✓ 所有测试通过!")
        print("=" * 60)
        return 0

    except Exception as e:
        print(f"\n✗ 测试失败: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
