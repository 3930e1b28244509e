#!/usr/bin/env python3
"""
可视化测试脚本

测试内容:
1. 控制台结果表
2. 场景概率图 (推理模式 / 引导模式)
3. 协方差椭球
4. RViz 标记描述
"""

import sys
import tempfile
from pathlib import Path

import matplotlib
matplotlib.use('Agg')  # 使用非交互式后端

import numpy as np

sys.path.insert(0, str(Path(__file__).parent.parent))

from scene_recognition.evidence import ObjectEvidence, Pose, SceneGraphExample, SceneIdentifier
from scene_recognition.scene import Scene
from scene_recognition.scene_model import SceneModel
from scene_recognition.visualization import (
    SceneProbabilityChart,
    best_scene_for_type,
    covariance_ellipsoid,
    format_scene_table,
    object_marker_specs,
)


def create_test_model():
    """早餐 / 办公两个场景, 观测到一个杯子。"""
    model = SceneModel([
        Scene("breakfast", description="Breakfast table", scene_type="kitchen", prior=0.5),
        Scene("office", description="Office desk", scene_type="office", prior=0.5),
    ])
    model.integrate_scene_graph(SceneGraphExample(
        "breakfast", (ObjectEvidence("cup"), ObjectEvidence("plate"))
    ))
    model.integrate_scene_graph(SceneGraphExample(
        "office", (ObjectEvidence("keyboard"), ObjectEvidence("cup"), ObjectEvidence("monitor"))
    ))
    model.integrate_evidence(ObjectEvidence("cup", observed_id="c0"))
    return model


def test_scene_table():
    """测试结果表。"""
    print("=" * 60)
    print("测试 1: 控制台结果表")
    print("=" * 60)

    ranked = create_test_model().recompute()
    table = format_scene_table(ranked)
    print(table)

    lines = table.splitlines()
    assert len(lines) == 2 + len(ranked)
    assert lines[0].split()[:2] == ["rank", "scene"]
    assert lines[2].split()[1] == "breakfast"
    assert "0.6000" in lines[2]
    assert format_scene_table([]) == "(no scenes)"

    print("✓ 结果表格式正确")
    print()


def test_probability_chart():
    """测试场景概率图。"""
    print("=" * 60)
    print("测试 2: 场景概率图")
    print("=" * 60)

    model = create_test_model()
    ranked = model.recompute()
    snapshots = model.table_snapshots()

    with tempfile.TemporaryDirectory() as tmpdir:
        output_path = Path(tmpdir) / "scenes.png"
        chart = SceneProbabilityChart(output_path=str(output_path))
        chart(ranked, snapshots)
        assert output_path.exists()
        assert chart.update_count == 1

        labels = [t.get_text() for t in chart.ax.get_xticklabels()]
        assert labels == ["Breakfast table", "Office desk"]

        chart.update(ranked, snapshots, targeting_help=True)
        labels = [t.get_text() for t in chart.ax.get_xticklabels()]
        assert labels == ["cup", "keyboard", "monitor", "plate"], "引导模式 x 轴为类型并集"
        assert chart.update_count == 2

        chart.close()
        assert chart.fig is None
        chart.save(str(output_path))  # 无图像时只记录警告

    print("✓ 推理模式 / 引导模式")
    print()


def test_covariance_ellipsoid():
    """测试协方差椭球。"""
    print("=" * 60)
    print("测试 3: 协方差椭球")
    print("=" * 60)

    axes, quat = covariance_ellipsoid(np.diag([4.0, 1.0, 0.25]).ravel(), scale=1.0)
    print(f"  axes={axes}, quat={quat}")
    assert np.allclose(sorted(axes), [1.0, 2.0, 4.0])
    assert abs(np.linalg.norm(quat) - 1.0) < 1e-9

    axes, _ = covariance_ellipsoid(np.eye(3) * 0.01, scale=3.0)
    assert np.allclose(axes, 0.6)

    # 数值误差导致的微小负特征值被截断
    axes, _ = covariance_ellipsoid(np.diag([1.0, 1.0, -1e-12]))
    assert np.all(axes >= 0.0)

    print("✓ 直径 = 2 × scale × σ")
    print()


def test_marker_specs():
    """测试 RViz 标记描述。"""
    print("=" * 60)
    print("测试 4: 标记描述")
    print("=" * 60)

    model = create_test_model()
    ranked = model.recompute()
    snapshots = model.table_snapshots()

    evidence = [
        ObjectEvidence(
            "cup", observed_id="c0", frame_id="map",
            pose=Pose(position=(1.0, 2.0, 0.8)),
            covariance=tuple(np.diag([0.04, 0.01, 0.01]).ravel()),
        ),
        ObjectEvidence("teapot", observed_id="t0", frame_id="map"),
    ]

    specs = object_marker_specs(evidence, snapshots, ranked, visual_scale=2.0, covariance_scale=1.0)
    namespaces = [s["ns"] for s in specs]
    print(f"  {namespaces}")
    assert namespaces == ["objects", "covariance", "labels", "objects", "labels"]
    assert specs[0]["scale"] == (0.2, 0.2, 0.2), "球体大小随 visual_scale"
    assert specs[0]["color"][:3] != specs[3]["color"][:3], "未学到的类型为灰色"
    assert abs(specs[2]["position"][2] - 1.0) < 1e-9
    assert specs[2]["text"] == "cup"

    no_cov = object_marker_specs(evidence, snapshots, ranked, covariance_scale=0.0)
    assert "covariance" not in [s["ns"] for s in no_cov]

    best = best_scene_for_type("cup", snapshots)
    assert best[0]["scene_id"] == "breakfast" and abs(best[1] - 0.5) < 1e-9
    assert best_scene_for_type("teapot", snapshots) is None

    targeting = object_marker_specs(evidence, snapshots, ranked, targeting_help=True)
    labels = [s["text"] for s in targeting if s["kind"] == "text"]
    print(f"  {labels}")
    assert labels == ["cup -> Breakfast table (0.50)", "teapot"]

    assert object_marker_specs([], snapshots, ranked) == []
    assert len(object_marker_specs(evidence, [], [])) == 5

    print("✓ 标记描述正确")
    print()


def main():
    """运行所有测试。"""
    print("\n" + "=" * 60)
    print("可视化测试套件")
    print("=" * 60 + "\n")

    try:
        test_scene_table()
        test_probability_chart()
        test_covariance_ellipsoid()
        test_marker_specs()

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
