"""
可视化 — 控制台结果表与 matplotlib 场景概率图。

功能:
  1. format_scene_table(): 按似然降序的文本结果表 (日志 / 终端输出)
  2. SceneProbabilityChart: 推理周期监听者
       - 推理模式 (targeting_help=False): 各场景归一化似然柱状图 + 先验
       - 引导模式 (targeting_help=True): 各场景学习到的前景类型分布
  3. object_marker_specs(): 观测物体的 RViz 标记描述 (球体 + 协方差椭球 + 文本),
     与 ROS 消息类型无关, 由节点转换为 MarkerArray

用法:
    chart = SceneProbabilityChart(output_path="scenes.png")
    cycle.add_listener(chart)
    ...
    chart.close()
"""

import logging
from typing import List, Optional, Tuple

import matplotlib.pyplot as plt
import numpy as np
from scipy.spatial.transform import Rotation

from .evidence import ObjectEvidence, SceneIdentifier
from .vocabulary import DEFAULT_TYPE

logger = logging.getLogger(__name__)

_COLORS = [
    (0.2, 0.6, 1.0),   # 蓝
    (1.0, 0.5, 0.0),   # 橙
    (0.2, 0.8, 0.2),   # 绿
    (1.0, 0.2, 0.2),   # 红
    (0.6, 0.2, 0.8),   # 紫
    (1.0, 0.8, 0.2),   # 黄
]
_UNMATCHED_COLOR = (0.6, 0.6, 0.6)


def format_scene_table(ranked: List[SceneIdentifier]) -> str:
    """场景结果 → 对齐的文本表。"""
    if not ranked:
        return "(no scenes)"
    headers = ("rank", "scene", "description", "type", "likelihood", "prior")
    rows = [
        (
            str(i + 1),
            s.scene_id,
            s.description,
            s.type or "-",
            f"{s.likelihood:.4f}",
            f"{s.priori:.4f}",
        )
        for i, s in enumerate(ranked)
    ]
    widths = [max(len(h), *(len(r[c]) for r in rows)) for c, h in enumerate(headers)]
    lines = ["  ".join(h.ljust(w) for h, w in zip(headers, widths))]
    lines.append("  ".join("-" * w for w in widths))
    for row in rows:
        lines.append("  ".join(v.ljust(w) for v, w in zip(row, widths)))
    return "\n".join(lines)


# ══════════════════════════════════════════════════════════════════
#  RViz 标记描述
# ══════════════════════════════════════════════════════════════════

def covariance_ellipsoid(covariance, scale: float = 1.0) -> Tuple[np.ndarray, np.ndarray]:
    """
    3x3 位置协方差 → 椭球 (直径, 朝向)。

    Args:
        covariance: 9 个数 (行优先) 或 3x3 矩阵
        scale: 直径 = 2 × scale × σ

    Returns:
        (axes (3,), quaternion [x, y, z, w])
    """
    cov = np.asarray(covariance, dtype=np.float64).reshape(3, 3)
    cov = 0.5 * (cov + cov.T)
    eigvals, eigvecs = np.linalg.eigh(cov)
    eigvals = np.clip(eigvals, 0.0, None)
    # 保证右手系
    if np.linalg.det(eigvecs) < 0:
        eigvecs[:, 2] *= -1.0
    axes = 2.0 * scale * np.sqrt(eigvals)
    quat = Rotation.from_matrix(eigvecs).as_quat()
    return axes, quat


def best_scene_for_type(object_type: str, snapshots: List[dict]) -> Optional[Tuple[dict, float]]:
    """学习分布中 P(type | scene) 最大的场景; 没有场景学到该类型时返回 None。"""
    best = None
    for snap in snapshots:
        p = snap.get("model_distribution", {}).get(object_type, 0.0)
        if p > 0.0 and (best is None or p > best[1]):
            best = (snap, p)
    return best


def object_marker_specs(
    evidence: List[ObjectEvidence],
    snapshots: List[dict],
    ranked: List[SceneIdentifier],
    visual_scale: float = 1.0,
    covariance_scale: float = 1.0,
    targeting_help: bool = False,
) -> List[dict]:
    """
    观测物体 → 标记描述列表。

    推理模式: 物体按最可能场景着色 (该场景没有学到此类型时为灰色)。
    引导模式: 物体按 P(type | scene) 最大的场景着色, 文本标出该场景与概率。

    Returns:
        [{"ns", "kind" ("sphere" | "text"), "position", "orientation",
          "scale", "color" (r, g, b, a), "text"}, ...]
    """
    scene_colors = {
        snap["scene_id"]: _COLORS[i % len(_COLORS)] for i, snap in enumerate(snapshots)
    }
    by_id = {snap["scene_id"]: snap for snap in snapshots}
    top = by_id.get(ranked[0].scene_id) if ranked else None
    size = 0.1 * visual_scale

    specs = []
    for obj in evidence:
        label = obj.type
        color = _UNMATCHED_COLOR
        if targeting_help:
            best = best_scene_for_type(obj.type, snapshots)
            if best is not None:
                snap, p = best
                color = scene_colors[snap["scene_id"]]
                label = f"{obj.type} -> {snap['description']} ({p:.2f})"
        elif top is not None and top.get("model_distribution", {}).get(obj.type, 0.0) > 0.0:
            color = scene_colors[top["scene_id"]]

        x, y, z = obj.pose.position
        specs.append({
            "ns": "objects",
            "kind": "sphere",
            "position": (x, y, z),
            "orientation": obj.pose.orientation,
            "scale": (size, size, size),
            "color": color + (0.9,),
            "text": "",
        })

        if obj.covariance is not None and covariance_scale > 0.0:
            axes, quat = covariance_ellipsoid(obj.covariance, covariance_scale)
            specs.append({
                "ns": "covariance",
                "kind": "sphere",
                "position": (x, y, z),
                "orientation": tuple(float(v) for v in quat),
                "scale": tuple(float(max(a, 1e-3)) for a in axes),
                "color": color + (0.3,),
                "text": "",
            })

        specs.append({
            "ns": "labels",
            "kind": "text",
            "position": (x, y, z + size),
            "orientation": (0.0, 0.0, 0.0, 1.0),
            "scale": (0.0, 0.0, size),
            "color": (1.0, 1.0, 1.0, 1.0),
            "text": label,
        })
    return specs


# ══════════════════════════════════════════════════════════════════
#  场景概率图
# ══════════════════════════════════════════════════════════════════

class SceneProbabilityChart:
    """
    场景概率图 — 每个推理周期刷新。

    Args:
        figsize: 图像大小 (width, height)
        output_path: 每次刷新后保存到该文件 (空 = 不保存)
        interactive: 是否以交互窗口显示
        targeting_help: 引导模式 (显示学习分布而非似然)
    """

    def __init__(
        self,
        figsize: Tuple[int, int] = (10, 6),
        output_path: str = "",
        interactive: bool = False,
        targeting_help: bool = False,
    ):
        self.figsize = figsize
        self.output_path = output_path
        self.interactive = interactive
        self.targeting_help = targeting_help
        self.fig = None
        self.ax = None
        self.update_count = 0

    def __call__(self, ranked: List[SceneIdentifier], snapshots: List[dict]) -> None:
        self.update(ranked, snapshots)

    def update(
        self,
        ranked: List[SceneIdentifier],
        snapshots: List[dict],
        targeting_help: Optional[bool] = None,
    ):
        """重绘图表。"""
        if targeting_help is None:
            targeting_help = self.targeting_help

        if self.fig is None:
            if self.interactive:
                plt.ion()
            self.fig, self.ax = plt.subplots(figsize=self.figsize)
        self.ax.clear()

        if targeting_help:
            self._plot_distributions(snapshots)
        else:
            self._plot_likelihoods(ranked)

        self.fig.tight_layout()
        self.update_count += 1

        if self.output_path:
            self.save(self.output_path)
        if self.interactive:
            self.fig.canvas.draw_idle()
            plt.pause(0.001)
        return self.fig

    def _plot_likelihoods(self, ranked: List[SceneIdentifier]):
        labels = [s.description for s in ranked]
        likelihoods = [s.likelihood for s in ranked]
        priors = [s.priori for s in ranked]

        x_pos = np.arange(len(labels))
        width = 0.4
        self.ax.bar(x_pos - width / 2, likelihoods, width, label='Likelihood', alpha=0.8)
        self.ax.bar(x_pos + width / 2, priors, width, label='Prior', alpha=0.5)
        self.ax.set_xticks(x_pos)
        self.ax.set_xticklabels(labels, rotation=45, ha='right')
        self.ax.set_ylim(0.0, 1.0)
        self.ax.set_ylabel('Probability')
        self.ax.set_title('Scene Recognition')
        if labels:
            self.ax.legend()
        self.ax.grid(True, alpha=0.3, axis='y')

    def _plot_distributions(self, snapshots: List[dict]):
        # 所有场景的类型并集作为 x 轴
        types = sorted({
            t for snap in snapshots for t in snap.get("model_distribution", {})
            if t != DEFAULT_TYPE
        })
        x_pos = np.arange(len(types))
        n = max(len(snapshots), 1)
        width = 0.8 / n

        for i, snap in enumerate(snapshots):
            dist = snap.get("model_distribution", {})
            values = [dist.get(t, 0.0) for t in types]
            self.ax.bar(
                x_pos + (i - (n - 1) / 2) * width,
                values,
                width,
                label=snap.get("description", snap.get("scene_id", "")),
                alpha=0.8,
            )

        self.ax.set_xticks(x_pos)
        self.ax.set_xticklabels(types, rotation=45, ha='right')
        self.ax.set_ylim(0.0, 1.0)
        self.ax.set_ylabel('P(type | scene)')
        self.ax.set_title('Learned Object Distributions')
        if snapshots:
            self.ax.legend()
        self.ax.grid(True, alpha=0.3, axis='y')

    def save(self, filepath: str, dpi: int = 100):
        """保存图像。"""
        if self.fig is not None:
            self.fig.savefig(filepath, dpi=dpi, bbox_inches='tight')
            logger.debug(f"Saved scene chart to {filepath}")
        else:
            logger.warning("No figure to save")

    def close(self):
        """关闭图像。"""
        if self.fig is not None:
            plt.close(self.fig)
            self.fig = None
            self.ax = None
