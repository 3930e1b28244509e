"""
scene_inference_node — 场景识别 ROS2 节点

管道:
  1. 订阅物体观测 (object_topic) 与场景图样本 (scene_graph_topic),
     均为 JSON over std_msgs/String, 回调只解析并入队
  2. 定时器 (update_rate Hz) 执行 InferenceCycle.tick():
     TF2 变换到 base_frame → 更新场景 → 归一化似然 → 学习场景图
  3. 发布:
       scene_probabilities — 排序后的场景结果 (JSON)
       scene_markers       — 观测物体 MarkerArray (RViz)
  4. 可选: matplotlib 场景概率图 (plot_enabled)

启动时先读入 archive_paths 中的归档;
batch_mode=True 时执行一次批处理周期后保存模型并退出。

参数 (必需): plot_enabled, object_topic, scene_graph_topic, model_path,
             base_frame, visual_scale, covariance_scale, targeting_help,
             inference_algorithm
"""

import json
from typing import List

import numpy as np
import rclpy
from rclpy.duration import Duration
from rclpy.logging import get_logger
from rclpy.time import Time
from rclpy.node import Node
from rcl_interfaces.msg import ParameterDescriptor

from std_msgs.msg import String
from visualization_msgs.msg import Marker, MarkerArray

import tf2_ros
from tf2_ros.buffer import Buffer
from tf2_ros.transform_listener import TransformListener

from .config import SCHEMA, ConfigError, EngineConfig
from .evidence import ObjectEvidence, SceneGraphExample, SceneIdentifier
from .inference_cycle import InferenceContext, InferenceCycle
from .scene_model import ModelError
from .transforms import CoordinateTransformer, TransformError
from .visualization import SceneProbabilityChart, object_marker_specs

# ROS 参数无法表达嵌套映射, 节点中 static_transforms 由 tf2 取代
_NODE_PARAMETERS = [key for key in SCHEMA if key != "static_transforms"]


class Tf2Transformer(CoordinateTransformer):
    """基于 tf2 Buffer 的坐标变换。"""

    def __init__(self, node: Node, base_frame: str, timeout_sec: float = 0.1):
        super().__init__(base_frame)
        self._node = node
        self._timeout = Duration(seconds=timeout_sec)
        self._tf_buffer = Buffer()
        self._tf_listener = TransformListener(self._tf_buffer, node)

    def lookup(self, frame_id: str, stamp: float) -> np.ndarray:
        # stamp 为 0 时取最新可用变换
        when = Time(nanoseconds=int(stamp * 1e9)) if stamp > 0 else Time()
        try:
            transform = self._tf_buffer.lookup_transform(
                self.base_frame, frame_id, when, timeout=self._timeout,
            )
        except (tf2_ros.LookupException, tf2_ros.ConnectivityException,
                tf2_ros.ExtrapolationException) as e:
            raise TransformError(f"TF2 lookup {frame_id}→{self.base_frame} failed: {e}") from e

        # TransformStamped → 4x4 矩阵
        t = transform.transform.translation
        q = transform.transform.rotation
        tf_mat = np.eye(4)
        tf_mat[:3, :3] = self._quat_to_rotation(q.x, q.y, q.z, q.w)
        tf_mat[:3, 3] = [t.x, t.y, t.z]
        return tf_mat

    @staticmethod
    def _quat_to_rotation(x, y, z, w) -> np.ndarray:
        """四元数 → 3x3 旋转矩阵。"""
        return np.array([
            [1 - 2*(y*y + z*z),     2*(x*y - z*w),     2*(x*z + y*w)],
            [    2*(x*y + z*w), 1 - 2*(x*x + z*z),     2*(y*z - x*w)],
            [    2*(x*z - y*w),     2*(y*z + x*w), 1 - 2*(x*x + y*y)],
        ])


class SceneInferenceNode(Node):
    """场景识别 ROS2 节点。"""

    def __init__(self):
        super().__init__("scene_inference_node")

        # ── 参数声明 ──
        # 必需参数不给默认值 (动态类型, 未设置时为 None), 由 SCHEMA 统一校验
        dynamic = ParameterDescriptor(dynamic_typing=True)
        for key in _NODE_PARAMETERS:
            spec = SCHEMA[key]
            default = None if spec.get("required") or key == "archive_paths" else spec.get("default")
            self.declare_parameter(key, default, dynamic)

        raw = {key: self.get_parameter(key).value for key in _NODE_PARAMETERS}
        self.config = EngineConfig.from_dict(raw)

        # ── 推理上下文 ──
        self._transformer = Tf2Transformer(
            self, self.config.base_frame, self.config.tf_timeout_sec
        )
        context = InferenceContext.from_config(self.config, self._transformer)
        self.cycle = InferenceCycle(context)
        self.cycle.add_listener(self._publish_results)

        self._chart = None
        if self.config.plot_enabled:
            self._chart = SceneProbabilityChart(
                output_path=self.config.plot_path,
                interactive=not self.config.plot_path,
                targeting_help=self.config.targeting_help,
            )
            self.cycle.add_listener(self._chart)

        # ── 订阅 ──
        self._sub_objects = self.create_subscription(
            String, self.config.object_topic, self._object_callback, 100,
        )
        self._sub_scene_graphs = self.create_subscription(
            String, self.config.scene_graph_topic, self._scene_graph_callback, 10,
        )

        # ── 发布 ──
        self._pub_results = self.create_publisher(String, "scene_probabilities", 10)
        self._pub_markers = self.create_publisher(MarkerArray, "scene_markers", 10)

        # ── 归档 ──
        for path in self.config.archive_paths:
            self.cycle.ingest_archive(path)

        self._timer = None
        if not self.config.batch_mode:
            self._timer = self.create_timer(1.0 / self.config.update_rate, self._on_timer)

        self.get_logger().info(
            f"SceneInferenceNode started: {len(self.cycle.model)} scenes, "
            f"algorithm={self.config.inference_algorithm}, "
            f"objects='{self.config.object_topic}', "
            f"scene_graphs='{self.config.scene_graph_topic}', "
            f"base_frame={self.config.base_frame}, "
            f"targeting_help={self.config.targeting_help}"
        )

    # ================================================================
    #  Callbacks
    # ================================================================

    def _object_callback(self, msg: String):
        try:
            evidence = ObjectEvidence.from_dict(json.loads(msg.data))
        except (json.JSONDecodeError, ValueError) as e:
            self.get_logger().warn(f"Ignoring malformed object message: {e}")
            return
        self.cycle.enqueue_evidence(evidence)

    def _scene_graph_callback(self, msg: String):
        try:
            example = SceneGraphExample.from_dict(json.loads(msg.data))
        except (json.JSONDecodeError, ValueError) as e:
            self.get_logger().warn(f"Ignoring malformed scene graph message: {e}")
            return
        self.cycle.enqueue_scene_graph(example)

    def _on_timer(self):
        self.cycle.tick()

    # ================================================================
    #  发布
    # ================================================================

    def _publish_results(self, ranked: List[SceneIdentifier], snapshots: List[dict]):
        msg = String()
        msg.data = json.dumps(
            {
                "stamp": self.get_clock().now().nanoseconds * 1e-9,
                "scenes": [s.to_dict() for s in ranked],
            },
            ensure_ascii=False,
        )
        self._pub_results.publish(msg)
        self._publish_markers(ranked, snapshots)

    def _publish_markers(self, ranked: List[SceneIdentifier], snapshots: List[dict]):
        specs = object_marker_specs(
            self.cycle.observed_evidence,
            snapshots,
            ranked,
            visual_scale=self.config.visual_scale,
            covariance_scale=self.config.covariance_scale,
            targeting_help=self.config.targeting_help,
        )

        markers = MarkerArray()
        stamp = self.get_clock().now().to_msg()

        clear = Marker()
        clear.header.frame_id = self.config.base_frame
        clear.header.stamp = stamp
        clear.action = Marker.DELETEALL
        markers.markers.append(clear)

        for i, spec in enumerate(specs):
            marker = Marker()
            marker.header.frame_id = self.config.base_frame
            marker.header.stamp = stamp
            marker.ns = spec["ns"]
            marker.id = i
            marker.type = Marker.TEXT_VIEW_FACING if spec["kind"] == "text" else Marker.SPHERE
            marker.action = Marker.ADD
            marker.pose.position.x, marker.pose.position.y, marker.pose.position.z = (
                float(v) for v in spec["position"]
            )
            (marker.pose.orientation.x, marker.pose.orientation.y,
             marker.pose.orientation.z, marker.pose.orientation.w) = (
                float(v) for v in spec["orientation"]
            )
            marker.scale.x, marker.scale.y, marker.scale.z = (float(v) for v in spec["scale"])
            marker.color.r, marker.color.g, marker.color.b, marker.color.a = (
                float(v) for v in spec["color"]
            )
            marker.text = spec["text"]
            markers.markers.append(marker)

        self._pub_markers.publish(markers)

    # ================================================================
    #  批处理 / 生命周期
    # ================================================================

    def run_batch(self) -> List[SceneIdentifier]:
        """对启动时读入的归档执行一次学习后重算的周期。"""
        ranked = self.cycle.tick(recompute_after_learning=True)
        self.save_model()
        return ranked

    def save_model(self):
        if self.config.output_model_path:
            self.cycle.model.save_to_file(self.config.output_model_path)
            self.get_logger().info(f"Scene model saved to {self.config.output_model_path}")

    def destroy_node(self):
        """清理资源。"""
        if self._chart is not None:
            self._chart.close()
        super().destroy_node()


def main(args=None):
    rclpy.init(args=args)
    try:
        node = SceneInferenceNode()
    except (ConfigError, ModelError) as e:
        get_logger("scene_inference_node").fatal(str(e))
        rclpy.shutdown()
        raise SystemExit(1)

    try:
        if node.config.batch_mode:
            node.run_batch()
        else:
            rclpy.spin(node)
            node.save_model()
    except KeyboardInterrupt:
        node.save_model()
    finally:
        node.destroy_node()
        rclpy.shutdown()


if __name__ == "__main__":
    main()
