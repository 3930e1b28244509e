"""
scene_recognition — 概率场景识别 (前景概率表 + 幂集背景推理)。

核心模型不依赖 ROS; ROS 2 节点见 scene_inference_node,
离线批处理见 offline_runner。
"""

__version__ = "0.1.0"
