"""
场景识别节点

输出:
  /scene_probabilities — 排序后的场景结果 (JSON over std_msgs/String)
  /scene_markers       — 观测物体 MarkerArray (RViz)

参数:
  params_file - 参数文件 (默认 share/scene_recognition/config/scene_inference.yaml)
  model_path  - 场景模型文件, 优先读取环境变量 SCENE_MODEL_PATH
  batch_mode  - true: 读入 archive_paths 后执行一次批处理周期并退出
"""

import os

from ament_index_python.packages import get_package_share_directory
from launch import LaunchDescription
from launch.actions import DeclareLaunchArgument
from launch.substitutions import EnvironmentVariable, LaunchConfiguration
from launch_ros.actions import Node


def generate_launch_description():
    share_dir = get_package_share_directory("scene_recognition")

    # ---- 参数声明 ----
    params_file_arg = DeclareLaunchArgument(
        "params_file",
        default_value=os.path.join(share_dir, "config", "scene_inference.yaml"),
        description="scene_inference_node 参数文件",
    )
    model_path_arg = DeclareLaunchArgument(
        "model_path",
        default_value=EnvironmentVariable(
            "SCENE_MODEL_PATH",
            default_value=os.path.join(share_dir, "config", "example_scene_model.json"),
        ),
        description="场景模型文件, 可通过环境变量 SCENE_MODEL_PATH 设置",
    )
    batch_mode_arg = DeclareLaunchArgument(
        "batch_mode",
        default_value="false",
        description="批处理模式 (读入归档后退出)",
    )

    scene_inference_node = Node(
        package="scene_recognition",
        executable="scene_inference_node",
        name="scene_inference_node",
        output="screen",
        parameters=[
            LaunchConfiguration("params_file"),
            {
                "model_path": LaunchConfiguration("model_path"),
                "batch_mode": LaunchConfiguration("batch_mode"),
            },
        ],
    )

    return LaunchDescription([
        params_file_arg,
        model_path_arg,
        batch_mode_arg,
        scene_inference_node,
    ])
