"""
推理引擎配置 — 加载 YAML、按 SCHEMA 校验、构造 EngineConfig。

在构造任何组件之前一次性校验全部选项, 缺少必需项或类型错误时
抛出 ConfigError (列出所有问题), 进程不进入推理循环。

用法:
    config = load_config("config/scene_inference.yaml")
    print(config.model_path, config.archive_paths)

也接受 ROS 2 参数文件格式:
    scene_inference_node:
      ros__parameters:
        plot_enabled: false
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import yaml

from .background_base import BACKGROUND_KINDS, canonical_kind

logger = logging.getLogger(__name__)

_NUMBER = (int, float)

# ── Schema 定义 ─────────────────────────────────────────────────
# 每个 key 的期望类型、是否必需、可选值范围 (min, max) 或枚举 (choices)。
SCHEMA: dict[str, dict] = {
    # 必需
    "plot_enabled":        {"type": bool, "required": True},
    "object_topic":        {"type": str,  "required": True},
    "scene_graph_topic":   {"type": str,  "required": True},
    "model_path":          {"type": str,  "required": True},
    "base_frame":          {"type": str,  "required": True},
    "visual_scale":        {"type": _NUMBER, "required": True, "min": 0.0},
    "covariance_scale":    {"type": _NUMBER, "required": True, "min": 0.0},
    "targeting_help":      {"type": bool, "required": True},
    "inference_algorithm": {"type": str,  "required": True, "choices": BACKGROUND_KINDS},
    # 可选
    "archive_paths":          {"type": (str, list), "required": False, "default": []},
    "update_rate":            {"type": _NUMBER, "required": False, "min": 0.01, "max": 1000.0, "default": 1.0},
    "evidence_queue_size":    {"type": int, "required": False, "min": 0, "default": 1000},
    "scene_graph_queue_size": {"type": int, "required": False, "min": 0, "default": 100},
    "queue_overflow_policy":  {"type": str, "required": False, "choices": ("drop_oldest", "drop_newest"), "default": "drop_oldest"},
    "unknown_type_policy":    {"type": str, "required": False, "choices": ("default_bucket", "ignore"), "default": "default_bucket"},
    "batch_mode":             {"type": bool, "required": False, "default": False},
    "output_model_path":      {"type": str, "required": False, "default": ""},
    "plot_path":              {"type": str, "required": False, "default": ""},
    "tf_timeout_sec":         {"type": _NUMBER, "required": False, "min": 0.0, "max": 10.0, "default": 0.1},
    "static_transforms":      {"type": dict, "required": False, "default": {}},
}


class ConfigError(Exception):
    """配置缺失或非法 (启动期致命错误)。"""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__("Invalid configuration:\n  " + "\n  ".join(self.errors))


def _type_name(expected) -> str:
    if isinstance(expected, tuple):
        return " | ".join(t.__name__ for t in expected)
    return expected.__name__


def _check_type(value: Any, expected) -> bool:
    # bool 是 int 的子类, 数值项不接受 bool
    if isinstance(value, bool) and bool not in (expected if isinstance(expected, tuple) else (expected,)):
        return False
    return isinstance(value, expected)


def _check_static_transforms(value: dict) -> List[str]:
    errors = []
    for frame_id, spec in value.items():
        if not isinstance(spec, dict):
            errors.append(f"static_transforms.{frame_id} should be a mapping")
            continue
        for key, size in (("translation", 3), ("rotation", 4)):
            entry = spec.get(key)
            if entry is None:
                continue
            if (
                not isinstance(entry, list)
                or len(entry) != size
                or not all(_check_type(v, _NUMBER) for v in entry)
            ):
                errors.append(f"static_transforms.{frame_id}.{key} should be a list of {size} numbers")
    return errors


def validate_config(cfg: dict) -> Tuple[List[str], List[str]]:
    """校验配置字典, 返回 (errors, warnings)。"""
    errors: List[str] = []
    warnings: List[str] = []

    if not isinstance(cfg, dict):
        return [f"configuration should be a mapping, got {type(cfg).__name__}"], warnings

    for key in cfg:
        if key not in SCHEMA:
            warnings.append(f"{key} is not a recognized option (typo?)")

    for key, spec in SCHEMA.items():
        value = cfg.get(key)

        if value is None:
            if spec.get("required"):
                errors.append(f"{key} is required but missing")
            continue

        expected_type = spec["type"]
        if not _check_type(value, expected_type):
            errors.append(
                f"{key}: expected {_type_name(expected_type)}, "
                f"got {type(value).__name__} ({value!r})"
            )
            continue

        if "min" in spec and value < spec["min"]:
            errors.append(f"{key} = {value} < min({spec['min']})")
        if "max" in spec and value > spec["max"]:
            errors.append(f"{key} = {value} > max({spec['max']})")

        if "choices" in spec:
            if key == "inference_algorithm":
                try:
                    canonical_kind(value)
                except ValueError as e:
                    errors.append(str(e))
            elif value not in spec["choices"]:
                errors.append(f"{key} = {value!r} not in {list(spec['choices'])}")

    archive_paths = cfg.get("archive_paths")
    if isinstance(archive_paths, list):
        for i, path in enumerate(archive_paths):
            if not isinstance(path, str):
                errors.append(f"archive_paths[{i}] is not a string ({path!r})")

    if isinstance(cfg.get("static_transforms"), dict):
        errors.extend(_check_static_transforms(cfg["static_transforms"]))

    return errors, warnings


@dataclass
class EngineConfig:
    """校验通过的推理引擎配置。"""
    plot_enabled: bool
    object_topic: str
    scene_graph_topic: str
    model_path: str
    base_frame: str
    visual_scale: float
    covariance_scale: float
    targeting_help: bool
    inference_algorithm: str
    archive_paths: List[str] = field(default_factory=list)
    update_rate: float = 1.0
    evidence_queue_size: int = 1000
    scene_graph_queue_size: int = 100
    queue_overflow_policy: str = "drop_oldest"
    unknown_type_policy: str = "default_bucket"
    batch_mode: bool = False
    output_model_path: str = ""
    plot_path: str = ""
    tf_timeout_sec: float = 0.1
    static_transforms: Dict[str, dict] = field(default_factory=dict)

    @property
    def fallback_to_default(self) -> bool:
        return self.unknown_type_policy == "default_bucket"

    @classmethod
    def from_dict(cls, cfg: dict) -> "EngineConfig":
        """
        校验并构造配置。

        Raises:
            ConfigError: 存在任何 ERROR
        """
        errors, warnings = validate_config(cfg)
        for warning in warnings:
            logger.warning(warning)
        if errors:
            raise ConfigError(errors)

        values: Dict[str, Any] = {}
        for key, spec in SCHEMA.items():
            value = cfg.get(key)
            if value is None:
                value = spec.get("default")
            values[key] = value

        # 单个字符串或字符串列表均可
        if isinstance(values["archive_paths"], str):
            values["archive_paths"] = [values["archive_paths"]] if values["archive_paths"] else []
        values["archive_paths"] = list(values["archive_paths"])
        values["static_transforms"] = dict(values["static_transforms"])
        values["inference_algorithm"] = canonical_kind(values["inference_algorithm"])
        values["visual_scale"] = float(values["visual_scale"])
        values["covariance_scale"] = float(values["covariance_scale"])
        values["update_rate"] = float(values["update_rate"])
        values["tf_timeout_sec"] = float(values["tf_timeout_sec"])
        return cls(**values)


def _unwrap_ros_parameters(data: dict) -> dict:
    """ROS 2 参数文件: {node: {ros__parameters: {...}}} → {...}。"""
    if len(data) == 1:
        (section,) = data.values()
        if isinstance(section, dict) and "ros__parameters" in section:
            return section["ros__parameters"] or {}
    return data


def load_config(path: str, overrides: Optional[dict] = None) -> EngineConfig:
    """
    读取 YAML 配置并校验。

    Args:
        path: YAML 文件路径
        overrides: 覆盖项 (如命令行参数), 值为 None 的项忽略

    Raises:
        ConfigError: 文件无法读取或配置非法
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError([f"cannot read config file {path}: {e}"]) from e
    except yaml.YAMLError as e:
        raise ConfigError([f"malformed YAML in {path}: {e}"]) from e

    if not isinstance(data, dict):
        raise ConfigError([f"config file {path} should contain a mapping"])

    data = dict(_unwrap_ros_parameters(data))
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return EngineConfig.from_dict(data)
