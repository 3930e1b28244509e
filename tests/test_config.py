#!/usr/bin/env python3
"""
配置校验测试脚本

测试内容:
1. 完整配置通过校验, 可选项取默认值
2. 缺少必需项 / 类型错误 / 越界 / 非法枚举 → 全部列出
3. archive_paths: 字符串或列表
4. YAML 文件加载 (含 ros__parameters 格式) 与命令行覆盖
5. 离线命令行 --check-config
"""

import sys
import tempfile
from pathlib import Path

import yaml

sys.path.insert(0, str(Path(__file__).parent.parent))

from scene_recognition.config import ConfigError, EngineConfig, load_config, validate_config
from scene_recognition.offline_runner import main as offline_main


def base_config(**overrides) -> dict:
    cfg = {
        "plot_enabled": False,
        "object_topic": "/objects",
        "scene_graph_topic": "/scene_graphs",
        "model_path": "scene_model.json",
        "base_frame": "map",
        "visual_scale": 1.0,
        "covariance_scale": 2,
        "targeting_help": True,
        "inference_algorithm": "power_set",
    }
    cfg.update(overrides)
    return cfg


def test_valid_config():
    """测试合法配置。"""
    print("=" * 60)
    print("测试 1: 合法配置")
    print("=" * 60)

    errors, warnings = validate_config(base_config())
    assert errors == [] and warnings == []

    config = EngineConfig.from_dict(base_config(inference_algorithm="power-set"))
    assert config.inference_algorithm == "power_set"
    assert config.covariance_scale == 2.0 and isinstance(config.covariance_scale, float)
    assert config.archive_paths == []
    assert config.update_rate == 1.0
    assert config.queue_overflow_policy == "drop_oldest"
    assert config.fallback_to_default
    assert not EngineConfig.from_dict(base_config(unknown_type_policy="ignore")).fallback_to_default

    print(f"  {config}")
    print("✓ 默认值填充")
    print()


def test_invalid_config():
    """测试非法配置。"""
    print("=" * 60)
    print("测试 2: 非法配置")
    print("=" * 60)

    cfg = base_config(
        visual_scale=-1.0,
        targeting_help="yes",
        inference_algorithm="bayes",
        update_rate=0.0,
        queue_overflow_policy="block",
        evidence_queue_size=True,
        archive_paths=["a.jsonl", 3],
        static_transforms={"camera_link": {"translation": [0, 0]}},
        plot_enabled_typo=True,
    )
    del cfg["model_path"]

    errors, warnings = validate_config(cfg)
    for e in errors:
        print(f"  ERROR  {e}")
    assert len(errors) == 9
    assert any("model_path" in e for e in errors)
    assert any("bayes" in e for e in errors)
    assert any("evidence_queue_size" in e for e in errors), "bool 不是整数"
    assert warnings == ["plot_enabled_typo is not a recognized option (typo?)"]

    try:
        EngineConfig.from_dict(cfg)
    except ConfigError as e:
        assert len(e.errors) == 9
        assert "model_path" in str(e)
    else:
        raise AssertionError("非法配置应抛出 ConfigError")

    errors, _ = validate_config(["not", "a", "mapping"])
    assert len(errors) == 1

    print("✓ 所有问题一次列出")
    print()


def test_archive_paths():
    """测试 archive_paths 两种写法。"""
    print("=" * 60)
    print("测试 3: archive_paths")
    print("=" * 60)

    assert EngineConfig.from_dict(base_config(archive_paths="a.jsonl")).archive_paths == ["a.jsonl"]
    assert EngineConfig.from_dict(base_config(archive_paths="")).archive_paths == []
    paths = ["a.jsonl", "b.jsonl"]
    assert EngineConfig.from_dict(base_config(archive_paths=paths)).archive_paths == paths

    print("✓ 字符串 / 列表")
    print()


def test_load_yaml():
    """测试 YAML 加载。"""
    print("=" * 60)
    print("测试 4: YAML 加载")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmpdir:
        plain = Path(tmpdir) / "plain.yaml"
        plain.write_text(yaml.safe_dump(base_config()), encoding="utf-8")
        assert load_config(str(plain)).base_frame == "map"

        ros = Path(tmpdir) / "ros.yaml"
        ros.write_text(
            yaml.safe_dump({"scene_inference_node": {"ros__parameters": base_config()}}),
            encoding="utf-8",
        )
        config = load_config(str(ros), {"model_path": "other.json", "archive_paths": None})
        assert config.model_path == "other.json"
        assert config.archive_paths == []

        broken = Path(tmpdir) / "broken.yaml"
        broken.write_text("plot_enabled: [unclosed", encoding="utf-8")
        for path in (broken, Path(tmpdir) / "missing.yaml"):
            try:
                load_config(str(path))
            except ConfigError as e:
                print(f"  {e.errors[0][:60]}")
            else:
                raise AssertionError(f"{path.name} 应抛出 ConfigError")

        scalar = Path(tmpdir) / "scalar.yaml"
        scalar.write_text("42\n", encoding="utf-8")
        try:
            load_config(str(scalar))
        except ConfigError:
            pass
        else:
            raise AssertionError("非映射 YAML 应抛出 ConfigError")

    print("✓ YAML / ros__parameters / 覆盖")
    print()


def test_offline_check_config():
    """测试离线命令行配置检查。"""
    print("=" * 60)
    print("测试 5: --check-config")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmpdir:
        good = Path(tmpdir) / "good.yaml"
        missing_model = str(Path(tmpdir) / "missing_model.json")
        good.write_text(yaml.safe_dump(base_config(model_path=missing_model)), encoding="utf-8")
        bad = Path(tmpdir) / "bad.yaml"
        bad.write_text(yaml.safe_dump(base_config(visual_scale="big")), encoding="utf-8")

        assert offline_main(["--config", str(good), "--check-config"]) == 0
        assert offline_main(["--config", str(bad), "--check-config"]) == 1
        # 模型文件不存在 → ModelError → 退出码 1
        assert offline_main(["--config", str(good)]) == 1

    print("✓ 退出码正确")
    print()


def main():
    """运行所有测试。"""
    print("\n" + "=" * 60)
    print("配置校验测试套件")
    print("=" * 60 + "\n")

    try:
        test_valid_config()
        test_invalid_config()
        test_archive_paths()
        test_load_yaml()
        test_offline_check_config()

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
