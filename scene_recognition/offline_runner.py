"""
scene_recognition_offline — 离线批处理 (无需 ROS 运行时)

读取配置与归档 (JSON Lines), 执行一次学习后重算的推理周期,
打印场景结果表, 可选保存更新后的模型和概率图。

用法:
    scene_recognition_offline --config config/scene_inference.yaml \\
        --archive session.jsonl --save-model learned_model.json
    scene_recognition_offline --config config/scene_inference.yaml --check-config
"""

import argparse
import logging
import sys

from .config import ConfigError, load_config
from .inference_cycle import InferenceContext, InferenceCycle
from .scene_model import ModelError, UnknownSceneError
from .transforms import StaticTransformer
from .visualization import SceneProbabilityChart, format_scene_table

logger = logging.getLogger("scene_recognition.offline")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Offline probabilistic scene recognition")
    parser.add_argument("--config", required=True, help="Path to the engine YAML config")
    parser.add_argument(
        "--archive", action="append", default=None,
        help="Archive to replay (repeatable; overrides archive_paths)",
    )
    parser.add_argument("--model", default=None, help="Scene model file (overrides model_path)")
    parser.add_argument("--save-model", default=None, help="Write the updated model to this file")
    parser.add_argument("--plot-output", default=None, help="Save a probability chart to this file")
    parser.add_argument("--check-config", action="store_true", help="Validate the config and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    overrides = {
        "model_path": args.model,
        "archive_paths": args.archive,
        "output_model_path": args.save_model,
        "plot_path": args.plot_output,
    }
    try:
        config = load_config(args.config, overrides)
    except ConfigError as e:
        logger.error(str(e))
        return 1

    if args.check_config:
        print(f"  OK  {args.config} is valid")
        return 0

    transformer = StaticTransformer.from_config(config.base_frame, config.static_transforms)
    try:
        context = InferenceContext.from_config(config, transformer)
    except ModelError as e:
        logger.error(str(e))
        return 1

    cycle = InferenceCycle(context)
    chart = None
    if config.plot_enabled or config.plot_path:
        chart = SceneProbabilityChart(
            output_path=config.plot_path,
            interactive=not config.plot_path,
            targeting_help=config.targeting_help,
        )
        cycle.add_listener(chart)

    try:
        ranked = cycle.run_batch(config.archive_paths)
    except UnknownSceneError as e:
        logger.error(str(e))
        return 1
    finally:
        if chart is not None:
            chart.close()

    print(format_scene_table(ranked))

    if config.output_model_path:
        cycle.model.save_to_file(config.output_model_path)
    return 0


if __name__ == "__main__":
    sys.exit(main())
