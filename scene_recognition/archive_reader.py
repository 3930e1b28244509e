"""
归档读取器 (Archive Reader) — 从录制文件批量读取证据 / 场景图消息。

支持的格式:
  1. JSON Lines (.jsonl / .ndjson)
       每行一条记录: {"topic": "/objects", "timestamp": 12.3, "data": {...}}
  2. rosbag2 (目录 / .db3 / .mcap)
       std_msgs/String 消息, data 字段为 JSON 负载

设计原则:
  - 统一接口: 所有格式返回相同的 ArchiveRecord
  - 打开失败抛出 ArchiveError, 由调用方记录并跳过该文件
  - 单条记录无法解码时记录 warning 并跳过, 不中断读取
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

logger = logging.getLogger(__name__)

JSONL_SUFFIXES = (".jsonl", ".ndjson")
ROSBAG2_SUFFIXES = (".db3", ".mcap")


class ArchiveError(Exception):
    """归档无法打开或读取。"""


@dataclass
class ArchiveRecord:
    """归档中的一条消息。"""
    topic: str
    payload: dict
    timestamp: float = 0.0


class ArchiveReader(ABC):
    """归档读取器基类。"""

    @abstractmethod
    def read(self, path: str, topics: Optional[Sequence[str]] = None) -> Iterator[ArchiveRecord]:
        """
        打开归档并迭代记录。

        Args:
            path: 归档路径
            topics: 只返回这些话题的记录 (None = 全部)

        Raises:
            ArchiveError: 归档无法打开 (在返回迭代器之前抛出)
        """
        ...


class JsonLinesArchiveReader(ArchiveReader):
    """
    JSON Lines 归档读取器。

    用法:
        reader = JsonLinesArchiveReader()
        for record in reader.read("session.jsonl", topics=["/objects"]):
            ...
    """

    def read(self, path: str, topics: Optional[Sequence[str]] = None) -> Iterator[ArchiveRecord]:
        try:
            handle = open(path, "rb")
        except OSError as e:
            raise ArchiveError(f"Cannot open archive {path}: {e}") from e
        return self._iter_records(handle, str(path), topics)

    @staticmethod
    def _iter_records(handle, path: str, topics: Optional[Sequence[str]]) -> Iterator[ArchiveRecord]:
        with handle:
            # 按行解码, 非法 UTF-8 只跳过该行
            for line_no, raw in enumerate(handle, start=1):
                try:
                    line = raw.decode("utf-8").strip()
                except UnicodeDecodeError as e:
                    logger.warning(f"{path}:{line_no}: skipping undecodable record ({e})")
                    continue
                if not line:
                    continue
                try:
                    entry = json.loads(line)
                    topic = entry["topic"]
                    payload = entry["data"]
                    timestamp = float(entry.get("timestamp", 0.0))
                except (json.JSONDecodeError, KeyError, TypeError, ValueError, AttributeError) as e:
                    logger.warning(f"{path}:{line_no}: skipping undecodable record ({e})")
                    continue
                if topics is not None and topic not in topics:
                    continue
                yield ArchiveRecord(topic=topic, payload=payload, timestamp=timestamp)


class Rosbag2ArchiveReader(ArchiveReader):
    """
    rosbag2 归档读取器 (需要 ROS 2 环境: rosbag2_py, rclpy)。

    消息类型为 std_msgs/String, data 为 JSON 负载。
    """

    def __init__(self, storage_id: str = ""):
        self.storage_id = storage_id

    def read(self, path: str, topics: Optional[Sequence[str]] = None) -> Iterator[ArchiveRecord]:
        try:
            import rosbag2_py
        except ImportError as e:
            raise ArchiveError(f"Cannot open {path}: rosbag2_py is not available") from e

        storage_id = self.storage_id
        if not storage_id:
            storage_id = "mcap" if str(path).endswith(".mcap") else "sqlite3"

        reader = rosbag2_py.SequentialReader()
        try:
            reader.open(
                rosbag2_py.StorageOptions(uri=str(path), storage_id=storage_id),
                rosbag2_py.ConverterOptions(
                    input_serialization_format="cdr",
                    output_serialization_format="cdr",
                ),
            )
        except RuntimeError as e:
            raise ArchiveError(f"Cannot open archive {path}: {e}") from e

        if topics is not None:
            reader.set_filter(rosbag2_py.StorageFilter(topics=list(topics)))
        return self._iter_records(reader, str(path))

    @staticmethod
    def _iter_records(reader, path: str) -> Iterator[ArchiveRecord]:
        from rclpy.serialization import deserialize_message
        from std_msgs.msg import String

        while reader.has_next():
            topic, data, stamp_ns = reader.read_next()
            try:
                msg = deserialize_message(data, String)
                payload = json.loads(msg.data)
            except (json.JSONDecodeError, TypeError, ValueError) as e:
                logger.warning(f"{path}: skipping undecodable message on {topic} ({e})")
                continue
            yield ArchiveRecord(topic=topic, payload=payload, timestamp=stamp_ns * 1e-9)


def create_archive_reader(path: str) -> ArchiveReader:
    """
    根据路径选择读取器。

    Args:
        path: .jsonl / .ndjson → JSON Lines; 目录 / .db3 / .mcap → rosbag2
    """
    p = Path(path)
    if p.suffix.lower() in JSONL_SUFFIXES:
        return JsonLinesArchiveReader()
    if p.is_dir() or p.suffix.lower() in ROSBAG2_SUFFIXES:
        return Rosbag2ArchiveReader()
    raise ArchiveError(f"Unknown archive format: {path}")
