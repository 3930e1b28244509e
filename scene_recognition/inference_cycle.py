"""
推理周期 (Inference Cycle) — 证据缓冲、学习与场景似然更新。

每个周期 (tick):
  1. 取出全部缓冲的物体证据 → 变换到基坐标系 → 交给场景模型
     (变换失败的证据记录 info 并丢弃)
  2. 重新计算场景似然 (跨场景归一化)
  3. 取出全部缓冲的场景图样本 → 学习 (更新前景 / 背景计数)
  4. 输出结果表 (日志) 并通知监听者 (可视化 / 发布)

设计原则:
  - 订阅回调只入队, 不做推理; 推理只在 tick() 中进行
  - 缓冲有界, 溢出按 drop_oldest / drop_newest 丢弃并计数
  - 学习在推理之后, 本周期的场景图只影响下一周期
    (批处理模式 recompute_after_learning=True 时立即重算)

用法:
    context = InferenceContext.from_config(config, transformer)
    cycle = InferenceCycle(context)
    cycle.enqueue_evidence(evidence)
    ranked = cycle.tick()
"""

import logging
import threading
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from .archive_reader import ArchiveError, ArchiveReader, create_archive_reader
from .evidence import ObjectEvidence, SceneGraphExample, SceneIdentifier
from .scene_model import SceneModel
from .transforms import CoordinateTransformer, TransformError

logger = logging.getLogger(__name__)

T = TypeVar("T")

OVERFLOW_POLICIES = ("drop_oldest", "drop_newest")

# listener(ranked, snapshots)
CycleListener = Callable[[List[SceneIdentifier], List[dict]], None]


class BoundedBuffer(Generic[T]):
    """
    线程安全的有界 FIFO 缓冲。

    Args:
        maxsize: 容量 (0 = 不限)
        overflow_policy: 满时 "drop_oldest" 丢弃最旧项 / "drop_newest" 拒绝新项
    """

    def __init__(self, maxsize: int = 0, overflow_policy: str = "drop_oldest"):
        if maxsize < 0:
            raise ValueError(f"maxsize must be >= 0, got {maxsize}")
        if overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(
                f"Unknown overflow policy '{overflow_policy}' "
                f"(known: {', '.join(OVERFLOW_POLICIES)})"
            )
        self.maxsize = maxsize
        self.overflow_policy = overflow_policy
        self.dropped = 0
        self._items: Deque[T] = deque()
        self._lock = threading.Lock()

    def put(self, item: T) -> bool:
        """入队; 返回 False 表示该项因溢出被拒绝。"""
        with self._lock:
            if self.maxsize and len(self._items) >= self.maxsize:
                self.dropped += 1
                if self.overflow_policy == "drop_newest":
                    return False
                self._items.popleft()
            self._items.append(item)
            return True

    def drain(self) -> List[T]:
        """取出全部项 (按到达顺序)。"""
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class InferenceContext:
    """推理周期所需的全部组件 (显式传入, 无全局状态)。"""
    model: SceneModel
    transformer: CoordinateTransformer
    evidence_buffer: BoundedBuffer = field(default_factory=BoundedBuffer)
    scene_graph_buffer: BoundedBuffer = field(default_factory=BoundedBuffer)
    object_topic: str = "/objects"
    scene_graph_topic: str = "/scene_graphs"

    @classmethod
    def from_config(cls, config, transformer: CoordinateTransformer) -> "InferenceContext":
        """
        按 EngineConfig 加载模型并构造上下文。

        Raises:
            ModelError: 模型文件缺失或格式错误
        """
        model = SceneModel.load_from_file(
            config.model_path,
            inference_algorithm=config.inference_algorithm,
            fallback_to_default=config.fallback_to_default,
        )
        return cls(
            model=model,
            transformer=transformer,
            evidence_buffer=BoundedBuffer(
                config.evidence_queue_size, config.queue_overflow_policy
            ),
            scene_graph_buffer=BoundedBuffer(
                config.scene_graph_queue_size, config.queue_overflow_policy
            ),
            object_topic=config.object_topic,
            scene_graph_topic=config.scene_graph_topic,
        )


class InferenceCycle:
    """周期性推理驱动。"""

    def __init__(self, context: InferenceContext):
        self.context = context
        self._listeners: List[CycleListener] = []
        self._tick_lock = threading.Lock()
        self.tick_count = 0
        self.last_ranked: List[SceneIdentifier] = []
        self.last_stats: dict = {}
        # 已变换到基坐标系的最新观测 (按证据身份去重), 供 RViz 标记使用
        self._observed: Dict[Tuple[str, str], ObjectEvidence] = {}

    @property
    def model(self) -> SceneModel:
        return self.context.model

    @property
    def observed_evidence(self) -> List[ObjectEvidence]:
        with self._tick_lock:
            return list(self._observed.values())

    def clear_evidence(self) -> None:
        """清空在线证据 (学习计数保留)。"""
        with self._tick_lock:
            self.model.clear_evidence()
            self._observed.clear()

    # ── 入队 (订阅回调 / 归档读取) ──────────────────────────────

    def enqueue_evidence(self, evidence: ObjectEvidence) -> bool:
        accepted = self.context.evidence_buffer.put(evidence)
        if not accepted:
            logger.debug(f"Evidence buffer full, dropped '{evidence.type}'")
        return accepted

    def enqueue_scene_graph(self, example: SceneGraphExample) -> bool:
        accepted = self.context.scene_graph_buffer.put(example)
        if not accepted:
            logger.debug(f"Scene graph buffer full, dropped '{example.identifier}'")
        return accepted

    # ── 监听者 ──────────────────────────────────────────────

    def add_listener(self, listener: CycleListener) -> Callable[[], None]:
        """注册周期结果监听者, 返回注销函数。"""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    # ── 周期 ──────────────────────────────────────────────

    def tick(self, recompute_after_learning: bool = False) -> List[SceneIdentifier]:
        """
        执行一个推理周期。

        Args:
            recompute_after_learning: 学习后立即重算 (批处理模式)

        Returns:
            按似然降序的场景结果

        Raises:
            UnknownSceneError: 场景图样本引用了不存在的场景
        """
        with self._tick_lock:
            t0 = time.time()
            evidence_items = self.context.evidence_buffer.drain()
            scene_graphs = self.context.scene_graph_buffer.drain()

            # ── 1. 证据 ──
            integrated = 0
            transform_failures = 0
            for evidence in evidence_items:
                try:
                    transformed = self.context.transformer.transform(evidence)
                except TransformError as e:
                    transform_failures += 1
                    logger.info(f"Dropping '{evidence.type}' evidence: {e}")
                    continue
                if self.model.integrate_evidence(transformed):
                    integrated += 1
                    self._observed[transformed.key] = transformed

            # ── 2. 推理 ──
            ranked = self.model.recompute()

            # ── 3. 学习 ──
            for example in scene_graphs:
                self.model.integrate_scene_graph(example)
            if scene_graphs and recompute_after_learning:
                ranked = self.model.recompute()

            self.tick_count += 1
            self.last_ranked = ranked
            self.last_stats = {
                "evidence": len(evidence_items),
                "integrated": integrated,
                "transform_failures": transform_failures,
                "scene_graphs": len(scene_graphs),
                "dropped_evidence": self.context.evidence_buffer.dropped,
                "dropped_scene_graphs": self.context.scene_graph_buffer.dropped,
                "elapsed_ms": (time.time() - t0) * 1000,
            }

        if evidence_items or scene_graphs:
            logger.info(
                f"Cycle {self.tick_count}: {integrated}/{len(evidence_items)} evidence, "
                f"{len(scene_graphs)} scene graphs, "
                f"{self.last_stats['elapsed_ms']:.1f}ms"
            )
            self._log_results(ranked)

        snapshots = self.model.table_snapshots()
        for listener in list(self._listeners):
            listener(ranked, snapshots)
        return ranked

    @staticmethod
    def _log_results(ranked: List[SceneIdentifier]) -> None:
        from .visualization import format_scene_table
        logger.info("Scene likelihoods:\n" + format_scene_table(ranked))

    # ── 归档 / 批处理 ──────────────────────────────────────────────

    def ingest_archive(self, path: str, reader: Optional[ArchiveReader] = None) -> int:
        """
        读取归档中两个话题的消息并入队。

        归档无法打开时记录 error 并返回 0 (跳过该文件);
        读取中途失败时记录 error, 已入队的消息保留, 跳过剩余部分;
        没有任何匹配消息时记录 warning。

        Returns:
            入队的消息数
        """
        topics = (self.context.object_topic, self.context.scene_graph_topic)
        try:
            if reader is None:
                reader = create_archive_reader(path)
            records = reader.read(path, topics=topics)
        except ArchiveError as e:
            logger.error(f"Skipping archive {path}: {e}")
            return 0

        count = 0
        malformed = 0
        try:
            for record in records:
                try:
                    if record.topic == self.context.object_topic:
                        self.enqueue_evidence(ObjectEvidence.from_dict(record.payload))
                    elif record.topic == self.context.scene_graph_topic:
                        self.enqueue_scene_graph(SceneGraphExample.from_dict(record.payload))
                    else:
                        continue
                except ValueError as e:
                    malformed += 1
                    logger.warning(f"{path}: malformed message on {record.topic}: {e}")
                    continue
                count += 1
        except (ArchiveError, OSError, RuntimeError, ValueError) as e:
            # 读取中途失败: 已入队的消息保留, 跳过该文件剩余部分
            logger.error(f"Archive {path} failed after {count} messages, skipping the rest: {e}")
            return count

        if count == 0 and malformed == 0:
            logger.warning(
                f"Archive {path} has no messages on {self.context.object_topic} "
                f"or {self.context.scene_graph_topic}"
            )
        else:
            logger.info(f"Read {count} messages from {path}")
        return count

    def run_batch(self, archive_paths: Iterable[str]) -> List[SceneIdentifier]:
        """读入全部归档, 执行一个学习后立即重算的周期。"""
        total = 0
        for path in archive_paths:
            total += self.ingest_archive(path)
        logger.info(f"Batch mode: {total} messages queued")
        return self.tick(recompute_after_learning=True)

    def run(self, rate_hz: float, stop_event: threading.Event) -> None:
        """以固定频率执行 tick(), 直到 stop_event 被置位。"""
        if rate_hz <= 0:
            raise ValueError(f"rate_hz must be > 0, got {rate_hz}")
        period = 1.0 / rate_hz
        while not stop_event.is_set():
            started = time.monotonic()
            self.tick()
            stop_event.wait(max(0.0, period - (time.monotonic() - started)))
