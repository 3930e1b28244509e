"""
幂集背景推理 (Power-Set Background Inference)。

对背景词表内的 n 条证据枚举全部 2^n 个子集 S, 每个子集表示
"恰好 S 中的物体是背景杂物" 这一解释:

    L(S) = Π_{i∈S} p_i · Π_{i∉S} β

  p_i: 背景概率表中证据 i 类型的归一化概率
  β:   exclusion_weight, 未被子集解释的物体的基线权重 (no-detection baseline)

聚合规则 (combination):
  sum: P = L(全集) / Σ_S L(S)     全集解释在所有解释中的后验占比
  max: P = L(全集) / max_S L(S)   全集解释相对最优解释的比值

边界:
  - 空证据集 → no_observation_probability
  - 证据先按 (type, observed_id, timestamp) 规范排序, 结果与输入顺序无关
  - n > max_items 时按 overflow_policy 近似:
      truncate: 只评估规范顺序下的前 max_items 条证据 (2^max_items 个子集)
      sample:   以固定种子随机抽取 max_samples 个子集, 在对数空间估计聚合值
"""

import logging
import time
from dataclasses import asdict, dataclass, fields
from typing import Iterable, List, Optional

import numpy as np
from scipy.special import logsumexp

from .background_base import BACKGROUND_ROW, BackgroundInferenceAlgorithm
from .evidence import ObjectEvidence
from .probability_table import ProbabilityTable

logger = logging.getLogger(__name__)

# 精确枚举的硬上限: 2^20 个子集 × 20 列 bool 约 20MB
MAX_ENUMERATION_ITEMS = 20

COMBINATION_RULES = ("sum", "max")
OVERFLOW_POLICIES = ("sample", "truncate")


@dataclass
class PowerSetConfig:
    """幂集推理参数 (随模型文件一起保存)。"""
    combination: str = "sum"
    exclusion_weight: float = 0.1
    no_observation_probability: float = 0.5
    max_items: int = 12
    overflow_policy: str = "sample"
    max_samples: int = 4096
    seed: int = 0

    def __post_init__(self):
        if self.combination not in COMBINATION_RULES:
            raise ValueError(
                f"combination must be one of {COMBINATION_RULES}, got '{self.combination}'"
            )
        if not self.exclusion_weight > 0:
            raise ValueError(f"exclusion_weight must be > 0, got {self.exclusion_weight}")
        if not 0.0 <= self.no_observation_probability <= 1.0:
            raise ValueError(
                f"no_observation_probability must be in [0, 1], "
                f"got {self.no_observation_probability}"
            )
        if not 1 <= self.max_items <= MAX_ENUMERATION_ITEMS:
            raise ValueError(
                f"max_items must be in [1, {MAX_ENUMERATION_ITEMS}], got {self.max_items}"
            )
        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ValueError(
                f"overflow_policy must be one of {OVERFLOW_POLICIES}, "
                f"got '{self.overflow_policy}'"
            )
        if self.max_samples < 1:
            raise ValueError(f"max_samples must be >= 1, got {self.max_samples}")

    @classmethod
    def from_dict(cls, data: dict) -> "PowerSetConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown power-set parameters: {sorted(unknown)}")
        return cls(**data)

    def to_dict(self) -> dict:
        return asdict(self)


class PowerSetBackgroundInference(BackgroundInferenceAlgorithm):
    """
    幂集背景推理算法。

    用法:
        algo = PowerSetBackgroundInference(table, PowerSetConfig(max_items=10))
        p = algo.infer(evidence_list)
        algo.last_subset_count   # 上次推理评估的子集数
    """

    kind = "power_set"

    def __init__(
        self,
        table: Optional[ProbabilityTable] = None,
        config: Optional[PowerSetConfig] = None,
    ):
        self.config = config or PowerSetConfig()
        super().__init__(table)

        # 运行时统计
        self.last_item_count = 0
        self.last_subset_count = 0
        self.last_runtime = 0.0
        self.last_approximated = False

    @property
    def no_observation_probability(self) -> float:
        return self.config.no_observation_probability

    def parameters(self) -> dict:
        return self.config.to_dict()

    # ── 推理 ──────────────────────────────────────────────

    def infer(self, evidence_set: Iterable[ObjectEvidence]) -> float:
        start = time.perf_counter()
        items = self._background_items(evidence_set)
        n = len(items)

        self.last_item_count = n
        self.last_approximated = False

        if n == 0:
            self.last_subset_count = 0
            self.last_runtime = time.perf_counter() - start
            return self.config.no_observation_probability

        p = np.array(
            [self.table.probability(BACKGROUND_ROW, e.type) for e in items],
            dtype=np.float64,
        )

        if n > self.config.max_items:
            self.last_approximated = True
            logger.warning(
                f"Power-set inference over {n} background items exceeds "
                f"max_items={self.config.max_items}, using '{self.config.overflow_policy}'"
            )
            if self.config.overflow_policy == "truncate":
                p = p[:self.config.max_items]
            else:
                result = self._infer_sampled(p)
                self.last_runtime = time.perf_counter() - start
                return result

        likelihoods = self._enumerate(p)
        full = likelihoods[-1]  # 全 1 位掩码 = 全集

        if self.config.combination == "sum":
            denominator = likelihoods.sum()
        else:
            denominator = likelihoods.max()
        result = float(full / denominator) if denominator > 0 else 0.0

        self.last_runtime = time.perf_counter() - start
        logger.debug(
            f"Power-set inference: {len(p)} items, {self.last_subset_count} subsets, "
            f"P={result:.4f} ({self.last_runtime * 1000:.2f} ms)"
        )
        return min(max(result, 0.0), 1.0)

    def _background_items(self, evidence_set: Iterable[ObjectEvidence]) -> List[ObjectEvidence]:
        """筛出背景词表内的证据并规范排序。"""
        items = [e for e in evidence_set if self.accepts(e.type)]
        items.sort(key=lambda e: (e.type, e.observed_id, e.timestamp))
        return items

    def _enumerate(self, p: np.ndarray) -> np.ndarray:
        """
        枚举全部 2^n 个子集的似然。

        子集 k 的第 i 位为 1 表示证据 i 属于该子集。

        Returns:
            (2^n,) 每个子集的 L(S)
        """
        n = len(p)
        subsets = np.arange(2 ** n, dtype=np.int64)
        masks = ((subsets[:, None] >> np.arange(n)) & 1).astype(bool)  # (2^n, n)
        likelihoods = np.where(masks, p, self.config.exclusion_weight).prod(axis=1)
        self.last_subset_count = len(likelihoods)
        return likelihoods

    def _infer_sampled(self, p: np.ndarray) -> float:
        """随机子集估计 (对数空间, 避免 2^n 溢出)。"""
        n = len(p)
        rng = np.random.default_rng(self.config.seed)
        masks = rng.random((self.config.max_samples, n)) < 0.5

        with np.errstate(divide="ignore"):
            log_p = np.log(p)
        log_beta = np.log(self.config.exclusion_weight)

        log_likelihoods = np.where(masks, log_p, log_beta).sum(axis=1)
        log_full = log_p.sum()
        self.last_subset_count = len(log_likelihoods)

        if np.isneginf(log_full):
            return 0.0

        if self.config.combination == "sum":
            # Σ_S L(S) ≈ 2^n · mean(L(S_k))
            log_denominator = (
                n * np.log(2.0)
                + logsumexp(log_likelihoods)
                - np.log(len(log_likelihoods))
            )
        else:
            log_denominator = max(log_likelihoods.max(), log_full)

        result = float(np.exp(log_full - log_denominator))
        return min(max(result, 0.0), 1.0)
