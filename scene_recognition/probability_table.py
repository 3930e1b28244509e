"""
概率表 (Probability Table) — 行 × 对象类型的计数 / 概率矩阵。

特点:
  - 按对象类型名 (而非列号) 读写, 列号由 VocabularyTable 分配
  - 计数与归一化结果分开存储: normalize() 不会破坏计数, 保存模型无损
  - 默认桶 (列 0) 吸收推理阶段遇到的未知类型
  - 行只增不减, 列只随词表登记增长

用法:
    table = ProbabilityTable(rows=1)
    table.increment(0, "cup")
    table.increment(0, "cup")
    table.increment(0, "plate")
    table.normalize()
    table.probability(0, "cup")      # -> 2/3
"""

import logging
import math
from typing import Dict, List, Optional

import numpy as np

from .vocabulary import DEFAULT_INDEX, DEFAULT_TYPE, VocabularyTable

logger = logging.getLogger(__name__)


class ProbabilityTable:
    """
    基于类型名的概率表。

    Args:
        rows: 初始行数
        vocabulary: 共享词表 (None = 独占一份新词表)
        fallback_to_default: 未知类型是否落入默认桶。
            False 时未知类型既不计数也不分配概率 (直接丢弃)。
    """

    def __init__(
        self,
        rows: int = 1,
        vocabulary: Optional[VocabularyTable] = None,
        fallback_to_default: bool = True,
    ):
        if rows < 0:
            raise ValueError(f"Row count must be >= 0, got {rows}")
        self.vocabulary = vocabulary if vocabulary is not None else VocabularyTable()
        self.fallback_to_default = fallback_to_default

        self._counts = np.zeros((rows, len(self.vocabulary)), dtype=np.float64)
        self._probabilities: Optional[np.ndarray] = None  # normalize() 结果缓存

    # ── 形状 ──────────────────────────────────────────────

    @property
    def num_rows(self) -> int:
        return self._counts.shape[0]

    @property
    def num_columns(self) -> int:
        self._sync_columns()
        return self._counts.shape[1]

    def ensure_rows(self, rows: int) -> None:
        """扩展到至少 rows 行 (行不会缩减)。"""
        missing = rows - self.num_rows
        if missing > 0:
            self._counts = np.vstack(
                [self._counts, np.zeros((missing, self._counts.shape[1]))]
            )
            self._probabilities = None

    def _sync_columns(self) -> None:
        """共享词表被其它表扩展后, 补齐本表缺失的列。"""
        missing = len(self.vocabulary) - self._counts.shape[1]
        if missing > 0:
            self._counts = np.hstack(
                [self._counts, np.zeros((self._counts.shape[0], missing))]
            )
            self._probabilities = None

    # ── 类型 ──────────────────────────────────────────────

    def register_type(self, name: str) -> int:
        index = self.vocabulary.register_type(name)
        self._sync_columns()
        return index

    def has_type(self, name: str) -> bool:
        return self.vocabulary.has_type(name)

    @property
    def known_types(self) -> List[str]:
        return self.vocabulary.known_types

    def _column(self, name: str, register: bool) -> Optional[int]:
        """类型 → 列号; 未知类型按策略返回默认桶或 None。"""
        if register:
            return self.register_type(name)
        self._sync_columns()
        if self.vocabulary.has_type(name) or name == DEFAULT_TYPE:
            return self.vocabulary.lookup(name)
        return DEFAULT_INDEX if self.fallback_to_default else None

    # ── 计数 ──────────────────────────────────────────────

    def increment(
        self,
        row: int,
        name: str,
        register: bool = True,
        amount: float = 1.0,
    ) -> bool:
        """
        为 (row, name) 增加一次观测计数。

        Args:
            row: 行号
            name: 对象类型
            register: True = 学习阶段, 未知类型登记为新列;
                      False = 推理阶段, 未知类型落入默认桶
            amount: 增加的计数

        Returns:
            是否真正计数 (fallback_to_default=False 时未知类型返回 False)
        """
        self._check_row(row)
        column = self._column(name, register)
        if column is None:
            logger.debug(f"Dropping unknown object type '{name}' (no default fallback)")
            return False
        self._counts[row, column] += amount
        self._probabilities = None
        return True

    def set_default_count(self, row: int, count: float) -> None:
        """直接设置默认桶计数 (建模 "某个未知物体" 的期望质量)。"""
        self._check_row(row)
        if count < 0 or math.isnan(count):
            raise ValueError(f"Default count must be a non-negative number, got {count}")
        self._sync_columns()
        self._counts[row, DEFAULT_INDEX] = count
        self._probabilities = None

    def count(self, row: int, name: str) -> float:
        if not 0 <= row < self.num_rows:
            return 0.0
        column = self._column(name, register=False)
        if column is None:
            return 0.0
        return float(self._counts[row, column])

    def clear_row(self, row: int) -> None:
        self._check_row(row)
        self._counts[row, :] = 0.0
        self._probabilities = None

    @property
    def counts(self) -> np.ndarray:
        self._sync_columns()
        return self._counts.copy()

    # ── 概率 ──────────────────────────────────────────────

    def normalize(self) -> None:
        """每行除以行和; 全零行保持全零。"""
        self._sync_columns()
        sums = self._counts.sum(axis=1, keepdims=True)
        probabilities = np.zeros_like(self._counts)
        np.divide(self._counts, sums, out=probabilities, where=sums > 0)
        self._probabilities = probabilities

    @property
    def is_normalized(self) -> bool:
        return self._probabilities is not None and (
            self._probabilities.shape == self._counts.shape
        )

    @property
    def probabilities(self) -> np.ndarray:
        """归一化后的矩阵 (计数变化后自动重新归一化)。"""
        if not self.is_normalized:
            self.normalize()
        return self._probabilities.copy()

    def probability(self, row: int, name: str) -> float:
        """返回归一化概率; 行号越界返回 0。"""
        if not 0 <= row < self.num_rows:
            return 0.0
        column = self._column(name, register=False)
        if column is None:
            return 0.0
        if not self.is_normalized:
            self.normalize()
        return float(self._probabilities[row, column])

    def row_distribution(self, row: int) -> Dict[str, float]:
        """某一行的 {类型: 概率}, 供可视化使用。"""
        if not 0 <= row < self.num_rows:
            return {}
        probabilities = self.probabilities[row]
        return {
            name: float(probabilities[i])
            for i, name in enumerate(self.vocabulary.names)
        }

    def row_counts(self, row: int) -> Dict[str, float]:
        if not 0 <= row < self.num_rows:
            return {}
        counts = self.counts[row]
        return {
            name: float(counts[i])
            for i, name in enumerate(self.vocabulary.names)
            if counts[i] > 0
        }

    def _check_row(self, row: int) -> None:
        if not 0 <= row < self.num_rows:
            raise IndexError(f"Row {row} out of range (table has {self.num_rows} rows)")

    # ── 序列化 ──────────────────────────────────────────────

    def to_dict(self) -> dict:
        """导出计数 (非归一化概率), 列顺序一并保存。"""
        return {
            "columns": self.vocabulary.to_list(),
            "rows": [self.row_counts(row) for row in range(self.num_rows)],
        }

    @classmethod
    def from_dict(
        cls,
        data: dict,
        fallback_to_default: bool = True,
        min_rows: int = 0,
    ) -> "ProbabilityTable":
        """
        从字典恢复概率表。

        行内出现但 columns 中没有的类型会被追加登记。
        """
        if not isinstance(data, dict):
            raise ValueError(f"Probability table must be a mapping, got {type(data).__name__}")

        columns = data.get("columns")
        vocabulary = VocabularyTable.from_list(columns) if columns else VocabularyTable()

        rows = data.get("rows", [])
        if not isinstance(rows, list):
            raise ValueError("Probability table 'rows' must be a list")

        table = cls(
            rows=max(len(rows), min_rows),
            vocabulary=vocabulary,
            fallback_to_default=fallback_to_default,
        )
        for row, entries in enumerate(rows):
            if not isinstance(entries, dict):
                raise ValueError(f"Row {row} must map object types to counts")
            for name, count in entries.items():
                if isinstance(count, bool) or not isinstance(count, (int, float)):
                    raise ValueError(f"Count for '{name}' in row {row} is not a number: {count!r}")
                if count < 0 or math.isnan(count) or math.isinf(count):
                    raise ValueError(f"Count for '{name}' in row {row} is invalid: {count}")
                column = table.register_type(name) if name != DEFAULT_TYPE else DEFAULT_INDEX
                table._counts[row, column] = float(count)
        return table

    def __repr__(self) -> str:
        return (
            f"ProbabilityTable(rows={self.num_rows}, "
            f"types={self.known_types!r})"
        )
