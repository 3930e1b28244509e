"""
对象类型词表 (Vocabulary Table) — 对象类型名 → 稳定整数索引。

约定:
  - 索引 0 保留给默认桶 (default bucket), 吸收所有未登记的对象类型
  - 词表只增不减: 已返回的索引在整个运行期内保持有效
  - 同名重复登记返回同一个索引 (幂等)

一个 VocabularyTable 可以被多张 ProbabilityTable 共享,
也可以每张表各持一份 (场景模型默认每张表一份)。
"""

import logging
from typing import Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)

DEFAULT_TYPE = "__default__"
DEFAULT_INDEX = 0


class VocabularyTable:
    """
    对象类型名到列索引的映射。

    用法:
        vocab = VocabularyTable()
        cup = vocab.register_type("cup")      # -> 1
        vocab.lookup("cup")                   # -> 1
        vocab.lookup("never_seen")            # -> 0 (默认桶)
    """

    def __init__(self, names: Optional[Iterable[str]] = None):
        self._names: List[str] = [DEFAULT_TYPE]
        self._index: Dict[str, int] = {DEFAULT_TYPE: DEFAULT_INDEX}
        for name in names or []:
            self.register_type(name)

    def register_type(self, name: str) -> int:
        """登记对象类型, 已存在时返回原索引。"""
        if not isinstance(name, str) or not name:
            raise ValueError(f"Object type must be a non-empty string, got {name!r}")

        index = self._index.get(name)
        if index is not None:
            return index

        index = len(self._names)
        self._names.append(name)
        self._index[name] = index
        logger.debug(f"Registered object type '{name}' -> column {index}")
        return index

    def lookup(self, name: str) -> int:
        """返回类型索引; 未登记的类型返回默认桶索引 0。"""
        return self._index.get(name, DEFAULT_INDEX)

    def has_type(self, name: str) -> bool:
        """是否为显式登记过的 (非默认) 类型。"""
        return name != DEFAULT_TYPE and name in self._index

    def name_of(self, index: int) -> str:
        return self._names[index]

    @property
    def names(self) -> List[str]:
        """全部列名 (含默认桶, 按索引排序)。"""
        return list(self._names)

    @property
    def known_types(self) -> List[str]:
        """显式登记过的类型 (不含默认桶)。"""
        return self._names[1:]

    def __contains__(self, name: str) -> bool:
        return self.has_type(name)

    def __len__(self) -> int:
        return len(self._names)

    def __repr__(self) -> str:
        return f"VocabularyTable({self.known_types!r})"

    # ── 序列化 ──────────────────────────────────────────────

    def to_list(self) -> List[str]:
        return self.names

    @classmethod
    def from_list(cls, names: List[str]) -> "VocabularyTable":
        """从列名列表恢复, 列顺序 (即索引) 原样保留。"""
        if not names or names[0] != DEFAULT_TYPE:
            raise ValueError(
                f"Vocabulary must start with the default bucket '{DEFAULT_TYPE}'"
            )
        if len(set(names)) != len(names):
            raise ValueError("Vocabulary contains duplicate object types")
        return cls(names[1:])
