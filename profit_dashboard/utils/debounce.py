"""覆盖值单元格编辑的防抖：合并连续输入，失焦时立即写出。"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Dict, Hashable, List, Tuple


@dataclass
class _Pending:
    value: object
    deadline: float


class EditDebouncer:
    """
    将同一单元格（key）的连续编辑合并为一次写入。

    不启动任何后台定时器：调用方周期性调用 ``poll()``，或在失焦时调用 ``blur()``。
    时钟可注入，便于测试。
    """

    def __init__(
        self,
        sink: Callable[[Hashable, object], None],
        *,
        delay_seconds: float = 0.8,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._sink = sink
        self._delay = delay_seconds
        self._clock = clock
        self._pending: Dict[Hashable, _Pending] = {}

    def change(self, key: Hashable, value: object) -> None:
        """记录一次输入并重置该单元格的静默期。"""
        self._pending[key] = _Pending(value=value, deadline=self._clock() + self._delay)

    def poll(self) -> List[Tuple[Hashable, object]]:
        """写出所有静默期已结束的编辑，返回已写出的 (key, value)。"""
        now = self._clock()
        due = [key for key, pending in self._pending.items() if pending.deadline <= now]
        return [self._emit(key) for key in due]

    def blur(self, key: Hashable) -> bool:
        """失焦：立即写出该单元格的待处理编辑，返回是否有写出。"""
        if key not in self._pending:
            return False
        self._emit(key)
        return True

    def flush_all(self) -> List[Tuple[Hashable, object]]:
        return [self._emit(key) for key in list(self._pending)]

    @property
    def pending_keys(self) -> List[Hashable]:
        return list(self._pending)

    def _emit(self, key: Hashable) -> Tuple[Hashable, object]:
        # 写出失败时保留待处理值，避免编辑被静默丢弃。
        pending = self._pending[key]
        self._sink(key, pending.value)
        del self._pending[key]
        return key, pending.value
