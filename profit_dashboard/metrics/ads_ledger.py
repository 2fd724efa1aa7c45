"""每日广告费台账：按 (商品, 日期) 记录花费并支持区间汇总。"""

from __future__ import annotations

import logging
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from ..data_sources.base import DailyAdEntry
from ..errors import ValidationError

logger = logging.getLogger(__name__)


class DailyAdLedger:
    """同一 (product_id, day) 只保留最后一次写入的金额。"""

    def __init__(self, entries: Iterable[DailyAdEntry] = ()) -> None:
        self._amounts: Dict[Tuple[str, date], float] = {}
        self.record_many(entries)

    def record(self, product_id: str, day: date, amount: float) -> DailyAdEntry:
        """
        功能说明:
            写入一条每日广告费，已存在的同键记录会被替换。
        参数:
            product_id (str): 商品 id。
            day (date): 自然日。
            amount (float): 花费金额，必须不小于 0。
        返回:
            DailyAdEntry: 写入后的记录。
        """
        if amount < 0:
            raise ValidationError(f"广告花费不能为负数：{product_id} {day.isoformat()} {amount}")
        self._amounts[(product_id, day)] = float(amount)
        return DailyAdEntry(product_id=product_id, day=day, amount=float(amount))

    def record_many(self, entries: Iterable[DailyAdEntry]) -> List[DailyAdEntry]:
        return [self.record(entry.product_id, entry.day, entry.amount) for entry in entries]

    def entries(self, start: Optional[date] = None, end: Optional[date] = None) -> List[DailyAdEntry]:
        """按日期、商品排序返回闭区间内的记录，边界为 None 表示不限制。"""
        return [
            DailyAdEntry(product_id=product_id, day=day, amount=amount)
            for (product_id, day), amount in sorted(self._amounts.items(), key=lambda item: (item[0][1], item[0][0]))
            if (start is None or day >= start) and (end is None or day <= end)
        ]

    def totals(self, start: Optional[date] = None, end: Optional[date] = None) -> Dict[str, float]:
        """
        功能说明:
            汇总闭区间内每个商品的广告花费。
        参数:
            start (Optional[date]): 起始日期。
            end (Optional[date]): 结束日期。
        返回:
            Dict[str, float]: product_id -> 区间合计；区间内无记录的商品不出现在结果中。
        """
        totals: Dict[str, float] = {}
        for entry in self.entries(start, end):
            totals[entry.product_id] = totals.get(entry.product_id, 0.0) + entry.amount
        logger.debug("Daily ad totals %s~%s for %d products", start, end, len(totals))
        return totals

    def remove_product(self, product_id: str) -> int:
        keys = [key for key in self._amounts if key[0] == product_id]
        for key in keys:
            del self._amounts[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._amounts)
