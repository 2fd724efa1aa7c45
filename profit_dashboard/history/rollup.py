"""历史快照汇总：筛选、全局/分国家加权汇总、期间列表排序与时间序列。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

from ..errors import ValidationError
from ..metrics.calculations import Totals, aggregate_totals
from ..snapshots.manager import AnalysisSnapshot

# 期间列表可排序的列 -> 取值函数
SORT_COLUMNS: Dict[str, Callable[[AnalysisSnapshot], Any]] = {
    "period_name": lambda item: item.period_name.lower(),
    "country_name": lambda item: item.country_name.lower(),
    "total_orders": lambda item: item.totals.total_orders,
    "orders_confirmed": lambda item: item.totals.orders_confirmed,
    "delivered_orders": lambda item: item.totals.delivered_orders,
    "total_revenue": lambda item: item.totals.total_revenue,
    "total_ads": lambda item: item.totals.total_ads,
    "total_service_fees": lambda item: item.totals.total_service_fees,
    "total_product_fees": lambda item: item.totals.total_product_fees,
    "profit": lambda item: item.totals.profit,
    "margin": lambda item: item.totals.margin,
    "created_at": lambda item: item.created_at,
}

ASCENDING = "asc"
DESCENDING = "desc"


def filter_snapshots(
    snapshots: Iterable[AnalysisSnapshot],
    *,
    country_id: Optional[str] = None,
    query: Optional[str] = None,
) -> List[AnalysisSnapshot]:
    """
    功能说明:
        按国家与关键字筛选快照，关键字对期间名称与国家名称做不区分大小写的包含匹配。
    参数:
        snapshots (Iterable[AnalysisSnapshot]): 全部快照。
        country_id (Optional[str]): 国家 id，None 表示不限。
        query (Optional[str]): 搜索关键字，空值表示不限。
    返回:
        List[AnalysisSnapshot]: 保持原顺序的筛选结果。
    """
    needle = (query or "").strip().lower()
    return [
        item
        for item in snapshots
        if (country_id is None or item.country_id == country_id)
        and (not needle or needle in item.period_name.lower() or needle in item.country_name.lower())
    ]


def summarize(snapshots: Iterable[AnalysisSnapshot]) -> Totals:
    """以快照自身的合计为输入做加权汇总，不回溯行数据。"""
    return aggregate_totals(item.totals for item in snapshots)


@dataclass
class CountrySummary:
    """
    单个国家的历史汇总。

    属性:
        country_id (str): 国家 id。
        country_name (str): 最早出现的快照中记录的国家名称。
        currency (str): 币种。
        snapshot_count (int): 快照数量。
        totals (Totals): 加权汇总。
    """

    country_id: str
    country_name: str
    currency: str
    snapshot_count: int
    totals: Totals


def summarize_by_country(snapshots: Iterable[AnalysisSnapshot]) -> List[CountrySummary]:
    """按 country_id 分组汇总，分组顺序为首次出现的顺序。"""
    groups: Dict[str, List[AnalysisSnapshot]] = {}
    for item in snapshots:
        groups.setdefault(item.country_id, []).append(item)
    return [
        CountrySummary(
            country_id=country_id,
            country_name=items[0].country_name,
            currency=items[0].currency,
            snapshot_count=len(items),
            totals=summarize(items),
        )
        for country_id, items in groups.items()
    ]


def sort_periods(
    snapshots: Sequence[AnalysisSnapshot],
    column: Optional[str] = None,
    direction: Optional[str] = None,
) -> List[AnalysisSnapshot]:
    """
    功能说明:
        对期间列表做稳定排序；未指定列或方向时返回原插入顺序。
    参数:
        snapshots (Sequence[AnalysisSnapshot]): 期间列表。
        column (Optional[str]): SORT_COLUMNS 中的列名。
        direction (Optional[str]): "asc" / "desc"。
    返回:
        List[AnalysisSnapshot]: 排序后的新列表。
    """
    if column is None or direction is None:
        return list(snapshots)
    if column not in SORT_COLUMNS:
        raise ValidationError(f"不支持的排序列：{column}")
    if direction not in {ASCENDING, DESCENDING}:
        raise ValidationError(f"不支持的排序方向：{direction}")
    return sorted(snapshots, key=SORT_COLUMNS[column], reverse=direction == DESCENDING)


class PeriodSort:
    """表头点击排序：同一列依次 升序 -> 降序 -> 取消；点击其他列从升序开始。"""

    def __init__(self) -> None:
        self.column: Optional[str] = None
        self.direction: Optional[str] = None

    def click(self, column: str) -> None:
        if column not in SORT_COLUMNS:
            raise ValidationError(f"不支持的排序列：{column}")
        if column != self.column or self.direction is None:
            self.column, self.direction = column, ASCENDING
        elif self.direction == ASCENDING:
            self.direction = DESCENDING
        else:
            self.column, self.direction = None, None

    def apply(self, snapshots: Sequence[AnalysisSnapshot]) -> List[AnalysisSnapshot]:
        return sort_periods(snapshots, self.column, self.direction)


def time_series(snapshots: Iterable[AnalysisSnapshot], metric: str) -> List[Dict[str, Any]]:
    """
    功能说明:
        按保存时间正序输出某合计指标的序列，供图表使用。
    参数:
        snapshots (Iterable[AnalysisSnapshot]): 最新在前的快照（与 SnapshotManager.list 一致）。
        metric (str): Totals 中的字段名。
    返回:
        List[Dict[str, Any]]: (created_at, period_name, value) 点列表。
    """
    if not hasattr(Totals(), metric):
        raise ValidationError(f"不支持的指标：{metric}")
    return [
        {
            "created_at": item.created_at,
            "period_name": item.period_name,
            "value": getattr(item.totals, metric),
        }
        # created_at 只精确到秒；先反转为保存顺序，同一秒内的快照按保存先后排列。
        for item in sorted(reversed(list(snapshots)), key=lambda item: item.created_at)
    ]
