"""分析快照：按国家保存命名、带日期的完整分析表，并支持回载编辑与原子替换。"""

from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass, fields, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Union

from ..data_sources.base import Country
from ..errors import NotFoundError, ValidationError
from ..metrics.calculations import AnalysisRow, AnalysisTable, Totals, aggregate_rows
from ..metrics.overrides import AnalysisOverride, OverrideStore

logger = logging.getLogger(__name__)

# 回载编辑时写回覆盖值仓的字段
EDITABLE_FIELDS = (
    "total_orders",
    "orders_confirmed",
    "delivered_orders",
    "revenue",
    "ads",
    "service_fees",
    "quantity_delivery",
    "product_fees",
)


@dataclass(frozen=True)
class AnalysisSnapshot:
    """
    某国家分析表在某时刻的不可变副本。

    属性:
        id (str): 快照 id。
        period_name (str): 期间名称，例如 "2024-W12"。
        country_id (str): 国家 id。
        country_name (str): 保存时的国家名称（冗余存储）。
        currency (str): 保存时的币种（冗余存储）。
        rows (List[AnalysisRow]): 商品行，保持保存时的顺序。
        totals (Totals): 保存时由 rows 加权汇总得到的合计。
        created_at (str): ISO 格式的保存时间（UTC）。
    """

    id: str
    period_name: str
    country_id: str
    country_name: str
    currency: str
    rows: List[AnalysisRow]
    totals: Totals
    created_at: str


class SnapshotStore(Protocol):
    """快照持久化后端需要提供的能力。"""

    def insert_snapshot(self, snapshot: AnalysisSnapshot) -> None:
        ...

    def replace_snapshot(self, snapshot: AnalysisSnapshot) -> None:
        """在一个事务内删除同 id 快照并写入新快照，失败时原快照保持不变。"""

    def delete_snapshot(self, snapshot_id: str) -> None:
        ...

    def fetch_snapshot(self, snapshot_id: str) -> Optional[AnalysisSnapshot]:
        ...

    def fetch_snapshots(self) -> List[AnalysisSnapshot]:
        """按保存时间倒序返回全部快照。"""

    def rename_snapshot(self, snapshot_id: str, period_name: str) -> Optional[AnalysisSnapshot]:
        ...


class InMemorySnapshotStore:
    """未启用数据库时使用的内存后端。"""

    def __init__(self) -> None:
        self._items: Dict[str, AnalysisSnapshot] = {}
        self._sequence: Dict[str, int] = {}
        self._counter = 0

    def insert_snapshot(self, snapshot: AnalysisSnapshot) -> None:
        self._counter += 1
        self._items[snapshot.id] = snapshot
        self._sequence[snapshot.id] = self._counter

    def replace_snapshot(self, snapshot: AnalysisSnapshot) -> None:
        self.delete_snapshot(snapshot.id)
        self.insert_snapshot(snapshot)

    def delete_snapshot(self, snapshot_id: str) -> None:
        self._items.pop(snapshot_id, None)
        self._sequence.pop(snapshot_id, None)

    def fetch_snapshot(self, snapshot_id: str) -> Optional[AnalysisSnapshot]:
        return self._items.get(snapshot_id)

    def fetch_snapshots(self) -> List[AnalysisSnapshot]:
        return sorted(
            self._items.values(),
            key=lambda item: (item.created_at, self._sequence[item.id]),
            reverse=True,
        )

    def rename_snapshot(self, snapshot_id: str, period_name: str) -> Optional[AnalysisSnapshot]:
        current = self._items.get(snapshot_id)
        if current is None:
            return None
        renamed = replace(current, period_name=period_name)
        self._items[snapshot_id] = renamed
        return renamed


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds")


def _totals_match(expected: Totals, given: Totals) -> bool:
    for item in fields(Totals):
        left = getattr(expected, item.name)
        right = getattr(given, item.name)
        if left is None or right is None:
            if left is not right:
                return False
        elif not math.isclose(left, right, rel_tol=1e-9, abs_tol=1e-9):
            return False
    return True


class SnapshotManager:
    """负责快照的创建、读取、回载编辑、替换、重命名与删除。"""

    def __init__(self, store: SnapshotStore, *, clock: Callable[[], str] = _utc_now) -> None:
        self._store = store
        self._clock = clock

    def _build(
        self,
        *,
        snapshot_id: str,
        period_name: str,
        country_id: str,
        country_name: str,
        currency: str,
        rows: Sequence[AnalysisRow],
        totals: Optional[Totals],
    ) -> AnalysisSnapshot:
        if not period_name or not period_name.strip():
            raise ValidationError("期间名称不能为空。")
        if not rows:
            raise ValidationError("分析表没有任何商品行，无法保存快照。")
        computed = aggregate_rows(rows)
        if totals is not None and not _totals_match(computed, totals):
            raise ValidationError("快照合计与行数据的加权汇总不一致。")
        return AnalysisSnapshot(
            id=snapshot_id,
            period_name=period_name.strip(),
            country_id=country_id,
            country_name=country_name,
            currency=currency,
            rows=list(rows),
            totals=computed,
            created_at=self._clock(),
        )

    def create(
        self,
        period_name: str,
        country: Country,
        rows: Sequence[AnalysisRow],
        totals: Optional[Totals] = None,
    ) -> AnalysisSnapshot:
        """
        功能说明:
            保存一份新快照。合计始终由 rows 重新汇总；调用方传入的 totals
            仅用于校验，与汇总结果不一致时拒绝保存。
        参数:
            period_name (str): 期间名称，不能为空。
            country (Country): 所属国家，名称与币种会被冗余保存。
            rows (Sequence[AnalysisRow]): 分析行，不能为空。
            totals (Optional[Totals]): 调用方计算的合计。
        返回:
            AnalysisSnapshot: 新快照（新 id，当前时间）。
        """
        snapshot = self._build(
            snapshot_id=str(uuid.uuid4()),
            period_name=period_name,
            country_id=country.id,
            country_name=country.name,
            currency=country.currency,
            rows=rows,
            totals=totals,
        )
        self._store.insert_snapshot(snapshot)
        logger.info("Created snapshot %s (%s, %s, %d rows)", snapshot.id, snapshot.period_name, snapshot.country_id, len(snapshot.rows))
        return snapshot

    def create_from_table(self, period_name: str, table: AnalysisTable) -> AnalysisSnapshot:
        return self.create(period_name, table.country, table.rows, table.totals)

    def get(self, snapshot_id: str) -> AnalysisSnapshot:
        snapshot = self._store.fetch_snapshot(snapshot_id)
        if snapshot is None:
            raise NotFoundError(f"快照不存在：{snapshot_id}")
        return snapshot

    def list(self) -> List[AnalysisSnapshot]:
        return self._store.fetch_snapshots()

    def load_for_edit(self, snapshot: Union[AnalysisSnapshot, str], overrides: OverrideStore) -> AnalysisSnapshot:
        """
        功能说明:
            将快照每行的可编辑字段写回覆盖值仓（按 快照国家 + 行商品 索引）。
            这是合并而非替换：行中缺失（None）的字段不会清除覆盖值仓中已有的旧值。
        参数:
            snapshot (Union[AnalysisSnapshot, str]): 快照或快照 id。
            overrides (OverrideStore): 目标覆盖值仓。
        返回:
            AnalysisSnapshot: 被回载的快照，原快照保持不变。
        """
        if isinstance(snapshot, str):
            snapshot = self.get(snapshot)
        for row in snapshot.rows:
            patch = AnalysisOverride(**{name: getattr(row, name, None) for name in EDITABLE_FIELDS})
            overrides.update(snapshot.country_id, row.product_id, patch)
        logger.info("Loaded snapshot %s into overrides (%d rows)", snapshot.id, len(snapshot.rows))
        return snapshot

    def update(
        self,
        snapshot_id: str,
        rows: Sequence[AnalysisRow],
        totals: Optional[Totals] = None,
        *,
        period_name: Optional[str] = None,
    ) -> AnalysisSnapshot:
        """
        功能说明:
            以同一 id 原子替换快照（删除 + 重建，而非局部修改）。国家信息沿用原快照。
        参数:
            snapshot_id (str): 被替换的快照 id，必须存在。
            rows (Sequence[AnalysisRow]): 新的分析行。
            totals (Optional[Totals]): 新合计，仅用于校验。
            period_name (Optional[str]): 新期间名称，默认沿用原名称。
        返回:
            AnalysisSnapshot: 替换后的快照。
        """
        current = self.get(snapshot_id)
        snapshot = self._build(
            snapshot_id=current.id,
            period_name=period_name if period_name is not None else current.period_name,
            country_id=current.country_id,
            country_name=current.country_name,
            currency=current.currency,
            rows=rows,
            totals=totals,
        )
        self._store.replace_snapshot(snapshot)
        logger.info("Replaced snapshot %s (%d rows)", snapshot.id, len(snapshot.rows))
        return snapshot

    def rename(self, snapshot_id: str, period_name: str) -> AnalysisSnapshot:
        if not period_name or not period_name.strip():
            raise ValidationError("期间名称不能为空。")
        renamed = self._store.rename_snapshot(snapshot_id, period_name.strip())
        if renamed is None:
            raise NotFoundError(f"快照不存在：{snapshot_id}")
        return renamed

    def delete(self, snapshot_id: str) -> None:
        """删除快照，id 不存在时静默返回。"""
        self._store.delete_snapshot(snapshot_id)
        logger.info("Deleted snapshot %s", snapshot_id)


class EditorState(str, Enum):
    DRAFT = "draft"
    EDITING = "editing"


class SnapshotEditor:
    """
    围绕 SnapshotManager 的编辑状态机：

    DRAFT（覆盖值仓中的当前数据）--begin_edit--> EDITING（快照已回载，原快照仍保留）
    EDITING --save_changes--> DRAFT（原快照被同 id 替换）
    EDITING --cancel--> DRAFT（原快照不变）

    保存失败时异常向上抛出，状态与覆盖值仓保持不变，编辑内容不会丢失。
    """

    def __init__(self, manager: SnapshotManager, overrides: OverrideStore) -> None:
        self._manager = manager
        self._overrides = overrides
        self.state = EditorState.DRAFT
        self.editing_id: Optional[str] = None

    def begin_edit(self, snapshot_id: str) -> AnalysisSnapshot:
        snapshot = self._manager.load_for_edit(snapshot_id, self._overrides)
        self.state = EditorState.EDITING
        self.editing_id = snapshot.id
        return snapshot

    def save_as_new(self, period_name: str, table: AnalysisTable) -> AnalysisSnapshot:
        snapshot = self._manager.create_from_table(period_name, table)
        self.state = EditorState.DRAFT
        self.editing_id = None
        return snapshot

    def save_changes(self, table: AnalysisTable, *, period_name: Optional[str] = None) -> AnalysisSnapshot:
        if self.state is not EditorState.EDITING or self.editing_id is None:
            raise ValidationError("当前没有正在编辑的快照。")
        snapshot = self._manager.update(self.editing_id, table.rows, table.totals, period_name=period_name)
        self.state = EditorState.DRAFT
        self.editing_id = None
        return snapshot

    def cancel(self) -> None:
        self.state = EditorState.DRAFT
        self.editing_id = None
