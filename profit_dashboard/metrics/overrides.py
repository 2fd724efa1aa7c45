"""手工覆盖值（AnalysisOverride）及按 (国家, 商品) 索引的覆盖值仓。"""

from __future__ import annotations

from dataclasses import dataclass, fields, replace
from typing import Dict, Iterator, Mapping, Optional, Tuple, Union

from ..errors import ValidationError

# snake_case 字段名 -> 接口层使用的 camelCase 名称
OVERRIDE_FIELDS: Dict[str, str] = {
    "revenue": "revenue",
    "ads": "ads",
    "service_fees": "serviceFees",
    "product_fees": "productFees",
    "delivered_orders": "deliveredOrders",
    "total_orders": "totalOrders",
    "orders_confirmed": "ordersConfirmed",
    "quantity_delivery": "quantityDelivery",
}
_CAMEL_TO_SNAKE = {camel: snake for snake, camel in OVERRIDE_FIELDS.items()}


@dataclass(frozen=True)
class AnalysisOverride:
    """
    某商品在某国家下手工录入的指标值。

    字段为 None 表示"未设置"，会沿优先级链继续回退；显式的 0 不会回退。
    同一个类型也用作局部更新（patch）：只有非 None 字段会被合并。
    """

    revenue: Optional[float] = None
    ads: Optional[float] = None
    service_fees: Optional[float] = None
    product_fees: Optional[float] = None
    delivered_orders: Optional[float] = None
    total_orders: Optional[float] = None
    orders_confirmed: Optional[float] = None
    quantity_delivery: Optional[float] = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, object]) -> "AnalysisOverride":
        """
        功能说明:
            将字典转换为覆盖值，键可以是 snake_case 或 camelCase。
        参数:
            data (Mapping[str, object]): 原始字段字典，值为 None 的键视为未设置。
        返回:
            AnalysisOverride: 转换后的覆盖值。
        """
        values: Dict[str, Optional[float]] = {}
        for key, value in data.items():
            name = key if key in OVERRIDE_FIELDS else _CAMEL_TO_SNAKE.get(key)
            if name is None:
                raise ValidationError(f"不支持的覆盖字段：{key}")
            if value is None:
                values[name] = None
                continue
            try:
                values[name] = float(value)  # type: ignore[arg-type]
            except (TypeError, ValueError):
                raise ValidationError(f"覆盖字段 {key} 不是有效数值：{value!r}") from None
        return cls(**values)

    def merge(self, patch: "AnalysisOverride") -> "AnalysisOverride":
        """返回合并 patch 中已设置字段后的新覆盖值。"""
        changes = {
            item.name: getattr(patch, item.name)
            for item in fields(patch)
            if getattr(patch, item.name) is not None
        }
        return replace(self, **changes)

    def is_empty(self) -> bool:
        return all(getattr(self, item.name) is None for item in fields(self))

    def to_dict(self) -> Dict[str, float]:
        """只输出已设置的字段（camelCase 键）。"""
        return {
            OVERRIDE_FIELDS[item.name]: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not None
        }


OverridePatch = Union[AnalysisOverride, Mapping[str, object]]


class OverrideStore:
    """两级映射：country_id -> product_id -> AnalysisOverride。

    由调用方显式创建并传入解析/聚合流程，不存在模块级单例。
    """

    def __init__(self) -> None:
        self._data: Dict[str, Dict[str, AnalysisOverride]] = {}

    def get(self, country_id: str, product_id: str) -> AnalysisOverride:
        """读取覆盖值，不存在时返回全部未设置的空覆盖值。"""
        return self._data.get(country_id, {}).get(product_id, AnalysisOverride())

    def update(self, country_id: str, product_id: str, patch: OverridePatch) -> AnalysisOverride:
        """
        功能说明:
            局部合并一次编辑，仅覆盖 patch 中设置的字段，其他字段保持原值。
        参数:
            country_id (str): 国家 id。
            product_id (str): 商品 id。
            patch (OverridePatch): AnalysisOverride 或字段字典。
        返回:
            AnalysisOverride: 合并后的覆盖值。
        """
        if not isinstance(patch, AnalysisOverride):
            patch = AnalysisOverride.from_mapping(patch)
        merged = self.get(country_id, product_id).merge(patch)
        self._data.setdefault(country_id, {})[product_id] = merged
        return merged

    def for_country(self, country_id: str) -> Dict[str, AnalysisOverride]:
        return dict(self._data.get(country_id, {}))

    def remove_country(self, country_id: str) -> int:
        """删除某国家的全部覆盖值，返回删除条数。"""
        return len(self._data.pop(country_id, {}))

    def remove_product(self, product_id: str) -> int:
        """删除某商品在所有国家下的覆盖值，返回删除条数。"""
        removed = 0
        for per_product in self._data.values():
            if per_product.pop(product_id, None) is not None:
                removed += 1
        return removed

    def items(self) -> Iterator[Tuple[str, str, AnalysisOverride]]:
        for country_id, per_product in self._data.items():
            for product_id, override in per_product.items():
                yield country_id, product_id, override

    def copy(self) -> "OverrideStore":
        clone = OverrideStore()
        clone._data = {country_id: dict(per_product) for country_id, per_product in self._data.items()}
        return clone

    def __len__(self) -> int:
        return sum(len(per_product) for per_product in self._data.values())
