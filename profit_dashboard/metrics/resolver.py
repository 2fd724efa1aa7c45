"""指标解析：在覆盖值、每日广告费与国家默认费用之间按字段决定最终输入值。"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..data_sources.base import Country, Product
from .overrides import AnalysisOverride

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedInputs:
    """
    单个商品在单个国家下解析完成的输入字段集合。

    属性:
        revenue (float): 收入。
        ads (float): 广告费。
        service_fees (float): 服务费（运费 + COD + 退货）。
        product_fees (float): 商品成本合计。
        delivered_orders (float): 签收订单数。
        total_orders (float): 总订单（线索）数。
        orders_confirmed (float): 确认订单数。
        quantity_delivery (float): 签收件数。
    """

    revenue: float = 0.0
    ads: float = 0.0
    service_fees: float = 0.0
    product_fees: float = 0.0
    delivered_orders: float = 0.0
    total_orders: float = 0.0
    orders_confirmed: float = 0.0
    quantity_delivery: float = 0.0


def _value_or_zero(value: Optional[float]) -> float:
    return value if value is not None else 0.0


def default_service_fees(country: Country, delivered_orders: float) -> float:
    """国家默认费用策略：签收订单数 × 单笔订单费用。"""
    return delivered_orders * country.fee_per_order


def resolve(
    product: Product,
    country: Country,
    override: AnalysisOverride,
    daily_ad_total: Optional[float] = None,
) -> ResolvedInputs:
    """
    功能说明:
        按字段独立的优先级规则解析输入值。负数不做截断，原样透传。
        - ads: 每日广告合计 > 0 时优先；否则取覆盖值；否则 0。
          合计为 0 视同"无数据"，仍回退到覆盖值。
        - service_fees: 覆盖值 > 0 时使用；否则 已解析签收数 × 国家单笔费用。
        - product_fees: 已解析签收件数 > 0 时为 件数 × 商品成本；否则取覆盖值或 0。
        - 其余计数字段与收入：覆盖值，未设置为 0。
    参数:
        product (Product): 商品，提供单件成本。
        country (Country): 国家，提供默认费用。
        override (AnalysisOverride): 该 (国家, 商品) 的覆盖值。
        daily_ad_total (Optional[float]): 日期筛选区间内的广告合计；None 表示未启用筛选。
    返回:
        ResolvedInputs: 解析后的输入字段。
    """
    delivered_orders = _value_or_zero(override.delivered_orders)
    total_orders = _value_or_zero(override.total_orders)
    orders_confirmed = _value_or_zero(override.orders_confirmed)
    quantity_delivery = _value_or_zero(override.quantity_delivery)

    if daily_ad_total is not None and daily_ad_total > 0:
        ads = daily_ad_total
    else:
        ads = _value_or_zero(override.ads)

    # 依赖已解析的 delivered_orders，必须在其之后计算。
    if override.service_fees is not None and override.service_fees > 0:
        service_fees = override.service_fees
    else:
        service_fees = default_service_fees(country, delivered_orders)

    if quantity_delivery > 0:
        product_fees = quantity_delivery * product.cost
    else:
        product_fees = _value_or_zero(override.product_fees)

    resolved = ResolvedInputs(
        revenue=_value_or_zero(override.revenue),
        ads=ads,
        service_fees=service_fees,
        product_fees=product_fees,
        delivered_orders=delivered_orders,
        total_orders=total_orders,
        orders_confirmed=orders_confirmed,
        quantity_delivery=quantity_delivery,
    )
    logger.debug("Resolved %s/%s: %s", country.id, product.id, resolved)
    return resolved
