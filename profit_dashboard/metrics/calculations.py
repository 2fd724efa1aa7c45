"""提供派生指标计算、按行加权汇总以及分析表构建逻辑。"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, List, Mapping, Optional, Sequence

from ..data_sources.base import Country, Product, ProductStatus
from .overrides import OverrideStore
from .resolver import ResolvedInputs, resolve


def safe_divide(numerator: float, denominator: float, default: Optional[float]) -> Optional[float]:
    """
    功能说明:
        分母为 0 时直接返回默认值，保证 NaN / Infinity 不会向外传播。
    参数:
        numerator (float): 分子。
        denominator (float): 分母。
        default: 分母为 0 时的返回值，比率传 0.0，"不可用"的指标传 None。
    返回:
        float | None: 比值或默认值。
    """
    if denominator == 0:
        return default
    return numerator / denominator


def _percent(numerator: float, denominator: float) -> float:
    # 只在分母 > 0 时计算，负数或 0 分母都按 0 处理。
    if denominator > 0:
        return numerator / denominator * 100
    return 0.0


@dataclass(frozen=True)
class DerivedMetrics:
    """
    由解析后的输入计算出的比率与利润。

    属性:
        confirmation_rate (float): 确认率 = 确认订单 / 总订单 × 100。
        delivery_rate (float): 签收率 = 签收订单 / 确认订单 × 100。
        delivery_rate_per_lead (float): 线索签收率 = 签收订单 / 总订单 × 100。
        profit (float): 利润 = 收入 - 广告 - 服务费 - 商品成本。
        margin (float): 利润率 = 利润 / 收入 × 100。
    """

    confirmation_rate: float
    delivery_rate: float
    delivery_rate_per_lead: float
    profit: float
    margin: float


def derive(resolved: ResolvedInputs) -> DerivedMetrics:
    """根据解析后的输入计算派生指标，所有比率在分母为 0 时恰好为 0。"""
    profit = resolved.revenue - resolved.ads - resolved.service_fees - resolved.product_fees
    return DerivedMetrics(
        confirmation_rate=_percent(resolved.orders_confirmed, resolved.total_orders),
        delivery_rate=_percent(resolved.delivered_orders, resolved.orders_confirmed),
        delivery_rate_per_lead=_percent(resolved.delivered_orders, resolved.total_orders),
        profit=profit,
        margin=_percent(profit, resolved.revenue),
    )


@dataclass(frozen=True)
class AnalysisRow:
    """
    分析表中的单行：一个商品在一个国家下的全部输入与派生指标。

    属性:
        product_id (str): 商品 id。
        product_name (str): 商品名称。
        product_sku (str): 商品 SKU。
        其余字段与 ResolvedInputs / DerivedMetrics 一一对应。
    """

    product_id: str
    product_name: str
    product_sku: str
    total_orders: float
    orders_confirmed: float
    confirmation_rate: float
    delivered_orders: float
    delivery_rate: float
    delivery_rate_per_lead: float
    revenue: float
    ads: float
    service_fees: float
    quantity_delivery: float
    product_fees: float
    profit: float
    margin: float

    @classmethod
    def build(cls, product: Product, resolved: ResolvedInputs, metrics: DerivedMetrics) -> "AnalysisRow":
        return cls(
            product_id=product.id,
            product_name=product.name,
            product_sku=product.sku,
            total_orders=resolved.total_orders,
            orders_confirmed=resolved.orders_confirmed,
            confirmation_rate=metrics.confirmation_rate,
            delivered_orders=resolved.delivered_orders,
            delivery_rate=metrics.delivery_rate,
            delivery_rate_per_lead=metrics.delivery_rate_per_lead,
            revenue=resolved.revenue,
            ads=resolved.ads,
            service_fees=resolved.service_fees,
            quantity_delivery=resolved.quantity_delivery,
            product_fees=resolved.product_fees,
            profit=metrics.profit,
            margin=metrics.margin,
        )


@dataclass(frozen=True)
class Totals:
    """
    多行加权汇总结果。比率类字段均由合计后的分子/分母重新计算，
    从不对单行比率取平均。

    属性:
        total_orders / orders_confirmed / delivered_orders / quantity_delivery (float): 计数合计。
        total_revenue / total_ads / total_service_fees / total_product_fees (float): 金额合计。
        profit (float): 利润合计。
        margin (float): 利润合计 / 收入合计 × 100。
        confirmation_rate / delivery_rate / delivery_rate_per_lead (float): 加权比率。
        cpa (Optional[float]): 广告 / 总订单，无订单时不可用。
        cpad (Optional[float]): 广告 / 签收订单，无签收时不可用。
        cpd (Optional[float]): (广告 + 服务费 + 商品成本) / 签收订单，无签收时不可用。
        row_count (int): 参与汇总的行数。
    """

    total_orders: float = 0.0
    orders_confirmed: float = 0.0
    delivered_orders: float = 0.0
    quantity_delivery: float = 0.0
    total_revenue: float = 0.0
    total_ads: float = 0.0
    total_service_fees: float = 0.0
    total_product_fees: float = 0.0
    profit: float = 0.0
    margin: float = 0.0
    confirmation_rate: float = 0.0
    delivery_rate: float = 0.0
    delivery_rate_per_lead: float = 0.0
    cpa: Optional[float] = None
    cpad: Optional[float] = None
    cpd: Optional[float] = None
    row_count: int = 0


def _finalize(
    *,
    total_orders: float,
    orders_confirmed: float,
    delivered_orders: float,
    quantity_delivery: float,
    total_revenue: float,
    total_ads: float,
    total_service_fees: float,
    total_product_fees: float,
    profit: float,
    row_count: int,
) -> Totals:
    """由合计后的分子/分母统一计算比率，行汇总与历史汇总共用此规则。"""
    cpa = safe_divide(total_ads, total_orders, None) if total_orders > 0 else None
    cpad = safe_divide(total_ads, delivered_orders, None) if delivered_orders > 0 else None
    cpd = (
        safe_divide(total_ads + total_service_fees + total_product_fees, delivered_orders, None)
        if delivered_orders > 0
        else None
    )
    return Totals(
        total_orders=total_orders,
        orders_confirmed=orders_confirmed,
        delivered_orders=delivered_orders,
        quantity_delivery=quantity_delivery,
        total_revenue=total_revenue,
        total_ads=total_ads,
        total_service_fees=total_service_fees,
        total_product_fees=total_product_fees,
        profit=profit,
        margin=_percent(profit, total_revenue),
        confirmation_rate=_percent(orders_confirmed, total_orders),
        delivery_rate=_percent(delivered_orders, orders_confirmed),
        delivery_rate_per_lead=_percent(delivered_orders, total_orders),
        cpa=cpa,
        cpad=cpad,
        cpd=cpd,
        row_count=row_count,
    )


def aggregate_rows(rows: Iterable[AnalysisRow]) -> Totals:
    """
    功能说明:
        将多行分析结果汇总为一行合计，可加字段求和，比率由合计值重新计算。
    参数:
        rows (Iterable[AnalysisRow]): 分析行。
    返回:
        Totals: 加权汇总结果；空输入得到全 0 且 CPA/CPAD/CPD 不可用的合计。
    """
    rows = list(rows)
    return _finalize(
        total_orders=sum(row.total_orders for row in rows),
        orders_confirmed=sum(row.orders_confirmed for row in rows),
        delivered_orders=sum(row.delivered_orders for row in rows),
        quantity_delivery=sum(row.quantity_delivery for row in rows),
        total_revenue=sum(row.revenue for row in rows),
        total_ads=sum(row.ads for row in rows),
        total_service_fees=sum(row.service_fees for row in rows),
        total_product_fees=sum(row.product_fees for row in rows),
        profit=sum(row.profit for row in rows),
        row_count=len(rows),
    )


def aggregate_totals(blocks: Iterable[Totals]) -> Totals:
    """
    功能说明:
        合并多个已汇总的合计块（例如多份快照的合计），规则与 aggregate_rows 相同。
    参数:
        blocks (Iterable[Totals]): 已汇总的合计块，视为可信，不回溯到行数据。
    返回:
        Totals: 加权汇总结果。
    """
    blocks = list(blocks)
    return _finalize(
        total_orders=sum(block.total_orders for block in blocks),
        orders_confirmed=sum(block.orders_confirmed for block in blocks),
        delivered_orders=sum(block.delivered_orders for block in blocks),
        quantity_delivery=sum(block.quantity_delivery for block in blocks),
        total_revenue=sum(block.total_revenue for block in blocks),
        total_ads=sum(block.total_ads for block in blocks),
        total_service_fees=sum(block.total_service_fees for block in blocks),
        total_product_fees=sum(block.total_product_fees for block in blocks),
        profit=sum(block.profit for block in blocks),
        row_count=sum(block.row_count for block in blocks),
    )


@dataclass
class AnalysisTable:
    """
    某国家的完整分析表，供前端、快照与导出使用。

    属性:
        country (Country): 所属国家。
        rows (List[AnalysisRow]): 商品行，顺序与商品列表一致。
        totals (Totals): 行的加权汇总。
    """

    country: Country
    rows: List[AnalysisRow]
    totals: Totals


def visible_products(
    products: Sequence[Product],
    country_id: str,
    include_drafts: bool = False,
) -> List[Product]:
    """筛选已分配到该国家且状态可见（Active，或开启 Draft 显示）的商品。"""
    return [
        product
        for product in products
        if (include_drafts or product.status == ProductStatus.ACTIVE)
        and country_id in product.country_ids
    ]


def build_analysis_table(
    *,
    country: Country,
    products: Sequence[Product],
    overrides: OverrideStore,
    daily_totals: Optional[Mapping[str, float]] = None,
    include_drafts: bool = False,
) -> AnalysisTable:
    """
    功能说明:
        为一个国家逐个商品执行 解析 -> 派生 -> 成行，并生成加权合计。
    参数:
        country (Country): 目标国家。
        products (Sequence[Product]): 全部商品，内部按国家与状态筛选。
        overrides (OverrideStore): 显式传入的覆盖值仓。
        daily_totals (Optional[Mapping[str, float]]): 日期区间内各商品广告合计；
            None 表示未启用日期筛选，此时所有商品的每日合计都视为不可用。
        include_drafts (bool): 是否包含 Draft 商品。
    返回:
        AnalysisTable: 分析表。
    """
    rows: List[AnalysisRow] = []
    for product in visible_products(products, country.id, include_drafts):
        daily_total = daily_totals.get(product.id) if daily_totals is not None else None
        resolved = resolve(product, country, overrides.get(country.id, product.id), daily_total)
        rows.append(AnalysisRow.build(product, resolved, derive(resolved)))
    return AnalysisTable(country=country, rows=rows, totals=aggregate_rows(rows))
