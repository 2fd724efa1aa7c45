from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Mapping, Optional

from ..catalog import Catalog
from ..config import AppConfig
from ..data_sources.base import ProductStatus
from ..metrics.ads_ledger import DailyAdLedger
from ..metrics.calculations import AnalysisTable, Totals, aggregate_totals, build_analysis_table
from ..metrics.overrides import OverrideStore
from ..utils.dates import preset_range

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    """调度 目录 + 覆盖值 + 每日广告费 -> 国家分析表 的主流程。"""

    def __init__(self, *, config: AppConfig, catalog: Catalog, ledger: DailyAdLedger) -> None:
        """初始化管道。

        参数:
            config: 全局配置对象，提供默认日期筛选与 Draft 可见性。
            catalog: 国家与商品目录。
            ledger: 每日广告费台账。
        """
        self._config = config
        self._catalog = catalog
        self._ledger = ledger

    def run(
        self,
        *,
        country_id: str,
        overrides: OverrideStore,
        start: Optional[date] = None,
        end: Optional[date] = None,
        include_drafts: Optional[bool] = None,
    ) -> AnalysisTable:
        """执行一次分析。

        参数:
            country_id: 目标国家 id，不存在时抛出 NotFoundError。
            overrides: 显式传入的覆盖值仓。
            start: 每日广告费筛选开始日期。
            end: 每日广告费筛选结束日期；起止都提供时才启用筛选，
                否则按配置的日期快捷选项决定。
            include_drafts: 覆盖配置中的 Draft 可见性。

        返回:
            AnalysisTable，包含商品行与加权合计。
        """
        country = self._catalog.get_country(country_id)
        if start is None or end is None:
            window = preset_range(self._config.analysis.date_preset)
            start, end = window if window else (None, None)

        daily_totals = self._ledger.totals(start, end) if start is not None and end is not None else None
        table = build_analysis_table(
            country=country,
            products=self._catalog.products,
            overrides=overrides,
            daily_totals=daily_totals,
            include_drafts=self._config.analysis.include_drafts if include_drafts is None else include_drafts,
        )
        logger.debug("Built analysis table for %s with %d rows (ads window %s~%s)", country_id, len(table.rows), start, end)
        return table


@dataclass
class Overview:
    """
    看板总览：各国家分析表合计以及跨国家的加权合计。

    属性:
        totals (Totals): 跨国家加权合计（金额按原币种直接相加）。
        by_country (List[AnalysisTable]): 参与汇总的各国家分析表。
        product_count (int): 目录中的商品数量。
        active_product_count (int): Active 商品数量。
    """

    totals: Totals
    by_country: List[AnalysisTable] = field(default_factory=list)
    product_count: int = 0
    active_product_count: int = 0


def build_overview(
    catalog: Catalog,
    overrides: OverrideStore,
    country_id: Optional[str] = None,
    *,
    daily_totals: Optional[Mapping[str, float]] = None,
    include_drafts: bool = False,
) -> Overview:
    """
    功能说明:
        为每个国家（或指定国家）构建分析表，再用与行汇总相同的加权规则合并各国合计。
    参数:
        catalog (Catalog): 国家与商品目录。
        overrides (OverrideStore): 覆盖值仓。
        country_id (Optional[str]): 仅统计该国家，None 表示全部国家。
        daily_totals (Optional[Mapping[str, float]]): 日期区间内各商品广告合计。
        include_drafts (bool): 是否包含 Draft 商品。
    返回:
        Overview: 总览结果。
    """
    countries = [catalog.get_country(country_id)] if country_id else catalog.countries
    tables = [
        build_analysis_table(
            country=country,
            products=catalog.products,
            overrides=overrides,
            daily_totals=daily_totals,
            include_drafts=include_drafts,
        )
        for country in countries
    ]
    products = catalog.products
    return Overview(
        totals=aggregate_totals(table.totals for table in tables),
        by_country=tables,
        product_count=len(products),
        active_product_count=sum(1 for product in products if product.status == ProductStatus.ACTIVE),
    )
