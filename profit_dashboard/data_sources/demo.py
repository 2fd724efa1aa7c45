"""提供内置样例国家/商品的演示数据源，方便本地开发与测试。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from typing import Iterable, List, Optional

from ..config import AppConfig
from ..metrics.overrides import AnalysisOverride
from .base import CatalogDataSource, Country, DailyAdEntry, OverrideRecord, Product, ProductStatus

DEMO_COUNTRIES: List[Country] = [
    Country(id="us", name="United States", currency="USD", code="US", default_shipping=5, default_cod=0, default_return=2),
    Country(id="uk", name="United Kingdom", currency="GBP", code="GB", default_shipping=4, default_cod=0, default_return=1.5),
    Country(id="de", name="Germany", currency="EUR", code="DE", default_shipping=4.5, default_cod=2, default_return=0),
]

DEMO_PRODUCTS: List[Product] = [
    Product(id="1", sku="TSHIRT-BLK-M", name="Black T-Shirt (M)", status=ProductStatus.ACTIVE, cost=5, price=25, country_ids=["us", "uk"]),
    Product(id="2", sku="MUG-WHT", name="White Mug", status=ProductStatus.ACTIVE, cost=2, price=12, country_ids=["us"]),
    Product(id="3", sku="NB-LEA", name="Leather Notebook", status=ProductStatus.DRAFT, cost=8, price=30, country_ids=["us", "uk", "de"]),
    Product(id="4", sku="PEN-GLD", name="Gold Pen", status=ProductStatus.ACTIVE, cost=1.5, price=15, country_ids=["uk", "de"]),
]


@dataclass
class DemoDataSourceSettings:
    """
    控制演示数据源行为的配置项。

    属性:
        seed (int): 伪随机种子，确保数据可复现。
        ad_days (int): 生成每日广告费的天数（截止到 reference_day，含当天）。
        reference_day (date | None): 每日广告费的最后一天，None 表示当天。
    """

    seed: int = 2024
    ad_days: int = 30
    reference_day: Optional[date] = None


class DemoCatalogSource(CatalogDataSource):
    """
    基于线性同余发生器的可复现演示数据源。

    国家与商品为固定样例；覆盖值与每日广告费由伪随机算法按订单漏斗生成。
    """

    def __init__(self, settings: DemoDataSourceSettings | None = None) -> None:
        self.name = "demo_catalog"
        self._settings = settings or DemoDataSourceSettings()

    def fetch_countries(self) -> List[Country]:
        return [Country(**vars(country)) for country in DEMO_COUNTRIES]

    def fetch_products(self) -> List[Product]:
        return [
            Product(**{**vars(product), "country_ids": list(product.country_ids)})
            for product in DEMO_PRODUCTS
        ]

    def fetch_overrides(self) -> List[OverrideRecord]:
        """
        功能说明:
            为每个已分配的 (国家, 商品) 生成一组覆盖值：总订单 -> 确认 -> 签收。
            服务费与商品成本不写入，交给国家默认费用与签收件数推导。
        返回:
            List[OverrideRecord]: (country_id, product_id, AnalysisOverride) 列表。
        """
        rng = _PseudoRandom(self._settings.seed + 1)
        records: List[OverrideRecord] = []
        for product in DEMO_PRODUCTS:
            for country_id in product.country_ids:
                total_orders = rng.randint(40, 160)
                # 按常见 COD 漏斗模拟确认率与签收率。
                confirmed = int(total_orders * rng.uniform(0.55, 0.85))
                delivered = int(confirmed * rng.uniform(0.6, 0.9))
                records.append(
                    (
                        country_id,
                        product.id,
                        AnalysisOverride(
                            total_orders=float(total_orders),
                            orders_confirmed=float(confirmed),
                            delivered_orders=float(delivered),
                            quantity_delivery=float(delivered),
                            revenue=round(delivered * product.price, 2),
                            ads=round(total_orders * rng.uniform(1.5, 4.0), 2),
                        ),
                    )
                )
        return records

    def fetch_daily_ads(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[DailyAdEntry]:
        """
        功能说明:
            生成最近 ad_days 天的每日广告费，并按闭区间过滤。
        参数:
            start (Optional[date]): 起始日期。
            end (Optional[date]): 结束日期。
        返回:
            List[DailyAdEntry]: 每日广告费记录列表。
        """
        last_day = self._settings.reference_day or date.today()
        first_day = last_day - timedelta(days=max(self._settings.ad_days, 1) - 1)
        rng = _PseudoRandom(self._settings.seed + 2)
        entries: List[DailyAdEntry] = []
        for product in DEMO_PRODUCTS:
            if product.status != ProductStatus.ACTIVE:
                continue
            base_spend = rng.uniform(5, 25)
            for day in _iter_days(first_day, last_day):
                amount = round(base_spend * rng.uniform(0.5, 1.5), 2)
                if (start is None or day >= start) and (end is None or day <= end):
                    entries.append(DailyAdEntry(product_id=product.id, day=day, amount=amount))
        return entries


def create_default_demo_source(config: AppConfig) -> DemoCatalogSource:
    """
    功能说明:
        构建默认的演示数据源。
    参数:
        config (AppConfig): 应用配置，目前仅用于保持工厂函数签名一致。
    返回:
        DemoCatalogSource: 预配置的演示数据源实例。
    """
    return DemoCatalogSource()


def _iter_days(start: date, end: date) -> Iterable[date]:
    """
    功能说明:
        生成起止日期（闭区间）内的所有日期。
    参数:
        start (date): 开始日期。
        end (date): 结束日期。
    返回:
        Iterable[date]: 逐日迭代器。
    """
    current = start
    while current <= end:
        yield current
        current += timedelta(days=1)


class _PseudoRandom:
    """简单的线性同余伪随机数发生器，用于生成可复现的数据。"""

    def __init__(self, seed: int) -> None:
        self._state = seed % 2147483647 or 42

    def _next(self) -> float:
        # MINSTD 参数。
        self._state = (self._state * 48271) % 2147483647
        return self._state / 2147483647

    def uniform(self, low: float, high: float) -> float:
        return low + (high - low) * self._next()

    def randint(self, low: int, high: int) -> int:
        return int(low + (high - low) * self._next())
