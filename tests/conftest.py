from datetime import date
from itertools import count
from typing import Callable, List, Optional

import pytest

from profit_dashboard import services
from profit_dashboard.catalog import Catalog
from profit_dashboard.config import AppConfig
from profit_dashboard.data_sources.base import CatalogDataSource, Country, DailyAdEntry, OverrideRecord, Product, ProductStatus
from profit_dashboard.metrics.calculations import AnalysisRow, derive
from profit_dashboard.metrics.overrides import AnalysisOverride, OverrideStore
from profit_dashboard.metrics.resolver import ResolvedInputs
from profit_dashboard.storage.repository import SQLiteRepository


@pytest.fixture
def country() -> Country:
    return Country(
        id="us",
        name="United States",
        currency="USD",
        code="US",
        default_shipping=5,
        default_cod=0,
        default_return=2,
    )


@pytest.fixture
def product() -> Product:
    return Product(id="p1", sku="SKU-1", name="Widget", cost=15, price=59, country_ids=["us"])


@pytest.fixture
def catalog(country: Country) -> Catalog:
    morocco = Country(
        id="ma",
        name="Morocco",
        currency="MAD",
        code="MA",
        default_shipping=2,
        default_cod=1,
        default_return=2,
    )
    products = [
        Product(id="p1", sku="SKU-1", name="Widget", cost=15, price=59, country_ids=["us", "ma"]),
        Product(id="p2", sku="SKU-2", name="Gadget", cost=4, price=20, country_ids=["us"]),
        Product(id="p3", sku="SKU-3", name="Prototype", status=ProductStatus.DRAFT, cost=9, price=30, country_ids=["us"]),
    ]
    return Catalog([country, morocco], products)


@pytest.fixture
def overrides() -> OverrideStore:
    return OverrideStore()


@pytest.fixture
def repository(tmp_path) -> SQLiteRepository:
    repo = SQLiteRepository(tmp_path / "profit.sqlite3")
    repo.initialize()
    return repo


@pytest.fixture
def make_row() -> Callable[..., AnalysisRow]:
    """构造分析行：按给定的解析输入计算派生指标。"""

    def _make(product_id: str = "p1", **values: float) -> AnalysisRow:
        resolved = ResolvedInputs(**values)
        item = Product(id=product_id, sku=f"SKU-{product_id}", name=f"Product {product_id}")
        return AnalysisRow.build(item, resolved, derive(resolved))

    return _make


@pytest.fixture
def tick_clock() -> Callable[[], str]:
    """每次调用前进一秒的 ISO 时间戳时钟。"""

    seconds = count()
    return lambda: f"2024-03-01T10:00:{next(seconds):02d}+00:00"


class StaticSource(CatalogDataSource):
    """固定数据源：两个国家、三个商品、一条覆盖值与两天的广告费。"""

    name = "static"

    def fetch_countries(self) -> List[Country]:
        return [
            Country(id="us", name="United States", currency="USD", default_shipping=5, default_return=2),
            Country(id="ma", name="Morocco", currency="MAD", default_shipping=2, default_cod=1, default_return=2),
        ]

    def fetch_products(self) -> List[Product]:
        return [
            Product(id="p1", sku="SKU-1", name="Widget", cost=15, price=59, country_ids=["us", "ma"]),
            Product(id="p2", sku="SKU-2", name="Gadget", cost=4, price=20, country_ids=["us"]),
            Product(id="p3", sku="SKU-3", name="Prototype", status=ProductStatus.DRAFT, cost=9, country_ids=["us"]),
        ]

    def fetch_overrides(self) -> List[OverrideRecord]:
        return [
            (
                "us",
                "p1",
                AnalysisOverride(
                    total_orders=40,
                    orders_confirmed=30,
                    delivered_orders=20,
                    quantity_delivery=20,
                    revenue=1180,
                    ads=90,
                ),
            )
        ]

    def fetch_daily_ads(self, start: Optional[date] = None, end: Optional[date] = None) -> List[DailyAdEntry]:
        return [DailyAdEntry("p1", date(2024, 3, 1), 12), DailyAdEntry("p1", date(2024, 3, 2), 8)]


@pytest.fixture
def static_source() -> StaticSource:
    return StaticSource()


@pytest.fixture
def context(static_source: StaticSource) -> services.ServiceContext:
    """不落库的服务上下文。"""

    return services.create_service_context(AppConfig(), data_source=static_source)
