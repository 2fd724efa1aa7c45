"""定义利润分析所需的国家、商品、每日广告费等基础数据模型及数据源抽象。"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Tuple

from ..metrics.overrides import AnalysisOverride


class ProductStatus(str, Enum):
    """商品状态，仅影响默认可见性，不参与计算。"""

    DRAFT = "Draft"
    ACTIVE = "Active"


@dataclass
class Country:
    """
    表示一个销售国家及其默认单笔订单费用。

    属性:
        id (str): 国家主键。
        name (str): 国家名称。
        currency (str): 币种代码，例如 `USD`。
        code (str): ISO 国家代码。
        default_shipping (float): 默认单笔运费。
        default_cod (float): 默认单笔货到付款手续费。
        default_return (float): 默认单笔退货成本。
    """

    id: str
    name: str
    currency: str
    code: str = ""
    default_shipping: float = 0.0
    default_cod: float = 0.0
    default_return: float = 0.0

    @property
    def fee_per_order(self) -> float:
        """单笔订单的默认费用 = 运费 + COD + 退货。"""
        return self.default_shipping + self.default_cod + self.default_return


@dataclass
class Product:
    """
    表示一个商品及其分配的国家。

    属性:
        id (str): 商品主键。
        sku (str): 商品 SKU。
        name (str): 商品名称。
        status (ProductStatus): Draft / Active。
        cost (float): 单件成本。
        price (float): 售价。
        country_ids (List[str]): 已分配的国家 id，顺序无意义。
        image (Optional[str]): 素材引用，与计算无关。
    """

    id: str
    sku: str
    name: str
    status: ProductStatus = ProductStatus.ACTIVE
    cost: float = 0.0
    price: float = 0.0
    country_ids: List[str] = field(default_factory=list)
    image: Optional[str] = None


@dataclass
class DailyAdEntry:
    """
    某商品在某自然日的广告花费。

    属性:
        product_id (str): 商品 id。
        day (date): 自然日，不含时间部分。
        amount (float): 花费金额，不小于 0。
    """

    product_id: str
    day: date
    amount: float


OverrideRecord = Tuple[str, str, AnalysisOverride]


class CatalogDataSource(ABC):
    """
    抽象基类，描述如何获取国家、商品、覆盖值与每日广告费。

    子类需实现全部抓取逻辑，以便服务层统一装载引擎所需的内存数据。
    """

    name: str

    @abstractmethod
    def fetch_countries(self) -> List[Country]:
        """返回全部国家。"""

    @abstractmethod
    def fetch_products(self) -> List[Product]:
        """返回全部商品。"""

    @abstractmethod
    def fetch_overrides(self) -> List[OverrideRecord]:
        """
        功能说明:
            返回所有手工覆盖值。
        返回:
            List[OverrideRecord]: (country_id, product_id, AnalysisOverride) 三元组列表。
        """

    @abstractmethod
    def fetch_daily_ads(
        self,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[DailyAdEntry]:
        """
        功能说明:
            获取指定时间范围内（闭区间）的每日广告费记录，边界为空表示不限制。
        参数:
            start (Optional[date]): 起始日期。
            end (Optional[date]): 结束日期。
        返回:
            List[DailyAdEntry]: 每日广告费记录列表。
        """
