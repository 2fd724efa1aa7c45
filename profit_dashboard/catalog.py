"""国家与商品目录的内存模型，负责局部更新与删除时的引用清理。"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, fields, replace
from typing import Dict, List, Optional

from .data_sources.base import Country, Product, ProductStatus
from .errors import NotFoundError
from .metrics.calculations import visible_products
from .metrics.overrides import OverrideStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CountryPatch:
    """国家允许局部更新的字段，None 表示不修改。"""

    name: Optional[str] = None
    currency: Optional[str] = None
    code: Optional[str] = None
    default_shipping: Optional[float] = None
    default_cod: Optional[float] = None
    default_return: Optional[float] = None


@dataclass(frozen=True)
class ProductPatch:
    """商品允许局部更新的字段，None 表示不修改。"""

    sku: Optional[str] = None
    name: Optional[str] = None
    status: Optional[ProductStatus] = None
    cost: Optional[float] = None
    price: Optional[float] = None
    country_ids: Optional[List[str]] = None
    image: Optional[str] = None


def _changes(patch: object) -> Dict[str, object]:
    return {
        item.name: getattr(patch, item.name)
        for item in fields(patch)  # type: ignore[arg-type]
        if getattr(patch, item.name) is not None
    }


class Catalog:
    """按插入顺序保存国家与商品。"""

    def __init__(self, countries: Optional[List[Country]] = None, products: Optional[List[Product]] = None) -> None:
        self._countries: Dict[str, Country] = {country.id: country for country in countries or []}
        self._products: Dict[str, Product] = {product.id: product for product in products or []}

    @property
    def countries(self) -> List[Country]:
        return list(self._countries.values())

    @property
    def products(self) -> List[Product]:
        return list(self._products.values())

    def get_country(self, country_id: str) -> Country:
        try:
            return self._countries[country_id]
        except KeyError:
            raise NotFoundError(f"国家不存在：{country_id}") from None

    def get_product(self, product_id: str) -> Product:
        try:
            return self._products[product_id]
        except KeyError:
            raise NotFoundError(f"商品不存在：{product_id}") from None

    def add_country(self, country: Country) -> Country:
        if not country.id:
            country = replace(country, id=str(uuid.uuid4()))
        self._countries[country.id] = country
        return country

    def update_country(self, country_id: str, patch: CountryPatch) -> Country:
        updated = replace(self.get_country(country_id), **_changes(patch))
        self._countries[country_id] = updated
        return updated

    def delete_country(self, country_id: str, overrides: Optional[OverrideStore] = None) -> None:
        """
        功能说明:
            删除国家并清理引用：从每个商品的 country_ids 中移除该 id（不删除商品），
            同时丢弃该国家下的覆盖值，其他国家的覆盖值保持不变。重复删除不报错。
        参数:
            country_id (str): 国家 id。
            overrides (Optional[OverrideStore]): 需要同步清理的覆盖值仓。
        """
        self._countries.pop(country_id, None)
        touched = 0
        for product_id, product in list(self._products.items()):
            if country_id in product.country_ids:
                remaining = [cid for cid in product.country_ids if cid != country_id]
                self._products[product_id] = replace(product, country_ids=remaining)
                touched += 1
        dropped = overrides.remove_country(country_id) if overrides is not None else 0
        logger.info(
            "Deleted country %s: unassigned from %d products, dropped %d overrides",
            country_id,
            touched,
            dropped,
        )

    def add_product(self, product: Product) -> Product:
        if not product.id:
            product = replace(product, id=str(uuid.uuid4()))
        self._products[product.id] = product
        return product

    def update_product(self, product_id: str, patch: ProductPatch) -> Product:
        changes = _changes(patch)
        if "country_ids" in changes:
            changes["country_ids"] = list(changes["country_ids"])  # type: ignore[arg-type]
        updated = replace(self.get_product(product_id), **changes)
        self._products[product_id] = updated
        return updated

    def delete_product(self, product_id: str, overrides: Optional[OverrideStore] = None) -> None:
        """删除商品及其在所有国家下的覆盖值，重复删除不报错。"""
        self._products.pop(product_id, None)
        if overrides is not None:
            overrides.remove_product(product_id)

    def products_for_country(self, country_id: str, include_drafts: bool = False) -> List[Product]:
        return visible_products(self.products, country_id, include_drafts)
