from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, replace
from datetime import date
from pathlib import Path
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Tuple

from .catalog import Catalog
from .config import AppConfig
from .data_sources.base import CatalogDataSource, DailyAdEntry
from .data_sources.demo import create_default_demo_source
from .errors import PersistenceError, ValidationError
from .history.rollup import filter_snapshots, sort_periods, summarize, summarize_by_country, time_series
from .metrics.ads_ledger import DailyAdLedger
from .metrics.calculations import AnalysisTable
from .metrics.overrides import AnalysisOverride, OverrideStore
from .metrics.simulation import ScenarioBook, SimulationInputs, simulate
from .pipeline.pipeline import AnalysisPipeline, build_overview
from .reporting.formatter import (
    country_summary_to_dict,
    export_history_csv,
    snapshot_to_dict,
    table_to_dict,
    totals_to_record,
)
from .snapshots.manager import InMemorySnapshotStore, SnapshotManager
from .storage.repository import SQLiteRepository
from .utils.dates import preset_range
from .utils.debounce import EditDebouncer

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_METRICS: List[str] = ["total_revenue", "profit", "margin"]

# 模拟输入的 camelCase 名称 -> SimulationInputs 字段
SIMULATION_KEYS: Dict[str, str] = {
    "totalOrders": "total_orders",
    "confirmationRate": "confirmation_rate",
    "deliveryRate": "delivery_rate",
    "sellingPrice": "selling_price",
    "productCost": "product_cost",
    "serviceFee": "service_fee",
    "adsCost": "ads_cost",
    "otherCost": "other_cost",
}


@dataclass
class ServiceContext:
    config: AppConfig
    data_source: CatalogDataSource
    catalog: Catalog
    overrides: OverrideStore
    ledger: DailyAdLedger
    snapshots: SnapshotManager
    scenarios: ScenarioBook
    repository: Optional[SQLiteRepository] = None

    @property
    def pipeline(self) -> AnalysisPipeline:
        return AnalysisPipeline(config=self.config, catalog=self.catalog, ledger=self.ledger)


def _seed_repository(repository: SQLiteRepository, source: CatalogDataSource) -> None:
    repository.save_countries(source.fetch_countries())
    repository.save_products(source.fetch_products())
    for country_id, product_id, override in source.fetch_overrides():
        repository.save_override(country_id, product_id, override)
    repository.save_daily_ads(source.fetch_daily_ads())
    logger.info("Seeded empty database from %s", source.name)


def create_service_context(
    config: AppConfig,
    *,
    data_source: Optional[CatalogDataSource] = None,
    repository: Optional[SQLiteRepository] = None,
) -> ServiceContext:
    source = data_source or create_default_demo_source(config)
    if repository is None and config.storage.enabled:
        repository = SQLiteRepository(config.storage.db_path)
    if repository is not None:
        repository.initialize()
        if repository.is_empty():
            _seed_repository(repository, source)
        source = repository

    overrides = OverrideStore()
    for country_id, product_id, override in source.fetch_overrides():
        overrides.update(country_id, product_id, override)

    store = repository if repository is not None else InMemorySnapshotStore()
    return ServiceContext(
        config=config,
        data_source=source,
        catalog=Catalog(source.fetch_countries(), source.fetch_products()),
        overrides=overrides,
        ledger=DailyAdLedger(source.fetch_daily_ads()),
        snapshots=SnapshotManager(store),
        scenarios=ScenarioBook(repository.fetch_simulations() if repository is not None else None),
        repository=repository,
    )


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError(f"日期格式应为 YYYY-MM-DD：{value}") from None


def _resolve_window(
    context: ServiceContext,
    start: Optional[str],
    end: Optional[str],
    preset: Optional[str] = None,
) -> Optional[Tuple[date, date]]:
    parsed_start = _parse_date(start)
    parsed_end = _parse_date(end)
    if preset:
        return preset_range(preset, custom_start=parsed_start, custom_end=parsed_end)
    if parsed_start is not None and parsed_end is not None:
        return parsed_start, parsed_end
    return preset_range(context.config.analysis.date_preset)


def _build_table(
    context: ServiceContext,
    country_id: str,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    include_drafts: Optional[bool] = None,
) -> AnalysisTable:
    window = _resolve_window(context, start, end)
    return context.pipeline.run(
        country_id=country_id,
        overrides=context.overrides,
        start=window[0] if window else None,
        end=window[1] if window else None,
        include_drafts=include_drafts,
    )


def list_catalog(context: ServiceContext) -> Dict[str, Any]:
    return {
        "countries": [
            {
                "id": country.id,
                "name": country.name,
                "currency": country.currency,
                "code": country.code,
                "feePerOrder": country.fee_per_order,
            }
            for country in context.catalog.countries
        ],
        "products": [
            {
                "id": product.id,
                "sku": product.sku,
                "name": product.name,
                "status": product.status.value,
                "cost": product.cost,
                "price": product.price,
                "countryIds": list(product.country_ids),
            }
            for product in context.catalog.products
        ],
    }


def compute_analysis(
    context: ServiceContext,
    *,
    country_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    include_drafts: Optional[bool] = None,
) -> Dict[str, Any]:
    table = _build_table(context, country_id, start=start, end=end, include_drafts=include_drafts)
    return {"analysis": table_to_dict(table)}


def update_override(
    context: ServiceContext,
    *,
    country_id: str,
    product_id: str,
    values: Mapping[str, Any],
) -> Dict[str, Any]:
    context.catalog.get_country(country_id)
    context.catalog.get_product(product_id)
    patch = AnalysisOverride.from_mapping(values)
    merged = context.overrides.get(country_id, product_id).merge(patch)
    if context.repository is not None:
        context.repository.save_override(country_id, product_id, merged)
    context.overrides.update(country_id, product_id, patch)
    return {"countryId": country_id, "productId": product_id, "override": merged.to_dict()}


def create_override_debouncer(
    context: ServiceContext,
    *,
    clock: Callable[[], float] = time.monotonic,
) -> EditDebouncer:
    """
    功能说明:
        创建覆盖值单元格的编辑防抖器，静默期取自 analysis.debounce_seconds。
    参数:
        context (ServiceContext): 业务上下文，写出时调用 update_override。
        clock (Callable[[], float]): 单调时钟，便于测试注入。
    返回:
        EditDebouncer: key 为 (country_id, product_id, 字段名) 的防抖器。
    """

    def _write(key: Hashable, value: object) -> None:
        country_id, product_id, field = key  # type: ignore[misc]
        update_override(context, country_id=country_id, product_id=product_id, values={field: value})

    return EditDebouncer(_write, delay_seconds=context.config.analysis.debounce_seconds, clock=clock)


def record_daily_ads(context: ServiceContext, *, entries: List[Mapping[str, Any]]) -> Dict[str, Any]:
    parsed: List[DailyAdEntry] = []
    for item in entries:
        product_id = str(item.get("productId") or item.get("product_id") or "")
        context.catalog.get_product(product_id)
        day = _parse_date(item.get("date") or item.get("day"))
        if day is None:
            raise ValidationError(f"缺少日期：{item}")
        try:
            amount = float(item.get("amount", 0))
        except (TypeError, ValueError):
            raise ValidationError(f"广告花费不是有效数值：{product_id} {day.isoformat()} {item.get('amount')!r}") from None
        if amount < 0:
            raise ValidationError(f"广告花费不能为负数：{product_id} {day.isoformat()} {amount}")
        parsed.append(DailyAdEntry(product_id=product_id, day=day, amount=amount))
    if context.repository is not None:
        context.repository.save_daily_ads(parsed)
    context.ledger.record_many(parsed)
    logger.info("Recorded %d daily ad entries", len(parsed))
    return {"saved": len(parsed)}


def daily_ad_totals(
    context: ServiceContext,
    *,
    start: Optional[str] = None,
    end: Optional[str] = None,
    preset: Optional[str] = None,
) -> Dict[str, Any]:
    window = _resolve_window(context, start, end, preset)
    if window is None:
        return {"start": None, "end": None, "totals": context.ledger.totals()}
    return {
        "start": window[0].isoformat(),
        "end": window[1].isoformat(),
        "totals": context.ledger.totals(*window),
    }


def save_snapshot(
    context: ServiceContext,
    *,
    country_id: str,
    period_name: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> Dict[str, Any]:
    table = _build_table(context, country_id, start=start, end=end)
    snapshot = context.snapshots.create_from_table(period_name, table)
    return {"snapshot": snapshot_to_dict(snapshot)}


def get_snapshot(context: ServiceContext, *, snapshot_id: str) -> Dict[str, Any]:
    return {"snapshot": snapshot_to_dict(context.snapshots.get(snapshot_id))}


def load_snapshot_for_edit(context: ServiceContext, *, snapshot_id: str) -> Dict[str, Any]:
    # 先在副本上合并并落库，成功后再写入内存覆盖值仓。
    staged = context.overrides.copy()
    snapshot = context.snapshots.load_for_edit(snapshot_id, staged)
    keys = [(snapshot.country_id, row.product_id) for row in snapshot.rows]
    if context.repository is not None:
        for country_id, product_id in keys:
            context.repository.save_override(country_id, product_id, staged.get(country_id, product_id))
    for country_id, product_id in keys:
        context.overrides.update(country_id, product_id, staged.get(country_id, product_id))
    return {"snapshot": snapshot_to_dict(snapshot)}


def update_snapshot(
    context: ServiceContext,
    *,
    snapshot_id: str,
    period_name: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> Dict[str, Any]:
    current = context.snapshots.get(snapshot_id)
    table = _build_table(context, current.country_id, start=start, end=end)
    snapshot = context.snapshots.update(snapshot_id, table.rows, table.totals, period_name=period_name)
    return {"snapshot": snapshot_to_dict(snapshot)}


def rename_snapshot(context: ServiceContext, *, snapshot_id: str, period_name: str) -> Dict[str, Any]:
    snapshot = context.snapshots.rename(snapshot_id, period_name)
    return {"snapshot": snapshot_to_dict(snapshot, include_rows=False)}


def delete_snapshot(context: ServiceContext, *, snapshot_id: str) -> Dict[str, Any]:
    context.snapshots.delete(snapshot_id)
    return {"deleted": snapshot_id}


def list_snapshots(
    context: ServiceContext,
    *,
    country_id: Optional[str] = None,
    query: Optional[str] = None,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    snapshots = filter_snapshots(context.snapshots.list(), country_id=country_id, query=query)
    snapshots = sort_periods(snapshots, sort, direction)
    if limit is not None:
        snapshots = snapshots[:limit]
    return {"snapshots": [snapshot_to_dict(item, include_rows=False) for item in snapshots]}


def analyze_history(
    context: ServiceContext,
    *,
    country_id: Optional[str] = None,
    query: Optional[str] = None,
    limit: Optional[int] = None,
    metrics: Optional[List[str]] = None,
) -> Dict[str, Any]:
    snapshots = filter_snapshots(context.snapshots.list(), country_id=country_id, query=query)
    if limit is not None:
        snapshots = snapshots[:limit]
    if not snapshots:
        return {
            "count": 0,
            "summary": totals_to_record(summarize([])),
            "by_country": [],
            "time_series": {},
            "message": "暂无符合条件的历史快照。",
        }
    metrics = metrics or DEFAULT_HISTORY_METRICS
    return {
        "count": len(snapshots),
        "summary": totals_to_record(summarize(snapshots)),
        "by_country": [country_summary_to_dict(item) for item in summarize_by_country(snapshots)],
        "time_series": {metric: time_series(snapshots, metric) for metric in metrics},
    }


def export_history(
    context: ServiceContext,
    *,
    path: str,
    country_id: Optional[str] = None,
    query: Optional[str] = None,
) -> Dict[str, Any]:
    snapshots = filter_snapshots(context.snapshots.list(), country_id=country_id, query=query)
    if not snapshots:
        return {"message": "暂无可导出的历史快照。", "count": 0}
    output_path = export_history_csv(snapshots, Path(path))
    return {"message": f"历史数据已导出到 {output_path}", "count": len(snapshots)}


def _simulation_inputs(values: Mapping[str, Any]) -> SimulationInputs:
    known = set(SIMULATION_KEYS.values())
    parsed: Dict[str, float] = {}
    for key, value in values.items():
        name = key if key in known else SIMULATION_KEYS.get(key)
        if name is None:
            raise ValidationError(f"不支持的模拟字段：{key}")
        try:
            parsed[name] = float(value)
        except (TypeError, ValueError):
            raise ValidationError(f"模拟字段 {key} 不是有效数值：{value!r}") from None
    return SimulationInputs(**parsed)


def run_simulation(
    context: ServiceContext,
    *,
    inputs: Mapping[str, Any],
    save_as: Optional[str] = None,
) -> Dict[str, Any]:
    parsed = _simulation_inputs(inputs)
    results = simulate(parsed)
    payload: Dict[str, Any] = {"inputs": asdict(parsed), "results": asdict(results)}
    if save_as is not None:
        scenario = context.scenarios.save(save_as, parsed, results)
        if context.repository is not None:
            try:
                context.repository.save_simulation(scenario)
            except PersistenceError:
                context.scenarios.delete(scenario.id)
                raise
        payload["saved"] = scenario.to_dict()
    return payload


def list_simulations(context: ServiceContext) -> Dict[str, Any]:
    return {"simulations": [scenario.to_dict() for scenario in context.scenarios.list()]}


def delete_simulation(context: ServiceContext, *, scenario_id: str) -> Dict[str, Any]:
    if context.repository is not None:
        context.repository.delete_simulation(scenario_id)
    context.scenarios.delete(scenario_id)
    return {"deleted": scenario_id}


def dashboard_overview(
    context: ServiceContext,
    *,
    country_id: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> Dict[str, Any]:
    window = _resolve_window(context, start, end)
    overview = build_overview(
        context.catalog,
        context.overrides,
        country_id,
        daily_totals=context.ledger.totals(*window) if window else None,
        include_drafts=context.config.analysis.include_drafts,
    )
    return {
        "totals": totals_to_record(overview.totals),
        "countries": [
            {
                "countryId": table.country.id,
                "countryName": table.country.name,
                "currency": table.country.currency,
                "totals": totals_to_record(table.totals),
            }
            for table in overview.by_country
        ],
        "productCount": overview.product_count,
        "activeProductCount": overview.active_product_count,
    }


def delete_country(context: ServiceContext, *, country_id: str) -> Dict[str, Any]:
    touched = [
        replace(product, country_ids=[cid for cid in product.country_ids if cid != country_id])
        for product in context.catalog.products
        if country_id in product.country_ids
    ]
    if context.repository is not None:
        context.repository.delete_country(country_id, touched)
    context.catalog.delete_country(country_id, context.overrides)
    return {"deleted": country_id, "unassignedProducts": [product.id for product in touched]}


def delete_product(context: ServiceContext, *, product_id: str) -> Dict[str, Any]:
    if context.repository is not None:
        context.repository.delete_product(product_id)
    context.catalog.delete_product(product_id, context.overrides)
    context.ledger.remove_product(product_id)
    return {"deleted": product_id}
