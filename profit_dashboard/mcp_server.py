"""Profit Dashboard MCP 服务模块，基于 FastMCP 暴露利润分析、快照与模拟工具。"""

import argparse
import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import MethodType
from typing import Any, Dict, List, Optional, cast

from typing_extensions import TypedDict

from mcp.server.fastmcp import Context, FastMCP

from profit_dashboard.config import AppConfig
from profit_dashboard.services import (
    ServiceContext,
    analyze_history as _analyze_history,
    compute_analysis as _compute_analysis,
    create_service_context,
    daily_ad_totals as _daily_ad_totals,
    dashboard_overview as _dashboard_overview,
    delete_country as _delete_country,
    delete_product as _delete_product,
    delete_simulation as _delete_simulation,
    delete_snapshot as _delete_snapshot,
    export_history as _export_history,
    list_catalog as _list_catalog,
    list_simulations as _list_simulations,
    list_snapshots as _list_snapshots,
    load_snapshot_for_edit as _load_snapshot_for_edit,
    record_daily_ads as _record_daily_ads,
    rename_snapshot as _rename_snapshot,
    run_simulation as _run_simulation,
    save_snapshot as _save_snapshot,
    update_override as _update_override,
    update_snapshot as _update_snapshot,
)
from starlette.middleware.cors import CORSMiddleware
from starlette.responses import Response
from starlette.routing import Route


logger = logging.getLogger(__name__)
logging.basicConfig(
    level=os.getenv('MCP_SERVER_LOG_LEVEL', os.getenv('LOG_LEVEL', 'INFO')).upper(),
    format='%(asctime)s [%(levelname)s] %(name)s: %(message)s',
)

GLOBAL_SERVICE_CONTEXT: Optional[ServiceContext] = None


class CountryRefPayload(TypedDict):
    id: str
    name: str
    currency: str


class AnalysisRowPayload(TypedDict):
    productId: str
    productName: str
    productSku: str
    totalOrders: float
    ordersConfirmed: float
    confirmationRate: float
    deliveredOrders: float
    deliveryRate: float
    deliveryRatePerLead: float
    revenue: float
    ads: float
    serviceFees: float
    quantityDelivery: float
    productFees: float
    profit: float
    margin: float


class TotalsPayload(TypedDict):
    totalOrders: float
    ordersConfirmed: float
    confirmationRate: float
    deliveredOrders: float
    deliveryRate: float
    deliveryRatePerLead: float
    quantityDelivery: float
    totalRevenue: float
    totalAds: float
    totalServiceFees: float
    totalProductFees: float
    profit: float
    margin: float
    cpa: Optional[float]
    cpad: Optional[float]
    cpd: Optional[float]
    rowCount: int


class AnalysisTablePayload(TypedDict):
    country: CountryRefPayload
    rows: List[AnalysisRowPayload]
    totals: TotalsPayload


class ComputeAnalysisResult(TypedDict):
    analysis: AnalysisTablePayload


class OverrideResult(TypedDict):
    countryId: str
    productId: str
    override: Dict[str, float]


class DailyAdInputPayload(TypedDict):
    productId: str
    date: str
    amount: float


class RecordDailyAdsResult(TypedDict):
    saved: int


class DailyAdTotalsResult(TypedDict):
    start: Optional[str]
    end: Optional[str]
    totals: Dict[str, float]


class SnapshotPayloadBase(TypedDict):
    id: str
    periodName: str
    countryId: str
    countryName: str
    currency: str
    totals: TotalsPayload
    createdAt: str


class SnapshotPayload(SnapshotPayloadBase, total=False):
    rows: List[AnalysisRowPayload]


class SnapshotResult(TypedDict):
    snapshot: SnapshotPayload


class SnapshotListResult(TypedDict):
    snapshots: List[SnapshotPayload]


class DeleteResult(TypedDict):
    deleted: str


class CountrySummaryPayload(TypedDict):
    countryId: str
    countryName: str
    currency: str
    snapshotCount: int
    totals: TotalsPayload


class TimeSeriesPointPayload(TypedDict):
    created_at: str
    period_name: str
    value: Optional[float]


class AnalyzeHistoryResultBase(TypedDict):
    count: int
    summary: TotalsPayload
    by_country: List[CountrySummaryPayload]
    time_series: Dict[str, List[TimeSeriesPointPayload]]


class AnalyzeHistoryResult(AnalyzeHistoryResultBase, total=False):
    message: str


class ExportHistoryResult(TypedDict):
    message: str
    count: int


class SimulationInputsPayload(TypedDict, total=False):
    totalOrders: float
    confirmationRate: float
    deliveryRate: float
    sellingPrice: float
    productCost: float
    serviceFee: float
    adsCost: float
    otherCost: float


class SimulationResultBase(TypedDict):
    inputs: Dict[str, float]
    results: Dict[str, Any]


class SimulationResult(SimulationResultBase, total=False):
    saved: Dict[str, Any]


class SimulationListResult(TypedDict):
    simulations: List[Dict[str, Any]]


class CountryOverviewPayload(TypedDict):
    countryId: str
    countryName: str
    currency: str
    totals: TotalsPayload


class OverviewResult(TypedDict):
    totals: TotalsPayload
    countries: List[CountryOverviewPayload]
    productCount: int
    activeProductCount: int


class DeleteCountryResult(TypedDict):
    deleted: str
    unassignedProducts: List[str]


class DashboardAppContext:
    """封装 MCP 生命周期中共享的业务依赖。

    Attributes:
        service_context (ServiceContext): 包含目录、覆盖值仓、快照管理器与仓储的聚合上下文。
    """

    def __init__(self, service_context: ServiceContext) -> None:
        """初始化上下文容器。

        Args:
            service_context (ServiceContext): 通过 :func:`create_service_context` 构建的业务上下文。
        """

        self.service_context = service_context


def _load_config() -> AppConfig:
    """加载运行配置，环境变量取值非法时直接失败，不回退为默认配置。

    Returns:
        AppConfig: 可用于初始化业务上下文的配置对象。

    Raises:
        ValueError: 环境变量中的数值无法解析。
    """

    try:
        return AppConfig.from_env()
    except ValueError as exc:
        logger.error("Invalid environment configuration: %s", exc)
        raise


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[DashboardAppContext]:
    """FastMCP 生命周期钩子，创建并共享业务上下文。

    Args:
        server (FastMCP): FastMCP 框架传入的服务器实例，本实现中仅为保持签名一致。

    Yields:
        DashboardAppContext: 包含业务依赖的上下文对象，供请求期间复用。
    """

    config = _load_config()
    service_context = create_service_context(config)
    global GLOBAL_SERVICE_CONTEXT
    GLOBAL_SERVICE_CONTEXT = service_context
    yield DashboardAppContext(service_context=service_context)


mcp = FastMCP(
    name="Profit Dashboard",
    instructions=(
        "Expose per-product, per-country profitability analysis through MCP tools and resources. "
        "Edit overrides and daily ad spend, compute analysis tables, save period snapshots, "
        "roll up history and run COD profit simulations."
    ),
    lifespan=app_lifespan,
    streamable_http_path="/mcp",
)

_original_streamable_http_app = mcp.streamable_http_app


def _streamable_http_app_with_cors(self: FastMCP):
    app = _original_streamable_http_app()

    async def _handle_options(request):
        requested_headers = request.headers.get("Access-Control-Request-Headers", "")
        allow_headers = requested_headers or "*"
        return Response(
            status_code=204,
            headers={
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Methods": "GET, POST, DELETE, OPTIONS",
                "Access-Control-Allow-Headers": allow_headers,
                "Access-Control-Max-Age": "600",
            },
        )

    app.router.routes.insert(
        0,
        Route(
            self.settings.streamable_http_path,
            _handle_options,
            methods=["OPTIONS"],
        ),
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["MCP-Session-Id"],
    )
    return app


mcp.streamable_http_app = MethodType(_streamable_http_app_with_cors, mcp)


# Inspector 会读取该列表自动安装调试所需的三方依赖。
mcp.dependencies = [
    "starlette",
    "typing_extensions",
]


def _service(ctx: Context) -> ServiceContext:
    """从请求上下文里提取共享业务依赖。

    Args:
        ctx (Context): FastMCP 提供的请求上下文，包含当前会话的 app 与 session 信息。

    Returns:
        ServiceContext: 预先构建的业务上下文实例。
    """

    try:
        return ctx.request_context.lifespan_context.service_context
    except (AttributeError, ValueError):
        pass
    if GLOBAL_SERVICE_CONTEXT is not None:
        return GLOBAL_SERVICE_CONTEXT
    raise RuntimeError("Service context is not available; lifespan may not be initialized.")


def _current_service() -> ServiceContext:
    if GLOBAL_SERVICE_CONTEXT is None:
        raise RuntimeError("Service context is not available; lifespan may not be initialized.")
    return GLOBAL_SERVICE_CONTEXT


@mcp.resource("profit-dashboard://config", mime_type="application/json")
def read_configuration() -> Dict[str, Any]:
    """返回当前分析配置，供客户端参考默认参数。

    Returns:
        Dict[str, Any]: 包含默认币种、日期筛选、Draft 可见性与存储信息的配置字典。
    """

    config = _current_service().config
    return {
        "default_currency": config.analysis.default_currency,
        "include_drafts": config.analysis.include_drafts,
        "date_preset": config.analysis.date_preset,
        "debounce_seconds": config.analysis.debounce_seconds,
        "storage_enabled": config.storage.enabled,
        "database_path": config.storage.db_path,
    }


@mcp.resource("profit-dashboard://history/{limit}", mime_type="application/json")
def read_recent_history(limit: str) -> Dict[str, Any]:
    """读取最近保存的期间快照（不含商品行）。

    Args:
        limit (str): 需要拉取的快照数量，来自 URI 模板。

    Returns:
        Dict[str, Any]: 包含快照摘要列表的响应数据。
    """

    return _list_snapshots(_current_service(), limit=max(int(limit), 0))


@mcp.tool(name="list_catalog")
def tool_list_catalog(ctx: Context) -> Dict[str, Any]:
    """列出全部国家与商品。

    Args:
        ctx (Context): FastMCP 请求上下文。

    Returns:
        Dict[str, Any]: countries 与 products 两个列表。
    """

    return _list_catalog(_service(ctx))


@mcp.tool(name="compute_analysis")
def tool_compute_analysis(
    ctx: Context,
    country_id: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
    include_drafts: Optional[bool] = None,
) -> ComputeAnalysisResult:
    """计算某国家的利润分析表（商品行 + 加权合计）。

    Args:
        ctx (Context): FastMCP 请求上下文。
        country_id (str): 国家 id。
        start (Optional[str]): 每日广告费筛选起始日期（ISO 字符串）。
        end (Optional[str]): 每日广告费筛选结束日期；起止都提供时才启用筛选。
        include_drafts (Optional[bool]): 是否包含 Draft 商品，默认取配置。

    Returns:
        Dict[str, Any]: 分析表。
    """

    result = _compute_analysis(
        _service(ctx),
        country_id=country_id,
        start=start,
        end=end,
        include_drafts=include_drafts,
    )
    return cast(ComputeAnalysisResult, result)


@mcp.tool(name="update_override")
def tool_update_override(
    ctx: Context,
    country_id: str,
    product_id: str,
    values: Dict[str, Optional[float]],
) -> OverrideResult:
    """局部更新某商品在某国家下的手工覆盖值。

    Args:
        ctx (Context): FastMCP 请求上下文。
        country_id (str): 国家 id。
        product_id (str): 商品 id。
        values (Dict[str, Optional[float]]): 需要修改的字段（camelCase 或 snake_case），只发送变更字段。

    Returns:
        Dict[str, Any]: 合并后的覆盖值。
    """

    result = _update_override(_service(ctx), country_id=country_id, product_id=product_id, values=values)
    return cast(OverrideResult, result)


@mcp.tool(name="record_daily_ads")
def tool_record_daily_ads(ctx: Context, entries: List[DailyAdInputPayload]) -> RecordDailyAdsResult:
    """批量写入每日广告费，同一商品同一天以最后一次写入为准。

    Args:
        ctx (Context): FastMCP 请求上下文。
        entries (List[DailyAdInputPayload]): productId / date / amount 列表。

    Returns:
        Dict[str, Any]: 写入条数。
    """

    result = _record_daily_ads(_service(ctx), entries=cast(List[Dict[str, Any]], entries))
    return cast(RecordDailyAdsResult, result)


@mcp.tool(name="daily_ad_totals")
def tool_daily_ad_totals(
    ctx: Context,
    start: Optional[str] = None,
    end: Optional[str] = None,
    preset: Optional[str] = None,
) -> DailyAdTotalsResult:
    """汇总日期区间内每个商品的广告花费。

    Args:
        ctx (Context): FastMCP 请求上下文。
        start (Optional[str]): 起始日期。
        end (Optional[str]): 结束日期。
        preset (Optional[str]): today / this_week / last_week / this_month / last_month / custom。

    Returns:
        Dict[str, Any]: 实际区间与 productId -> 合计。
    """

    result = _daily_ad_totals(_service(ctx), start=start, end=end, preset=preset)
    return cast(DailyAdTotalsResult, result)


@mcp.tool(name="save_snapshot")
def tool_save_snapshot(
    ctx: Context,
    country_id: str,
    period_name: str,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> SnapshotResult:
    """将某国家当前的分析表保存为命名期间快照。

    Args:
        ctx (Context): FastMCP 请求上下文。
        country_id (str): 国家 id。
        period_name (str): 期间名称，不能为空。
        start (Optional[str]): 每日广告费筛选起始日期。
        end (Optional[str]): 每日广告费筛选结束日期。

    Returns:
        Dict[str, Any]: 新快照。
    """

    result = _save_snapshot(_service(ctx), country_id=country_id, period_name=period_name, start=start, end=end)
    return cast(SnapshotResult, result)


@mcp.tool(name="list_snapshots")
def tool_list_snapshots(
    ctx: Context,
    country_id: Optional[str] = None,
    query: Optional[str] = None,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
    limit: Optional[int] = None,
) -> SnapshotListResult:
    """按国家与关键字筛选期间快照，可按列排序。

    Args:
        ctx (Context): FastMCP 请求上下文。
        country_id (Optional[str]): 国家 id。
        query (Optional[str]): 期间名称或国家名称关键字。
        sort (Optional[str]): 排序列，例如 profit、margin、period_name。
        direction (Optional[str]): asc / desc。
        limit (Optional[int]): 返回数量上限。

    Returns:
        Dict[str, Any]: 快照摘要列表。
    """

    result = _list_snapshots(
        _service(ctx),
        country_id=country_id,
        query=query,
        sort=sort,
        direction=direction,
        limit=limit,
    )
    return cast(SnapshotListResult, result)


@mcp.tool(name="load_snapshot_for_edit")
def tool_load_snapshot_for_edit(ctx: Context, snapshot_id: str) -> SnapshotResult:
    """将快照的可编辑字段合并回覆盖值仓，原快照保持不变。

    Args:
        ctx (Context): FastMCP 请求上下文。
        snapshot_id (str): 快照 id。

    Returns:
        Dict[str, Any]: 被回载的快照。
    """

    result = _load_snapshot_for_edit(_service(ctx), snapshot_id=snapshot_id)
    return cast(SnapshotResult, result)


@mcp.tool(name="update_snapshot")
def tool_update_snapshot(
    ctx: Context,
    snapshot_id: str,
    period_name: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> SnapshotResult:
    """用当前覆盖值重新计算并以同一 id 原子替换快照。

    Args:
        ctx (Context): FastMCP 请求上下文。
        snapshot_id (str): 快照 id。
        period_name (Optional[str]): 新期间名称，默认沿用。
        start (Optional[str]): 每日广告费筛选起始日期。
        end (Optional[str]): 每日广告费筛选结束日期。

    Returns:
        Dict[str, Any]: 替换后的快照。
    """

    result = _update_snapshot(
        _service(ctx),
        snapshot_id=snapshot_id,
        period_name=period_name,
        start=start,
        end=end,
    )
    return cast(SnapshotResult, result)


@mcp.tool(name="rename_snapshot")
def tool_rename_snapshot(ctx: Context, snapshot_id: str, period_name: str) -> SnapshotResult:
    """仅修改快照的期间名称。

    Args:
        ctx (Context): FastMCP 请求上下文。
        snapshot_id (str): 快照 id。
        period_name (str): 新期间名称。

    Returns:
        Dict[str, Any]: 重命名后的快照摘要。
    """

    result = _rename_snapshot(_service(ctx), snapshot_id=snapshot_id, period_name=period_name)
    return cast(SnapshotResult, result)


@mcp.tool(name="delete_snapshot")
def tool_delete_snapshot(ctx: Context, snapshot_id: str) -> DeleteResult:
    """删除快照，id 不存在时同样返回成功。

    Args:
        ctx (Context): FastMCP 请求上下文。
        snapshot_id (str): 快照 id。

    Returns:
        Dict[str, Any]: 被删除的 id。
    """

    return cast(DeleteResult, _delete_snapshot(_service(ctx), snapshot_id=snapshot_id))


@mcp.tool(name="analyze_history")
def tool_analyze_history(
    ctx: Context,
    country_id: Optional[str] = None,
    query: Optional[str] = None,
    limit: Optional[int] = None,
    metrics: Optional[list[str]] = None,
) -> AnalyzeHistoryResult:
    """对筛选后的期间快照做全局与分国家加权汇总，并输出时间序列。

    Args:
        ctx (Context): FastMCP 请求上下文。
        country_id (Optional[str]): 国家 id。
        query (Optional[str]): 期间名称或国家名称关键字。
        limit (Optional[int]): 仅统计最近的若干份快照。
        metrics (Optional[list[str]]): 时间序列指标，例如 total_revenue、profit。

    Returns:
        Dict[str, Any]: 汇总、分国家汇总与时间序列。
    """

    result = _analyze_history(
        _service(ctx),
        country_id=country_id,
        query=query,
        limit=limit,
        metrics=metrics,
    )
    return cast(AnalyzeHistoryResult, result)


@mcp.tool(name="export_history")
def tool_export_history(
    ctx: Context,
    path: str,
    country_id: Optional[str] = None,
    query: Optional[str] = None,
) -> ExportHistoryResult:
    """将期间列表导出为 CSV 文件。

    Args:
        ctx (Context): FastMCP 请求上下文。
        path (str): 目标文件路径，可以是相对路径。
        country_id (Optional[str]): 国家 id。
        query (Optional[str]): 期间名称或国家名称关键字。

    Returns:
        Dict[str, Any]: 导出状态与条数。
    """

    result = _export_history(_service(ctx), path=path, country_id=country_id, query=query)
    return cast(ExportHistoryResult, result)


@mcp.tool(name="run_simulation")
def tool_run_simulation(
    ctx: Context,
    inputs: SimulationInputsPayload,
    save_as: Optional[str] = None,
) -> SimulationResult:
    """按订单漏斗模拟 COD 利润，可选保存为方案。

    Args:
        ctx (Context): FastMCP 请求上下文。
        inputs (SimulationInputsPayload): 模拟输入。
        save_as (Optional[str]): 方案名称，提供时保存。

    Returns:
        Dict[str, Any]: 输入、结果以及已保存的方案。
    """

    result = _run_simulation(_service(ctx), inputs=cast(Dict[str, Any], inputs), save_as=save_as)
    return cast(SimulationResult, result)


@mcp.tool(name="list_simulations")
def tool_list_simulations(ctx: Context) -> SimulationListResult:
    """列出已保存的模拟方案。

    Args:
        ctx (Context): FastMCP 请求上下文。

    Returns:
        Dict[str, Any]: 方案列表。
    """

    return cast(SimulationListResult, _list_simulations(_service(ctx)))


@mcp.tool(name="delete_simulation")
def tool_delete_simulation(ctx: Context, scenario_id: str) -> DeleteResult:
    """删除已保存的模拟方案。

    Args:
        ctx (Context): FastMCP 请求上下文。
        scenario_id (str): 方案 id。

    Returns:
        Dict[str, Any]: 被删除的 id。
    """

    return cast(DeleteResult, _delete_simulation(_service(ctx), scenario_id=scenario_id))


@mcp.tool(name="dashboard_overview")
def tool_dashboard_overview(
    ctx: Context,
    country_id: Optional[str] = None,
    start: Optional[str] = None,
    end: Optional[str] = None,
) -> OverviewResult:
    """跨国家（或单个国家）的看板总览。

    Args:
        ctx (Context): FastMCP 请求上下文。
        country_id (Optional[str]): 国家 id，None 表示全部国家。
        start (Optional[str]): 每日广告费筛选起始日期。
        end (Optional[str]): 每日广告费筛选结束日期。

    Returns:
        Dict[str, Any]: 总合计、各国家合计与商品数量。
    """

    result = _dashboard_overview(_service(ctx), country_id=country_id, start=start, end=end)
    return cast(OverviewResult, result)


@mcp.tool(name="delete_country")
def tool_delete_country(ctx: Context, country_id: str) -> DeleteCountryResult:
    """删除国家：从所有商品中移除该国家分配，并丢弃该国家的覆盖值。

    Args:
        ctx (Context): FastMCP 请求上下文。
        country_id (str): 国家 id。

    Returns:
        Dict[str, Any]: 被删除的 id 与受影响的商品。
    """

    return cast(DeleteCountryResult, _delete_country(_service(ctx), country_id=country_id))


@mcp.tool(name="delete_product")
def tool_delete_product(ctx: Context, product_id: str) -> DeleteResult:
    """删除商品及其在所有国家下的覆盖值与每日广告费。

    Args:
        ctx (Context): FastMCP 请求上下文。
        product_id (str): 商品 id。

    Returns:
        Dict[str, Any]: 被删除的 id。
    """

    return cast(DeleteResult, _delete_product(_service(ctx), product_id=product_id))


def main(argv: Optional[list[str]] = None) -> None:
    """命令行入口，支持选择传输方式与监听参数。

    Args:
        argv (Optional[list[str]]): 手动传入的参数列表，通常由命令行自动提供。
    """

    parser = argparse.ArgumentParser(
        description="Run the Profit Dashboard MCP server."
    )
    parser.add_argument(
        "transport",
        nargs="?",
        default="stdio",
        choices=["stdio", "sse", "streamable-http"],
        help="Transport mechanism to expose (default: stdio).",
    )
    parser.add_argument(
        "--host",
        default=None,
        help="Optional host binding for HTTP-based transports.",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Optional port binding for HTTP-based transports.",
    )
    args = parser.parse_args(argv)

    logger.info("Starting MCP server transport=%s host=%s port=%s streamable_http_path=%s",
                args.transport, args.host or mcp.settings.host, args.port if args.port is not None else mcp.settings.port, getattr(mcp.settings, 'streamable_http_path', '(default)'))

    if args.host:
        mcp.settings.host = args.host
    if args.port is not None:
        mcp.settings.port = args.port

    mcp.run(transport=args.transport)


if __name__ == "__main__":
    main()
