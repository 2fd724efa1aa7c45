"""利润分析看板的命令行入口，串联分析表、期间快照、历史汇总与利润模拟。"""

import argparse
import json
import logging
from dataclasses import replace
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from .config import AppConfig
from .errors import DashboardError, ValidationError
from .history.rollup import SORT_COLUMNS, filter_snapshots, sort_periods, summarize, summarize_by_country
from .metrics.simulation import SimulationInputs
from .reporting.formatter import (
    format_currency,
    format_history_lines,
    format_rate,
    format_text_report,
    format_totals_line,
    table_to_dict,
)
from .services import (
    ServiceContext,
    analyze_history,
    create_service_context,
    delete_snapshot,
    export_history,
    get_snapshot,
    run_simulation,
    save_snapshot,
)

logger = logging.getLogger(__name__)

DATE_FMT = "%Y-%m-%d"


def build_parser() -> argparse.ArgumentParser:
    """
    功能说明:
        构建命令行参数解析器，包含 analyse / snapshot / history / simulate 四个子命令。
    返回:
        argparse.ArgumentParser: 解析器实例。
    """
    parser = argparse.ArgumentParser(description="Profit analysis dashboard runner")
    parser.add_argument("--persist", action="store_true", help="Persist data into the SQLite database.")
    parser.add_argument("--db-path", type=Path, help="Override database path (implies --persist).")
    parser.add_argument("--include-drafts", action="store_true", help="Include Draft products in analysis tables.")
    parser.add_argument("--json", action="store_true", help="Print JSON payloads instead of text reports.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    analyse = subparsers.add_parser("analyse", help="Compute the analysis table for one country.")
    analyse.add_argument("country", help="Country id, e.g. us.")
    analyse.add_argument("--start", type=str, help="Daily ads filter start date, format YYYY-MM-DD.")
    analyse.add_argument("--end", type=str, help="Daily ads filter end date, format YYYY-MM-DD.")
    analyse.add_argument("--output-json", type=Path, help="Path to save the JSON payload.")

    snapshot = subparsers.add_parser("snapshot", help="Manage period snapshots.")
    snapshot_commands = snapshot.add_subparsers(dest="snapshot_command", required=True)
    save = snapshot_commands.add_parser("save", help="Save the current table of a country as a period.")
    save.add_argument("country", help="Country id.")
    save.add_argument("period", help="Period name, e.g. 2024-W12.")
    save.add_argument("--start", type=str, help="Daily ads filter start date.")
    save.add_argument("--end", type=str, help="Daily ads filter end date.")
    listing = snapshot_commands.add_parser("list", help="List saved periods, newest first.")
    listing.add_argument("--country", help="Only periods of this country.")
    listing.add_argument("--query", help="Search period or country name.")
    listing.add_argument("--sort", choices=sorted(SORT_COLUMNS), help="Sort column.")
    listing.add_argument("--desc", action="store_true", help="Sort descending.")
    show = snapshot_commands.add_parser("show", help="Show one snapshot.")
    show.add_argument("snapshot_id")
    delete = snapshot_commands.add_parser("delete", help="Delete one snapshot.")
    delete.add_argument("snapshot_id")

    history = subparsers.add_parser("history", help="Summarize saved periods.")
    history.add_argument("--country", help="Only periods of this country.")
    history.add_argument("--query", help="Search period or country name.")
    history.add_argument("--export", type=Path, help="Export the filtered period list as CSV.")

    simulate = subparsers.add_parser("simulate", help="Run a COD profit simulation.")
    defaults = SimulationInputs()
    simulate.add_argument("--orders", type=float, default=defaults.total_orders, help="Total orders (leads).")
    simulate.add_argument("--confirmation-rate", type=float, default=defaults.confirmation_rate, help="Confirmation rate in %%.")
    simulate.add_argument("--delivery-rate", type=float, default=defaults.delivery_rate, help="Delivery rate in %%.")
    simulate.add_argument("--price", type=float, default=defaults.selling_price, help="Selling price.")
    simulate.add_argument("--cost", type=float, default=defaults.product_cost, help="Product cost per unit.")
    simulate.add_argument("--service-fee", type=float, default=defaults.service_fee, help="Service fee per delivered order.")
    simulate.add_argument("--ads", type=float, default=defaults.ads_cost, help="Total ads spend.")
    simulate.add_argument("--other", type=float, default=defaults.other_cost, help="Other lump-sum costs.")
    simulate.add_argument("--save-as", help="Save the scenario under this name.")
    return parser


def build_config(args: argparse.Namespace) -> AppConfig:
    """
    功能说明:
        在环境变量配置的基础上叠加命令行选项。
    参数:
        args (argparse.Namespace): 命令行解析得到的参数集合。
    返回:
        AppConfig: 用于后续运行的配置对象。
    """
    config = AppConfig.from_env()
    if args.persist or args.db_path is not None:
        config.storage = replace(
            config.storage,
            enabled=True,
            db_path=str(args.db_path) if args.db_path else config.storage.db_path,
        )
    if args.include_drafts:
        config.analysis = replace(config.analysis, include_drafts=True)
    return config


def _print_json(payload: Dict[str, Any]) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _snapshot_line(record: Dict[str, Any]) -> str:
    totals = record["totals"]
    currency = record["currency"]
    return (
        f"[{record['id']}] {record['periodName']} | {record['countryName']} | "
        f"Revenue {format_currency(totals['totalRevenue'], currency)} | "
        f"Profit {format_currency(totals['profit'], currency)} | "
        f"Margin {format_rate(totals['margin'])} | {record['createdAt']}"
    )


def _run_analyse(context: ServiceContext, args: argparse.Namespace) -> None:
    table = context.pipeline.run(
        country_id=args.country,
        overrides=context.overrides,
        start=parse_date(args.start),
        end=parse_date(args.end),
    )
    payload = table_to_dict(table)
    if args.json:
        _print_json(payload)
    else:
        print(format_text_report(table))
    if args.output_json:
        # 以 UTF-8 写入，保留中文字符。
        args.output_json.parent.mkdir(parents=True, exist_ok=True)
        args.output_json.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        print(f"JSON report written to: {args.output_json}")


def parse_date(value: Optional[str]) -> Optional[date]:
    """
    功能说明:
        将 `YYYY-MM-DD` 字符串解析为 `date` 对象。
    参数:
        value (Optional[str]): 用户输入的日期字符串，可为空。
    返回:
        Optional[date]: 成功解析后的日期；若为空则返回 `None`。
    """
    if not value:
        return None
    try:
        return datetime.strptime(value, DATE_FMT).date()
    except ValueError:
        raise ValidationError(f"日期格式应为 YYYY-MM-DD：{value}") from None


def _run_snapshot(context: ServiceContext, args: argparse.Namespace) -> None:
    command = args.snapshot_command
    if command == "save":
        result = save_snapshot(context, country_id=args.country, period_name=args.period, start=args.start, end=args.end)
        if args.json:
            _print_json(result)
        else:
            print(f"Snapshot saved: {_snapshot_line(result['snapshot'])}")
    elif command == "list":
        snapshots = filter_snapshots(context.snapshots.list(), country_id=args.country, query=args.query)
        snapshots = sort_periods(snapshots, args.sort, ("desc" if args.desc else "asc") if args.sort else None)
        lines: List[str] = format_history_lines(snapshots)
        print("\n".join(lines) if lines else "No snapshots saved yet.")
    elif command == "show":
        snapshot = context.snapshots.get(args.snapshot_id)
        if args.json:
            _print_json(get_snapshot(context, snapshot_id=args.snapshot_id))
            return
        print(f"{snapshot.period_name} | {snapshot.country_name} ({snapshot.currency}) | {snapshot.created_at}")
        print(format_totals_line(snapshot.totals, snapshot.currency))
        for idx, row in enumerate(snapshot.rows, start=1):
            print(
                f"{idx}. {row.product_name} ({row.product_sku}) - Revenue {format_currency(row.revenue, snapshot.currency)}, "
                f"Profit {format_currency(row.profit, snapshot.currency)} ({format_rate(row.margin)})"
            )
    elif command == "delete":
        delete_snapshot(context, snapshot_id=args.snapshot_id)
        print(f"Snapshot {args.snapshot_id} deleted.")


def _run_history(context: ServiceContext, args: argparse.Namespace) -> None:
    result = analyze_history(context, country_id=args.country, query=args.query)
    if args.json:
        _print_json(result)
    elif result["count"] == 0:
        print(result["message"])
    else:
        snapshots = filter_snapshots(context.snapshots.list(), country_id=args.country, query=args.query)
        print(f"Periods: {len(snapshots)}")
        print(format_totals_line(summarize(snapshots), context.config.analysis.default_currency))
        for item in summarize_by_country(snapshots):
            print(f"- {item.country_name} ({item.snapshot_count} periods): {format_totals_line(item.totals, item.currency)}")
    if args.export:
        print(export_history(context, path=str(args.export), country_id=args.country, query=args.query)["message"])


def _run_simulate(context: ServiceContext, args: argparse.Namespace) -> None:
    result = run_simulation(
        context,
        inputs={
            "total_orders": args.orders,
            "confirmation_rate": args.confirmation_rate,
            "delivery_rate": args.delivery_rate,
            "selling_price": args.price,
            "product_cost": args.cost,
            "service_fee": args.service_fee,
            "ads_cost": args.ads,
            "other_cost": args.other,
        },
        save_as=args.save_as,
    )
    if args.json:
        _print_json(result)
        return
    results = result["results"]
    print(f"Confirmed {results['confirmed_orders']:.1f} | Delivered {results['delivered_orders']:.1f}")
    print(f"Revenue {results['total_revenue']:,.2f} | Costs {results['total_costs']:,.2f} | Profit {results['total_profit']:,.2f}")
    print(
        f"Profit/delivered {results['profit_per_delivered']:,.2f} | CPA {results['cpa']:,.2f} | "
        f"CPA delivered {results['cpa_delivered']:,.2f} | CPD {results['cpd']:,.2f} | TDC {results['tdc']:,.2f}"
    )
    if "saved" in result:
        print(f"Scenario saved as '{result['saved']['name']}' (id={result['saved']['id']}).")


def run_cli(argv: Optional[List[str]] = None) -> int:
    """
    功能说明:
        命令行主入口：读取参数、构建业务上下文并分派子命令。
    参数:
        argv (Optional[List[str]]): 手动传入的参数列表。
    返回:
        int: 进程退出码，业务异常时为 1。
    """
    args = build_parser().parse_args(argv)
    config = build_config(args)
    logging.basicConfig(level=config.log_level, format='%(asctime)s [%(levelname)s] %(name)s: %(message)s')
    handlers = {
        "analyse": _run_analyse,
        "snapshot": _run_snapshot,
        "history": _run_history,
        "simulate": _run_simulate,
    }
    try:
        context = create_service_context(config)
        handlers[args.command](context, args)
    except DashboardError as exc:
        logger.error("%s failed: %s", args.command, exc)
        print(f"Error: {exc}")
        return 1
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(run_cli())
