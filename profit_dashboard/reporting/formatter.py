"""提供分析表、快照与历史汇总的结构化导出与文本格式化工具。"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from ..history.rollup import CountrySummary
from ..metrics.calculations import AnalysisRow, AnalysisTable, Totals
from ..snapshots.manager import AnalysisSnapshot

PLACEHOLDER = "–"
CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£"}

HISTORY_CSV_COLUMNS = [
    "id",
    "periodName",
    "countryName",
    "currency",
    "totalOrders",
    "ordersConfirmed",
    "deliveredOrders",
    "totalRevenue",
    "totalAds",
    "totalServiceFees",
    "totalProductFees",
    "profit",
    "margin",
    "createdAt",
]


def format_currency(value: Optional[float], currency: str = "USD") -> str:
    """
    功能说明:
        按币种格式化金额，保留两位小数；不可用的值显示占位符。
    参数:
        value (Optional[float]): 金额。
        currency (str): 币种代码。
    返回:
        str: 例如 `$1,234.50`、`-€3.00`、`KES 120.00`。
    """
    if value is None:
        return PLACEHOLDER
    symbol = CURRENCY_SYMBOLS.get(currency.upper())
    sign = "-" if value < 0 else ""
    amount = format(abs(value), ",.2f")
    if symbol:
        return f"{sign}{symbol}{amount}"
    return f"{sign}{currency.upper()} {amount}"


def format_number(value: Optional[float]) -> str:
    """最多两位小数、带千分位；不可用的值显示占位符。"""
    if value is None:
        return PLACEHOLDER
    text = format(round(value, 2), ",.2f").rstrip("0").rstrip(".")
    return "0" if text in {"-0", ""} else text


def format_rate(value: Optional[float]) -> str:
    if value is None:
        return PLACEHOLDER
    return f"{value:.1f}%"


def row_to_record(row: AnalysisRow) -> Dict[str, object]:
    """单行导出记录：一个扁平字典，供表格/PDF 等导出端直接消费。"""
    return {
        "productId": row.product_id,
        "productName": row.product_name,
        "productSku": row.product_sku,
        "totalOrders": row.total_orders,
        "ordersConfirmed": row.orders_confirmed,
        "confirmationRate": row.confirmation_rate,
        "deliveredOrders": row.delivered_orders,
        "deliveryRate": row.delivery_rate,
        "deliveryRatePerLead": row.delivery_rate_per_lead,
        "revenue": row.revenue,
        "ads": row.ads,
        "serviceFees": row.service_fees,
        "quantityDelivery": row.quantity_delivery,
        "productFees": row.product_fees,
        "profit": row.profit,
        "margin": row.margin,
    }


def totals_to_record(totals: Totals) -> Dict[str, object]:
    """合计导出记录，CPA/CPAD/CPD 不可用时为 None。"""
    return {
        "totalOrders": totals.total_orders,
        "ordersConfirmed": totals.orders_confirmed,
        "confirmationRate": totals.confirmation_rate,
        "deliveredOrders": totals.delivered_orders,
        "deliveryRate": totals.delivery_rate,
        "deliveryRatePerLead": totals.delivery_rate_per_lead,
        "quantityDelivery": totals.quantity_delivery,
        "totalRevenue": totals.total_revenue,
        "totalAds": totals.total_ads,
        "totalServiceFees": totals.total_service_fees,
        "totalProductFees": totals.total_product_fees,
        "profit": totals.profit,
        "margin": totals.margin,
        "cpa": totals.cpa,
        "cpad": totals.cpad,
        "cpd": totals.cpd,
        "rowCount": totals.row_count,
    }


def table_to_dict(table: AnalysisTable) -> Dict[str, object]:
    """
    功能说明:
        将 AnalysisTable 转换为可 JSON 序列化的字典。
    参数:
        table (AnalysisTable): 分析表。
    返回:
        Dict[str, object]: 国家信息、行记录与合计记录。
    """
    return {
        "country": {
            "id": table.country.id,
            "name": table.country.name,
            "currency": table.country.currency,
        },
        "rows": [row_to_record(row) for row in table.rows],
        "totals": totals_to_record(table.totals),
    }


def snapshot_to_dict(snapshot: AnalysisSnapshot, *, include_rows: bool = True) -> Dict[str, object]:
    payload: Dict[str, object] = {
        "id": snapshot.id,
        "periodName": snapshot.period_name,
        "countryId": snapshot.country_id,
        "countryName": snapshot.country_name,
        "currency": snapshot.currency,
        "totals": totals_to_record(snapshot.totals),
        "createdAt": snapshot.created_at,
    }
    if include_rows:
        payload["rows"] = [row_to_record(row) for row in snapshot.rows]
    return payload


def country_summary_to_dict(summary: CountrySummary) -> Dict[str, object]:
    return {
        "countryId": summary.country_id,
        "countryName": summary.country_name,
        "currency": summary.currency,
        "snapshotCount": summary.snapshot_count,
        "totals": totals_to_record(summary.totals),
    }


def _format_row_line(idx: int, row: AnalysisRow, currency: str) -> str:
    """
    功能说明:
        将单个商品行格式化为人类可读的文本。
    参数:
        idx (int): 行序号。
        row (AnalysisRow): 分析行。
        currency (str): 币种。
    返回:
        str: 格式化后的文本行。
    """
    return (
        f"{idx}. {row.product_name} ({row.product_sku}) - Orders {format_number(row.total_orders)}, "
        f"Confirmed {format_number(row.orders_confirmed)} ({format_rate(row.confirmation_rate)}), "
        f"Delivered {format_number(row.delivered_orders)} ({format_rate(row.delivery_rate)}), "
        f"Revenue {format_currency(row.revenue, currency)}, Ads {format_currency(row.ads, currency)}, "
        f"Fees {format_currency(row.service_fees + row.product_fees, currency)}, "
        f"Profit {format_currency(row.profit, currency)} ({format_rate(row.margin)})"
    )


def format_totals_line(totals: Totals, currency: str) -> str:
    return (
        f"Totals: Revenue {format_currency(totals.total_revenue, currency)}, "
        f"Ads {format_currency(totals.total_ads, currency)}, "
        f"Profit {format_currency(totals.profit, currency)}, Margin {format_rate(totals.margin)}, "
        f"Conf. {format_rate(totals.confirmation_rate)}, Del. {format_rate(totals.delivery_rate)}, "
        f"CPA {format_currency(totals.cpa, currency)}, CPAD {format_currency(totals.cpad, currency)}, "
        f"CPD {format_currency(totals.cpd, currency)}"
    )


def format_text_report(table: AnalysisTable) -> str:
    """
    功能说明:
        生成适合在控制台展示的国家分析表文本。
    参数:
        table (AnalysisTable): 分析表。
    返回:
        str: 多行字符串，包含国家、合计与商品行。
    """
    currency = table.country.currency
    lines: List[str] = [f"Country: {table.country.name} ({currency})"]
    lines.append(format_totals_line(table.totals, currency))
    if not table.rows:
        lines.append("No products assigned to this country (or no active products).")
        return "\n".join(lines)
    lines.append("Products:")
    for idx, row in enumerate(table.rows, start=1):
        lines.append(_format_row_line(idx, row, currency))
    return "\n".join(lines)


def format_history_lines(snapshots: Iterable[AnalysisSnapshot]) -> List[str]:
    return [
        f"[{item.id}] {item.period_name} | {item.country_name} | "
        f"Revenue {format_currency(item.totals.total_revenue, item.currency)} | "
        f"Profit {format_currency(item.totals.profit, item.currency)} | "
        f"Margin {format_rate(item.totals.margin)} | {item.created_at}"
        for item in snapshots
    ]


def export_history_csv(snapshots: Iterable[AnalysisSnapshot], path: Path | str) -> Path:
    """将期间列表导出为扁平 CSV，返回写入的路径。"""
    output_path = Path(path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with output_path.open("w", newline="", encoding="utf-8") as csvfile:
        writer = csv.DictWriter(csvfile, fieldnames=HISTORY_CSV_COLUMNS)
        writer.writeheader()
        for item in snapshots:
            record = snapshot_to_dict(item, include_rows=False)
            totals = record.pop("totals")
            record.pop("countryId")
            record.update({key: totals[key] for key in HISTORY_CSV_COLUMNS if key in totals})  # type: ignore[index]
            writer.writerow(record)
    return output_path
