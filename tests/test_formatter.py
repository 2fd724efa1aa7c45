import csv

from profit_dashboard.metrics.calculations import AnalysisTable, aggregate_rows, build_analysis_table
from profit_dashboard.reporting.formatter import (
    PLACEHOLDER,
    export_history_csv,
    format_currency,
    format_number,
    format_rate,
    format_text_report,
    table_to_dict,
    totals_to_record,
)
from profit_dashboard.snapshots.manager import AnalysisSnapshot


def test_format_currency():
    assert format_currency(1234.5, "USD") == "$1,234.50"
    assert format_currency(-3, "eur") == "-€3.00"
    assert format_currency(120, "MAD") == "MAD 120.00"
    assert format_currency(None, "USD") == PLACEHOLDER


def test_format_number_and_rate():
    assert format_number(1000) == "1,000"
    assert format_number(2.5) == "2.5"
    assert format_number(-0.001) == "0"
    assert format_number(None) == PLACEHOLDER
    assert format_rate(54.237) == "54.2%"
    assert format_rate(None) == PLACEHOLDER


def test_totals_record_marks_unavailable_ratios(make_row):
    record = totals_to_record(aggregate_rows([make_row("p1", total_orders=4, revenue=100)]))
    assert record["totalOrders"] == 4
    assert record["cpa"] == 0
    assert record["cpad"] is None
    assert record["cpd"] is None
    assert record["rowCount"] == 1


def test_table_to_dict(catalog, overrides):
    overrides.update("us", "p1", {"revenue": 590, "deliveredOrders": 10, "quantityDelivery": 10})
    table = build_analysis_table(country=catalog.get_country("us"), products=catalog.products, overrides=overrides)
    payload = table_to_dict(table)
    assert payload["country"] == {"id": "us", "name": "United States", "currency": "USD"}
    assert [row["productId"] for row in payload["rows"]] == ["p1", "p2"]
    assert payload["rows"][0]["productFees"] == 150
    assert payload["totals"]["totalServiceFees"] == 70


def test_text_report_for_empty_table(country):
    table = AnalysisTable(country=country, rows=[], totals=aggregate_rows([]))
    text = format_text_report(table)
    assert text.startswith("Country: United States (USD)")
    assert "No products assigned" in text
    assert f"CPA {PLACEHOLDER}" in text


def test_export_history_csv(tmp_path, make_row):
    rows = [make_row("p1", total_orders=10, orders_confirmed=5, revenue=200, ads=20)]
    snapshot = AnalysisSnapshot(
        id="s1",
        period_name="March W1",
        country_id="us",
        country_name="United States",
        currency="USD",
        rows=rows,
        totals=aggregate_rows(rows),
        created_at="2024-03-08T00:00:00+00:00",
    )
    path = export_history_csv([snapshot], tmp_path / "out" / "history.csv")

    with path.open(encoding="utf-8") as handle:
        records = list(csv.DictReader(handle))
    assert len(records) == 1
    assert records[0]["periodName"] == "March W1"
    assert float(records[0]["totalRevenue"]) == 200
    assert float(records[0]["profit"]) == 180
    assert "countryId" not in records[0]
