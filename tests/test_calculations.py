import math

import pytest

from profit_dashboard.metrics.calculations import (
    aggregate_rows,
    aggregate_totals,
    build_analysis_table,
    derive,
    safe_divide,
)
from profit_dashboard.metrics.overrides import AnalysisOverride
from profit_dashboard.metrics.resolver import ResolvedInputs, resolve


def test_safe_divide_returns_default_on_zero_denominator():
    assert safe_divide(5, 0, 0.0) == 0.0
    assert safe_divide(5, 0, None) is None
    assert safe_divide(6, 3, None) == 2


def test_derive_zero_denominators_are_exactly_zero():
    metrics = derive(ResolvedInputs(ads=10))
    assert metrics.confirmation_rate == 0
    assert metrics.delivery_rate == 0
    assert metrics.delivery_rate_per_lead == 0
    assert metrics.margin == 0
    assert metrics.profit == -10
    for value in (metrics.confirmation_rate, metrics.delivery_rate, metrics.margin):
        assert not math.isnan(value)


def test_profit_scenario_matches_expected_values(product, country):
    override = AnalysisOverride(delivered_orders=10, revenue=590, ads=50, quantity_delivery=10)
    resolved = resolve(product, country, override)
    metrics = derive(resolved)
    assert resolved.service_fees == 70
    assert resolved.product_fees == 150
    assert metrics.profit == 320
    assert metrics.margin == pytest.approx(54.24, abs=0.01)


def test_aggregate_uses_weighted_rates(make_row):
    rows = [
        make_row("p1", total_orders=20, orders_confirmed=10),
        make_row("p2", total_orders=5, orders_confirmed=5),
    ]
    assert rows[0].confirmation_rate == 50
    assert rows[1].confirmation_rate == 100
    totals = aggregate_rows(rows)
    assert totals.confirmation_rate == 60
    assert totals.total_orders == 25
    assert totals.row_count == 2


def test_aggregate_cost_ratios(make_row):
    rows = [
        make_row("p1", total_orders=20, orders_confirmed=10, delivered_orders=8, ads=40, service_fees=16, product_fees=24, revenue=200),
        make_row("p2", total_orders=30, orders_confirmed=20, delivered_orders=12, ads=60, service_fees=24, product_fees=36, revenue=300),
    ]
    totals = aggregate_rows(rows)
    assert totals.total_ads == 100
    assert totals.cpa == 2
    assert totals.cpad == 5
    assert totals.cpd == (100 + 40 + 60) / 20
    assert totals.profit == 500 - 100 - 40 - 60
    assert totals.margin == pytest.approx(300 / 500 * 100)
    assert totals.delivery_rate == pytest.approx(20 / 30 * 100)
    assert totals.delivery_rate_per_lead == pytest.approx(20 / 50 * 100)


def test_cost_ratios_unavailable_without_orders(make_row):
    totals = aggregate_rows([make_row("p1", ads=30, revenue=100)])
    assert totals.cpa is None
    assert totals.cpad is None
    assert totals.cpd is None
    assert totals.margin == 70


def test_empty_aggregate():
    totals = aggregate_rows([])
    assert totals.row_count == 0
    assert totals.total_revenue == 0
    assert totals.confirmation_rate == 0
    assert totals.cpa is None


def test_aggregate_totals_matches_aggregating_all_rows(make_row):
    first = [make_row("p1", total_orders=20, orders_confirmed=10, delivered_orders=5, revenue=100, ads=20)]
    second = [
        make_row("p2", total_orders=5, orders_confirmed=5, delivered_orders=5, revenue=50, ads=5),
        make_row("p3", total_orders=100, orders_confirmed=30, delivered_orders=10, revenue=400, ads=80),
    ]
    combined = aggregate_totals([aggregate_rows(first), aggregate_rows(second)])
    assert combined == aggregate_rows(first + second)


def test_build_analysis_table_filters_drafts_and_assignment(catalog, overrides):
    country = catalog.get_country("us")
    table = build_analysis_table(country=country, products=catalog.products, overrides=overrides)
    assert [row.product_id for row in table.rows] == ["p1", "p2"]

    with_drafts = build_analysis_table(
        country=country,
        products=catalog.products,
        overrides=overrides,
        include_drafts=True,
    )
    assert [row.product_id for row in with_drafts.rows] == ["p1", "p2", "p3"]

    morocco = build_analysis_table(country=catalog.get_country("ma"), products=catalog.products, overrides=overrides)
    assert [row.product_id for row in morocco.rows] == ["p1"]


def test_build_analysis_table_uses_daily_totals_only_when_given(catalog, overrides):
    overrides.update("us", "p1", {"ads": 40, "revenue": 100})
    country = catalog.get_country("us")

    unfiltered = build_analysis_table(country=country, products=catalog.products, overrides=overrides)
    assert unfiltered.rows[0].ads == 40

    filtered = build_analysis_table(
        country=country,
        products=catalog.products,
        overrides=overrides,
        daily_totals={"p1": 15},
    )
    assert filtered.rows[0].ads == 15
    # p2 has no daily entries in range and no override.
    assert filtered.rows[1].ads == 0
    assert filtered.totals.total_ads == 15
