import pytest

from profit_dashboard.errors import ValidationError
from profit_dashboard.history.rollup import (
    PeriodSort,
    filter_snapshots,
    sort_periods,
    summarize,
    summarize_by_country,
    time_series,
)
from profit_dashboard.metrics.calculations import aggregate_rows
from profit_dashboard.snapshots.manager import AnalysisSnapshot, InMemorySnapshotStore, SnapshotManager


@pytest.fixture
def history(make_row):
    def _snapshot(snapshot_id, period_name, country_id, country_name, created_at, **values):
        rows = [make_row("p1", **values)]
        return AnalysisSnapshot(
            id=snapshot_id,
            period_name=period_name,
            country_id=country_id,
            country_name=country_name,
            currency="USD" if country_id == "us" else "MAD",
            rows=rows,
            totals=aggregate_rows(rows),
            created_at=created_at,
        )

    return [
        _snapshot("a", "March W1", "us", "United States", "2024-03-08T00:00:00+00:00", total_orders=10, orders_confirmed=9, revenue=300, ads=30),
        _snapshot("b", "March W1", "ma", "Morocco", "2024-03-07T00:00:00+00:00", total_orders=100, orders_confirmed=50, revenue=100, ads=10),
        _snapshot("c", "February", "us", "United States", "2024-03-01T00:00:00+00:00", total_orders=0, revenue=0),
    ]


def test_summary_uses_weighted_ratios(history):
    totals = summarize(history[:2])
    # (9 + 50) / (10 + 100)，不是 90% 与 50% 的简单平均。
    assert totals.confirmation_rate == pytest.approx(59 / 110 * 100)
    assert totals.total_revenue == 400
    assert totals.row_count == 2
    assert totals.cpa == pytest.approx(40 / 110)


def test_summary_of_nothing_is_zero():
    totals = summarize([])
    assert totals.total_orders == 0
    assert totals.margin == 0
    assert totals.cpa is None


def test_summarize_by_country_keeps_first_seen_order(history):
    groups = summarize_by_country(history)
    assert [group.country_id for group in groups] == ["us", "ma"]
    assert groups[0].snapshot_count == 2
    assert groups[0].totals.total_orders == 10
    assert groups[1].currency == "MAD"


def test_filter_by_country_and_query(history):
    assert [item.id for item in filter_snapshots(history, country_id="us")] == ["a", "c"]
    assert [item.id for item in filter_snapshots(history, query="moro")] == ["b"]
    assert [item.id for item in filter_snapshots(history, query="MARCH")] == ["a", "b"]
    assert [item.id for item in filter_snapshots(history, country_id="ma", query="feb")] == []
    assert filter_snapshots(history, query="  ") == history


def test_period_sort_cycles_through_states(history):
    sorter = PeriodSort()
    sorter.click("total_revenue")
    assert [item.id for item in sorter.apply(history)] == ["c", "b", "a"]
    sorter.click("total_revenue")
    assert [item.id for item in sorter.apply(history)] == ["a", "b", "c"]
    sorter.click("total_revenue")
    assert sorter.column is None
    assert sorter.apply(history) == history


def test_period_sort_switching_column_restarts_ascending(history):
    sorter = PeriodSort()
    sorter.click("total_revenue")
    sorter.click("total_revenue")
    sorter.click("created_at")
    assert sorter.direction == "asc"
    assert [item.id for item in sorter.apply(history)] == ["c", "b", "a"]


def test_sort_rejects_unknown_column_or_direction(history):
    with pytest.raises(ValidationError):
        PeriodSort().click("color")
    with pytest.raises(ValidationError):
        sort_periods(history, "profit", "sideways")


def test_ties_keep_insertion_order(history):
    ordered = sort_periods(history, "period_name", "asc")
    assert [item.id for item in ordered] == ["c", "a", "b"]


def test_time_series_is_oldest_first(history):
    series = time_series(history, "total_revenue")
    assert [point["value"] for point in series] == [0, 100, 300]
    assert series[0]["period_name"] == "February"
    with pytest.raises(ValidationError):
        time_series(history, "happiness")


def test_time_series_keeps_save_order_within_one_second(make_row, country):
    manager = SnapshotManager(InMemorySnapshotStore(), clock=lambda: "2024-03-01T10:00:00+00:00")
    manager.create("first", country, [make_row("p1", revenue=10)])
    manager.create("second", country, [make_row("p1", revenue=20)])

    series = time_series(manager.list(), "profit")
    assert [point["period_name"] for point in series] == ["first", "second"]
