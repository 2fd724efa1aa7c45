from datetime import date

import pytest

from profit_dashboard.config import AnalysisConfig, AppConfig
from profit_dashboard.errors import NotFoundError
from profit_dashboard.metrics.ads_ledger import DailyAdLedger
from profit_dashboard.pipeline.pipeline import AnalysisPipeline, build_overview


@pytest.fixture
def ledger() -> DailyAdLedger:
    ledger = DailyAdLedger()
    ledger.record("p1", date(2024, 3, 1), 12)
    ledger.record("p1", date(2024, 3, 2), 8)
    ledger.record("p1", date(2024, 3, 20), 100)
    return ledger


def _pipeline(catalog, ledger, **analysis) -> AnalysisPipeline:
    return AnalysisPipeline(config=AppConfig(analysis=AnalysisConfig(**analysis)), catalog=catalog, ledger=ledger)


def test_without_window_ads_come_from_overrides(catalog, overrides, ledger):
    overrides.update("us", "p1", {"ads": 30})
    table = _pipeline(catalog, ledger).run(country_id="us", overrides=overrides)
    assert [row.product_id for row in table.rows] == ["p1", "p2"]
    assert table.rows[0].ads == 30


def test_explicit_window_uses_daily_totals(catalog, overrides, ledger):
    overrides.update("us", "p1", {"ads": 30})
    overrides.update("us", "p2", {"ads": 4})
    table = _pipeline(catalog, ledger).run(
        country_id="us", overrides=overrides, start=date(2024, 3, 1), end=date(2024, 3, 2)
    )
    assert table.rows[0].ads == 20
    # 区间内没有记录的商品回退到覆盖值。
    assert table.rows[1].ads == 4
    assert table.totals.total_ads == 24


def test_include_drafts_from_config_or_argument(catalog, overrides, ledger):
    pipeline = _pipeline(catalog, ledger, include_drafts=True)
    assert len(pipeline.run(country_id="us", overrides=overrides).rows) == 3
    assert len(pipeline.run(country_id="us", overrides=overrides, include_drafts=False).rows) == 2


def test_unknown_country_raises(catalog, overrides, ledger):
    with pytest.raises(NotFoundError):
        _pipeline(catalog, ledger).run(country_id="fr", overrides=overrides)


def test_overview_weights_across_countries(catalog, overrides):
    overrides.update("us", "p1", {"totalOrders": 10, "ordersConfirmed": 9, "revenue": 100})
    overrides.update("ma", "p1", {"totalOrders": 30, "ordersConfirmed": 11, "revenue": 50})

    overview = build_overview(catalog, overrides)

    assert [table.country.id for table in overview.by_country] == ["us", "ma"]
    assert overview.totals.total_orders == 40
    assert overview.totals.confirmation_rate == 50
    assert overview.totals.total_revenue == 150
    assert overview.totals.row_count == 3
    assert overview.product_count == 3
    assert overview.active_product_count == 2


def test_overview_for_single_country(catalog, overrides):
    overview = build_overview(catalog, overrides, "ma")
    assert [table.country.id for table in overview.by_country] == ["ma"]
    with pytest.raises(NotFoundError):
        build_overview(catalog, overrides, "fr")
