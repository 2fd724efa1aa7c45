from datetime import date
from typing import Any, Dict, Iterable

import pytest

from profit_dashboard import services
from profit_dashboard.config import AnalysisConfig, AppConfig, StorageConfig
from profit_dashboard.errors import NotFoundError, ValidationError


def _assert_keys(payload: Dict[str, Any], expected: Iterable[str]) -> None:
    missing = [key for key in expected if key not in payload]
    if missing:
        raise AssertionError(f"缺失字段: {missing}, payload={payload}")


def _row(payload: Dict[str, Any], product_id: str) -> Dict[str, Any]:
    return next(row for row in payload["analysis"]["rows"] if row["productId"] == product_id)


@pytest.fixture
def persisted_config(tmp_path) -> AppConfig:
    return AppConfig(storage=StorageConfig(enabled=True, db_path=str(tmp_path / "profit.sqlite3")))


def test_compute_analysis(context):
    payload = services.compute_analysis(context, country_id="us")
    _assert_keys(payload["analysis"], ("country", "rows", "totals"))
    assert [row["productId"] for row in payload["analysis"]["rows"]] == ["p1", "p2"]
    widget = _row(payload, "p1")
    assert widget["productFees"] == 300
    assert widget["serviceFees"] == 140
    assert widget["profit"] == 650

    windowed = services.compute_analysis(context, country_id="us", start="2024-03-01", end="2024-03-02")
    assert _row(windowed, "p1")["ads"] == 20
    assert _row(windowed, "p1")["profit"] == 720

    with_drafts = services.compute_analysis(context, country_id="us", include_drafts=True)
    assert len(with_drafts["analysis"]["rows"]) == 3


def test_compute_analysis_rejects_bad_input(context):
    with pytest.raises(NotFoundError):
        services.compute_analysis(context, country_id="fr")
    with pytest.raises(ValidationError):
        services.compute_analysis(context, country_id="us", start="03/01/2024", end="2024-03-02")


def test_update_override_merges(context):
    result = services.update_override(context, country_id="us", product_id="p1", values={"ads": 0, "serviceFees": 10})
    _assert_keys(result, ("countryId", "productId", "override"))
    assert result["override"]["revenue"] == 1180
    assert result["override"]["ads"] == 0

    widget = _row(services.compute_analysis(context, country_id="us"), "p1")
    assert widget["ads"] == 0
    assert widget["serviceFees"] == 10


def test_update_override_validates_before_writing(context):
    with pytest.raises(NotFoundError):
        services.update_override(context, country_id="us", product_id="p9", values={"ads": 1})
    with pytest.raises(ValidationError):
        services.update_override(context, country_id="us", product_id="p1", values={"discount": 1})
    assert context.overrides.get("us", "p1").ads == 90


def test_record_daily_ads_is_all_or_nothing(context):
    with pytest.raises(ValidationError):
        services.record_daily_ads(
            context,
            entries=[
                {"productId": "p2", "date": "2024-03-01", "amount": 5},
                {"productId": "p2", "date": "2024-03-02", "amount": -1},
            ],
        )
    with pytest.raises(ValidationError):
        services.record_daily_ads(
            context,
            entries=[
                {"productId": "p2", "date": "2024-03-01", "amount": 5},
                {"productId": "p2", "date": "2024-03-02", "amount": "abc"},
            ],
        )
    assert len(context.ledger) == 2

    saved = services.record_daily_ads(
        context,
        entries=[
            {"productId": "p2", "date": "2024-03-01", "amount": 5},
            {"product_id": "p1", "day": "2024-03-01", "amount": 2},
        ],
    )
    assert saved == {"saved": 2}

    totals = services.daily_ad_totals(context, start="2024-03-01", end="2024-03-01")
    assert totals == {"start": "2024-03-01", "end": "2024-03-01", "totals": {"p1": 2, "p2": 5}}
    assert services.daily_ad_totals(context)["start"] is None


def test_snapshot_lifecycle(context):
    created = services.save_snapshot(context, country_id="us", period_name="2024-W10")["snapshot"]
    _assert_keys(created, ("id", "periodName", "countryName", "currency", "totals", "rows", "createdAt"))
    assert created["totals"]["totalRevenue"] == 1180

    services.update_override(context, country_id="us", product_id="p1", values={"revenue": 2000})
    updated = services.update_snapshot(context, snapshot_id=created["id"])["snapshot"]
    assert updated["id"] == created["id"]
    assert updated["totals"]["totalRevenue"] == 2000

    renamed = services.rename_snapshot(context, snapshot_id=created["id"], period_name="Week ten")["snapshot"]
    assert renamed["periodName"] == "Week ten"
    assert "rows" not in renamed

    listed = services.list_snapshots(context, query="week")["snapshots"]
    assert [item["id"] for item in listed] == [created["id"]]

    assert services.delete_snapshot(context, snapshot_id=created["id"]) == {"deleted": created["id"]}
    with pytest.raises(NotFoundError):
        services.get_snapshot(context, snapshot_id=created["id"])


def test_load_snapshot_for_edit_restores_values(context):
    snapshot = services.save_snapshot(context, country_id="us", period_name="2024-W10")["snapshot"]
    services.update_override(context, country_id="us", product_id="p1", values={"revenue": 1, "ads": 1})

    services.load_snapshot_for_edit(context, snapshot_id=snapshot["id"])

    restored = context.overrides.get("us", "p1")
    assert restored.revenue == 1180
    assert restored.ads == 90


def test_history_analysis_and_export(context, tmp_path):
    empty = services.analyze_history(context)
    assert empty["count"] == 0
    assert "message" in empty
    assert services.export_history(context, path=str(tmp_path / "h.csv"))["count"] == 0

    services.save_snapshot(context, country_id="us", period_name="2024-W10")
    services.save_snapshot(context, country_id="ma", period_name="2024-W10")

    history = services.analyze_history(context, metrics=["profit"])
    _assert_keys(history, ("count", "summary", "by_country", "time_series"))
    assert history["count"] == 2
    assert [item["countryId"] for item in history["by_country"]] == ["ma", "us"]
    assert list(history["time_series"]) == ["profit"]

    exported = services.export_history(context, path=str(tmp_path / "h.csv"), country_id="us")
    assert exported["count"] == 1
    assert (tmp_path / "h.csv").exists()


def test_run_simulation(context):
    payload = services.run_simulation(
        context,
        inputs={"totalOrders": 100, "confirmationRate": 60, "delivery_rate": 50, "sellingPrice": 40, "productCost": 10},
        save_as="Launch",
    )
    _assert_keys(payload, ("inputs", "results", "saved"))
    assert payload["results"]["delivered_orders"] == 30
    assert payload["inputs"]["service_fee"] == 5.7

    listed = services.list_simulations(context)["simulations"]
    assert [item["name"] for item in listed] == ["Launch"]
    services.delete_simulation(context, scenario_id=listed[0]["id"])
    assert services.list_simulations(context)["simulations"] == []

    with pytest.raises(ValidationError):
        services.run_simulation(context, inputs={"discount": 1})
    with pytest.raises(ValidationError):
        services.run_simulation(context, inputs={"totalOrders": "abc"})


def test_run_simulation_fills_missing_inputs_with_defaults(context):
    payload = services.run_simulation(context, inputs={"sellingPrice": 50})
    assert payload["inputs"]["total_orders"] == 180
    assert payload["inputs"]["ads_cost"] == 310
    assert payload["results"]["delivered_orders"] == pytest.approx(50.4)


def test_dashboard_overview(context):
    overview = services.dashboard_overview(context)
    _assert_keys(overview, ("totals", "countries", "productCount", "activeProductCount"))
    assert overview["productCount"] == 3
    assert overview["activeProductCount"] == 2
    assert [item["countryId"] for item in overview["countries"]] == ["us", "ma"]
    assert overview["totals"]["totalRevenue"] == 1180


def test_delete_country_and_product(context):
    result = services.delete_country(context, country_id="us")
    assert result == {"deleted": "us", "unassignedProducts": ["p1", "p2", "p3"]}
    catalog = services.list_catalog(context)
    assert [item["id"] for item in catalog["countries"]] == ["ma"]
    assert context.overrides.for_country("us") == {}

    services.delete_product(context, product_id="p1")
    assert [item["id"] for item in services.list_catalog(context)["products"]] == ["p2", "p3"]
    assert len(context.ledger) == 0


def test_persisted_context_survives_restart(persisted_config, static_source):
    first = services.create_service_context(persisted_config, data_source=static_source)
    services.update_override(first, country_id="us", product_id="p1", values={"ads": 5})
    snapshot = services.save_snapshot(first, country_id="us", period_name="2024-W10")["snapshot"]
    services.run_simulation(first, inputs={"totalOrders": 10}, save_as="Small")
    services.record_daily_ads(first, entries=[{"productId": "p2", "date": "2024-03-03", "amount": 7}])
    services.delete_country(first, country_id="ma")

    second = services.create_service_context(persisted_config, data_source=static_source)
    assert second.overrides.get("us", "p1").ads == 5
    assert services.get_snapshot(second, snapshot_id=snapshot["id"])["snapshot"]["totals"] == snapshot["totals"]
    assert [item["name"] for item in services.list_simulations(second)["simulations"]] == ["Small"]
    assert second.ledger.totals(date(2024, 3, 3), date(2024, 3, 3)) == {"p2": 7}
    assert [item.id for item in second.catalog.countries] == ["us"]
    assert second.catalog.get_product("p1").country_ids == ["us"]


def test_override_debouncer_writes_after_configured_delay(static_source):
    context = services.create_service_context(
        AppConfig(analysis=AnalysisConfig(debounce_seconds=2)),
        data_source=static_source,
    )
    now = [0.0]
    debouncer = services.create_override_debouncer(context, clock=lambda: now[0])

    debouncer.change(("us", "p1", "ads"), "40")
    debouncer.change(("us", "p1", "ads"), "45")
    now[0] = 1.5
    assert debouncer.poll() == []
    assert context.overrides.get("us", "p1").ads == 90

    now[0] = 2.0
    assert debouncer.poll() == [(("us", "p1", "ads"), "45")]
    assert context.overrides.get("us", "p1").ads == 45


def test_override_debouncer_keeps_edit_that_fails_validation(context):
    debouncer = services.create_override_debouncer(context, clock=lambda: 0.0)
    debouncer.change(("us", "p1", "ads"), "abc")
    with pytest.raises(ValidationError):
        debouncer.blur(("us", "p1", "ads"))
    assert debouncer.pending_keys == [("us", "p1", "ads")]
    assert context.overrides.get("us", "p1").ads == 90
