from dataclasses import replace

import pytest

from profit_dashboard.errors import NotFoundError, PersistenceError, ValidationError
from profit_dashboard.metrics.calculations import aggregate_rows, build_analysis_table
from profit_dashboard.metrics.overrides import OverrideStore
from profit_dashboard.snapshots.manager import (
    EditorState,
    InMemorySnapshotStore,
    SnapshotEditor,
    SnapshotManager,
)


@pytest.fixture
def manager(tick_clock) -> SnapshotManager:
    return SnapshotManager(InMemorySnapshotStore(), clock=tick_clock)


def _seed(overrides: OverrideStore) -> None:
    overrides.update("us", "p1", {"totalOrders": 40, "ordersConfirmed": 30, "deliveredOrders": 20, "quantityDelivery": 20, "revenue": 1180, "ads": 90})
    overrides.update("us", "p2", {"totalOrders": 10, "ordersConfirmed": 6, "deliveredOrders": 0, "revenue": 0, "ads": 15})


def _table(catalog, overrides):
    return build_analysis_table(country=catalog.get_country("us"), products=catalog.products, overrides=overrides)


def test_create_recomputes_totals_and_denormalizes_country(manager, catalog, overrides):
    _seed(overrides)
    table = _table(catalog, overrides)
    snapshot = manager.create_from_table("2024-W10", table)
    assert snapshot.totals == aggregate_rows(table.rows)
    assert snapshot.country_name == "United States"
    assert snapshot.currency == "USD"
    assert [row.product_id for row in snapshot.rows] == ["p1", "p2"]
    assert manager.get(snapshot.id) == snapshot


def test_create_validation(manager, catalog, overrides, make_row):
    country = catalog.get_country("us")
    rows = [make_row("p1", total_orders=5)]
    with pytest.raises(ValidationError):
        manager.create("  ", country, rows)
    with pytest.raises(ValidationError):
        manager.create("2024-W10", country, [])
    with pytest.raises(ValidationError):
        manager.create("2024-W10", country, rows, replace(aggregate_rows(rows), total_orders=99))
    assert manager.list() == []


def test_round_trip_reproduces_totals(manager, catalog, overrides):
    _seed(overrides)
    original = manager.create_from_table("2024-W10", _table(catalog, overrides))

    reloaded = OverrideStore()
    manager.load_for_edit(original.id, reloaded)
    again = manager.create_from_table("2024-W10 copy", _table(catalog, reloaded))

    assert again.totals == original.totals
    assert again.id != original.id


def test_load_for_edit_merges_into_existing_overrides(manager, catalog, overrides):
    _seed(overrides)
    snapshot = manager.create_from_table("2024-W10", _table(catalog, overrides))

    target = OverrideStore()
    target.update("ma", "p1", {"revenue": 7})
    target.update("us", "p9", {"ads": 3})
    manager.load_for_edit(snapshot, target)

    assert target.get("ma", "p1").revenue == 7
    assert target.get("us", "p9").ads == 3
    loaded = target.get("us", "p1")
    assert loaded.revenue == 1180
    assert loaded.service_fees == 140
    assert loaded.product_fees == 300


def test_update_replaces_with_same_id(manager, catalog, overrides):
    _seed(overrides)
    snapshot = manager.create_from_table("2024-W10", _table(catalog, overrides))
    overrides.update("us", "p1", {"revenue": 2000})
    table = _table(catalog, overrides)

    updated = manager.update(snapshot.id, table.rows, table.totals)

    assert updated.id == snapshot.id
    assert updated.period_name == "2024-W10"
    assert updated.totals.total_revenue == 2000
    assert updated.created_at > snapshot.created_at
    assert [item.id for item in manager.list()] == [snapshot.id]


def test_update_missing_snapshot_raises(manager, make_row):
    with pytest.raises(NotFoundError):
        manager.update("missing", [make_row("p1")])


def test_delete_is_idempotent(manager, catalog, overrides):
    _seed(overrides)
    snapshot = manager.create_from_table("2024-W10", _table(catalog, overrides))
    manager.delete(snapshot.id)
    manager.delete(snapshot.id)
    assert manager.list() == []
    with pytest.raises(NotFoundError):
        manager.get(snapshot.id)


def test_rename(manager, catalog, overrides):
    _seed(overrides)
    snapshot = manager.create_from_table("2024-W10", _table(catalog, overrides))
    renamed = manager.rename(snapshot.id, " March wk 2 ")
    assert renamed.period_name == "March wk 2"
    assert renamed.totals == snapshot.totals
    with pytest.raises(ValidationError):
        manager.rename(snapshot.id, "")
    with pytest.raises(NotFoundError):
        manager.rename("missing", "x")


def test_list_is_newest_first(manager, catalog, overrides):
    _seed(overrides)
    table = _table(catalog, overrides)
    first = manager.create_from_table("first", table)
    second = manager.create_from_table("second", table)
    assert [item.id for item in manager.list()] == [second.id, first.id]


def test_editor_save_changes_replaces_original(manager, catalog, overrides):
    _seed(overrides)
    snapshot = manager.create_from_table("2024-W10", _table(catalog, overrides))
    working = OverrideStore()
    editor = SnapshotEditor(manager, working)

    editor.begin_edit(snapshot.id)
    assert editor.state is EditorState.EDITING
    working.update("us", "p1", {"ads": 10})
    table = _table(catalog, working)
    saved = editor.save_changes(table)

    assert editor.state is EditorState.DRAFT
    assert saved.id == snapshot.id
    assert saved.totals.total_ads == 10 + 15
    assert len(manager.list()) == 1


def test_editor_cancel_keeps_original(manager, catalog, overrides):
    _seed(overrides)
    snapshot = manager.create_from_table("2024-W10", _table(catalog, overrides))
    editor = SnapshotEditor(manager, overrides)
    editor.begin_edit(snapshot.id)
    editor.cancel()
    assert editor.state is EditorState.DRAFT
    assert manager.get(snapshot.id) == snapshot
    with pytest.raises(ValidationError):
        editor.save_changes(_table(catalog, overrides))


class _FailingStore(InMemorySnapshotStore):
    def replace_snapshot(self, snapshot):
        raise PersistenceError("disk full")


def test_failed_save_keeps_editing_state(catalog, overrides, tick_clock):
    manager = SnapshotManager(_FailingStore(), clock=tick_clock)
    _seed(overrides)
    snapshot = manager.create_from_table("2024-W10", _table(catalog, overrides))
    editor = SnapshotEditor(manager, overrides)
    editor.begin_edit(snapshot.id)

    with pytest.raises(PersistenceError):
        editor.save_changes(_table(catalog, overrides))

    assert editor.state is EditorState.EDITING
    assert editor.editing_id == snapshot.id
    assert manager.get(snapshot.id) == snapshot
