# Overview: Pytest coverage for ledger folds, dashboard totals and balance reconciliation.

import pytest

from rackstock.models import StockBalance
from rackstock.services import registry_service
from rackstock.services.demo_service import return_demo
from rackstock.services.inventory_service import adjust_stock, stock_in, stock_out
from rackstock.services.stock_report_service import (
    NO_LOCATION_LABEL,
    display_quantity,
    get_current_stock,
    get_dashboard_summary,
    list_adjustments,
    list_ledger_entries,
    list_stock_ins,
    list_stock_outs,
    reconcile_balances,
)
from rackstock.services.transfer_service import transfer_stock


class TestCurrentStock:
    def test_zero_sum_lines_dropped(self, db_session, item_x, wh_main):
        stock_in([{"item": item_x.id, "warehouse": wh_main.id, "quantity": 4}])
        stock_out([{"item_id": item_x.id, "warehouse_id": wh_main.id, "quantity": 4}], purpose="Sale")
        assert get_current_stock() == []

    def test_rows_carry_names_and_null_rack_label(self, db_session, item_x, wh_main, racks):
        stock_in([
            {"item": item_x.id, "warehouse": wh_main.id, "quantity": 2},
            {"item": item_x.id, "warehouse": wh_main.id, "location": racks[("Main", "Rack A")].id, "quantity": 3},
        ])
        rows = get_current_stock()
        assert sorted((r["location"], r["quantity"]) for r in rows) == sorted([("Rack A", 3), (NO_LOCATION_LABEL, 2)])
        unracked = next(r for r in rows if r["location_id"] is None)
        assert unracked["item"] == "Laser Printer"
        assert unracked["model_no"] == "LP-100"
        assert unracked["company_name"] == "Acme"
        assert unracked["warehouse"] == "Main"

    def test_filters(self, db_session, item_x, item_y, wh_main, wh_north):
        stock_in([
            {"item": item_x.id, "warehouse": wh_main.id, "quantity": 1},
            {"item": item_y.id, "warehouse": wh_north.id, "quantity": 1},
        ])
        assert [r["item_id"] for r in get_current_stock(item_id=item_y.id)] == [item_y.id]
        assert [r["warehouse_id"] for r in get_current_stock(warehouse_id=wh_main.id)] == [wh_main.id]

    def test_display_clamp(self):
        assert display_quantity(-3) == 0
        assert display_quantity(7) == 7


class TestDashboard:
    def test_summary_after_mixed_movements(self, db_session, item_x, item_y, wh_main, wh_north, racks):
        """In 10 / sale 4 / full transfer / demo out and back, then totals."""
        rack_a = racks[("Main", "Rack A")]
        stock_in([
            {"item": item_x.id, "warehouse": wh_main.id, "quantity": 10},
            {"item": item_x.id, "warehouse": wh_main.id, "location": rack_a.id, "quantity": 6},
            {"item": item_y.id, "warehouse": wh_main.id, "quantity": 3},
        ])
        stock_out([{"item_id": item_x.id, "warehouse_id": wh_main.id, "quantity": 4}], purpose="Sale")
        transfer_stock(
            item_id=item_x.id, quantity=6,
            from_warehouse_id=wh_main.id, from_location_id=rack_a.id,
            to_warehouse_id=wh_north.id, to_location_id=racks[("North", "Rack B")].id,
        )
        [demo] = stock_out(
            [{"item_id": item_y.id, "warehouse_id": wh_main.id, "quantity": 3}],
            purpose="Demo",
            return_date="2026-12-01",
        )
        return_demo(demo.id)

        summary = get_dashboard_summary()
        assert summary["total_items"] == 2
        # x: Main 6 + North 6, y: Main 3
        assert summary["total_stock"] == 15
        # x/Main 6 >= 5, x/North 6 >= 5, y/Main 3 >= 2
        assert summary["low_stock_items"] == 0

    def test_low_stock_uses_item_threshold(self, db_session, item_x, item_y, wh_main):
        stock_in([
            {"item": item_x.id, "warehouse": wh_main.id, "quantity": 4},
            {"item": item_y.id, "warehouse": wh_main.id, "quantity": 4},
        ])
        assert get_dashboard_summary()["low_stock_items"] == 1

    def test_missing_threshold_falls_back_to_default(self, db_session, wh_main):
        item = registry_service.create_item(name="Cable", model_no="C-1", company_name="Acme", min_stock_alert=None)
        zero = registry_service.create_item(name="Toner", model_no="T-1", company_name="Acme", min_stock_alert=0)
        stock_in([
            {"item": item.id, "warehouse": wh_main.id, "quantity": 4},
            {"item": zero.id, "warehouse": wh_main.id, "quantity": 1},
        ])
        assert item.min_stock_alert is None
        assert get_dashboard_summary()["low_stock_items"] == 1

    def test_empty_ledger(self, db_session):
        assert get_dashboard_summary() == {"total_items": 0, "total_stock": 0, "low_stock_items": 0}


class TestHistory:
    def test_ledger_history_newest_first(self, db_session, item_x, wh_main):
        stock_in([{"item": item_x.id, "warehouse": wh_main.id, "quantity": 5}], occurred_at="2026-01-01")
        stock_out(
            [{"item_id": item_x.id, "warehouse_id": wh_main.id, "quantity": 2}],
            purpose="Sale",
            occurred_at="2026-02-01",
        )
        adjust_stock(
            item_id=item_x.id, warehouse_id=wh_main.id, quantity=1, action="IN",
            reason="recount", occurred_at="2026-03-01",
        )

        history = list_ledger_entries(item_id=item_x.id)
        assert [h["quantity"] for h in history] == [1, -2, 5]
        assert history[0]["location_display"] == NO_LOCATION_LABEL
        assert history[0]["model_no"] == "LP-100"
        assert len(list_ledger_entries(limit=2)) == 2

        assert list_stock_ins()[0]["quantity"] == 5
        assert list_stock_outs()[0]["purpose"] == "Sale"
        assert list_adjustments()[0]["reason"] == "recount"


class TestReconcile:
    def test_clean_ledger_has_no_drift(self, db_session, item_x, wh_main, racks):
        stock_in([
            {"item": item_x.id, "warehouse": wh_main.id, "quantity": 5},
            {"item": item_x.id, "warehouse": wh_main.id, "location": racks[("Main", "Rack B")].id, "quantity": 2},
        ])
        assert reconcile_balances() == []

    def test_drift_reported_then_fixed(self, db_session, item_x, wh_main):
        stock_in([{"item": item_x.id, "warehouse": wh_main.id, "quantity": 5}])
        balance = db_session.query(StockBalance).one()
        balance.quantity = 99
        db_session.commit()

        [drift] = reconcile_balances()
        assert drift["ledger_quantity"] == 5
        assert drift["balance_quantity"] == 99
        assert drift["location_id"] is None

        reconcile_balances(fix=True)
        assert db_session.query(StockBalance).one().quantity == 5
        assert reconcile_balances() == []

    def test_missing_balance_row_recreated(self, db_session, item_x, wh_main):
        stock_in([{"item": item_x.id, "warehouse": wh_main.id, "quantity": 5}])
        db_session.query(StockBalance).delete()
        db_session.commit()

        assert len(reconcile_balances(fix=True)) == 1
        assert db_session.query(StockBalance).one().quantity == 5


@pytest.mark.parametrize("qty", [1, 3])
def test_available_matches_fold_after_partial_transfer(db_session, item_x, wh_main, wh_north, qty):
    stock_in([{"item": item_x.id, "warehouse": wh_main.id, "quantity": 3}])
    transfer_stock(item_id=item_x.id, quantity=qty, from_warehouse_id=wh_main.id, to_warehouse_id=wh_north.id)
    totals = {r["warehouse"]: r["quantity"] for r in get_current_stock()}
    assert totals.get("Main", 0) == 3 - qty
    assert totals["North"] == qty
