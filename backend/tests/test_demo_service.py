# Overview: Pytest coverage for demo loans and returns.

"""
Demo Return Tests

Covers:
- Pending -> Returned round trip restores the original triple
- Double return is a conflict and leaves the ledger unchanged
- Only Demo OUT rows can be returned
- Pending list and demo report
"""

import pytest

from rackstock.models import LedgerEntry, StockOut
from rackstock.services.demo_service import get_demo_return_report, list_pending_demo_returns, return_demo
from rackstock.services.inventory_service import stock_in, stock_out
from rackstock.services.ledger_service import fold_quantity, mark_demo_returned
from rackstock.validation import ConflictError, NotFoundError, ValidationError


@pytest.fixture
def demo_out(db_session, item_y, wh_main, racks):
    rack = racks[("Main", "Rack A")]
    stock_in([{"item": item_y.id, "warehouse": wh_main.id, "location": rack.id, "quantity": 5}])
    [entry] = stock_out(
        [{"item_id": item_y.id, "warehouse_id": wh_main.id, "location_id": rack.id, "quantity": 3}],
        purpose="Demo",
        return_date="2026-11-15",
    )
    return entry


class TestReturnDemo:
    def test_round_trip(self, db_session, item_y, wh_main, racks, demo_out):
        rack = racks[("Main", "Rack A")]
        assert fold_quantity(item_y.id, wh_main.id, rack.id) == 2

        [pending] = get_demo_return_report()
        assert pending["returned"] is False
        assert pending["returned_qty"] == 0
        assert pending["quantity"] == 3

        return_in = return_demo(demo_out.id, returned_at="2026-11-10")

        assert return_in.action == "IN"
        assert return_in.quantity == 3
        assert return_in.purpose == "Demo Return"
        assert return_in.type == "Return In"
        assert return_in.reference_id == demo_out.id
        assert return_in.location_id == rack.id
        assert fold_quantity(item_y.id, wh_main.id, rack.id) == 5

        assert db_session.get(LedgerEntry, demo_out.id).returned is True
        header = db_session.query(StockOut).filter_by(ledger_entry_id=demo_out.id).one()
        assert header.return_processed is True

        [row] = get_demo_return_report()
        assert row["returned"] is True
        assert row["returned_qty"] == 3
        assert row["location"] == "Rack A"

    def test_second_return_conflicts(self, db_session, item_y, wh_main, demo_out):
        return_demo(demo_out.id)
        count = db_session.query(LedgerEntry).count()

        with pytest.raises(ConflictError, match="already returned"):
            return_demo(demo_out.id)
        assert db_session.query(LedgerEntry).count() == count

    def test_sale_row_cannot_be_returned(self, db_session, item_x, wh_main):
        stock_in([{"item": item_x.id, "warehouse": wh_main.id, "quantity": 5}])
        [sale] = stock_out([{"item_id": item_x.id, "warehouse_id": wh_main.id, "quantity": 1}], purpose="Sale")
        with pytest.raises(ValidationError, match="not a demo"):
            return_demo(sale.id)

    def test_in_row_cannot_be_returned(self, db_session, item_x, wh_main):
        result = stock_in([{"item": item_x.id, "warehouse": wh_main.id, "quantity": 5}])
        with pytest.raises(ValidationError):
            return_demo(result.entries[0].id)

    def test_unknown_entry(self, db_session):
        with pytest.raises(NotFoundError):
            return_demo(424242)

    def test_compare_and_swap_flips_once(self, db_session, demo_out):
        assert mark_demo_returned(demo_out.id) is True
        assert mark_demo_returned(demo_out.id) is False
        db_session.rollback()


class TestDemoReports:
    def test_pending_list(self, db_session, demo_out):
        [pending] = list_pending_demo_returns()
        assert pending["id"] == demo_out.id
        assert pending["quantity"] == 3

        return_demo(demo_out.id)
        assert list_pending_demo_returns() == []

    def test_report_sorts_by_return_then_due_date(self, db_session, item_y, wh_main, racks, demo_out):
        row = {"item_id": item_y.id, "warehouse_id": wh_main.id, "location_id": racks[("Main", "Rack A")].id, "quantity": 1}
        [later] = stock_out([row], purpose="Demo", return_date="2026-12-31")
        [undated] = stock_out([row], purpose="Demo")

        assert [r["id"] for r in get_demo_return_report()] == [later.id, demo_out.id, undated.id]

        # returned_on (2027) now outranks every expected date
        return_demo(undated.id, returned_at="2027-01-05")
        assert [r["id"] for r in get_demo_return_report()][0] == undated.id
