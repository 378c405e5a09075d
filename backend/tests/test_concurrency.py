# Overview: Pytest coverage for the retry wrapper, balance-row locking and racing writers.

import threading
from datetime import datetime

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from rackstock.extensions import db
from rackstock.models import Item, LedgerEntry, StockBalance, StockTransfer
from rackstock.services import demo_service, inventory_service, registry_service, transfer_service
from rackstock.services.concurrency import run_with_retry
from rackstock.services.inventory_service import MOVEMENT_RETRY_ON, stock_in
from rackstock.services.ledger_service import append_ledger_entry, fold_quantity, get_balance_row
from rackstock.services.stock_report_service import reconcile_balances
from rackstock.validation import ConflictError, InsufficientStockError


class TestRunWithRetry:
    def test_retries_stale_data_then_succeeds(self, db_session):
        calls = []

        def op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "ok"

        assert run_with_retry(op, attempts=3, backoff_base=0) == "ok"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self, db_session):
        def op():
            raise OperationalError("UPDATE", {}, Exception("database is locked"))

        with pytest.raises(OperationalError):
            run_with_retry(op, attempts=2, backoff_base=0)

    def test_integrity_error_only_retried_when_asked(self, db_session):
        calls = []

        def op():
            calls.append(1)
            raise IntegrityError("INSERT", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(IntegrityError):
            run_with_retry(op, attempts=3, backoff_base=0)
        assert len(calls) == 1

        calls.clear()
        with pytest.raises(IntegrityError):
            run_with_retry(op, attempts=3, backoff_base=0, retry_on=MOVEMENT_RETRY_ON)
        assert len(calls) == 3

    def test_business_error_rolls_back_pending_writes(self, db_session):
        def op():
            db_session.add(Item(name="Ghost", model_no="G-1", company_name="Nobody"))
            db_session.flush()
            raise ConflictError("nope")

        with pytest.raises(ConflictError):
            run_with_retry(op)
        assert db_session.query(Item).count() == 0

    def test_uses_config_defaults(self, db_session, app, monkeypatch):
        monkeypatch.setitem(app.config, "RETRY_ATTEMPTS", 1)
        calls = []

        def op():
            calls.append(1)
            raise StaleDataError("x")

        with pytest.raises(StaleDataError):
            run_with_retry(op)
        assert len(calls) == 1


class TestBalanceRows:
    def test_row_created_once_per_triple(self, db_session, item_x, wh_main, racks):
        rack = racks[("Main", "Rack A")]
        stock_in([
            {"item": item_x.id, "warehouse": wh_main.id, "quantity": 1},
            {"item": item_x.id, "warehouse": wh_main.id, "quantity": 2},
            {"item": item_x.id, "warehouse": wh_main.id, "location": rack.id, "quantity": 3},
        ])
        balances = {b.location_key: b.quantity for b in db_session.query(StockBalance).all()}
        assert balances == {0: 3, rack.id: 3}

    def test_lookup_without_create(self, db_session, item_x, wh_main):
        assert get_balance_row(item_x.id, wh_main.id, lock=True) is None


class TestBalanceFloor:
    def test_floor_rejects_without_appending(self, db_session, item_x, wh_main):
        with pytest.raises(InsufficientStockError) as exc:
            append_ledger_entry(
                item_id=item_x.id, warehouse_id=wh_main.id, location_id=None,
                quantity=-1, action="OUT", type="Out", occurred_at=datetime(2026, 1, 1),
                floor=0,
            )
        assert exc.value.available == 0
        db_session.rollback()
        assert db_session.query(LedgerEntry).count() == 0

    def test_floor_allows_exact_drain(self, db_session, item_x, wh_main):
        stock_in([{"item": item_x.id, "warehouse": wh_main.id, "quantity": 2}])
        append_ledger_entry(
            item_id=item_x.id, warehouse_id=wh_main.id, location_id=None,
            quantity=-2, action="OUT", type="Out", occurred_at=datetime(2026, 1, 1),
            floor=0,
        )
        db_session.commit()
        assert db_session.query(StockBalance).one().quantity == 0


# =============================================================================
# TWO WRITERS, ONE TRIPLE
#
# The main thread passes its availability pre-check, then a second thread (own
# app context, own session and connection) commits a competing movement on the
# same source before the main thread writes.
# =============================================================================

def _race_after_first_call(monkeypatch, module, name, competitor, file_app):
    """
    Wrap module.<name> so its first call in the calling thread runs
    competitor() to completion in another thread before returning.
    """
    real = getattr(module, name)
    owner = threading.get_ident()
    state = {"armed": True}
    outcomes = []

    def run_competitor():
        with file_app.app_context():
            try:
                outcomes.append(competitor())
            except Exception as e:
                outcomes.append(e)

    def wrapper(*args, **kwargs):
        result = real(*args, **kwargs)
        if state["armed"] and threading.get_ident() == owner:
            state["armed"] = False
            worker = threading.Thread(target=run_competitor)
            worker.start()
            worker.join(timeout=60)
        return result

    monkeypatch.setattr(module, name, wrapper)
    return outcomes


@pytest.fixture
def race_registry(file_app):
    item = registry_service.create_item(name="Switch", model_no="SW-8", company_name="Netco")
    warehouses = [
        registry_service.create_warehouse(name, "Dhaka")
        for name in ("Source", "Dest B", "Dest C")
    ]
    stock_in([{"item": item.id, "warehouse": warehouses[0].id, "quantity": 6}])
    return item.id, [w.id for w in warehouses]


class TestRacingWriters:
    def test_two_transfers_cannot_both_drain_source(self, file_app, race_registry, monkeypatch):
        item_id, (src, dest_b, dest_c) = race_registry
        outcomes = _race_after_first_call(
            monkeypatch, transfer_service, "fold_quantity",
            lambda: transfer_service.transfer_stock(
                item_id=item_id, quantity=6, from_warehouse_id=src, to_warehouse_id=dest_c,
            ).transfer_no,
            file_app,
        )

        with pytest.raises(InsufficientStockError) as exc:
            transfer_service.transfer_stock(
                item_id=item_id, quantity=6, from_warehouse_id=src, to_warehouse_id=dest_b,
            )

        assert outcomes == ["TR-00001"]
        assert exc.value.available == 0
        assert fold_quantity(item_id, src) == 0
        assert fold_quantity(item_id, dest_c) == 6
        assert fold_quantity(item_id, dest_b) == 0
        assert db.session.query(StockTransfer).count() == 1
        assert reconcile_balances() == []

    def test_two_stock_outs_cannot_both_drain_source(self, file_app, race_registry, monkeypatch):
        item_id, (src, _, _) = race_registry
        row = {"item_id": item_id, "warehouse_id": src, "quantity": 4}
        outcomes = _race_after_first_call(
            monkeypatch, inventory_service, "fold_quantity",
            lambda: len(inventory_service.stock_out([row], purpose="Sale")),
            file_app,
        )

        with pytest.raises(InsufficientStockError):
            inventory_service.stock_out([row], purpose="Sale")

        assert outcomes == [1]
        assert fold_quantity(item_id, src) == 2
        assert db.session.query(LedgerEntry).filter_by(action="OUT").count() == 1

    def test_two_demo_returns_append_one_row(self, file_app, race_registry, monkeypatch):
        item_id, (src, _, _) = race_registry
        [demo] = inventory_service.stock_out(
            [{"item_id": item_id, "warehouse_id": src, "quantity": 3}],
            purpose="Demo",
            return_date="2026-12-01",
        )
        demo_id = demo.id

        outcomes = _race_after_first_call(
            monkeypatch, demo_service, "get_ledger_entry",
            lambda: demo_service.return_demo(demo_id).id,
            file_app,
        )

        with pytest.raises(ConflictError, match="already returned"):
            demo_service.return_demo(demo_id)

        assert len(outcomes) == 1 and isinstance(outcomes[0], int)
        assert db.session.query(LedgerEntry).filter_by(reference_id=demo_id).count() == 1
        assert fold_quantity(item_id, src) == 6
