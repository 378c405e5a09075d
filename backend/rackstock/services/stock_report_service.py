# Overview: Read-side folds over the stock ledger (current stock, availability, dashboard, audit).

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..models import (
    Item,
    Warehouse,
    Location,
    LedgerEntry,
    StockBalance,
    StockIn,
    StockOut,
    StockAdjustment,
)
from .concurrency import run_with_retry
from .ledger_service import fold_quantity
"""
Aggregation rules (authoritative)

- Nothing here writes, except reconcile_balances(fix=True).
- Quantities come from SUM(LedgerEntry.quantity) grouped by triple; the
  materialized StockBalance table is never used as a reporting source.
- location_id NULL groups on its own (SQL GROUP BY keeps NULL as one group).
- Current stock drops triples whose sum is exactly zero.
- Signed sums are returned as-is; `available` / display_quantity() clamp at 0
  for display only.
"""

NO_LOCATION_LABEL = "—"


def display_quantity(quantity: int) -> int:
    """Clamp a signed balance for UI display. Never use the result for bookkeeping."""
    return quantity if quantity > 0 else 0


def _name_maps() -> tuple[dict[int, Item], dict[int, str], dict[int, str]]:
    items = {i.id: i for i in db.session.query(Item).all()}
    warehouses = {w.id: w.name for w in db.session.query(Warehouse).all()}
    locations = {loc.id: loc.name for loc in db.session.query(Location).all()}
    return items, warehouses, locations


def _triple_sums(item_id: int | None = None, warehouse_id: int | None = None):
    total = func.sum(LedgerEntry.quantity)
    q = db.session.query(
        LedgerEntry.item_id,
        LedgerEntry.warehouse_id,
        LedgerEntry.location_id,
        total.label("quantity"),
    )
    if item_id is not None:
        q = q.filter(LedgerEntry.item_id == item_id)
    if warehouse_id is not None:
        q = q.filter(LedgerEntry.warehouse_id == warehouse_id)
    return q.group_by(
        LedgerEntry.item_id,
        LedgerEntry.warehouse_id,
        LedgerEntry.location_id,
    )


def get_current_stock(item_id: int | None = None, warehouse_id: int | None = None) -> list[dict]:
    """
    Current stock per (item, warehouse, rack), zero sums dropped, with display names.
    """
    rows = (
        _triple_sums(item_id, warehouse_id)
        .having(func.sum(LedgerEntry.quantity) != 0)
        .all()
    )
    items, warehouses, locations = _name_maps()

    results = []
    for row in rows:
        item = items.get(row.item_id)
        quantity = int(row.quantity or 0)
        results.append({
            "item_id": row.item_id,
            "warehouse_id": row.warehouse_id,
            "location_id": row.location_id,
            "item": item.name if item else "Unknown",
            "model_no": item.model_no if item else "-",
            "company_name": item.company_name if item else "Unknown",
            "warehouse": warehouses.get(row.warehouse_id, "Unknown"),
            "location": locations.get(row.location_id, NO_LOCATION_LABEL) if row.location_id else NO_LOCATION_LABEL,
            "quantity": quantity,
            "available": display_quantity(quantity),
        })

    results.sort(key=lambda r: (r["item"], r["warehouse"], r["location"]))
    return results


def get_available_quantity(item_id: int, warehouse_id: int, location_id: int | None = None) -> int:
    """Signed ledger sum for one exact triple; pre-flight check for transfers and stock-outs."""
    return fold_quantity(item_id, warehouse_id, location_id)


def get_available_transfer_items() -> list[dict]:
    """Triples holding positive stock, i.e. valid transfer sources."""
    return [row for row in get_current_stock() if row["quantity"] > 0]


def get_dashboard_summary() -> dict:
    """
    totals for the dashboard:
    - total_items: number of Item rows
    - total_stock: sum of every non-zero triple balance
    - low_stock_items: (item, warehouse) groups whose sum is below the item's
      min_stock_alert (DEFAULT_MIN_STOCK_ALERT when the item has none)
    """
    default_alert = current_app.config.get("DEFAULT_MIN_STOCK_ALERT", 5)

    total_items = int(db.session.query(func.count(Item.id)).scalar() or 0)
    total_stock = sum(row["quantity"] for row in get_current_stock())

    groups = (
        db.session.query(
            LedgerEntry.item_id,
            LedgerEntry.warehouse_id,
            func.sum(LedgerEntry.quantity).label("quantity"),
            Item.min_stock_alert,
        )
        .join(Item, Item.id == LedgerEntry.item_id)
        .group_by(LedgerEntry.item_id, LedgerEntry.warehouse_id, Item.min_stock_alert)
        .all()
    )
    low_stock_items = 0
    for group in groups:
        threshold = group.min_stock_alert if group.min_stock_alert is not None else default_alert
        if int(group.quantity or 0) < threshold:
            low_stock_items += 1

    return {
        "total_items": total_items,
        "total_stock": total_stock,
        "low_stock_items": low_stock_items,
    }


def list_ledger_entries(
    *,
    item_id: int | None = None,
    warehouse_id: int | None = None,
    limit: int | None = None,
) -> list[dict]:
    """Audit history, newest movement first, with item / warehouse / rack names."""
    q = db.session.query(LedgerEntry)
    if item_id is not None:
        q = q.filter(LedgerEntry.item_id == item_id)
    if warehouse_id is not None:
        q = q.filter(LedgerEntry.warehouse_id == warehouse_id)
    q = q.order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
    if limit:
        q = q.limit(limit)

    rows = []
    for entry in q.all():
        data = entry.to_dict()
        data["item"] = entry.item.name if entry.item else None
        data["model_no"] = entry.item.model_no if entry.item else None
        data["warehouse"] = entry.warehouse.name if entry.warehouse else None
        data["location_display"] = entry.location.name if entry.location else NO_LOCATION_LABEL
        rows.append(data)
    return rows


def list_stock_ins(limit: int | None = None) -> list[dict]:
    q = db.session.query(StockIn).order_by(StockIn.occurred_at.desc(), StockIn.id.desc())
    if limit:
        q = q.limit(limit)
    return [row.to_dict() for row in q.all()]


def list_stock_outs(limit: int | None = None) -> list[dict]:
    q = db.session.query(StockOut).order_by(StockOut.occurred_at.desc(), StockOut.id.desc())
    if limit:
        q = q.limit(limit)
    return [row.to_dict() for row in q.all()]


def list_adjustments(limit: int | None = None) -> list[dict]:
    q = db.session.query(StockAdjustment).order_by(StockAdjustment.occurred_at.desc(), StockAdjustment.id.desc())
    if limit:
        q = q.limit(limit)
    return [row.to_dict() for row in q.all()]


def reconcile_balances(*, fix: bool = False) -> list[dict]:
    """
    Compare every materialized StockBalance with the ledger fold.

    Returns one dict per mismatching triple. With fix=True the balance rows
    are rewritten to the ledger value (created when missing) in one commit.
    """
    def _op():
        folded = {
            (row.item_id, row.warehouse_id, row.location_id or 0): (row.location_id, int(row.quantity or 0))
            for row in _triple_sums().all()
        }
        balances = {
            (b.item_id, b.warehouse_id, b.location_key): b
            for b in db.session.query(StockBalance).all()
        }

        mismatches = []
        for key in sorted(set(folded) | set(balances)):
            location_id, ledger_qty = folded.get(key, (None, 0))
            balance = balances.get(key)
            balance_qty = balance.quantity if balance is not None else 0
            if balance is None and ledger_qty == 0:
                continue
            if ledger_qty == balance_qty:
                continue

            item_id, warehouse_id, location_key = key
            mismatches.append({
                "item_id": item_id,
                "warehouse_id": warehouse_id,
                "location_id": location_key or None,
                "ledger_quantity": ledger_qty,
                "balance_quantity": balance_qty,
            })

            if fix:
                if balance is None:
                    db.session.add(StockBalance(
                        item_id=item_id,
                        warehouse_id=warehouse_id,
                        location_id=location_id,
                        location_key=location_key,
                        quantity=ledger_qty,
                    ))
                else:
                    balance.quantity = ledger_qty

        if fix and mismatches:
            db.session.commit()
        return mismatches

    mismatches = run_with_retry(_op)
    for m in mismatches:
        current_app.logger.warning(
            "Balance drift item=%s warehouse=%s location=%s ledger=%d balance=%d%s",
            m["item_id"], m["warehouse_id"], m["location_id"],
            m["ledger_quantity"], m["balance_quantity"],
            " (fixed)" if fix else "",
        )
    return mismatches
