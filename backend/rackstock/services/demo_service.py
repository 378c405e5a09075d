# backend/rackstock/services/demo_service.py
"""
Demo loan returns.

STATE MACHINE (per Demo OUT ledger row):
    Pending  {returned = False}
        |  return_demo()
        v
    Returned {returned = True}   terminal

WHY the flag flip is a compare-and-swap: two callers returning the same loan
must not both append a Return In row. Only the caller whose UPDATE actually
changed returned False -> True appends; everyone else gets ConflictError.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import or_

from ..extensions import db
from ..models import LedgerEntry, StockOut
from ..models.ledger import TYPE_RETURN_IN
from ..validation import (
    ACTION_IN,
    ACTION_OUT,
    PURPOSE_DEMO,
    PURPOSE_DEMO_RETURN,
    ConflictError,
    NotFoundError,
    ValidationError,
    coerce_date,
)
from .concurrency import run_with_retry
from .inventory_service import MOVEMENT_RETRY_ON
from .ledger_service import append_ledger_entry, get_ledger_entry, mark_demo_returned


def return_demo(ledger_entry_id: int, *, returned_at=None) -> LedgerEntry:
    """
    Close a pending Demo OUT row and put its quantity back where it came from.

    Returns the new Return In ledger row.

    Raises:
        NotFoundError: no ledger row with that id
        ValidationError: the row is not a Demo OUT
        ConflictError: the row was already returned
    """
    return_date = coerce_date(returned_at, field="returned_at")

    def _op():
        out_entry = get_ledger_entry(ledger_entry_id)
        if out_entry is None:
            raise NotFoundError(f"Ledger entry {ledger_entry_id} not found")
        if out_entry.action != ACTION_OUT or out_entry.purpose != PURPOSE_DEMO:
            raise ValidationError(f"Ledger entry {ledger_entry_id} is not a demo stock-out")
        if out_entry.returned:
            raise ConflictError(f"Ledger entry {ledger_entry_id} was already returned")

        if not mark_demo_returned(out_entry.id):
            raise ConflictError(f"Ledger entry {ledger_entry_id} was already returned")

        in_entry = append_ledger_entry(
            item_id=out_entry.item_id,
            warehouse_id=out_entry.warehouse_id,
            location_id=out_entry.location_id,
            quantity=abs(out_entry.quantity),
            action=ACTION_IN,
            type=TYPE_RETURN_IN,
            purpose=PURPOSE_DEMO_RETURN,
            occurred_at=return_date,
            remarks="Returned from demo",
            reference_id=out_entry.id,
        )

        header = db.session.query(StockOut).filter_by(ledger_entry_id=out_entry.id).first()
        if header is not None:
            header.return_processed = True

        db.session.flush()
        db.session.commit()
        return in_entry

    in_entry = run_with_retry(_op, retry_on=MOVEMENT_RETRY_ON)
    current_app.logger.info("Demo entry %s returned (return row %s)", ledger_entry_id, in_entry.id)
    return in_entry


def list_pending_demo_returns() -> list[dict]:
    """Demo OUT rows still out on loan, newest movement first."""
    rows = (
        db.session.query(LedgerEntry)
        .filter(
            LedgerEntry.action == ACTION_OUT,
            LedgerEntry.purpose == PURPOSE_DEMO,
            or_(LedgerEntry.returned.is_(None), LedgerEntry.returned.is_(False)),
        )
        .order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
        .all()
    )
    return [
        {
            "id": entry.id,
            "item": entry.item.name if entry.item else "-",
            "model_no": entry.item.model_no if entry.item else "-",
            "warehouse": entry.warehouse.name if entry.warehouse else "-",
            "location": entry.location.name if entry.location else "-",
            "quantity": abs(entry.quantity),
            "occurred_at": entry.occurred_at,
            "return_date": entry.return_date,
        }
        for entry in rows
    ]


def get_demo_return_report() -> list[dict]:
    """
    One row per Demo OUT, joined to its Return In (reference_id = OUT.id).

    Sorted newest first by the actual return date when returned, else by the
    expected return date; rows with neither sort last.
    """
    out_entries = (
        db.session.query(LedgerEntry)
        .filter(LedgerEntry.action == ACTION_OUT, LedgerEntry.purpose == PURPOSE_DEMO)
        .all()
    )
    in_entries = (
        db.session.query(LedgerEntry)
        .filter(
            LedgerEntry.action == ACTION_IN,
            LedgerEntry.purpose == PURPOSE_DEMO_RETURN,
            LedgerEntry.reference_id.isnot(None),
        )
        .all()
    )
    returns_by_ref = {entry.reference_id: entry for entry in in_entries}

    report = []
    for out in out_entries:
        match = returns_by_ref.get(out.id)
        report.append({
            "id": out.id,
            "item": out.item.name if out.item else "-",
            "model_no": out.item.model_no if out.item else "-",
            "warehouse": out.warehouse.name if out.warehouse else "-",
            "location": out.location.name if out.location else "-",
            "quantity": abs(out.quantity),
            "returned_qty": abs(match.quantity) if match else 0,
            "return_date": out.return_date,
            "returned_on": match.occurred_at if match else None,
            "returned": match is not None,
        })

    def _sort_key(row):
        when = row["returned_on"] or row["return_date"]
        return (when is not None, when or 0, row["id"])

    report.sort(key=_sort_key, reverse=True)
    return report
