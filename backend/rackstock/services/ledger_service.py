# Overview: Append-only stock ledger; the only writer of LedgerEntry rows.

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, update

from ..extensions import db
from ..models import LedgerEntry, StockBalance
from ..validation import ACTION_IN, ACTION_OUT, InsufficientStockError, ValidationError
from .concurrency import lock_for_update
"""
Stock Ledger Invariants (authoritative)

- LedgerEntry is append-only: no updates, no deletes. The single exception is
  the one-way returned False -> True flip on a Demo OUT row (mark_demo_returned).
- quantity is signed and its sign matches action (IN > 0, OUT < 0); the
  database enforces this with a CHECK constraint as well.
- On-hand for a triple is SUM(quantity) over its rows. location_id NULL is its
  own bucket, never merged with any rack.
- Every append also moves the StockBalance row for its triple inside the same
  DB transaction. The caller owns the commit.
- Availability guards live in that balance UPDATE (WHERE quantity + delta >=
  floor). A pre-check against the ledger fold alone is check-then-act and two
  writers can both pass it; the conditional UPDATE lets only one through.
"""


def _location_key(location_id: int | None) -> int:
    return location_id or 0


def _triple_filter(query, item_id: int, warehouse_id: int, location_id: int | None):
    query = query.filter(
        LedgerEntry.item_id == item_id,
        LedgerEntry.warehouse_id == warehouse_id,
    )
    if location_id is None:
        return query.filter(LedgerEntry.location_id.is_(None))
    return query.filter(LedgerEntry.location_id == location_id)


def fold_quantity(item_id: int, warehouse_id: int, location_id: int | None = None) -> int:
    """
    SUM(quantity) for one exact triple. May be negative; callers clamp for display only.

    Autoflush makes rows appended earlier in the same unit of work visible here.
    """
    q = db.session.query(func.coalesce(func.sum(LedgerEntry.quantity), 0))
    q = _triple_filter(q, item_id, warehouse_id, location_id)
    return int(q.scalar() or 0)


def get_balance_row(
    item_id: int,
    warehouse_id: int,
    location_id: int | None = None,
    *,
    lock: bool = False,
    create: bool = False,
) -> StockBalance | None:
    """
    Fetch the materialized balance row for a triple, optionally locking it.

    With create=True a missing row is inserted at quantity 0 and flushed. A
    concurrent insert of the same triple surfaces as IntegrityError on flush;
    movement operations retry on it.
    """
    query = db.session.query(StockBalance).filter_by(
        item_id=item_id,
        warehouse_id=warehouse_id,
        location_key=_location_key(location_id),
    )
    if lock:
        query = lock_for_update(query)
    balance = query.first()
    if balance is None and create:
        balance = StockBalance(
            item_id=item_id,
            warehouse_id=warehouse_id,
            location_id=location_id,
            location_key=_location_key(location_id),
            quantity=0,
        )
        db.session.add(balance)
        db.session.flush()
    return balance


def _move_balance(balance: StockBalance, quantity: int, floor: int | None) -> bool:
    """
    Apply a delta to a balance row as one conditional UPDATE.

    The WHERE clause re-reads the committed quantity at write time, so a floor
    check cannot be satisfied by a value this session loaded earlier. Returns
    False when the floor would be crossed and nothing was written.
    """
    stmt = update(StockBalance).where(StockBalance.id == balance.id)
    if floor is not None:
        stmt = stmt.where(StockBalance.quantity + quantity >= floor)
    stmt = stmt.values(
        quantity=StockBalance.quantity + quantity,
        version_id=StockBalance.version_id + 1,
    ).execution_options(synchronize_session=False)

    result = db.session.execute(stmt)
    db.session.expire(balance)
    return result.rowcount == 1


def append_ledger_entry(
    *,
    item_id: int,
    warehouse_id: int,
    location_id: int | None,
    quantity: int,
    action: str,
    type: str,
    purpose: str | None = None,
    occurred_at: datetime,
    remarks: Optional[str] = None,
    return_date: Optional[datetime] = None,
    returned: Optional[bool] = None,
    reference_id: int | None = None,
    stock_transfer_no: str | None = None,
    floor: int | None = None,
) -> LedgerEntry:
    """
    Append one signed movement and move the triple's materialized balance.

    - No domain logic here beyond the sign rule and the optional floor.
    - floor: minimum balance the triple may be left at (0 for guarded
      stock-outs and transfers). Crossing it raises InsufficientStockError
      with the balance as of the write, and nothing is appended.
    - Flushes (ids assigned) but never commits.
    """
    if action not in (ACTION_IN, ACTION_OUT):
        raise ValidationError("action must be IN or OUT")
    if action == ACTION_IN and quantity <= 0:
        raise ValidationError("IN entries require a positive quantity")
    if action == ACTION_OUT and quantity >= 0:
        raise ValidationError("OUT entries require a negative quantity")

    balance = get_balance_row(item_id, warehouse_id, location_id, lock=True, create=True)
    if not _move_balance(balance, quantity, floor):
        available = int(
            db.session.query(StockBalance.quantity).filter(StockBalance.id == balance.id).scalar() or 0
        )
        raise InsufficientStockError(
            available,
            abs(quantity),
            f"Insufficient stock. Available: {available}",
        )

    entry = LedgerEntry(
        item_id=item_id,
        warehouse_id=warehouse_id,
        location_id=location_id,
        quantity=quantity,
        action=action,
        type=type,
        purpose=purpose,
        remarks=remarks or "",
        occurred_at=occurred_at,
        return_date=return_date,
        returned=returned,
        reference_id=reference_id,
        stock_transfer_no=stock_transfer_no,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def mark_demo_returned(entry_id: int) -> bool:
    """
    Compare-and-swap returned False/NULL -> True on a Demo OUT row.

    Returns True only for the caller that actually flipped the flag; a second
    caller (or a racing one) gets False and must not append a return row.
    """
    stmt = (
        update(LedgerEntry)
        .where(
            LedgerEntry.id == entry_id,
            LedgerEntry.action == ACTION_OUT,
            or_(LedgerEntry.returned.is_(None), LedgerEntry.returned.is_(False)),
        )
        .values(returned=True)
        .execution_options(synchronize_session="fetch")
    )
    result = db.session.execute(stmt)
    return result.rowcount == 1


def get_ledger_entry(entry_id: int) -> LedgerEntry | None:
    return db.session.get(LedgerEntry, entry_id)


def count_references(*, item_id: int | None = None, warehouse_id: int | None = None, location_ids=None) -> int:
    """Number of ledger rows pointing at an item, warehouse or any of a set of racks."""
    q = db.session.query(func.count(LedgerEntry.id))
    if item_id is not None:
        q = q.filter(LedgerEntry.item_id == item_id)
    if warehouse_id is not None:
        q = q.filter(LedgerEntry.warehouse_id == warehouse_id)
    if location_ids is not None:
        ids = list(location_ids)
        if not ids:
            return 0
        q = q.filter(LedgerEntry.location_id.in_(ids))
    return int(q.scalar() or 0)
