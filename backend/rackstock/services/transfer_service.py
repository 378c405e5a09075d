# backend/rackstock/services/transfer_service.py
"""
Rack-aware stock transfer service.

WHY: Move quantity from one (item, warehouse, rack) triple to another with a
single paired ledger write. The OUT row at the source and the IN row at the
destination share one transfer number and become visible together.

CHECK-THEN-ACT:
The ledger fold rejects early with the available amount. The binding check is the
source OUT append with floor=0: its conditional balance UPDATE re-reads the
committed quantity, so of two transfers that both passed the fold only one
can take the stock; the other raises InsufficientStockError and writes nothing.
"""
from __future__ import annotations

from flask import current_app

from ..extensions import db
from ..models import LedgerEntry, StockTransfer
from ..models.ledger import TYPE_TRANSFER_IN, TYPE_TRANSFER_OUT
from ..validation import (
    ACTION_IN,
    ACTION_OUT,
    PURPOSE_TRANSFERRED,
    ConflictError,
    InsufficientStockError,
    coerce_date,
    coerce_quantity,
    optional_text,
)
from .concurrency import run_with_retry
from .document_service import next_document_number
from .inventory_service import MOVEMENT_RETRY_ON, resolve_triple
from .ledger_service import append_ledger_entry, fold_quantity, get_balance_row


def transfer_stock(
    *,
    item_id: int,
    quantity,
    from_warehouse_id: int,
    to_warehouse_id: int,
    from_location_id: int | None = None,
    to_location_id: int | None = None,
    note: str | None = None,
    occurred_at=None,
) -> StockTransfer:
    """
    Transfer stock between two triples of the same item.

    Raises:
        ConflictError: source and destination (warehouse, rack) are the same
        InsufficientStockError: quantity exceeds the source balance; the
            message includes the available amount and nothing is written
        NotFoundError / ValidationError: unknown ids, rack not in warehouse
    """
    clean_qty = coerce_quantity(quantity)
    clean_note = optional_text(note, field="note", max_length=255) or ""
    transfer_date = coerce_date(occurred_at)

    if from_warehouse_id == to_warehouse_id and from_location_id == to_location_id:
        raise ConflictError("Source and destination must differ.")

    def _op():
        item, src_wh, src_loc = resolve_triple(item_id, from_warehouse_id, from_location_id)
        _, dst_wh, dst_loc = resolve_triple(item_id, to_warehouse_id, to_location_id)
        src_loc_id = src_loc.id if src_loc else None
        dst_loc_id = dst_loc.id if dst_loc else None

        get_balance_row(item.id, src_wh.id, src_loc_id, lock=True)
        available = fold_quantity(item.id, src_wh.id, src_loc_id)
        if clean_qty > available:
            raise InsufficientStockError(
                available,
                clean_qty,
                f"Insufficient stock. Available: {available}",
            )

        transfer_no = next_document_number(
            document_type="TRANSFER",
            prefix=current_app.config.get("TRANSFER_NUMBER_PREFIX", "TR"),
            pad=current_app.config.get("TRANSFER_NUMBER_PAD", 5),
        )

        append_ledger_entry(
            item_id=item.id,
            warehouse_id=src_wh.id,
            location_id=src_loc_id,
            quantity=-clean_qty,
            action=ACTION_OUT,
            type=TYPE_TRANSFER_OUT,
            purpose=PURPOSE_TRANSFERRED,
            occurred_at=transfer_date,
            remarks=clean_note,
            stock_transfer_no=transfer_no,
            floor=0,
        )
        append_ledger_entry(
            item_id=item.id,
            warehouse_id=dst_wh.id,
            location_id=dst_loc_id,
            quantity=clean_qty,
            action=ACTION_IN,
            type=TYPE_TRANSFER_IN,
            purpose=PURPOSE_TRANSFERRED,
            occurred_at=transfer_date,
            remarks=clean_note,
            stock_transfer_no=transfer_no,
        )

        transfer = StockTransfer(
            transfer_no=transfer_no,
            item_id=item.id,
            from_warehouse_id=src_wh.id,
            to_warehouse_id=dst_wh.id,
            from_location_id=src_loc_id,
            to_location_id=dst_loc_id,
            quantity=clean_qty,
            transfer_date=transfer_date,
            note=clean_note,
            purpose=PURPOSE_TRANSFERRED,
        )
        db.session.add(transfer)
        db.session.flush()
        db.session.commit()
        return transfer

    transfer = run_with_retry(_op, retry_on=MOVEMENT_RETRY_ON)
    current_app.logger.info(
        "Transfer %s: item=%s qty=%d %s/%s -> %s/%s",
        transfer.transfer_no,
        item_id,
        transfer.quantity,
        from_warehouse_id,
        from_location_id,
        to_warehouse_id,
        to_location_id,
    )
    return transfer


def get_transfer_entries(transfer_no: str) -> list[LedgerEntry]:
    """The ledger rows of one transfer, OUT first."""
    return (
        db.session.query(LedgerEntry)
        .filter(LedgerEntry.stock_transfer_no == transfer_no)
        .order_by(LedgerEntry.quantity.asc(), LedgerEntry.id.asc())
        .all()
    )


def list_transfers(limit: int | None = None) -> list[dict]:
    """Transfer records newest first, with rack names for both ends."""
    q = db.session.query(StockTransfer).order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc())
    if limit:
        q = q.limit(limit)
    return [t.to_dict() for t in q.all()]
