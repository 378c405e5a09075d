# Overview: Stock In, Stock Out and Stock Adjustment movement operations.

# backend/rackstock/services/inventory_service.py

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from flask import current_app
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Item, Warehouse, Location, LedgerEntry, StockIn, StockOut, StockAdjustment
from ..models.ledger import TYPE_IN, TYPE_OUT, TYPE_ADJUSTMENT
from ..validation import (
    ACTION_IN,
    ACTION_OUT,
    PURPOSE_ADJUSTED,
    PURPOSE_DEMO,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
    coerce_date,
    coerce_quantity,
    optional_text,
    require_action,
    require_stock_out_purpose,
    require_text,
    signed_quantity,
)
from .concurrency import run_with_retry
from .ledger_service import append_ledger_entry, fold_quantity, get_balance_row
"""
Movement invariants (authoritative)

- Every operation is one unit of work: its ledger rows, balance moves and
  headers are flushed in one DB transaction and committed once. Any failure
  rolls the unit back, so readers see all of its rows or none.
- Stock In is the documented exception to all-or-nothing at the ROW level:
  invalid rows are skipped and logged, valid rows are applied together.
- Stock Out checks availability per triple against the ledger fold, then again
  inside the balance UPDATE (floor=0), unless ALLOW_NEGATIVE_STOCK_OUT is set,
  in which case it records and warns.
- Adjustments are corrections and never check availability.
"""

# Balance-row inserts race on the triple's unique key; retry those too
MOVEMENT_RETRY_ON = (OperationalError, StaleDataError, IntegrityError)


# =============================================================================
# REFERENCE RESOLUTION
# =============================================================================

@dataclass(frozen=True)
class EntityRef:
    """
    An item / warehouse / rack reference as it arrives from a caller: either a
    database id or an exact (trimmed, case-sensitive) name. Resolved once per
    batch against a RegistrySnapshot into a canonical id.
    """
    kind: str  # "id" | "name"
    value: Any

    @classmethod
    def parse(cls, raw) -> "EntityRef | None":
        if raw is None:
            return None
        if isinstance(raw, EntityRef):
            return raw
        if isinstance(raw, bool):
            return None
        if isinstance(raw, int):
            return cls("id", raw)
        if isinstance(raw, str):
            name = raw.strip()
            return cls("name", name) if name else None
        return None


@dataclass
class RegistrySnapshot:
    """Name and id maps over the whole registry, built once per Stock In batch."""
    item_ids: set[int]
    items_by_name: dict[str, list[Item]]
    warehouse_ids: set[int]
    warehouses_by_name: dict[str, list[int]]
    rack_warehouse: dict[int, int]
    racks_by_name: dict[tuple[int, str], int]

    @classmethod
    def load(cls) -> "RegistrySnapshot":
        items = db.session.query(Item).all()
        warehouses = db.session.query(Warehouse).all()
        racks = db.session.query(Location).all()

        items_by_name: dict[str, list[Item]] = {}
        for item in items:
            items_by_name.setdefault(item.name.strip(), []).append(item)

        warehouses_by_name: dict[str, list[int]] = {}
        for wh in warehouses:
            warehouses_by_name.setdefault(wh.name.strip(), []).append(wh.id)

        return cls(
            item_ids={i.id for i in items},
            items_by_name=items_by_name,
            warehouse_ids={w.id for w in warehouses},
            warehouses_by_name=warehouses_by_name,
            rack_warehouse={r.id: r.warehouse_id for r in racks},
            racks_by_name={(r.warehouse_id, r.name.strip()): r.id for r in racks},
        )

    def resolve_item(self, ref: EntityRef | None, model_no: str | None = None) -> int | None:
        if ref is None:
            return None
        if ref.kind == "id":
            return ref.value if ref.value in self.item_ids else None
        candidates = self.items_by_name.get(ref.value, [])
        if model_no:
            candidates = [i for i in candidates if i.model_no.strip() == model_no.strip()]
        if len(candidates) != 1:
            return None
        return candidates[0].id

    def resolve_warehouse(self, ref: EntityRef | None) -> int | None:
        if ref is None:
            return None
        if ref.kind == "id":
            return ref.value if ref.value in self.warehouse_ids else None
        ids = self.warehouses_by_name.get(ref.value, [])
        return ids[0] if len(ids) == 1 else None

    def resolve_rack(self, ref: EntityRef | None, warehouse_id: int) -> int | None:
        """Racks resolve inside the row's warehouse: a rack name exists once per warehouse."""
        if ref is None:
            return None
        if ref.kind == "id":
            return ref.value if self.rack_warehouse.get(ref.value) == warehouse_id else None
        return self.racks_by_name.get((warehouse_id, ref.value))


def resolve_triple(item_id, warehouse_id, location_id=None) -> tuple[Item, Warehouse, Location | None]:
    """
    Validate an id-based triple against the registry.

    Raises NotFoundError for unknown ids and ValidationError when the rack
    belongs to a different warehouse.
    """
    if item_id is None:
        raise ValidationError("item_id is required")
    if warehouse_id is None:
        raise ValidationError("warehouse_id is required")

    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found")
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")

    location = None
    if location_id is not None:
        location = db.session.get(Location, location_id)
        if location is None:
            raise NotFoundError(f"Location {location_id} not found")
        if location.warehouse_id != warehouse.id:
            raise ValidationError(
                f"Location {location_id} does not belong to warehouse {warehouse_id}"
            )
    return item, warehouse, location


# =============================================================================
# STOCK IN
# =============================================================================

@dataclass
class StockInResult:
    entries: list[LedgerEntry] = field(default_factory=list)
    headers: list[StockIn] = field(default_factory=list)
    skipped: list[tuple[int, str]] = field(default_factory=list)


def _validate_stock_in_row(snapshot: RegistrySnapshot, row: dict) -> tuple[dict | None, str | None]:
    item_ref = EntityRef.parse(row.get("item"))
    warehouse_ref = EntityRef.parse(row.get("warehouse"))
    location_ref = EntityRef.parse(row.get("location"))

    item_id = snapshot.resolve_item(item_ref, row.get("model_no"))
    if item_id is None:
        return None, "missing or unknown item"

    warehouse_id = snapshot.resolve_warehouse(warehouse_ref)
    if warehouse_id is None:
        return None, "missing or unknown warehouse"

    location_id = None
    if location_ref is not None:
        location_id = snapshot.resolve_rack(location_ref, warehouse_id)
        if location_id is None:
            return None, "unknown rack for warehouse"

    try:
        quantity = coerce_quantity(row.get("quantity"))
    except ValidationError as e:
        return None, str(e)

    return {
        "item_id": item_id,
        "warehouse_id": warehouse_id,
        "location_id": location_id,
        "quantity": quantity,
    }, None


def stock_in(
    rows: Iterable[dict],
    *,
    occurred_at=None,
    remarks: str | None = None,
) -> StockInResult:
    """
    Record a batch of stock receipts.

    Each row: item, warehouse, optional location (ids or exact names),
    quantity, optional model_no (disambiguates item names), date, remarks.
    Invalid rows are skipped and reported in result.skipped as (index, reason).
    """
    rows = list(rows or [])
    if not rows:
        raise ValidationError("No items provided.")

    batch_date = coerce_date(occurred_at)
    batch_remarks = optional_text(remarks, field="remarks", max_length=255) or ""

    def _op():
        snapshot = RegistrySnapshot.load()
        result = StockInResult()

        for index, row in enumerate(rows):
            if not isinstance(row, dict):
                result.skipped.append((index, "row is not an object"))
                continue
            clean, reason = _validate_stock_in_row(snapshot, row)
            if clean is None:
                result.skipped.append((index, reason))
                continue
            try:
                row_date = coerce_date(row.get("date"), default_now=False) or batch_date
                row_remarks = optional_text(row.get("remarks"), field="remarks", max_length=255) or batch_remarks
            except ValidationError as e:
                result.skipped.append((index, str(e)))
                continue

            entry = append_ledger_entry(
                item_id=clean["item_id"],
                warehouse_id=clean["warehouse_id"],
                location_id=clean["location_id"],
                quantity=abs(clean["quantity"]),
                action=ACTION_IN,
                type=TYPE_IN,
                purpose=None,
                occurred_at=row_date,
                remarks=row_remarks,
            )
            header = StockIn(
                item_id=clean["item_id"],
                warehouse_id=clean["warehouse_id"],
                location_id=clean["location_id"],
                quantity=clean["quantity"],
                occurred_at=row_date,
                remarks=row_remarks,
                ledger_entry_id=entry.id,
            )
            db.session.add(header)
            result.entries.append(entry)
            result.headers.append(header)

        db.session.flush()
        db.session.commit()
        return result

    result = run_with_retry(_op, retry_on=MOVEMENT_RETRY_ON)
    for index, reason in result.skipped:
        current_app.logger.warning("Stock In: skipping row %d (%s)", index, reason)
    return result


# =============================================================================
# STOCK OUT
# =============================================================================

def _check_available(item_id: int, warehouse_id: int, location_id: int | None, quantity: int) -> int | None:
    """
    Lock the triple and compare the ledger fold with the requested quantity.

    Returns the floor the OUT append must respect: 0 under the default policy,
    None when over-draws are permitted. Raises InsufficientStockError early
    unless the over-draw policy permits it.
    """
    allow_negative = current_app.config.get("ALLOW_NEGATIVE_STOCK_OUT", False)
    get_balance_row(item_id, warehouse_id, location_id, lock=True)
    available = fold_quantity(item_id, warehouse_id, location_id)
    if quantity > available:
        if not allow_negative:
            raise InsufficientStockError(
                available,
                quantity,
                f"Insufficient stock for item {item_id} in warehouse {warehouse_id}. "
                f"Available: {available}, requested: {quantity}",
            )
        current_app.logger.warning(
            "Stock Out over-draw permitted: item=%s warehouse=%s location=%s available=%d requested=%d",
            item_id, warehouse_id, location_id, available, quantity,
        )
    return None if allow_negative else 0


def stock_out(
    rows: Iterable[dict],
    *,
    purpose: str,
    reason: str | None = None,
    tender_no: str | None = None,
    occurred_at=None,
    return_date=None,
) -> list[LedgerEntry]:
    """
    Record a batch of stock issues for a Sale or a Demo loan.

    Each row: item_id, warehouse_id, optional location_id, quantity. Any invalid
    row rejects the whole batch. Demo rows get return_date and returned=False;
    Sale rows leave returned unset.
    """
    rows = list(rows or [])
    if not rows:
        raise ValidationError("No items provided.")

    clean_purpose = require_stock_out_purpose(purpose)
    out_date = coerce_date(occurred_at)
    clean_reason = optional_text(reason, field="reason", max_length=255)
    clean_tender = optional_text(tender_no, field="tender_no", max_length=64)
    is_demo = clean_purpose == PURPOSE_DEMO
    due_date = coerce_date(return_date, field="return_date", default_now=False) if is_demo else None

    clean_rows = []
    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ValidationError(f"Row {index}: not an object")
        try:
            quantity = coerce_quantity(row.get("quantity"))
        except ValidationError as e:
            raise ValidationError(f"Row {index}: {e}") from None
        clean_rows.append((row.get("item_id"), row.get("warehouse_id"), row.get("location_id"), quantity))

    def _op():
        entries: list[LedgerEntry] = []
        for item_id, warehouse_id, location_id, quantity in clean_rows:
            item, warehouse, location = resolve_triple(item_id, warehouse_id, location_id)
            loc_id = location.id if location else None

            floor = _check_available(item.id, warehouse.id, loc_id, quantity)

            entry = append_ledger_entry(
                item_id=item.id,
                warehouse_id=warehouse.id,
                location_id=loc_id,
                quantity=-abs(quantity),
                action=ACTION_OUT,
                type=TYPE_OUT,
                purpose=clean_purpose,
                occurred_at=out_date,
                remarks=clean_reason,
                return_date=due_date,
                returned=False if is_demo else None,
                floor=floor,
            )
            db.session.add(StockOut(
                item_id=item.id,
                warehouse_id=warehouse.id,
                location_id=loc_id,
                quantity=quantity,
                purpose=clean_purpose,
                occurred_at=out_date,
                return_date=due_date,
                reason=clean_reason,
                tender_no=clean_tender,
                return_processed=False,
                ledger_entry_id=entry.id,
            ))
            entries.append(entry)

        db.session.flush()
        db.session.commit()
        return entries

    return run_with_retry(_op, retry_on=MOVEMENT_RETRY_ON)


# =============================================================================
# STOCK ADJUSTMENT
# =============================================================================

def adjust_stock(
    *,
    item_id: int,
    warehouse_id: int,
    quantity,
    action: str,
    reason: str,
    location_id: int | None = None,
    occurred_at=None,
) -> StockAdjustment:
    """
    Manual correction. One signed ledger row, purpose Adjusted.

    No availability check, even for OUT: adjustments exist to correct bad data.
    """
    clean_qty = coerce_quantity(quantity)
    clean_action = require_action(action)
    clean_reason = require_text(reason, field="reason", max_length=255)
    adj_date = coerce_date(occurred_at)

    def _op():
        item, warehouse, location = resolve_triple(item_id, warehouse_id, location_id)
        loc_id = location.id if location else None

        entry = append_ledger_entry(
            item_id=item.id,
            warehouse_id=warehouse.id,
            location_id=loc_id,
            quantity=signed_quantity(clean_action, clean_qty),
            action=clean_action,
            type=TYPE_ADJUSTMENT,
            purpose=PURPOSE_ADJUSTED,
            occurred_at=adj_date,
            remarks=clean_reason,
        )
        adjustment = StockAdjustment(
            item_id=item.id,
            warehouse_id=warehouse.id,
            location_id=loc_id,
            quantity=clean_qty,
            action=clean_action,
            reason=clean_reason,
            purpose=PURPOSE_ADJUSTED,
            occurred_at=adj_date,
            ledger_entry_id=entry.id,
        )
        db.session.add(adjustment)
        db.session.flush()
        db.session.commit()
        return adjustment

    return run_with_retry(_op, retry_on=MOVEMENT_RETRY_ON)
