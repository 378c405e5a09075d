from __future__ import annotations

from ..extensions import db
from rackstock.time_utils import to_utc_z


# Movement subtypes (descriptive only; aggregation never reads them)
TYPE_IN = "In"
TYPE_OUT = "Out"
TYPE_TRANSFER_IN = "Transfer In"
TYPE_TRANSFER_OUT = "Transfer Out"
TYPE_ADJUSTMENT = "Adjustment"
TYPE_RETURN_IN = "Return In"
TYPE_MANUAL = "Manual"


class LedgerEntry(db.Model):
    """
    One signed stock movement. The single source of truth for quantity.

    INVARIANTS:
    - quantity sign matches action: IN > 0, OUT < 0
    - rows are never updated or deleted, except the one-way
      returned False -> True flip on a Demo OUT row
    - on-hand for (item, warehouse, location) = SUM(quantity) over matching
      rows; location_id NULL is its own bucket

    occurred_at is the movement date supplied by the caller; created_at is
    system time.
    """
    __tablename__ = "ledger_entries"
    __table_args__ = (
        db.CheckConstraint(
            "(action = 'IN' AND quantity > 0) OR (action = 'OUT' AND quantity < 0)",
            name="ck_ledger_sign_matches_action",
        ),
        db.Index("ix_ledger_triple", "item_id", "warehouse_id", "location_id"),
        db.Index("ix_ledger_action_purpose", "action", "purpose"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True, index=True)

    quantity = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(8), nullable=False)
    type = db.Column(db.String(32), nullable=False, default=TYPE_MANUAL)
    purpose = db.Column(db.String(32), nullable=True)
    remarks = db.Column(db.String(255), nullable=False, default="")

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)

    # Demo loans only
    return_date = db.Column(db.DateTime(timezone=True), nullable=True)
    returned = db.Column(db.Boolean, nullable=True)

    # Demo Return IN -> the Demo OUT it closes
    reference_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=True, index=True)

    # Pairs the OUT and IN rows of one transfer
    stock_transfer_no = db.Column(db.String(32), nullable=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    item = db.relationship("Item", lazy="joined")
    warehouse = db.relationship("Warehouse", lazy="joined")
    location = db.relationship("Location", lazy="joined")

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} {self.action} {self.quantity} "
            f"item={self.item_id} wh={self.warehouse_id} loc={self.location_id}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "warehouse_id": self.warehouse_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "action": self.action,
            "type": self.type,
            "purpose": self.purpose,
            "remarks": self.remarks,
            "occurred_at": to_utc_z(self.occurred_at),
            "return_date": to_utc_z(self.return_date),
            "returned": self.returned,
            "reference_id": self.reference_id,
            "stock_transfer_no": self.stock_transfer_no,
            "created_at": to_utc_z(self.created_at),
        }


class StockBalance(db.Model):
    """
    Materialized running balance per (item, warehouse, location).

    Updated in the same transaction as every ledger append; version_id gives
    optimistic locking so two writers on one triple cannot both commit a
    stale read. Read views never use it: reconcile_balances() compares it
    against the ledger fold.

    location_key = location_id or 0, so the unracked bucket is a single
    unique key (NULLs never collide in a UNIQUE constraint).
    """
    __tablename__ = "stock_balances"
    __table_args__ = (
        db.UniqueConstraint("item_id", "warehouse_id", "location_key", name="uq_stock_balances_triple"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    location_key = db.Column(db.Integer, nullable=False, default=0)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "warehouse_id": self.warehouse_id,
            "location_id": self.location_id,
            "quantity": self.quantity,
            "version_id": self.version_id,
            "updated_at": to_utc_z(self.updated_at),
        }
