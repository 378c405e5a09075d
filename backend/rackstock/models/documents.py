from __future__ import annotations

from ..extensions import db
from rackstock.time_utils import to_utc_z


# =============================================================================
# MOVEMENT HEADERS
#
# Denormalized mirrors of ledger rows for the stock-in / stock-out / transfer /
# adjustment reports. Never read for quantity: the ledger is authoritative.
# =============================================================================

class StockIn(db.Model):
    __tablename__ = "stock_ins"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    remarks = db.Column(db.String(255), nullable=False, default="")
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")
    warehouse = db.relationship("Warehouse")
    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item": self.item.name if self.item else None,
            "model_no": self.item.model_no if self.item else None,
            "company_name": self.item.company_name if self.item else None,
            "warehouse_id": self.warehouse_id,
            "warehouse": self.warehouse.name if self.warehouse else None,
            "location_id": self.location_id,
            "location": self.location.name if self.location else None,
            "quantity": self.quantity,
            "occurred_at": to_utc_z(self.occurred_at),
            "remarks": self.remarks,
            "ledger_entry_id": self.ledger_entry_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockOut(db.Model):
    __tablename__ = "stock_outs"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    purpose = db.Column(db.String(16), nullable=False)  # Sale | Demo
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    return_date = db.Column(db.DateTime(timezone=True), nullable=True)
    reason = db.Column(db.String(255), nullable=True)
    tender_no = db.Column(db.String(64), nullable=True)
    return_processed = db.Column(db.Boolean, nullable=False, default=False)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")
    warehouse = db.relationship("Warehouse")
    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item": self.item.name if self.item else None,
            "model_no": self.item.model_no if self.item else None,
            "warehouse_id": self.warehouse_id,
            "warehouse": self.warehouse.name if self.warehouse else None,
            "location_id": self.location_id,
            "location": self.location.name if self.location else None,
            "quantity": self.quantity,
            "purpose": self.purpose,
            "occurred_at": to_utc_z(self.occurred_at),
            "return_date": to_utc_z(self.return_date),
            "reason": self.reason,
            "tender_no": self.tender_no,
            "return_processed": self.return_processed,
            "ledger_entry_id": self.ledger_entry_id,
            "created_at": to_utc_z(self.created_at),
        }


class StockTransfer(db.Model):
    """
    Transfer record for reporting. The two ledger rows sharing
    stock_transfer_no == transfer_no carry the quantity.
    """
    __tablename__ = "stock_transfers"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    transfer_no = db.Column(db.String(32), nullable=False, unique=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    from_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    to_warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    from_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    to_location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    transfer_date = db.Column(db.DateTime(timezone=True), nullable=False)
    note = db.Column(db.String(255), nullable=False, default="")
    purpose = db.Column(db.String(32), nullable=False, default="Transferred")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")
    from_warehouse = db.relationship("Warehouse", foreign_keys=[from_warehouse_id])
    to_warehouse = db.relationship("Warehouse", foreign_keys=[to_warehouse_id])
    from_location = db.relationship("Location", foreign_keys=[from_location_id])
    to_location = db.relationship("Location", foreign_keys=[to_location_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transfer_no": self.transfer_no,
            "item_id": self.item_id,
            "item": self.item.name if self.item else None,
            "model_no": self.item.model_no if self.item else None,
            "from_warehouse_id": self.from_warehouse_id,
            "from_warehouse": self.from_warehouse.name if self.from_warehouse else None,
            "to_warehouse_id": self.to_warehouse_id,
            "to_warehouse": self.to_warehouse.name if self.to_warehouse else None,
            "from_location_id": self.from_location_id,
            "from_location_name": self.from_location.name if self.from_location else "",
            "to_location_id": self.to_location_id,
            "to_location_name": self.to_location.name if self.to_location else "",
            "quantity": self.quantity,
            "transfer_date": to_utc_z(self.transfer_date),
            "note": self.note,
            "purpose": self.purpose,
            "created_at": to_utc_z(self.created_at),
        }


class StockAdjustment(db.Model):
    __tablename__ = "stock_adjustments"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    location_id = db.Column(db.Integer, db.ForeignKey("locations.id"), nullable=True)
    quantity = db.Column(db.Integer, nullable=False)
    action = db.Column(db.String(8), nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    purpose = db.Column(db.String(32), nullable=False, default="Adjusted")
    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    ledger_entry_id = db.Column(db.Integer, db.ForeignKey("ledger_entries.id"), nullable=False, unique=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    item = db.relationship("Item")
    warehouse = db.relationship("Warehouse")
    location = db.relationship("Location")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item": self.item.name if self.item else None,
            "model_no": self.item.model_no if self.item else None,
            "warehouse_id": self.warehouse_id,
            "warehouse": self.warehouse.name if self.warehouse else None,
            "location_id": self.location_id,
            "location": self.location.name if self.location else None,
            "quantity": self.quantity,
            "action": self.action,
            "reason": self.reason,
            "purpose": self.purpose,
            "occurred_at": to_utc_z(self.occurred_at),
            "ledger_entry_id": self.ledger_entry_id,
            "created_at": to_utc_z(self.created_at),
        }


class DocumentSequence(db.Model):
    """
    Atomic per-type document sequences.

    WHY: Prevent race conditions when generating transfer numbers.
    """
    __tablename__ = "document_sequences"
    __table_args__ = ({"sqlite_autoincrement": True},)

    id = db.Column(db.Integer, primary_key=True)
    document_type = db.Column(db.String(32), nullable=False, unique=True)
    next_number = db.Column(db.Integer, nullable=False, default=1)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "document_type": self.document_type,
            "next_number": self.next_number,
            "updated_at": to_utc_z(self.updated_at),
        }
