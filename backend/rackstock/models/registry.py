from __future__ import annotations

from ..extensions import db
from rackstock.time_utils import to_utc_z


class Item(db.Model):
    """
    Item master data.

    IDENTITY:
    (model_no, company_name) is the natural key: UniqueConstraint below.
    Descriptive fields (name, unit, category, min_stock_alert) are mutable.

    DELETION:
    Items referenced by any ledger entry cannot be deleted; the ledger keeps
    the full movement history and must never point at a missing item.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("model_no", "company_name", name="uq_items_model_company"),
        db.Index("ix_items_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    model_no = db.Column(db.String(128), nullable=False)
    company_name = db.Column(db.String(255), nullable=False)

    # Low-stock threshold per (item, warehouse); None falls back to DEFAULT_MIN_STOCK_ALERT
    min_stock_alert = db.Column(db.Integer, nullable=True)

    unit = db.Column(db.String(32), nullable=True)  # e.g., pcs, box, kg
    category = db.Column(db.String(128), nullable=True)
    description = db.Column(db.Text, nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id} model_no={self.model_no!r} company={self.company_name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "model_no": self.model_no,
            "company_name": self.company_name,
            "min_stock_alert": self.min_stock_alert,
            "unit": self.unit,
            "category": self.category,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Warehouse(db.Model):
    __tablename__ = "warehouses"
    __table_args__ = (
        db.Index("ix_warehouses_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    # City / site description, free text
    location = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    racks = db.relationship(
        "Location",
        back_populates="warehouse",
        lazy=True,
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Warehouse id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "location": self.location,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Location(db.Model):
    """
    Rack inside one warehouse.

    A logical rack ("Rack No-1") is a NAME replicated as one row per
    warehouse. Rename/delete by name fans out across all rows sharing it.
    """
    __tablename__ = "locations"
    __table_args__ = (
        # Rack names are scoped per warehouse
        db.UniqueConstraint("name", "warehouse_id", name="uq_locations_name_warehouse"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    warehouse_id = db.Column(db.Integer, db.ForeignKey("warehouses.id"), nullable=False, index=True)
    description = db.Column(db.String(255), nullable=False, default="")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    warehouse = db.relationship("Warehouse", back_populates="racks")

    def __repr__(self) -> str:
        return f"<Location id={self.id} name={self.name!r} warehouse_id={self.warehouse_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "warehouse_id": self.warehouse_id,
            "warehouse": self.warehouse.name if self.warehouse else None,
            "description": self.description,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
