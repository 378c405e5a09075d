# Overview: Items, warehouses and racks (reference data for every movement).

from __future__ import annotations

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Item, Warehouse, Location
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    optional_text,
    require_text,
)
from .concurrency import run_with_retry
from .ledger_service import count_references
"""
Registry rules

- Item identity is (model_no, company_name); duplicates are a conflict and must
  not be retried as a create.
- Warehouse names are unique case-insensitively (Stock In resolves warehouses
  by name, so two warehouses with one name would make that lookup ambiguous).
- A rack name is one logical rack replicated as a Location row per warehouse.
  Create, rename and delete by name fan out across all warehouses inside one
  transaction, so the rows sharing a name never diverge in name.
- Descriptions are per-row labels. replicate_standard_racks writes
  "<rack> for <warehouse>"; a rename without a description keeps each row's
  label, and a rename with one sets it on every row.
- Nothing the ledger references is ever deleted.
"""

ITEM_FIELDS = ("name", "model_no", "company_name", "min_stock_alert", "unit", "category", "description")


# =============================================================================
# ITEMS
# =============================================================================

def _clean_min_stock_alert(value):
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        try:
            value = int(str(value).strip())
        except ValueError:
            raise ValidationError("min_stock_alert must be an integer") from None
    if value < 0:
        raise ValidationError("min_stock_alert must be >= 0")
    return value


def _clean_item_fields(fields: dict, *, partial: bool) -> dict:
    unknown = set(fields) - set(ITEM_FIELDS)
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")

    cleaned: dict = {}
    for key in ("name", "model_no", "company_name"):
        if key in fields or not partial:
            cleaned[key] = require_text(fields.get(key), field=key, max_length=255)
    if "min_stock_alert" in fields:
        cleaned["min_stock_alert"] = _clean_min_stock_alert(fields["min_stock_alert"])
    for key in ("unit", "category", "description"):
        if key in fields:
            cleaned[key] = optional_text(fields[key], field=key)
    return cleaned


def _find_item_by_identity(model_no: str, company_name: str) -> Item | None:
    return (
        db.session.query(Item)
        .filter(Item.model_no == model_no, Item.company_name == company_name)
        .first()
    )


def _commit_item() -> None:
    # A racing insert of the same identity gets past the lookup; the unique
    # constraint catches it at commit
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("This model number already exists for the selected company.") from None


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise NotFoundError(f"Item {item_id} not found")
    return item


def list_items() -> list[Item]:
    return db.session.query(Item).order_by(Item.name, Item.id).all()


def create_item(**fields) -> Item:
    cleaned = _clean_item_fields(fields, partial=False)
    cleaned.setdefault("min_stock_alert", current_app.config.get("DEFAULT_MIN_STOCK_ALERT", 5))

    def _op():
        if _find_item_by_identity(cleaned["model_no"], cleaned["company_name"]):
            raise ConflictError("This model number already exists for the selected company.")
        item = Item(**cleaned)
        db.session.add(item)
        _commit_item()
        return item

    return run_with_retry(_op)


def update_item(item_id: int, **fields) -> Item:
    cleaned = _clean_item_fields(fields, partial=True)

    def _op():
        item = get_item(item_id)
        model_no = cleaned.get("model_no", item.model_no)
        company_name = cleaned.get("company_name", item.company_name)
        other = _find_item_by_identity(model_no, company_name)
        if other is not None and other.id != item.id:
            raise ConflictError("This model number already exists for the selected company.")
        for key, value in cleaned.items():
            setattr(item, key, value)
        _commit_item()
        return item

    return run_with_retry(_op)


def delete_item(item_id: int) -> None:
    def _op():
        item = get_item(item_id)
        refs = count_references(item_id=item.id)
        if refs:
            raise ConflictError(f"Item {item_id} has {refs} ledger entries and cannot be deleted")
        db.session.delete(item)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# WAREHOUSES
# =============================================================================

def _find_warehouse_by_name(name: str) -> Warehouse | None:
    return (
        db.session.query(Warehouse)
        .filter(func.lower(Warehouse.name) == name.lower())
        .first()
    )


def get_warehouse(warehouse_id: int) -> Warehouse:
    warehouse = db.session.get(Warehouse, warehouse_id)
    if warehouse is None:
        raise NotFoundError(f"Warehouse {warehouse_id} not found")
    return warehouse


def list_warehouses() -> list[Warehouse]:
    return db.session.query(Warehouse).order_by(Warehouse.name, Warehouse.id).all()


def _logical_rack_templates() -> dict[str, tuple[str, str]]:
    """lower(name) -> (name, description) for every rack name in the registry."""
    templates: dict[str, tuple[str, str]] = {}
    for loc in db.session.query(Location).order_by(Location.id).all():
        templates.setdefault(loc.name.lower(), (loc.name, loc.description or ""))
    return templates


def create_warehouse(name: str, location: str) -> Warehouse:
    """
    Create a warehouse and give it every logical rack already in the registry.
    """
    clean_name = require_text(name, field="name", max_length=255)
    clean_location = require_text(location, field="location", max_length=255)

    def _op():
        if _find_warehouse_by_name(clean_name):
            raise ConflictError(f"Warehouse {clean_name!r} already exists")

        templates = _logical_rack_templates()

        warehouse = Warehouse(name=clean_name, location=clean_location)
        db.session.add(warehouse)
        db.session.flush()

        for rack_name, description in templates.values():
            db.session.add(Location(name=rack_name, warehouse_id=warehouse.id, description=description))

        db.session.commit()
        return warehouse

    return run_with_retry(_op)


def update_warehouse(warehouse_id: int, *, name: str | None = None, location: str | None = None) -> Warehouse:
    def _op():
        warehouse = get_warehouse(warehouse_id)
        if name is not None:
            clean_name = require_text(name, field="name", max_length=255)
            other = _find_warehouse_by_name(clean_name)
            if other is not None and other.id != warehouse.id:
                raise ConflictError(f"Warehouse {clean_name!r} already exists")
            warehouse.name = clean_name
        if location is not None:
            warehouse.location = require_text(location, field="location", max_length=255)
        db.session.commit()
        return warehouse

    return run_with_retry(_op)


def delete_warehouse(warehouse_id: int) -> None:
    """Delete a warehouse and its racks; refused while any ledger row references it."""
    def _op():
        warehouse = get_warehouse(warehouse_id)
        refs = count_references(warehouse_id=warehouse.id)
        if refs:
            raise ConflictError(
                f"Warehouse {warehouse_id} has {refs} ledger entries and cannot be deleted"
            )
        db.session.delete(warehouse)
        db.session.commit()

    run_with_retry(_op)


# =============================================================================
# LOCATIONS (RACKS)
# =============================================================================

def _racks_named(name: str) -> list[Location]:
    return (
        db.session.query(Location)
        .filter(func.lower(Location.name) == name.lower())
        .order_by(Location.warehouse_id)
        .all()
    )


def get_location(location_id: int) -> Location:
    loc = db.session.get(Location, location_id)
    if loc is None:
        raise NotFoundError(f"Location {location_id} not found")
    return loc


def list_locations(warehouse_id: int | None = None) -> list[Location]:
    q = db.session.query(Location)
    if warehouse_id is not None:
        q = q.filter(Location.warehouse_id == warehouse_id)
    return q.order_by(Location.name, Location.warehouse_id).all()


def create_location(name: str, description: str | None = None) -> list[Location]:
    """
    Create a logical rack: one Location per warehouse lacking that name.

    Warehouses that already have a same-named rack (case-insensitive) are
    skipped, so calling this twice is harmless. Returns only the rows created.
    """
    clean_name = require_text(name, field="name", max_length=128)
    clean_description = optional_text(description, field="description", max_length=255) or ""

    def _op():
        existing = {loc.warehouse_id for loc in _racks_named(clean_name)}
        created: list[Location] = []
        for warehouse in list_warehouses():
            if warehouse.id in existing:
                continue
            loc = Location(name=clean_name, warehouse_id=warehouse.id, description=clean_description)
            db.session.add(loc)
            created.append(loc)
        db.session.commit()
        return created

    created = run_with_retry(_op)
    current_app.logger.info("Rack %r created in %d warehouse(s)", clean_name, len(created))
    return created


def update_locations_by_name(name: str, *, new_name: str, description: str | None = None) -> list[Location]:
    """
    Rename / redescribe every rack called `name` across all warehouses at once.
    """
    old_name = require_text(name, field="name", max_length=128)
    clean_new_name = require_text(new_name, field="new_name", max_length=128)
    clean_description = optional_text(description, field="description", max_length=255)

    def _op():
        racks = _racks_named(old_name)
        if not racks:
            raise NotFoundError(f"No racks named {old_name!r}")

        if clean_new_name.lower() != old_name.lower() and _racks_named(clean_new_name):
            raise ConflictError(f"A rack named {clean_new_name!r} already exists")

        for loc in racks:
            loc.name = clean_new_name
            if clean_description is not None:
                loc.description = clean_description
        db.session.commit()
        return racks

    return run_with_retry(_op)


def delete_locations_by_name(name: str) -> int:
    """Delete a logical rack from every warehouse; refused if any of its rows carry stock history."""
    clean_name = require_text(name, field="name", max_length=128)

    def _op():
        racks = _racks_named(clean_name)
        if not racks:
            raise NotFoundError(f"No racks named {clean_name!r}")
        refs = count_references(location_ids=[loc.id for loc in racks])
        if refs:
            raise ConflictError(f"Rack {clean_name!r} has {refs} ledger entries and cannot be deleted")
        for loc in racks:
            db.session.delete(loc)
        db.session.commit()
        return len(racks)

    return run_with_retry(_op)


def delete_location(location_id: int) -> None:
    def _op():
        loc = get_location(location_id)
        refs = count_references(location_ids=[loc.id])
        if refs:
            raise ConflictError(f"Location {location_id} has {refs} ledger entries and cannot be deleted")
        db.session.delete(loc)
        db.session.commit()

    run_with_retry(_op)


def replicate_standard_racks(names=None) -> list[Location]:
    """
    Ensure each standard rack name exists in every warehouse.

    Missing rows get the description "<rack> for <warehouse>".
    """
    rack_names = list(names) if names else list(current_app.config.get("STANDARD_RACKS", ()))

    def _op():
        created: list[Location] = []
        for warehouse in list_warehouses():
            have = {loc.name.lower() for loc in warehouse.racks}
            for rack_name in rack_names:
                if rack_name.lower() in have:
                    continue
                loc = Location(
                    name=rack_name,
                    warehouse_id=warehouse.id,
                    description=f"{rack_name} for {warehouse.name}",
                )
                db.session.add(loc)
                created.append(loc)
                have.add(rack_name.lower())
        db.session.commit()
        return created

    return run_with_retry(_op)
