# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/rackstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to rackstock (PowerShell: $env:FLASK_APP="rackstock").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables that do not exist yet.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Racks:
# - python -m flask racks replicate [--name "Rack No-4" ...]
#   Ensure the standard rack names (or the given ones) exist in every warehouse.
#
# Stock:
# - python -m flask stock dashboard
#   Print total items, total stock and low-stock group count.
# - python -m flask stock reconcile [--fix]
#   Compare materialized balances with the ledger fold; --fix rewrites drifted rows.
# - python -m flask stock import-in stock_in.xlsx [--date 2026-01-31]
#   Stock In from a .xlsx workbook (first sheet) or .csv export with headers:
#   Model, Item, Warehouse, Rack, Quantity, Date, Remarks

import csv

import click
from flask.cli import with_appcontext

from .extensions import db
from .services import registry_service, stock_report_service
from .services.inventory_service import stock_in
from .validation import ValidationError


IMPORT_HEADERS = ("Model", "Item", "Warehouse", "Rack", "Quantity", "Date", "Remarks")


@click.group('system')
def system_group():
    """Database bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (idempotent)."""
    db.create_all()
    click.echo("PASS Tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including the stock ledger!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()
    click.echo("BUILD Creating all tables...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('racks')
def racks_group():
    """Rack (location) maintenance commands."""


@racks_group.command('replicate')
@click.option('--name', 'names', multiple=True, help='Rack name (repeatable); defaults to STANDARD_RACKS')
@with_appcontext
def replicate_racks(names):
    """Make every rack name exist in every warehouse."""
    created = registry_service.replicate_standard_racks(names or None)
    for loc in created:
        click.echo(f"PASS Created {loc.name} in warehouse {loc.warehouse_id}")
    click.echo(f"DONE {len(created)} rack(s) created")


@click.group('stock')
def stock_group():
    """Stock ledger inspection and maintenance."""


@stock_group.command('dashboard')
@with_appcontext
def dashboard():
    """Print the dashboard summary."""
    summary = stock_report_service.get_dashboard_summary()
    click.echo(f"Total items:     {summary['total_items']}")
    click.echo(f"Total stock:     {summary['total_stock']}")
    click.echo(f"Low-stock items: {summary['low_stock_items']}")


@stock_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Rewrite drifted balances to the ledger value')
@with_appcontext
def reconcile(fix):
    """Check materialized balances against the ledger."""
    mismatches = stock_report_service.reconcile_balances(fix=fix)
    if not mismatches:
        click.echo("PASS Balances match the ledger")
        return

    for m in mismatches:
        click.echo(
            f"DRIFT item={m['item_id']} warehouse={m['warehouse_id']} "
            f"location={m['location_id']} ledger={m['ledger_quantity']} "
            f"balance={m['balance_quantity']}"
        )
    if fix:
        click.echo(f"FIXED {len(mismatches)} balance row(s)")
    else:
        raise click.ClickException(f"{len(mismatches)} balance row(s) drifted; rerun with --fix")


def _read_csv(path):
    with open(path, encoding="utf-8-sig", newline="") as fh:
        reader = csv.DictReader(fh)
        return list(reader.fieldnames or []), [row for row in reader]


def _read_xlsx(path):
    from openpyxl import load_workbook
    wb = load_workbook(path, read_only=True, data_only=True)
    try:
        sheet = wb.active
        data = list(sheet.values)
    finally:
        wb.close()
    if not data:
        return [], []
    headers = [str(h).strip() if h is not None else "" for h in data[0]]
    rows = [
        {headers[i]: (row[i] if i < len(row) else None) for i in range(len(headers))}
        for row in data[1:]
    ]
    return headers, rows


SPREADSHEET_READERS = {
    "csv": _read_csv,
    "xlsx": _read_xlsx,
    "xlsm": _read_xlsx,
}


def _cell_name(value):
    """Spreadsheet cell -> trimmed text or None. Integral numbers lose the '.0'."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value).strip()
    return text or None


def _cell_value(value):
    """Blank strings become None; typed cells (numbers, dates) pass through."""
    if isinstance(value, str):
        return value.strip() or None
    return value


@stock_group.command('import-in')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--date', 'default_date', default=None, help='Date for rows without one (ISO-8601)')
@click.option('--remarks', default=None, help='Remarks for rows without their own')
@with_appcontext
def import_stock_in(path, default_date, remarks):
    """Stock In from a .csv or .xlsx sheet referencing items, warehouses and racks by name."""
    ext = path.rsplit(".", 1)[-1].lower() if "." in path else ""
    reader = SPREADSHEET_READERS.get(ext)
    if reader is None:
        raise click.ClickException(f"Unsupported file format: .{ext} (use .csv or .xlsx)")

    headers, records = reader(path)
    missing = [h for h in IMPORT_HEADERS if h not in headers]
    if missing:
        raise click.ClickException(f"Missing headers: {', '.join(missing)}")

    rows = []
    line_numbers = []
    # line 1 is the header row
    for line_no, record in enumerate(records, start=2):
        if all(_cell_value(record.get(h)) is None for h in IMPORT_HEADERS):
            continue
        rows.append({
            "model_no": _cell_name(record.get("Model")),
            "item": _cell_name(record.get("Item")),
            "warehouse": _cell_name(record.get("Warehouse")),
            "location": _cell_name(record.get("Rack")),
            "quantity": _cell_value(record.get("Quantity")),
            "date": _cell_value(record.get("Date")),
            "remarks": _cell_name(record.get("Remarks")),
        })
        line_numbers.append(line_no)

    if not rows:
        raise click.ClickException("No data rows found")

    try:
        result = stock_in(rows, occurred_at=default_date, remarks=remarks)
    except ValidationError as e:
        raise click.ClickException(str(e))

    for index, reason in result.skipped:
        click.echo(f"SKIP line {line_numbers[index]}: {reason}")
    click.echo(f"DONE {len(result.entries)} row(s) recorded, {len(result.skipped)} skipped")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(racks_group)
    app.cli.add_command(stock_group)
