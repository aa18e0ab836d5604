# Overview: Flask CLI command groups for bootstrap, analytics recovery and bulk stock.

# backend/wpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create any missing tables (does not touch existing data).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Analytics recovery:
# - python -m flask analytics catch-up [--limit 500]
#   Apply every committed sale that has not reached the rollups yet.
# - python -m flask analytics rebuild --yes
#   Clear the rollup tables and recompute them from sale history.
#
# Bulk stock:
# - python -m flask stock bulk-decrement stock.csv --batch-size 100
#   CSV columns: product_id,quantity. Commits per batch (NOT atomic).
# - python -m flask stock show 42
#   Show stock level and recent movements for a product.

import csv
import uuid

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import StockBatchError
from .extensions import db
from .models import Product, StockMovement
from .services import analytics_service
from .services.inventory_service import REASON_ADJUSTMENT, REASON_BULK_IMPORT, decrement_stock_in_batches
from .services.notification_service import LoggingNotificationEmitter, emit_safely
from .validation import MAX_QUANTITY, ValidationError, parse_int


def _engine_config():
    return current_app.extensions["sale_engine_config"]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@click.group('analytics')
def analytics_group():
    """Analytics rollup recovery commands."""


@analytics_group.command('catch-up')
@click.option('--limit', type=int, default=None, help='Process at most this many sales')
@with_appcontext
def analytics_catch_up(limit):
    """Apply committed sales that are missing from the rollups."""
    applied = analytics_service.process_pending_sales(top_n=_engine_config().analytics_top_n, limit=limit)
    click.echo(f"PASS Applied {applied} sale(s) to analytics.")


@analytics_group.command('rebuild')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def analytics_rebuild(yes):
    """Clear all rollups and recompute them from sale history."""
    if not yes:
        click.confirm("WARN This will clear all analytics rollups. Continue?", abort=True)
    applied = analytics_service.rebuild_analytics(top_n=_engine_config().analytics_top_n)
    click.echo(f"PASS Rebuilt analytics from {applied} sale(s).")


@click.group('stock')
def stock_group():
    """Stock inspection and bulk update commands."""


def _read_stock_csv(path: str) -> list[tuple[int, int]]:
    rows = []
    with open(path, newline="", encoding="utf-8") as handle:
        for line_number, row in enumerate(csv.DictReader(handle), start=2):
            try:
                product_id = parse_int(row.get("product_id"), "product_id", minimum=1)
                quantity = parse_int(row.get("quantity"), "quantity", minimum=1, maximum=MAX_QUANTITY)
            except ValidationError as e:
                raise click.BadParameter(f"line {line_number}: {e}")
            rows.append((product_id, quantity))
    return rows


@stock_group.command('bulk-decrement')
@click.argument('csv_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--batch-size', type=int, default=None, help='Items per committed batch')
@click.option('--reason', type=click.Choice([REASON_BULK_IMPORT, REASON_ADJUSTMENT]), default=REASON_BULK_IMPORT)
@with_appcontext
def bulk_decrement(csv_path, batch_size, reason):
    """
    Decrement stock from a CSV in committed batches.

    Batches before a failure stay committed; rerun with the remaining rows.
    """
    items = _read_stock_csv(csv_path)
    if not items:
        click.echo("WARN No rows found.")
        return

    transaction_id = f"bulk-{uuid.uuid4()}"
    click.echo(f"START Decrementing {len(items)} item(s), transaction {transaction_id}")
    try:
        result = decrement_stock_in_batches(
            items,
            config=_engine_config(),
            batch_size=batch_size,
            reason=reason,
            transaction_id=transaction_id,
        )
    except StockBatchError as e:
        click.echo(f"FAIL {e.message} ({e.committed_items} item(s) committed before the failure)")
        raise SystemExit(1)

    click.echo(f"PASS {result.processed_items} item(s) in {result.batches} batch(es).")

    emitter = LoggingNotificationEmitter()
    for event in result.low_stock_events:
        emit_safely(emitter, event)
        click.echo(f"WARN Low stock: product {event.payload['product_id']} at {event.payload['stock_level']}")


@stock_group.command('show')
@click.argument('product_id', type=int)
@click.option('--limit', type=int, default=10, help='Movements to show')
@with_appcontext
def stock_show(product_id, limit):
    """Show a product's stock level and recent movements."""
    product = db.session.get(Product, product_id)
    if product is None:
        click.echo(f"FAIL Product {product_id} not found")
        raise SystemExit(1)

    click.echo(f"{product.sku}  {product.name}  stock={product.stock_level}")
    movements = (
        db.session.query(StockMovement)
        .filter_by(product_id=product_id)
        .order_by(StockMovement.id.desc())
        .limit(limit)
        .all()
    )
    for movement in movements:
        click.echo(
            f"  {movement.created_at}  {movement.reason:<12} {movement.previous_stock:>6} -> "
            f"{movement.new_stock:<6} ({movement.delta:+d})  sale={movement.sale_id or '-'}"
        )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(analytics_group)
    app.cli.add_command(stock_group)
