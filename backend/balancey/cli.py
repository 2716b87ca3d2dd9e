# Overview: Flask CLI command groups for bootstrap, backup and maintenance.

# backend/balancey/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Use: python -m flask --app balancey <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask --app balancey system init
#   Idempotent bootstrap: creates missing tables and the default settings row.
# - python -m flask --app balancey system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask --app balancey system wipe --yes
#   Delete every row and restore default settings; the schema is kept.
#
# Backup:
# - python -m flask --app balancey backup export [--output path.json]
#   Write a JSON backup (default: BACKUP_DIR/balancey-backup-YYYY-MM-DD.json).
# - python -m flask --app balancey backup import path.json --mode replace|merge [--yes]
#   Restore a JSON backup.
#
# Customers:
# - python -m flask --app balancey customers sweep-late
#   Mark overdue orders late and sync LATE tags.
# - python -m flask --app balancey customers balances [--all]
#   Print balances due and typical order sizes.
# - python -m flask --app balancey customers carryover <customer_id> "$125.50" [--note text]
#   Open a balance carryover order.

import json
import os

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import BalanceyError
from .extensions import db
from .services import backup_service, customer_service, order_service
from .services.settings_service import get_settings
from .time_utils import utcnow
from .units import format_money, format_weight, parse_money


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize Balancey: create missing tables and the default settings row.

    Safe to run repeatedly.
    """
    click.echo("START Initializing Balancey...")
    db.create_all()
    settings = get_settings()
    click.echo(
        "PASS Settings ready: "
        f"deposit-min {settings.deposit_min_pct_normal:.0%} / holdback {settings.holdback_pct_normal:.0%} (normal), "
        f"due in {settings.default_due_days} days"
    )
    click.echo("PASS Initialization complete.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask --app balancey system init' to initialize.")


@system_group.command('wipe')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def wipe_data(yes):
    """Delete all customers, products, orders and ledgers; reset settings to defaults."""
    if not yes:
        click.confirm("WARN This will DELETE all data. Are you sure?", abort=True)

    backup_service.clear_all_data()
    click.echo("PASS All data cleared. Settings restored to defaults.")


# =============================================================================
# BACKUP
# =============================================================================

@click.group('backup')
def backup_group():
    """JSON backup export and import."""


@backup_group.command('export')
@click.option('--output', 'output_path', type=click.Path(dir_okay=False), default=None,
              help='Output file (default: BACKUP_DIR/balancey-backup-<date>.json)')
@with_appcontext
def export_backup(output_path):
    """Write every table to a JSON backup file."""
    data = backup_service.export_backup()

    if output_path is None:
        backup_dir = current_app.config["BACKUP_DIR"]
        os.makedirs(backup_dir, exist_ok=True)
        output_path = os.path.join(backup_dir, f"balancey-backup-{utcnow().date().isoformat()}.json")

    with open(output_path, "w", encoding="utf-8") as fh:
        json.dump(data, fh, indent=2)

    total = sum(len(data[key]) for key, _model in backup_service.BACKUP_TABLES)
    click.echo(f"PASS Exported {total} records to {output_path}")


@backup_group.command('import')
@click.argument('input_path', type=click.Path(exists=True, dir_okay=False))
@click.option('--mode', type=click.Choice(sorted(backup_service.VALID_IMPORT_MODES)),
              default=backup_service.IMPORT_REPLACE, show_default=True)
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def import_backup(input_path, mode, yes):
    """Restore a JSON backup file."""
    if mode == backup_service.IMPORT_REPLACE and not yes:
        click.confirm("WARN Replace mode DELETES all current data first. Continue?", abort=True)

    with open(input_path, encoding="utf-8") as fh:
        try:
            data = json.load(fh)
        except json.JSONDecodeError as exc:
            raise click.ClickException(f"Not a JSON file: {exc}")

    try:
        counts = backup_service.import_backup(data, mode)
    except BalanceyError as exc:
        raise click.ClickException(str(exc))

    click.echo(f"PASS Imported ({mode}):")
    for key, count in counts.items():
        click.echo(f"  {key}: {count}")


# =============================================================================
# CUSTOMERS
# =============================================================================

@click.group('customers')
def customers_group():
    """Customer maintenance commands."""


@customers_group.command('sweep-late')
@with_appcontext
def sweep_late():
    """Mark overdue orders late and sync LATE tags."""
    result = customer_service.update_late_statuses()
    click.echo(
        f"PASS {result['orders_marked_late']} orders marked late, "
        f"{result['customers_tagged']} customers tagged, "
        f"{result['tags_cleared']} LATE tags cleared"
    )


@customers_group.command('balances')
@click.option('--all', 'include_inactive', is_flag=True, help='Include deactivated customers')
@with_appcontext
def list_balances(include_inactive):
    """Print each customer's balance due and typical order size."""
    settings = get_settings()
    rows = customer_service.list_customers_with_balances(include_inactive=include_inactive)
    if not rows:
        click.echo("No customers.")
        return

    for row in rows:
        typical = row["typical_grams"]
        typical_text = (
            format_weight(typical, settings.default_weight_unit, settings.grams_decimal_places)
            if typical is not None else "-"
        )
        flag = " LATE" if row["is_late"] else ""
        click.echo(f"{row['name']}: owes {format_money(row['balance_due_cents'])}, typical {typical_text}{flag}")

    total = sum(row["balance_due_cents"] for row in rows)
    click.echo(f"Total outstanding: {format_money(total)}")


@customers_group.command('carryover')
@click.argument('customer_id')
@click.argument('amount')
@click.option('--note', default=None, help='Note stored on the carryover order')
@with_appcontext
def add_carryover(customer_id, amount, note):
    """Open a balance carryover order for AMOUNT (e.g. "$125.50")."""
    amount_cents = parse_money(amount)
    try:
        order = order_service.create_balance_carryover(customer_id, amount_cents, note=note)
    except BalanceyError as exc:
        raise click.ClickException(str(exc))
    click.echo(f"PASS Carryover {format_money(amount_cents)} recorded as order {order.id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(backup_group)
    app.cli.add_command(customers_group)
