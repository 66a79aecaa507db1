# Overview: Flask CLI command groups for bootstrap, inspection, and backup.

# backend/posledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/inspection:
# - python -m flask system init [--admin-username admin] [--admin-password "..."]
#   Idempotent bootstrap: tables, walk-in customer, invoice sequence, admin user.
# - python -m flask system verify-stock [--product-id 3]
#   Compare each product's stock with the sum of its movements.
#
# Users:
# - python -m flask users create --username jane --password "..." --role cashier
#   Create a user (prompts if options are omitted).
#
# Backup:
# - python -m flask backup export backup.json
# - python -m flask backup restore backup.json --username admin
#   Replace all ledger data with the file's contents (requires backup.restore).

import json

import click
from flask.cli import with_appcontext

from .extensions import db
from .errors import LedgerError
from .models import User
from .models.auth import ROLES, ROLE_ADMIN
from .services.auth_service import create_user
from .services.backup_service import export_backup, restore_backup
from .services.customer_service import ensure_walk_in_customer
from .services.sequence_service import ensure_invoice_sequence
from .services.stock_service import verify_stock_ledger


def _fail(message: str) -> None:
    click.echo(f"FAIL {message}")
    raise SystemExit(1)


@click.group('system')
def system_group():
    """System bootstrap and inspection commands."""


@system_group.command('init')
@click.option('--admin-username', default='admin', show_default=True, help='Username of the first admin')
@click.option('--admin-password', default='Password123!', show_default=True, help='Password of the first admin')
@with_appcontext
def init_system(admin_username, admin_password):
    """
    Initialize the ledger: tables, walk-in customer, invoice sequence and
    a first admin user. Safe to run repeatedly.

    SECURITY: Change the default admin password immediately in production!
    """
    click.echo("START Initializing ledger...")

    db.create_all()
    click.echo("PASS Tables created")

    walk_in = ensure_walk_in_customer()
    click.echo(f"PASS Walk-in customer: {walk_in.name} (ID: {walk_in.id})")

    sequence = ensure_invoice_sequence()
    db.session.commit()
    click.echo(f"PASS Invoice sequence ready (next: {sequence.next_number})")

    existing = db.session.query(User).filter_by(username=admin_username).first()
    if existing:
        click.echo(f"WARN  User '{admin_username}' already exists, skipping...")
    else:
        try:
            create_user(admin_username, admin_password, role=ROLE_ADMIN)
        except LedgerError as e:
            _fail(f"Failed to create admin '{admin_username}': {e.message}")
        click.echo(f"PASS Created user: {admin_username} with role '{ROLE_ADMIN}'")

    click.echo("DONE Ledger initialized")


@system_group.command('verify-stock')
@click.option('--product-id', type=int, default=None, help='Check a single product')
@with_appcontext
def verify_stock_cli(product_id):
    """Report products whose stock disagrees with their movement history."""
    mismatches = verify_stock_ledger(product_id)
    if not mismatches:
        click.echo("PASS Stock ledger is consistent")
        return

    click.echo(f"{'ID':<6} {'Product':<30} {'Stock':>8} {'Movements':>10} {'Diff':>8}")
    for row in mismatches:
        click.echo(
            f"{row['product_id']:<6} {row['name'][:30]:<30} {row['stock']:>8} "
            f"{row['movement_total']:>10} {row['difference']:>8}"
        )
    _fail(f"{len(mismatches)} product(s) out of balance")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(sorted(ROLES)), prompt=True, help='Role')
@click.option('--full-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, password, role, full_name):
    """Create a user. Passwords need at least 8 characters."""
    try:
        user = create_user(username, password, role=role, full_name=full_name)
    except LedgerError as e:
        _fail(f"Failed to create user: {e.message}")
    click.echo(f"PASS Created user: {user.username} (ID: {user.id}) with role '{user.role}'")


@click.group('backup')
def backup_group():
    """Backup export and restore."""


@backup_group.command('export')
@click.argument('path', type=click.Path(dir_okay=False, writable=True))
@with_appcontext
def export_backup_cli(path):
    """Write every ledger table to PATH as JSON."""
    backup = export_backup()
    with open(path, "w", encoding="utf-8") as fh:
        json.dump(backup, fh, indent=2)
    counts = ", ".join(f"{table}={len(rows)}" for table, rows in backup["data"].items())
    click.echo(f"PASS Backup written to {path} ({counts})")


@backup_group.command('restore')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@click.option('--username', required=True, help='User performing the restore (needs backup.restore)')
@click.option('--yes', is_flag=True, help='Skip confirmation prompt')
@with_appcontext
def restore_backup_cli(path, username, yes):
    """Replace all ledger data with the backup in PATH."""
    user = db.session.query(User).filter_by(username=username).first()
    if user is None:
        _fail(f"User '{username}' not found")

    if not yes:
        click.confirm("This deletes all current ledger data. Continue?", abort=True)

    with open(path, encoding="utf-8") as fh:
        try:
            backup = json.load(fh)
        except json.JSONDecodeError as e:
            _fail(f"{path} is not valid JSON: {e}")

    try:
        result = restore_backup(backup, actor_id=user.id)
    except LedgerError as e:
        _fail(f"Restore failed: {e.message}")

    counts = ", ".join(f"{table}={count}" for table, count in result["counts"].items())
    click.echo(f"PASS Backup restored ({counts})")
    click.echo(f"     Next invoice number: {result['next_invoice_no']}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(backup_group)
