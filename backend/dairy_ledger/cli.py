# Overview: Flask CLI command groups for bootstrap and ledger inspection.

# backend/dairy_ledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--manager-username manager]
#   Idempotent bootstrap: creates tables, the dairy product catalogue, and a manager user.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Ledger inspection:
# - python -m flask ledger verify [--batch-id 12]
#   Replay stock movements and compare with stored batch balances. Exit code 1 on mismatch.

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Batch, Product, User
from .models.reference import ROLE_MANAGER
from .services.ledger_service import replay_batch
from .validation import parse_money_cents


# name, wholesale price, commission per unit
DEFAULT_PRODUCTS = [
    ("Milk 1L", "220.00", "10.00"),
    ("Yogurt", "150.00", "5.00"),
    ("Butter", "700.00", "15.00"),
    ("Cheese", "450.00", "12.00"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--manager-username', default='manager', help='Username for the bootstrap manager')
@with_appcontext
def init_system(manager_username):
    """
    Initialize the ledger database.

    Creates:
    - All tables (if missing)
    - Products: Milk 1L, Yogurt, Butter, Cheese with wholesale price and commission
    - A manager user (identity is supplied upstream; no password is stored here)
    """
    click.echo("START Initializing dairy ledger...")
    db.create_all()

    created = 0
    for name, price, commission in DEFAULT_PRODUCTS:
        if db.session.query(Product).filter_by(name=name).first():
            continue
        db.session.add(Product(
            name=name,
            current_wholesale_price_cents=parse_money_cents(price, "current_wholesale_price"),
            commission_per_unit_cents=parse_money_cents(commission, "commission_per_unit"),
            is_active=True,
        ))
        created += 1
    db.session.commit()
    click.echo(f"PASS Products: {created} created, {len(DEFAULT_PRODUCTS) - created} already present")

    manager = db.session.query(User).filter_by(username=manager_username).first()
    if not manager:
        manager = User(username=manager_username, full_name="Depot Manager", role=ROLE_MANAGER, is_active=True)
        db.session.add(manager)
        db.session.commit()
        click.echo(f"PASS Created manager user: {manager.username} (ID: {manager.id})")
    else:
        click.echo(f"PASS Using existing user: {manager.username} (ID: {manager.id})")

    click.echo("DONE Dairy ledger initialized")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Confirm destructive reset')
@with_appcontext
def reset_db(yes):
    """DEV/TEST only: drop and recreate all tables."""
    if not yes:
        click.echo("FAIL Refusing to reset without --yes")
        raise SystemExit(1)
    db.drop_all()
    db.create_all()
    click.echo("PASS Database reset")


@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('verify')
@click.option('--batch-id', type=int, default=None, help='Only verify this batch')
@with_appcontext
def verify_ledger(batch_id):
    """Replay every batch's movements and report PASS/FAIL per batch."""
    q = db.session.query(Batch)
    if batch_id is not None:
        q = q.filter(Batch.id == batch_id)
    batches = q.order_by(Batch.id.asc()).all()

    if not batches:
        click.echo("No batches to verify")
        return

    failures = 0
    for batch in batches:
        result = replay_batch(batch)
        if result["balanced"]:
            click.echo(
                f"PASS batch {batch.id} ({batch.batch_number}): "
                f"remaining {result['remaining_quantity']}/{result['quantity']}"
            )
        else:
            failures += 1
            click.echo(
                f"FAIL batch {batch.id} ({batch.batch_number}): stored "
                f"{result['remaining_quantity']}/{result['quantity']}, replayed "
                f"{result['expected_remaining_quantity']}/{result['expected_quantity']}"
            )

    click.echo(f"\n{len(batches) - failures}/{len(batches)} batches balanced")
    if failures:
        raise SystemExit(1)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(ledger_group)
