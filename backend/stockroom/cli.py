# Overview: Flask CLI command groups for bootstrap, users and maintenance.

# backend/stockroom/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init [--admin-email admin@stockroom.local] [--admin-password "Password123!"]
#   Create tables, seed the settings document and an admin user (idempotent).
#
# Users:
# - python -m flask users list
# - python -m flask users create --name "Jo" --email jo@example.com --password "Password123!" --role manager
#
# Maintenance:
# - python -m flask maintenance reconcile-pending
#   Resolve pending ledger entries left by an interrupted two_phase write. Run before serving traffic.
# - python -m flask maintenance overdue-sweep
# - python -m flask maintenance verify-counters [--fix]
# - python -m flask maintenance verify-ledger
# - python -m flask maintenance scheduler [--iterations N]
#   Blocking loop: reconcile-pending + overdue-sweep every OVERDUE_SWEEP_INTERVAL.

import json

import click
from flask.cli import with_appcontext

from .errors import InventoryError
from .extensions import db
from .models import User
from .models.auth import ROLES
from .services import maintenance_service
from .services.auth_service import create_user
from .services.ledger_service import reconcile_pending_movements
from .services.settings_service import get_settings


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group("system")
def system_group():
    """System bootstrap commands."""


@system_group.command("init")
@click.option("--admin-name", default="Administrator", show_default=True)
@click.option("--admin-email", default="admin@stockroom.local", show_default=True)
@click.option("--admin-password", default="Password123!", show_default=True)
@with_appcontext
def init_system(admin_name, admin_email, admin_password):
    """
    Create all tables, seed settings from configuration and ensure an admin user.

    SECURITY: Change the default password immediately in production!
    """
    click.echo("START Initializing stockroom...")
    db.create_all()
    click.echo("PASS Tables created")

    settings = get_settings()
    click.echo(f"PASS Settings ready for {settings.company_name} ({settings.currency_code})")

    existing = db.session.query(User).filter_by(email=admin_email.lower()).first()
    if existing:
        click.echo(f"PASS Using existing admin user: {existing.email}")
    else:
        user = create_user(name=admin_name, email=admin_email, password=admin_password, role="admin")
        click.echo(f"PASS Created admin user: {user.email}")

    result = reconcile_pending_movements()
    click.echo(f"PASS Pending movements checked: {result['checked']}")
    click.echo("DONE")


@click.group("users")
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command("list")
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        state = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.email:<32} {user.role:<8} {state}")


@users_group.command("create")
@click.option("--name", prompt=True)
@click.option("--email", prompt=True)
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
@click.option("--role", type=click.Choice(ROLES), default="staff", show_default=True)
@with_appcontext
def create_user_cli(name, email, password, role):
    try:
        user = create_user(name=name, email=email, password=password, role=role)
    except InventoryError as exc:
        db.session.rollback()
        raise click.ClickException(exc.message)
    click.echo(f"Created {user.role} user {user.email} (ID: {user.id})")


@click.group("maintenance")
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command("overdue-sweep")
@with_appcontext
def overdue_sweep_cli():
    result = maintenance_service.run_overdue_sweep()
    click.echo(f"Checked {result['checked']} sales, marked {result['updated']} overdue.")


@maintenance_group.command("verify-counters")
@click.option("--fix", is_flag=True, help="Overwrite drifted counters with recomputed values.")
@with_appcontext
def verify_counters_cli(fix):
    result = maintenance_service.verify_partner_counters(fix=fix)
    _echo_json(result)
    if not result["consistent"] and not fix:
        raise SystemExit(1)


@maintenance_group.command("verify-ledger")
@with_appcontext
def verify_ledger_cli():
    result = maintenance_service.verify_stock_ledger()
    _echo_json(result)
    if not result["consistent"]:
        raise SystemExit(1)


@maintenance_group.command("reconcile-pending")
@click.option("--grace-seconds", type=int, default=None, help="Override PENDING_GRACE_SECONDS.")
@with_appcontext
def reconcile_pending_cli(grace_seconds):
    result = reconcile_pending_movements(grace_seconds=grace_seconds)
    click.echo(
        f"Checked {result['checked']} pending movements: "
        f"{len(result['committed'])} committed, {len(result['voided'])} voided."
    )


@maintenance_group.command("scheduler")
@click.option("--iterations", type=int, default=None, help="Stop after N runs (default: run forever).")
@with_appcontext
def scheduler_cli(iterations):
    click.echo("Starting maintenance scheduler...")
    runs = maintenance_service.run_scheduler(iterations=iterations)
    click.echo(f"Scheduler stopped after {runs} runs.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(maintenance_group)
