# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/carrental/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates all tables and a default admin.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list [--role admin]
#   List accounts with role, spend and tier.
# - python -m flask users create-admin --name "Admin" --email admin@carrental.local --telephone 000-0000000 --password "Password123!"
#   Create an admin account (prompts if options are omitted).
#
# Rentals:
# - python -m flask rents refresh-availability
#   Recompute every car's cached availability flag from its open rents.
#
# Maintenance:
# - python -m flask maintenance cleanup-sessions --retention-days 30
#   Delete expired and revoked session tokens older than the retention window.

import click
from flask.cli import with_appcontext

from .errors import DomainError
from .extensions import db
from .models import User
from .models.auth import ROLE_ADMIN, VALID_ROLES
from .services.auth_service import create_user
from .services import rent_service
from .services import session_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default='admin@carrental.local', show_default=True)
@click.option('--admin-password', default='Password123!', show_default=True)
@with_appcontext
def init_system(admin_email, admin_password):
    """
    Initialize the car rental backend: schema plus a default admin.

    SECURITY: Change the admin password immediately in production!
    """
    click.echo("START Initializing car rental system...")

    db.create_all()
    click.echo("PASS Tables created")

    existing = db.session.query(User).filter_by(email=admin_email).first()
    if existing:
        click.echo(f"WARN  User '{admin_email}' already exists, skipping...")
    else:
        try:
            admin = create_user(
                {"name": "Administrator", "telephone_number": "000-0000000", "email": admin_email},
                admin_password,
                role=ROLE_ADMIN,
            )
            click.echo(f"PASS Created admin: {admin.email} (ID: {admin.id})")
        except DomainError as e:
            click.echo(f"FAIL Failed to create admin '{admin_email}': {e.message}")

    click.echo("\n" + "="*60)
    click.echo("DONE Car rental system initialized")
    click.echo("="*60 + "\n")


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

    click.echo("PASS Database reset complete")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create-admin')
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--telephone', 'telephone_number', prompt='Telephone (XXX-XXXXXXX)')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
@with_appcontext
def create_admin(name, email, telephone_number, password):
    """Create an admin account."""
    try:
        admin = create_user(
            {"name": name, "telephone_number": telephone_number, "email": email},
            password,
            role=ROLE_ADMIN,
        )
    except DomainError as e:
        raise click.ClickException(e.message)
    click.echo(f"PASS Created admin: {admin.email} (ID: {admin.id})")


@users_group.command('list')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), help='Filter by role')
@with_appcontext
def list_users(role):
    """List all users with role, spend and tier."""
    query = db.session.query(User)

    if role:
        query = query.filter_by(role=role)

    users = query.order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Name':<20} {'Email':<30} {'Role':<8} {'Spend':<10} {'Tier'}")
    click.echo("="*90)

    for user in users:
        click.echo(
            f"{user.id:<5} {user.name:<20} {user.email:<30} {user.role:<8} {user.total_spend:<10} {user.tier}"
        )

    click.echo("="*90 + "\n")


@click.group('rents')
def rents_group():
    """Rental engine repair commands."""


@rents_group.command('refresh-availability')
@with_appcontext
def refresh_availability():
    """Recompute every car's availability flag from its pending/active rents."""
    changed = rent_service.refresh_all_car_availability()
    click.echo(f"PASS Availability refreshed ({changed} cars changed)")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    """
    Cleanup expired and revoked session tokens.

    Default retention: 30 days.
    """
    deleted = session_service.cleanup_expired_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} session tokens older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(rents_group)
    app.cli.add_command(maintenance_group)
