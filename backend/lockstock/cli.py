# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/lockstock/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py.
# - Use: python -m flask <group> <command> [options]
#
# Schema:
# - python -m flask db upgrade
#   Apply Alembic migrations (preferred for real databases).
# - python -m flask system init-db
#   Create any missing tables directly from the models (dev/test).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organizations:
# - python -m flask orgs list
# - python -m flask orgs create --name "Acme Builders" --owner alice
#   Create an organization; the owner must be an existing user.
#
# Users and membership:
# - python -m flask users create --username alice --email alice@example.com --password "Password123!"
# - python -m flask users list
# - python -m flask users deactivate --username alice
#   Deactivate an account and revoke all of its sessions.
# - python -m flask members add --org-id 1 --username bob --role member

import click
from flask.cli import with_appcontext

from .errors import LockstockError
from .extensions import db
from .models import Organization, OrgMember, User
from .permissions import ROLES, ROLE_MEMBER
from .services.auth_service import create_user, find_user
from .services.organization_service import create_organization_with_owner, grant_membership
from .services.session_service import revoke_all_user_sessions


def _require_user(username: str) -> User:
    user = find_user(username)
    if user is None:
        raise click.ClickException(f"User '{username}' not found")
    return user


@click.group('system')
def system_group():
    """Schema bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the models. Existing tables are left alone."""
    db.create_all()
    click.echo("PASS Tables created.")


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


# =============================================================================
# ORGANIZATIONS
# =============================================================================

@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    """List all organizations."""
    orgs = db.session.query(Organization).order_by(Organization.id.asc()).all()

    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo("\n" + "="*60)
    click.echo(f"{'ID':<5} {'Name':<35} {'Active':<8} {'Members'}")
    click.echo("="*60)

    for org in orgs:
        member_count = db.session.query(OrgMember).filter_by(org_id=org.id).count()
        active_str = "Yes" if org.is_active else "No"
        click.echo(f"{org.id:<5} {org.name:<35} {active_str:<8} {member_count}")

    click.echo("="*60 + "\n")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--owner', 'owner_username', required=True, help='Username or email of the owner')
@with_appcontext
def create_org_cli(name, owner_username):
    """Create a new organization with an owner."""
    owner = _require_user(owner_username)
    try:
        org = create_organization_with_owner(owner.id, name)
    except LockstockError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created organization: {org.name} (ID: {org.id}), owner {owner.username}")


# =============================================================================
# USERS
# =============================================================================

@click.group('users')
def users_group():
    """User account commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--full-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(username, email, password, full_name):
    """Create a user account (no organization membership)."""
    try:
        user = create_user(username, email, password, full_name=full_name)
    except LockstockError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS Created user: {user.username} ({user.email}) ID: {user.id}")
    click.echo("     Add them to an organization with: flask members add")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their memberships."""
    users = db.session.query(User).order_by(User.id.asc()).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<30} {'Active':<8} {'Memberships'}")
    click.echo("="*100)

    for user in users:
        memberships = ", ".join(f"{m.org_id}:{m.role}" for m in user.memberships) or "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<30} {active_str:<8} {memberships}")

    click.echo("="*100 + "\n")


@users_group.command('deactivate')
@click.option('--username', required=True, help='Username or email')
@with_appcontext
def deactivate_user_cli(username):
    """Deactivate an account and revoke its sessions."""
    user = _require_user(username)
    user.is_active = False
    db.session.commit()
    revoked = revoke_all_user_sessions(user.id, reason="User deactivated")
    click.echo(f"PASS Deactivated {user.username}; revoked {revoked} session(s)")


# =============================================================================
# MEMBERSHIP
# =============================================================================

@click.group('members')
def members_group():
    """Organization membership commands."""


@members_group.command('add')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--username', required=True, help='Username or email')
@click.option('--role', type=click.Choice(list(ROLES)), default=ROLE_MEMBER, show_default=True, help='Role')
@with_appcontext
def add_member_cli(org_id, username, role):
    """Add an existing user to an organization."""
    user = _require_user(username)
    try:
        grant_membership(org_id, user.id, role)
    except LockstockError as e:
        raise click.ClickException(e.message)

    click.echo(f"PASS {user.username} is now {role} of organization {org_id}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)
    app.cli.add_command(users_group)
    app.cli.add_command(members_group)
