# Overview: Flask CLI command groups for bootstrap, inspection, and role administration.

# backend/orbit/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--password "orbit-dev"]
#   Idempotent bootstrap: creates one user per role (owner, manager, accounts, employee).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# User inspection/bootstrap:
# - python -m flask users list
#   List all users with roles and active status.
# - python -m flask users create --email jane@orbit.local --full-name "Jane Doe" --password "secret1" --role manager
#   Create a user with any roles (prompts if options are omitted).
#
# Role administration (acts as an owner, recorded as security events):
# - python -m flask roles list jane@orbit.local
# - python -m flask roles grant jane@orbit.local accounts
# - python -m flask roles revoke jane@orbit.local accounts

import click
from flask.cli import with_appcontext

from .constants import Role
from .errors import OrbitError
from .extensions import db
from .models import User, UserRole
from .services import auth_service, role_service
from .services.role_service import Actor


# Role administration from the command line acts with owner rights.
CLI_ACTOR = Actor(user_id="cli", roles=frozenset({Role.OWNER}))

ROLE_CHOICES = click.Choice([role.value for role in Role])


def _find_user(email: str) -> User:
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user:
        raise click.ClickException(f"User '{email}' not found")
    return user


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--password', default='orbit-dev', show_default=True, help='Password for the default users')
@with_appcontext
def init_system(password):
    """
    Create one default user per role.

    Users: owner@orbit.local, manager@orbit.local, accounts@orbit.local,
    employee@orbit.local. Existing users are skipped.

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing Orbit...")

    default_users = [
        ("owner@orbit.local", "Default Owner", [Role.OWNER, Role.EMPLOYEE]),
        ("manager@orbit.local", "Default Manager", [Role.MANAGER, Role.EMPLOYEE]),
        ("accounts@orbit.local", "Default Accounts", [Role.ACCOUNTS, Role.EMPLOYEE]),
        ("employee@orbit.local", "Default Employee", [Role.EMPLOYEE]),
    ]

    for email, full_name, roles in default_users:
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        try:
            auth_service.create_account(email, password, full_name, roles)
            click.echo(f"PASS Created user: {email} with roles {', '.join(r.value for r in roles)}")
        except OrbitError as e:
            click.echo(f"FAIL Failed to create user '{email}': {str(e)}")

    click.echo("\n" + "=" * 60)
    click.echo("DONE Orbit initialized. Change default passwords in production!")
    click.echo("=" * 60)


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', prompt=True, help='Full name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', 'roles', type=ROLE_CHOICES, multiple=True, help='Role (repeatable, default employee)')
@with_appcontext
def create_user_cli(email, full_name, password, roles):
    """Create a user with the given roles."""
    roles = [Role(value) for value in roles] or [Role.EMPLOYEE]
    try:
        user = auth_service.create_account(email, password, full_name, roles)
    except OrbitError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Created user {user.email} (ID: {user.id}) with roles {', '.join(r.value for r in roles)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all users with their roles."""
    users = db.session.query(User).order_by(User.email).all()

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "=" * 100)
    click.echo(f"{'ID':<38} {'Email':<30} {'Active':<8} {'Roles'}")
    click.echo("=" * 100)

    for user in users:
        roles = role_service.sort_roles(
            row.role for row in db.session.query(UserRole).filter_by(user_id=user.id).all()
        )
        roles_str = ", ".join(r.value for r in roles) if roles else "none"
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<38} {user.email:<30} {active_str:<8} {roles_str}")

    click.echo("=" * 100 + "\n")


@click.group('roles')
def roles_group():
    """Role administration commands."""


@roles_group.command('list')
@click.argument('email')
@with_appcontext
def list_roles(email):
    """Show a user's roles in priority order."""
    user = _find_user(email)
    roles = role_service.get_user_roles(user.id)
    primary = role_service.primary_role(roles)
    click.echo(f"{user.email}: {', '.join(r.value for r in roles) or 'none'}")
    click.echo(f"primary: {primary.value if primary else 'none'}")


@roles_group.command('grant')
@click.argument('email')
@click.argument('role', type=ROLE_CHOICES)
@with_appcontext
def grant_role(email, role):
    user = _find_user(email)
    try:
        role_service.assign_role(CLI_ACTOR, user.id, role)
    except OrbitError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Granted {role} to {user.email}")


@roles_group.command('revoke')
@click.argument('email')
@click.argument('role', type=ROLE_CHOICES)
@with_appcontext
def revoke_role(email, role):
    user = _find_user(email)
    try:
        role_service.revoke_role(CLI_ACTOR, user.id, role)
    except OrbitError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Revoked {role} from {user.email}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(roles_group)
