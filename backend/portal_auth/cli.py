# Overview: Flask CLI command groups for account administration, inspection, and maintenance.

# backend/portal_auth/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "portal_auth:create_app" (PowerShell: $env:FLASK_APP="portal_auth:create_app").
# - Use: python -m flask <group> <command> [options]
#
# Accounts:
# - python -m flask accounts create --email admin@portal.local --password "Password123!" --kind admin
#   Create an account (prompts if options are omitted).
# - python -m flask accounts list [--kind customer]
#   List accounts with kind, status and last login.
# - python -m flask accounts suspend 7 --actor-id 1 --reason "chargeback"
#   Suspend an account; all of its sessions end.
# - python -m flask accounts reactivate 7 --actor-id 1
# - python -m flask accounts set-password 7 --actor-id 1
#   Administrative password change; all sessions end (admin_reset).
# - python -m flask accounts history 7 [--limit 20]
#   Recent login attempts for an account.
# - python -m flask accounts purge 7 --actor-id 1 --yes
#   Permanently delete an account. Audit entries are kept.
#
# Devices:
# - python -m flask devices list 7 [--all]
# - python -m flask devices reset 7 --actor-id 1 --reason "new laptop"
#   Deactivate the primary device binding; the next login registers a new device.
#
# Sessions:
# - python -m flask sessions list 7 [--all]
# - python -m flask sessions revoke-all 7 --actor-id 1
#
# Audit:
# - python -m flask audit history [--entity-type session] [--entity-id 3] [--account-id 7] [--limit 50]
#
# Maintenance:
# - python -m flask maintenance reap-sessions
#   Mark expired live sessions as ended.
# - python -m flask maintenance cleanup-login-attempts --retention-days 90
#   Delete login attempts older than the retention window.

import click
from flask.cli import with_appcontext

from .models import AccountKind, InvalidationReason
from .services import (
    audit_service,
    credential_service,
    device_binding_service,
    login_throttle_service,
    maintenance_service,
    session_service,
)
from .services.credential_service import PasswordValidationError
from .services.errors import AuthError


@click.group('accounts')
def accounts_group():
    """Account administration commands."""


@accounts_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--kind', type=click.Choice([k.value for k in AccountKind]), prompt=True, help='Account kind')
@click.option('--role', 'roles', multiple=True, help='Role (repeatable; defaults to the kind)')
@with_appcontext
def create_account_cli(email, password, kind, roles):
    """
    Create a new account.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        account = credential_service.create_account(
            email=email,
            password=password,
            kind=AccountKind(kind),
            roles=list(roles) or None,
        )
        click.echo(f"PASS Created {account.kind.value} account: {account.email} (ID: {account.id})")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create account: {str(e)}")


@accounts_group.command('list')
@click.option('--kind', type=click.Choice([k.value for k in AccountKind]), help='Filter by kind')
@with_appcontext
def list_accounts_cli(kind):
    """List all accounts."""
    accounts = credential_service.list_accounts(AccountKind(kind) if kind else None)

    if not accounts:
        click.echo("No accounts found.")
        return

    click.echo("\n" + "="*100)
    click.echo(f"{'ID':<5} {'Kind':<10} {'Email':<35} {'Status':<11} {'Last login'}")
    click.echo("="*100)

    for account in accounts:
        data = account.to_dict()
        click.echo(
            f"{account.id:<5} {account.kind.value:<10} {account.email:<35} "
            f"{account.status.value:<11} {data['last_login_at'] or 'never'}"
        )

    click.echo("="*100 + "\n")


@accounts_group.command('suspend')
@click.argument('account_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Administrator account ID')
@click.option('--reason', required=True, help='Suspension reason')
@with_appcontext
def suspend_account_cli(account_id, actor_id, reason):
    """Suspend an account and end all of its sessions."""
    try:
        count = credential_service.suspend_account(account_id, actor_id, reason)
        click.echo(f"PASS Suspended account {account_id} ({count} sessions ended)")
    except (AuthError, ValueError) as e:
        click.echo(f"FAIL Error: {str(e)}")


@accounts_group.command('reactivate')
@click.argument('account_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Administrator account ID')
@click.option('--note', help='Reactivation note')
@with_appcontext
def reactivate_account_cli(account_id, actor_id, note):
    """Reactivate a suspended account."""
    try:
        credential_service.reactivate_account(account_id, actor_id, note)
        click.echo(f"PASS Reactivated account {account_id}")
    except (AuthError, ValueError) as e:
        click.echo(f"FAIL Error: {str(e)}")


@accounts_group.command('set-password')
@click.argument('account_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Administrator account ID')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='New password')
@with_appcontext
def set_password_cli(account_id, actor_id, password):
    """Set a new password for an account. All of its sessions end."""
    try:
        count = credential_service.change_password(account_id, password, actor_id=actor_id)
        click.echo(f"PASS Password updated for account {account_id} ({count} sessions ended)")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
    except AuthError as e:
        click.echo(f"FAIL Error: {str(e)}")


@accounts_group.command('history')
@click.argument('account_id', type=int)
@click.option('--limit', type=int, default=20, help='Max attempts to show')
@with_appcontext
def login_history_cli(account_id, limit):
    """Show recent login attempts for an account."""
    history = login_throttle_service.get_login_history(account_id, limit=limit)

    if not history:
        click.echo("No login attempts found.")
        return

    click.echo(f"\n{'When':<22} {'Result':<8} {'Reason':<22} {'IP':<16} {'IP warning'}")
    click.echo("-"*80)
    for attempt in history:
        result = "OK" if attempt["success"] else "FAIL"
        click.echo(
            f"{attempt['attempted_at']:<22} {result:<8} {attempt['failure_reason'] or '-':<22} "
            f"{attempt['ip_address'] or '-':<16} {'yes' if attempt['ip_mismatch_warning'] else ''}"
        )


@accounts_group.command('purge')
@click.argument('account_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Administrator account ID')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def purge_account_cli(account_id, actor_id, yes):
    """Permanently delete an account with its devices, sessions and login attempts."""
    if not yes:
        click.confirm(f"Permanently delete account {account_id}?", abort=True)
    try:
        credential_service.purge_account(account_id, actor_id)
        click.echo(f"PASS Purged account {account_id}")
    except (AuthError, ValueError) as e:
        click.echo(f"FAIL Error: {str(e)}")


@click.group('devices')
def devices_group():
    """Device binding inspection and reset commands."""


@devices_group.command('list')
@click.argument('account_id', type=int)
@click.option('--all', 'show_all', is_flag=True, help='Show deactivated bindings too')
@with_appcontext
def list_devices_cli(account_id, show_all):
    """List device bindings of an account."""
    if show_all:
        bindings = device_binding_service.list_bindings(account_id)
    else:
        bindings = device_binding_service.get_active_bindings(account_id)

    if not bindings:
        click.echo("No device bindings found.")
        return

    click.echo(f"\n{'ID':<5} {'Fingerprint':<25} {'Primary':<8} {'Active':<7} {'Registered IP':<16} {'Created'}")
    click.echo("-"*90)
    for binding in bindings:
        data = binding.to_dict()
        click.echo(
            f"{binding.id:<5} {data['fingerprint']:<25} {'Yes' if binding.is_primary else 'No':<8} "
            f"{'Yes' if binding.is_active else 'No':<7} {binding.registered_ip:<16} {data['created_at']}"
        )
        if not binding.is_active:
            click.echo(f"      deactivated {data['deactivated_at']} by {binding.deactivated_by}: "
                       f"{binding.deactivation_reason}")


@devices_group.command('reset')
@click.argument('account_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Administrator account ID')
@click.option('--reason', required=True, help='Reason for the reset')
@with_appcontext
def reset_device_cli(account_id, actor_id, reason):
    """Deactivate the primary device binding so the next login registers a new device."""
    try:
        count = device_binding_service.reset_primary_binding(account_id, actor_id, reason)
        click.echo(f"PASS Device binding reset for account {account_id} ({count} sessions ended)")
    except device_binding_service.NoActiveBinding as e:
        click.echo(f"WARN  {str(e)}")
    except AuthError as e:
        click.echo(f"FAIL Error: {str(e)}")


@click.group('sessions')
def sessions_group():
    """Session inspection and revocation commands."""


@sessions_group.command('list')
@click.argument('account_id', type=int)
@click.option('--all', 'show_all', is_flag=True, help='Show ended sessions too')
@with_appcontext
def list_sessions_cli(account_id, show_all):
    """List sessions of an account."""
    sessions = session_service.list_sessions(account_id, active_only=not show_all)

    if not sessions:
        click.echo("No sessions found.")
        return

    click.echo(f"\n{'ID':<6} {'Active':<7} {'IP':<16} {'Created':<22} {'Expires':<22} {'Ended reason'}")
    click.echo("-"*95)
    for session in sessions:
        data = session.to_dict()
        click.echo(
            f"{session.id:<6} {'Yes' if session.is_active else 'No':<7} {session.ip_address or '-':<16} "
            f"{data['created_at']:<22} {data['expires_at']:<22} {data['invalidation_reason'] or ''}"
        )


@sessions_group.command('revoke-all')
@click.argument('account_id', type=int)
@click.option('--actor-id', type=int, required=True, help='Administrator account ID')
@with_appcontext
def revoke_sessions_cli(account_id, actor_id):
    """End every live session of an account."""
    try:
        count = credential_service.revoke_sessions(account_id, actor_id)
        click.echo(f"PASS Ended {count} sessions ({InvalidationReason.ADMIN_RESET.value})")
    except AuthError as e:
        click.echo(f"FAIL Error: {str(e)}")


@click.group('audit')
def audit_group():
    """Audit log inspection commands."""


@audit_group.command('history')
@click.option('--entity-type', help='Filter by entity type (account, session, device_binding)')
@click.option('--entity-id', type=int, help='Filter by entity ID')
@click.option('--account-id', type=int, help='Filter by performing account ID')
@click.option('--limit', type=int, default=50, help='Max entries to show')
@with_appcontext
def audit_history_cli(entity_type, entity_id, account_id, limit):
    """Show recent audit entries, newest first."""
    rows, total = audit_service.find_all(audit_service.AuditLogQuery(
        entity_type=entity_type,
        entity_id=entity_id,
        performed_by_account_id=account_id,
        limit=limit,
    ))

    if not rows:
        click.echo("No audit entries found.")
        return

    click.echo(f"\n{'ID':<6} {'When':<22} {'Entity':<22} {'Action':<10} {'By':<6} {'Details'}")
    click.echo("-"*100)
    for entry in rows:
        entity = f"{entry.entity_type}#{entry.entity_id if entry.entity_id is not None else '-'}"
        by = entry.performed_by_account_id if entry.performed_by_account_id is not None else '-'
        click.echo(
            f"{entry.id:<6} {entry.to_dict()['timestamp']:<22} {entity:<22} "
            f"{entry.action.value:<10} {by!s:<6} {entry.new_values or ''}"
        )
    click.echo(f"\n Showing {len(rows)} of {total} entries\n")


@click.group('maintenance')
def maintenance_group():
    """Maintenance and housekeeping commands."""


@maintenance_group.command('reap-sessions')
@with_appcontext
def reap_sessions_cli():
    """Mark live sessions past their expiry as ended."""
    count = maintenance_service.reap_expired_sessions()
    click.echo(f"Marked {count} expired sessions as ended.")


@maintenance_group.command('cleanup-login-attempts')
@click.option('--retention-days', type=int, default=90, show_default=True)
@with_appcontext
def cleanup_login_attempts_cli(retention_days):
    """
    Cleanup old login attempts.

    Default retention: 90 days.
    """
    deleted = maintenance_service.cleanup_login_attempts(retention_days=retention_days)
    click.echo(f"Deleted {deleted} login attempts older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(accounts_group)
    app.cli.add_command(devices_group)
    app.cli.add_command(sessions_group)
    app.cli.add_command(audit_group)
    app.cli.add_command(maintenance_group)
