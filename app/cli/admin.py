import click
from fastapi import HTTPException
from app.core.database import SessionLocal
from app.models.user import AccessStatus, User
from app.services.access_service import AccessService
from app.services.quota_service import QuotaService, ip_identity_key, user_identity_key, utc_day
from datetime import datetime
import logging

logger = logging.getLogger(__name__)


def _find_user(db, email, user_id):
    if user_id:
        return db.query(User).filter(User.id == user_id).first()
    return db.query(User).filter(User.email == email).first()


def _resolve_user(db, email, user_id):
    if not email and not user_id:
        click.echo("❌ Please provide --email or --id for this operation", err=True)
        return None

    user = _find_user(db, email, user_id)
    if not user:
        click.echo(f"❌ User not found: {user_id or email}", err=True)
    return user


def _error_message(e: HTTPException) -> str:
    if isinstance(e.detail, dict):
        return e.detail.get("message", str(e.detail))
    return str(e.detail)


@click.group()
def cli():
    """PixCart operator commands"""
    pass


def _moderate(email, user_id, action):
    db = SessionLocal()
    try:
        user = _resolve_user(db, email, user_id)
        if not user:
            return

        user = AccessService().set_allowlist_status(db, user.id, action)
        click.echo(f"✓ {user.email} is now {user.access_status.value}")
    except HTTPException as e:
        click.echo(f"❌ {_error_message(e)}", err=True)
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
def approve(email, user_id):
    """Move a waitlisted user onto the allowlist"""
    _moderate(email, user_id, "approve")


@cli.command()
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
def reject(email, user_id):
    """Move a user back to the waitlist"""
    _moderate(email, user_id, "reject")


@cli.command('set-limit')
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
@click.option('--limit', 'daily_limit', required=True, type=int, help='Daily generation limit (0 blocks generation)')
def set_limit(email, user_id, daily_limit):
    """Set a user's daily generation limit"""
    db = SessionLocal()
    try:
        user = _resolve_user(db, email, user_id)
        if not user:
            return

        user = AccessService().set_daily_limit(db, user.id, daily_limit)
        click.echo(f"✓ Daily limit for {user.email} set to {user.daily_generation_limit}")
    except HTTPException as e:
        click.echo(f"❌ {_error_message(e)}", err=True)
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command('make-admin')
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
def make_admin(email, user_id):
    """Grant admin status to a user"""
    db = SessionLocal()
    try:
        user = _resolve_user(db, email, user_id)
        if not user:
            return

        if user.is_admin:
            click.echo(f"✓ User {user.email} is already an admin")
            return
        user = AccessService().make_admin(db, user.id)
        click.echo(f"✓ {user.email} is now an admin")
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


@cli.command()
def waitlist():
    """List users waiting for approval"""
    db = SessionLocal()
    try:
        users = AccessService().list_users(db, status=AccessStatus.WAITLISTED)
        if not users:
            click.echo("No users on the waitlist")
            return

        click.echo(f"\nFound {len(users)} waitlisted users:\n")
        for user in users:
            joined = user.joined_waitlist_at.isoformat() if user.joined_waitlist_at else "-"
            click.echo(f"  - {user.email} (ID: {user.id}, joined: {joined})")
    finally:
        db.close()


@cli.command('reset-quota')
@click.option('--email', required=False, help='User email')
@click.option('--id', 'user_id', required=False, help='User id (Firebase UID)')
@click.option('--ip', 'client_ip', required=False, help='Anonymous client IP address')
@click.option('--date', 'quota_date', required=False, help='Quota date (YYYY-MM-DD, UTC). Defaults to today')
@click.option('-y', '--yes', 'confirm', is_flag=True, help='Skip confirmation')
@click.option('--dry-run', 'dry_run', is_flag=True, help='Show what would be changed without committing')
def reset_quota(email, user_id, client_ip, quota_date, confirm, dry_run):
    """Reset the daily generation count for a user or an IP (set count to 0)"""
    db = SessionLocal()
    quota_service = QuotaService()
    try:
        if client_ip:
            identity_key = ip_identity_key(client_ip)
        else:
            user = _resolve_user(db, email, user_id)
            if not user:
                return
            identity_key = user_identity_key(user.id)

        target_date = utc_day(quota_service.clock())
        if quota_date:
            try:
                target_date = datetime.strptime(quota_date, "%Y-%m-%d").date()
            except ValueError:
                click.echo("❌ Invalid date format. Use YYYY-MM-DD", err=True)
                return

        action_desc = f"reset the generation count for {identity_key} on {target_date.isoformat()}"

        if dry_run:
            used = quota_service.get_used(db, identity_key, target_date)
            click.echo(f"🔍 Dry run: would {action_desc}")
            click.echo(f"Current count: {used}")
            return

        if not confirm:
            try:
                if not click.confirm(f"Are you sure you want to {action_desc}?", default=False):
                    click.echo("Aborted")
                    return
            except click.exceptions.Abort:
                click.echo("\nAborted")
                return

        rows = quota_service.reset_usage(db, identity_key, target_date)
        click.echo(f"✓ Reset {rows} usage rows for {identity_key}")
    except Exception as e:
        db.rollback()
        logger.error(f"CLI error: {e}")
        click.echo(f"❌ Error: {e}", err=True)
    finally:
        db.close()


if __name__ == '__main__':
    cli()
