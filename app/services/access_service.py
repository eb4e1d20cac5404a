from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Iterable, List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from fastapi import HTTPException
from app.core.config import settings
from app.core.errors import AccountNotFound, ValidationFailure
from app.models.audit_log import AuditLog
from app.models.user import AccessStatus, User
import json
import uuid
import logging

logger = logging.getLogger(__name__)

ALLOWLIST_ACTIONS = ("approve", "reject")


@dataclass
class AuthorizationResult:
    allowed: bool
    is_admin: bool
    is_waitlisted: bool
    user: Optional[User] = None
    error: Optional[str] = None


def user_projection(user: User) -> dict:
    """Public view of an account, with the legacy allowlist flags."""
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "status": user.access_status.value,
        "isAdmin": user.is_admin,
        "isAllowlisted": user.is_allowlisted,
        "isWaitlisted": user.is_waitlisted,
        "dailyGenerationLimit": user.daily_generation_limit,
        "approvedAt": user.approved_at.isoformat() if user.approved_at else None,
        "joinedWaitlistAt": user.joined_waitlist_at.isoformat() if user.joined_waitlist_at else None,
        "createdAt": user.created_at.isoformat() if user.created_at else None,
    }


class AccessService:
    """
    Account provisioning and the waitlist/allowlist/admin state machine.

    New accounts start WAITLISTED unless their email is one of the bootstrap
    admin addresses, in which case they start as ADMIN. WAITLISTED is left
    only through an admin moderation action or the bootstrap-admin self-heal.
    """

    def __init__(
        self,
        bootstrap_admins: Optional[Iterable[str]] = None,
        default_daily_limit: Optional[int] = None,
        max_daily_limit: Optional[int] = None,
    ):
        self.bootstrap_admins: FrozenSet[str] = (
            frozenset(bootstrap_admins) if bootstrap_admins is not None else settings.bootstrap_admins
        )
        self.default_daily_limit = (
            default_daily_limit if default_daily_limit is not None else settings.default_daily_generation_limit
        )
        self.max_daily_limit = max_daily_limit if max_daily_limit is not None else settings.max_daily_generation_limit
        self.logger = logging.getLogger(__name__)

    def is_bootstrap_admin(self, email: Optional[str]) -> bool:
        return bool(email) and email in self.bootstrap_admins

    def resolve_authorization(self, db: Session, principal) -> AuthorizationResult:
        """
        Decide whether a principal may use gated functionality.

        Provisions an account on first contact. Any unexpected failure fails
        closed: the caller is treated as waitlisted and not allowed.
        """
        email = getattr(principal, "email", None)
        uid = getattr(principal, "uid", None)
        self.logger.info(f"resolve_authorization: Entry - uid: {uid}, email: {email}")

        if not email:
            self.logger.warning(f"resolve_authorization: Denied (no email) - uid: {uid}")
            return AuthorizationResult(allowed=False, is_admin=False, is_waitlisted=False)

        try:
            user = self.provision_user(db, uid, email)
            user = self._self_heal_bootstrap_admin(db, user)
            result = AuthorizationResult(
                allowed=user.is_allowlisted or user.is_admin,
                is_admin=user.is_admin,
                is_waitlisted=user.is_waitlisted,
                user=user,
            )
            self.logger.info(
                f"resolve_authorization: Success - user: {user.id}, status: {user.access_status.value}, allowed: {result.allowed}"
            )
            return result
        except Exception as e:
            db.rollback()
            self.logger.error(f"resolve_authorization: Failure (denying) - uid: {uid}, email: {email}, error: {e}")
            return AuthorizationResult(allowed=False, is_admin=False, is_waitlisted=True, error=str(e))

    def find_user(self, db: Session, user_id: Optional[str], email: Optional[str]) -> Optional[User]:
        """Look up by id first, then by email, to tolerate identity-provider/account drift."""
        user = None
        if user_id:
            user = db.query(User).filter(User.id == user_id).first()
        if user is None and email:
            user = db.query(User).filter(User.email == email).first()
        return user

    def provision_user(self, db: Session, user_id: Optional[str], email: str, name: Optional[str] = None) -> User:
        """Return the account for this identity, creating it on first sight."""
        user = self.find_user(db, user_id, email)
        if user is not None:
            return user

        is_admin = self.is_bootstrap_admin(email)
        now = datetime.utcnow()
        user = User(
            id=user_id or str(uuid.uuid4()),
            email=email,
            name=name,
            access_status=AccessStatus.ADMIN if is_admin else AccessStatus.WAITLISTED,
            daily_generation_limit=self.default_daily_limit,
            approved_at=now if is_admin else None,
            joined_waitlist_at=None if is_admin else now,
        )
        db.add(user)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent first-contact request created the row first
            db.rollback()
            existing = self.find_user(db, user_id, email)
            if existing is None:
                raise
            self.logger.info(f"provision_user: Lost creation race - user: {existing.id}")
            return existing

        db.refresh(user)
        self.logger.info(f"provision_user: Created - user: {user.id}, status: {user.access_status.value}")
        return user

    def _self_heal_bootstrap_admin(self, db: Session, user: User) -> User:
        if user.is_admin or not self.is_bootstrap_admin(user.email):
            return user

        user.access_status = AccessStatus.ADMIN
        if user.approved_at is None:
            user.approved_at = datetime.utcnow()
        db.commit()
        db.refresh(user)
        self.logger.info(f"resolve_authorization: Promoted bootstrap admin - user: {user.id}")
        return user

    def get_user(self, db: Session, user_id: str) -> User:
        user = db.query(User).filter(User.id == user_id).first()
        if not user:
            raise AccountNotFound(f"User not found: {user_id}")
        return user

    def list_users(self, db: Session, status: Optional[AccessStatus] = None) -> List[User]:
        query = db.query(User)
        if status is not None:
            query = query.filter(User.access_status == status)
        return query.order_by(User.created_at.desc()).all()

    def set_allowlist_status(
        self,
        db: Session,
        user_id: str,
        action: str,
        actor_id: Optional[str] = None,
    ) -> User:
        """
        Approve or reject a non-admin account. Applying the same action twice
        leaves the account unchanged.
        """
        self.logger.info(f"set_allowlist_status: Entry - user: {user_id}, action: {action}, actor: {actor_id}")

        if action not in ALLOWLIST_ACTIONS:
            raise ValidationFailure('Invalid action. Must be "approve" or "reject"')

        try:
            user = self.get_user(db, user_id)
            if user.is_admin:
                raise ValidationFailure("Cannot modify admin user allowlist status")

            now = datetime.utcnow()
            if action == "approve":
                if user.access_status != AccessStatus.ALLOWLISTED or user.approved_at is None:
                    user.access_status = AccessStatus.ALLOWLISTED
                    user.approved_at = now
            else:
                user.access_status = AccessStatus.WAITLISTED
                user.approved_at = None
                if user.joined_waitlist_at is None:
                    user.joined_waitlist_at = now

            self._audit(db, actor_id, action, "user", user.id, {"status": user.access_status.value})
            db.commit()
            db.refresh(user)

            self.logger.info(f"set_allowlist_status: Success - user: {user.id}, status: {user.access_status.value}")
            return user
        except HTTPException:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            self.logger.error(f"set_allowlist_status: Failure - {e}")
            raise

    def bulk_set_allowlist_status(
        self,
        db: Session,
        user_ids: Iterable[str],
        action: str,
        actor_id: Optional[str] = None,
    ) -> List[dict]:
        """Apply one moderation action to many accounts; reports an outcome per id."""
        if action not in ALLOWLIST_ACTIONS:
            raise ValidationFailure('Invalid action. Must be "approve" or "reject"')

        results = []
        for user_id in user_ids:
            try:
                user = self.set_allowlist_status(db, user_id, action, actor_id=actor_id)
                results.append({"userId": user_id, "success": True, "user": user_projection(user)})
            except HTTPException as e:
                results.append({"userId": user_id, "success": False, "error": e.detail})
            except Exception as e:
                self.logger.error(f"bulk_set_allowlist_status: Failure - user: {user_id}, error: {e}")
                results.append({
                    "userId": user_id,
                    "success": False,
                    "error": {"error": "internal_error", "message": "Failed to update user"},
                })
        return results

    def set_daily_limit(
        self,
        db: Session,
        user_id: str,
        daily_limit: int,
        actor_id: Optional[str] = None,
    ) -> User:
        """Set an account's daily generation limit. 0 denies generation outright."""
        self.logger.info(f"set_daily_limit: Entry - user: {user_id}, limit: {daily_limit}, actor: {actor_id}")

        if isinstance(daily_limit, bool) or not isinstance(daily_limit, int) \
                or daily_limit < 0 or daily_limit > self.max_daily_limit:
            raise ValidationFailure(f"Daily limit must be a number between 0 and {self.max_daily_limit}")

        try:
            user = self.get_user(db, user_id)
            previous = user.daily_generation_limit
            user.daily_generation_limit = daily_limit
            self._audit(db, actor_id, "set_limit", "user", user.id, {"from": previous, "to": daily_limit})
            db.commit()
            db.refresh(user)

            self.logger.info(f"set_daily_limit: Success - user: {user.id}, limit: {daily_limit}")
            return user
        except HTTPException:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            self.logger.error(f"set_daily_limit: Failure - {e}")
            raise

    def make_admin(self, db: Session, user_id: str, actor_id: Optional[str] = None) -> User:
        self.logger.info(f"make_admin: Entry - user: {user_id}, actor: {actor_id}")

        try:
            user = self.get_user(db, user_id)
            if not user.is_admin:
                user.access_status = AccessStatus.ADMIN
                if user.approved_at is None:
                    user.approved_at = datetime.utcnow()
                self._audit(db, actor_id, "make_admin", "user", user.id, {})
                db.commit()
                db.refresh(user)

            self.logger.info(f"make_admin: Success - user: {user.id}")
            return user
        except HTTPException:
            db.rollback()
            raise
        except Exception as e:
            db.rollback()
            self.logger.error(f"make_admin: Failure - {e}")
            raise

    def _audit(
        self,
        db: Session,
        actor_id: Optional[str],
        action: str,
        resource_type: str,
        resource_id: Optional[str],
        details: dict,
    ):
        db.add(AuditLog(
            id=str(uuid.uuid4()),
            actor_id=actor_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            details=json.dumps(details),
        ))
