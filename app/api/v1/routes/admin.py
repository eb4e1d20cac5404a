from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.errors import AdminRequired, ValidationFailure
from app.core.middleware import Principal, get_current_user
from app.models.user import AccessStatus, User
from app.services.access_service import AccessService, user_projection
from app.services.quota_service import QuotaService
from app.services.usage_tracker import UsageTracker
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

MAX_ANALYTICS_DAYS = 365


class AllowlistRequest(BaseModel):
    action: str


class BulkAllowlistRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_ids: List[str] = Field(alias="userIds")
    action: str


class SetLimitRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    daily_limit: int = Field(alias="dailyLimit", strict=True)


def get_access_service() -> AccessService:
    """Dependency to get access service instance"""
    return AccessService()


def get_quota_service() -> QuotaService:
    """Dependency to get quota service instance"""
    return QuotaService()


def get_usage_tracker() -> UsageTracker:
    """Dependency to get usage tracker instance"""
    return UsageTracker()


async def require_admin(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    access_service: AccessService = Depends(get_access_service)
) -> User:
    """Resolve the caller's account and reject anyone who is not an admin."""
    authorization = access_service.resolve_authorization(db, principal)
    if not authorization.is_admin:
        logger.warning(f"require_admin: Unauthorized - uid: {principal.uid}, email: {principal.email}")
        raise AdminRequired()
    return authorization.user


def _today_usage(db: Session, quota_service: QuotaService, user: User) -> dict:
    return quota_service.check_limit(db, user.identity_key, quota_service.limit_for_user(user)).as_dict()


@router.get("/users")
async def list_users(
    status_filter: Optional[AccessStatus] = Query(None, alias="status"),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    access_service: AccessService = Depends(get_access_service)
):
    """List accounts, newest first, optionally filtered by access status."""
    logger.info(f"list_users: Entry - admin: {admin.id}, status: {status_filter}")

    users = access_service.list_users(db, status=status_filter)

    logger.info(f"list_users: Success - count: {len(users)}")
    return {"count": len(users), "users": [user_projection(user) for user in users]}


@router.get("/users/{user_id}")
async def get_user(
    user_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    access_service: AccessService = Depends(get_access_service),
    quota_service: QuotaService = Depends(get_quota_service)
):
    logger.info(f"get_user: Entry - admin: {admin.id}, user: {user_id}")

    user = access_service.get_user(db, user_id)
    return {
        "user": user_projection(user),
        "usage": _today_usage(db, quota_service, user),
        "history": quota_service.get_daily_history(db, user.identity_key, days=7),
    }


@router.patch("/users/{user_id}/allowlist")
async def set_allowlist_status(
    user_id: str,
    request: AllowlistRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    access_service: AccessService = Depends(get_access_service)
):
    """Approve or reject a waitlisted account."""
    logger.info(f"set_allowlist_status: Entry - admin: {admin.id}, user: {user_id}, action: {request.action}")

    user = access_service.set_allowlist_status(db, user_id, request.action, actor_id=admin.id)

    verb = "approved" if request.action == "approve" else "moved to the waitlist"
    return {
        "success": True,
        "message": f"User {user.email} {verb}",
        "user": user_projection(user),
    }


@router.post("/users/bulk-allowlist")
async def bulk_set_allowlist_status(
    request: BulkAllowlistRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    access_service: AccessService = Depends(get_access_service)
):
    logger.info(f"bulk_set_allowlist_status: Entry - admin: {admin.id}, count: {len(request.user_ids)}")

    if not request.user_ids:
        raise ValidationFailure("userIds must not be empty")

    results = access_service.bulk_set_allowlist_status(db, request.user_ids, request.action, actor_id=admin.id)
    succeeded = sum(1 for result in results if result["success"])

    logger.info(f"bulk_set_allowlist_status: Success - updated: {succeeded}/{len(results)}")
    return {
        "success": succeeded == len(results),
        "updated": succeeded,
        "failed": len(results) - succeeded,
        "results": results,
    }


@router.patch("/users/{user_id}/limit")
async def set_daily_limit(
    user_id: str,
    request: SetLimitRequest,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    access_service: AccessService = Depends(get_access_service)
):
    """Set an account's daily generation limit (0 blocks generation)."""
    logger.info(f"set_daily_limit: Entry - admin: {admin.id}, user: {user_id}, limit: {request.daily_limit}")

    user = access_service.set_daily_limit(db, user_id, request.daily_limit, actor_id=admin.id)
    return {
        "success": True,
        "message": f"Daily limit for {user.email} set to {user.daily_generation_limit}",
        "user": user_projection(user),
    }


@router.get("/usage")
async def get_usage_analytics(
    days: int = Query(30, ge=1, le=MAX_ANALYTICS_DAYS),
    user_id: Optional[str] = Query(None, alias="userId"),
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    usage_tracker: UsageTracker = Depends(get_usage_tracker)
):
    """Generator cost and request analytics, overall or for one account."""
    logger.info(f"get_usage_analytics: Entry - admin: {admin.id}, days: {days}, user: {user_id}")

    if user_id:
        analytics = usage_tracker.get_user_usage_analytics(db, user_id, days=days)
    else:
        analytics = usage_tracker.get_overall_usage_analytics(db, days=days)

    return {
        "period": {"days": days, "until": datetime.utcnow().isoformat() + "Z"},
        "analytics": analytics,
    }


@router.get("/users/{user_id}/usage")
async def get_user_usage(
    user_id: str,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
    access_service: AccessService = Depends(get_access_service),
    quota_service: QuotaService = Depends(get_quota_service),
    usage_tracker: UsageTracker = Depends(get_usage_tracker)
):
    """Today's quota plus the 30-day usage breakdown for one account."""
    logger.info(f"get_user_usage: Entry - admin: {admin.id}, user: {user_id}")

    user = access_service.get_user(db, user_id)
    return {
        "user": user_projection(user),
        "today": _today_usage(db, quota_service, user),
        "last30Days": usage_tracker.get_user_usage_analytics(db, user.id, days=30),
    }
