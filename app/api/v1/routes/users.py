from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.errors import NotAuthorized
from app.core.middleware import Principal, get_current_user
from app.services.access_service import AccessService, user_projection
from app.services.quota_service import QuotaService
import logging

router = APIRouter()
logger = logging.getLogger(__name__)

NEAR_LIMIT_RATIO = 0.8


def get_access_service() -> AccessService:
    """Dependency to get access service instance"""
    return AccessService()


def get_quota_service() -> QuotaService:
    """Dependency to get quota service instance"""
    return QuotaService()


def _authorize(db: Session, principal: Principal, access_service: AccessService):
    authorization = access_service.resolve_authorization(db, principal)
    if authorization.user is None:
        if authorization.error:
            raise NotAuthorized("Unable to verify account access. Please try again later.")
        raise NotAuthorized("A verified email address is required", waitlisted=False)
    return authorization


@router.get("/me")
async def get_me(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    access_service: AccessService = Depends(get_access_service)
):
    """
    Current account and its authorization status.
    Provisions the account on first contact.
    """
    logger.info(f"get_me: Entry - uid: {principal.uid}")

    authorization = _authorize(db, principal, access_service)

    logger.info(f"get_me: Success - user: {authorization.user.id}, allowed: {authorization.allowed}")
    return {
        "user": user_projection(authorization.user),
        "allowed": authorization.allowed,
        "isAdmin": authorization.is_admin,
        "isWaitlisted": authorization.is_waitlisted,
    }


@router.get("/me/usage")
async def get_my_usage(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_user),
    access_service: AccessService = Depends(get_access_service),
    quota_service: QuotaService = Depends(get_quota_service)
):
    """Today's quota for the current account plus the last 7 days."""
    logger.info(f"get_my_usage: Entry - uid: {principal.uid}")

    authorization = _authorize(db, principal, access_service)
    user = authorization.user
    limit = quota_service.limit_for_user(user)
    quota_status = quota_service.check_limit(db, user.identity_key, limit)
    history = quota_service.get_daily_history(db, user.identity_key, days=7)

    logger.info(f"get_my_usage: Success - user: {user.id}, used: {quota_status.used_today}/{limit}")
    return {
        "usage": quota_status.as_dict(),
        "history": history,
        "canGenerate": authorization.allowed and quota_status.allowed,
        "nearLimit": limit > 0 and quota_status.used_today >= limit * NEAR_LIMIT_RATIO,
        "limitReached": quota_status.used_today >= limit,
    }
