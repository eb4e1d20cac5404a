"""
Identity resolution: turns an inbound request into an authenticated
principal or an anonymous caller keyed by client IP.
"""

from dataclasses import dataclass
from typing import Optional
from fastapi import Request, Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from app.core.errors import AuthenticationRequired
from app.core.firebase import verify_firebase_token
import logging

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)

LOOPBACK_IP = "127.0.0.1"


@dataclass(frozen=True)
class Principal:
    uid: str
    email: Optional[str]


def _principal_from_token(token: str) -> Principal:
    try:
        decoded_token = verify_firebase_token(token)
    except Exception as e:
        logger.error(f"resolve_principal: Failure - {e}")
        raise AuthenticationRequired("Could not validate credentials")
    
    user_id = decoded_token.get('uid')
    if not user_id:
        raise AuthenticationRequired("Invalid authentication credentials")
    
    return Principal(uid=user_id, email=decoded_token.get('email'))


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Principal:
    """
    Dependency to get current authenticated user from Firebase token.
    Protects routes that require authentication.
    """
    logger.info("get_current_user: Entry")
    
    if credentials is None:
        raise AuthenticationRequired()
    
    principal = _principal_from_token(credentials.credentials)
    # Store user_id in request state for burst rate limiting
    request.state.user_id = principal.uid
    logger.info(f"get_current_user: Success - {principal.uid}")
    return principal


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> Optional[Principal]:
    """
    Like get_current_user, but a request without credentials resolves to None
    (anonymous). A token that is present but invalid is still rejected.
    """
    if credentials is None:
        return None
    
    principal = _principal_from_token(credentials.credentials)
    request.state.user_id = principal.uid
    return principal


def get_client_ip(request: Request) -> str:
    """Best-effort client IP: forwarded-for first hop, real-ip, client-ip, loopback."""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first_hop = forwarded_for.split(",")[0].strip()
        if first_hop:
            return first_hop
    
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    
    client_ip = request.headers.get("x-client-ip")
    if client_ip:
        return client_ip.strip()
    
    return LOOPBACK_IP
