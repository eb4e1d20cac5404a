from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session
from app.core.database import get_db
from app.core.middleware import Principal, get_client_ip, get_optional_user
from app.services.generation_service import GenerationService
import logging

router = APIRouter()
logger = logging.getLogger(__name__)


def get_generation_service() -> GenerationService:
    """Dependency to get generation service instance"""
    return GenerationService()


@router.post("")
@router.post("/", include_in_schema=False)
async def generate_preview(
    request: Request,
    db: Session = Depends(get_db),
    principal: Optional[Principal] = Depends(get_optional_user),
    generation_service: GenerationService = Depends(get_generation_service)
):
    """
    Restyle an uploaded pet photo as an oil painting preview.

    Signed-in callers must be allowlisted (or admin) and are metered per
    account; anonymous callers are metered per client IP.
    """
    client_ip = get_client_ip(request)
    logger.info(f"generate_preview: Entry - uid: {principal.uid if principal else None}, ip: {client_ip}")

    try:
        body = await request.body()
        return await generation_service.generate(db, principal, client_ip, body)
    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"generate_preview: Failure - {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "internal_error", "message": "Failed to process image"}
        )
