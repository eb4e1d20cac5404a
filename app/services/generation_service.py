"""
Generation gateway: authorize, check quota, validate, call the image
generator, then account for the successful generation.

Gating (authorization, quota, validation) is strict and has no side effects.
Accounting is best-effort: once the generator has answered, the caller gets
the result even if the usage counter or audit write fails.
"""

import asyncio
import json
import time
from typing import Optional
from sqlalchemy.orm import Session
from app.core.config import settings
from app.core.errors import (
    AccountingFailure,
    NotAuthorized,
    PayloadTooLarge,
    QuotaExhausted,
    ValidationFailure,
)
from app.core.middleware import Principal
from app.services.access_service import AccessService
from app.services.image_generator import (
    GeminiImageGenerator,
    GenerationResult,
    ImageGenerator,
    STYLES,
    style_label,
)
from app.services.pricing import price_quote
from app.services.quota_service import QuotaService, QuotaStatus, ip_identity_key, next_utc_midnight
from app.services.usage_tracker import UsageTracker
import logging

logger = logging.getLogger(__name__)

OPERATION = "image_generation"
ENDPOINT = "generateContent"


def fallback_description(style: str) -> str:
    return (
        "Preview generation is temporarily unavailable. Your portrait will be created in the "
        f"{style_label(style)} style with professional artistic techniques."
    )


class GenerationService:
    def __init__(
        self,
        generator: Optional[ImageGenerator] = None,
        access: Optional[AccessService] = None,
        quota: Optional[QuotaService] = None,
        tracker: Optional[UsageTracker] = None,
        timeout_seconds: Optional[float] = None,
        max_payload_bytes: Optional[int] = None,
    ):
        self.generator = generator or GeminiImageGenerator()
        self.access = access or AccessService()
        self.quota = quota or QuotaService()
        self.tracker = tracker or UsageTracker()
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.generation_timeout_seconds
        self.max_payload_bytes = max_payload_bytes if max_payload_bytes is not None else settings.max_image_payload_bytes
        self.logger = logging.getLogger(__name__)

    async def generate(
        self,
        db: Session,
        principal: Optional[Principal],
        client_ip: str,
        body: bytes,
    ) -> dict:
        # Resolve identity and authorize
        user_id = None
        if principal is not None:
            authorization = self.access.resolve_authorization(db, principal)
            if not authorization.allowed:
                self.logger.info(f"generate: Forbidden - uid: {principal.uid}")
                if authorization.error:
                    raise NotAuthorized("Unable to verify account access. Please try again later.")
                if authorization.user is None:
                    raise NotAuthorized("A verified email address is required", waitlisted=False)
                raise NotAuthorized(waitlisted=authorization.is_waitlisted)
            user = authorization.user
            user_id = user.id
            identity_key = user.identity_key
            limit = self.quota.limit_for_user(user)
        else:
            identity_key = ip_identity_key(client_ip)
            limit = self.quota.anonymous_limit()

        self.logger.info(f"generate: Entry - identity: {identity_key}")

        # Quota gate
        quota_status = self._gate_quota(db, identity_key, limit, anonymous=principal is None)

        # Validate payload
        image_data, style = self._validate_payload(body)

        # Call the generator; failures degrade to echoing the original image
        result, error, duration_ms = await self._invoke_generator(image_data, style, identity_key)
        succeeded = error is None

        # Quota is consumed only by a successful generation; every attempt gets a usage event
        if succeeded:
            try:
                self._record_usage(db, identity_key)
            except AccountingFailure as e:
                self.logger.error(f"generate: {e} - identity: {identity_key}")

        self.tracker.log_usage(
            db,
            api_type="gemini",
            endpoint=ENDPOINT,
            operation=OPERATION,
            success=succeeded,
            user_id=user_id,
            identity_key=identity_key,
            model=getattr(self.generator, "model", None),
            input_tokens=result.input_tokens if succeeded else None,
            output_tokens=result.output_tokens if succeeded else None,
            image_count=1 if succeeded else 0,
            error=error,
            details={
                "style": style,
                "imageSize": len(image_data),
                "hasGeneratedImage": result.generated,
            },
            duration_ms=duration_ms,
        )

        updated_status = self._recheck_quota(db, identity_key, limit, quota_status, succeeded)

        self.logger.info(
            f"generate: Success - identity: {identity_key}, style: {style}, degraded: {not succeeded}, "
            f"used: {updated_status.used_today}/{updated_status.limit}"
        )
        return {
            "success": True,
            "preview": {
                "originalImage": image_data,
                "styledImage": result.image,
                "description": result.description,
                "style": style,
                "degraded": not succeeded,
                **price_quote(style),
            },
            "usage": updated_status.as_dict(),
        }

    def _record_usage(self, db: Session, identity_key: str):
        try:
            self.quota.record_usage(db, identity_key)
        except Exception as e:
            raise AccountingFailure(f"Usage counter write failed: {e}") from e

    def _gate_quota(self, db: Session, identity_key: str, limit: int, anonymous: bool) -> QuotaStatus:
        try:
            quota_status = self.quota.check_limit(db, identity_key, limit)
        except Exception as e:
            # Fail closed
            db.rollback()
            self.logger.error(f"generate: Quota check failed, denying - identity: {identity_key}, error: {e}")
            now = self.quota.clock()
            raise QuotaExhausted(
                "Usage could not be verified. Please try again later.",
                limit=limit,
                used_today=0,
                resets_at=next_utc_midnight(now),
                now=now,
            )

        if not quota_status.allowed:
            if anonymous:
                message = f"IP limit reached ({quota_status.limit} image per IP per day)"
            else:
                message = f"Daily limit reached ({quota_status.limit} images per day)"
            self.logger.info(f"generate: Rate limited - identity: {identity_key}, used: {quota_status.used_today}")
            raise QuotaExhausted(
                message,
                limit=quota_status.limit,
                used_today=quota_status.used_today,
                resets_at=quota_status.resets_at,
                now=self.quota.clock(),
            )
        return quota_status

    def _validate_payload(self, body: bytes):
        if len(body) > self.max_payload_bytes:
            raise PayloadTooLarge("Request payload too large. Maximum size is 2MB.")

        try:
            payload = json.loads(body or b"{}")
        except ValueError:
            raise ValidationFailure("Request body must be valid JSON")
        if not isinstance(payload, dict):
            raise ValidationFailure("Request body must be a JSON object")

        image_data = payload.get("imageData")
        style = payload.get("style")
        if not image_data or not style or not isinstance(image_data, str) or not isinstance(style, str):
            raise ValidationFailure("Image data and style are required")
        if len(image_data) > self.max_payload_bytes:
            raise PayloadTooLarge("Image data too large. Please use a smaller image (max 2MB).")
        if style not in STYLES:
            raise ValidationFailure("Invalid style selected", allowedStyles=list(STYLES))

        return image_data, style

    async def _invoke_generator(self, image_data: str, style: str, identity_key: str):
        started = time.monotonic()
        try:
            result = await asyncio.wait_for(
                self.generator.generate(image_data, style),
                timeout=self.timeout_seconds,
            )
            return result, None, int((time.monotonic() - started) * 1000)
        except Exception as e:
            error = "Generation timed out" if isinstance(e, asyncio.TimeoutError) else (str(e) or type(e).__name__)
            self.logger.error(f"generate: Generator failure, degrading - identity: {identity_key}, style: {style}, error: {error}")
            degraded = GenerationResult(
                image=image_data,
                description=fallback_description(style),
                generated=False,
                model=getattr(self.generator, "model", ""),
            )
            return degraded, error, int((time.monotonic() - started) * 1000)

    def _recheck_quota(
        self,
        db: Session,
        identity_key: str,
        limit: int,
        before: QuotaStatus,
        succeeded: bool,
    ) -> QuotaStatus:
        try:
            return self.quota.check_limit(db, identity_key, limit)
        except Exception as e:
            db.rollback()
            self.logger.error(f"generate: Quota re-check failed - identity: {identity_key}, error: {e}")
            used = before.used_today + (1 if succeeded else 0)
            remaining = max(0, limit - used)
            return QuotaStatus(
                allowed=remaining > 0,
                remaining=remaining,
                limit=limit,
                used_today=used,
                resets_at=before.resets_at,
            )
