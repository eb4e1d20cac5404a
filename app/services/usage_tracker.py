"""
Usage event audit trail for calls to the image generator.

One row per attempt, successful or not, with an estimated cost. Writes are
best-effort: a failed write is logged and never reaches the caller.
"""

from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Dict, Optional
from sqlalchemy.orm import Session, joinedload
from app.models.usage_event import UsageEvent
import uuid
import logging

logger = logging.getLogger(__name__)

# USD. Token prices are per 1K tokens, image prices per image.
GEMINI_PRICING: Dict[str, Dict[str, float]] = {
    "gemini-2.0-flash-exp": {
        "input_tokens": 0.000125,
        "output_tokens": 0.000375,
        "images": 0.00001,
    },
    "gemini-1.5-pro": {
        "input_tokens": 0.0035,
        "output_tokens": 0.0105,
        "images": 0.0105,
    },
    "gemini-1.5-flash": {
        "input_tokens": 0.00015,
        "output_tokens": 0.0006,
        "images": 0.00015,
    },
}


def calculate_cost(
    api_type: str,
    model: Optional[str],
    input_tokens: Optional[int] = None,
    output_tokens: Optional[int] = None,
    image_count: Optional[int] = None,
) -> Optional[float]:
    """Estimated cost of one call, or None for an unpriced api/model."""
    if api_type != "gemini" or not model:
        return None

    pricing = GEMINI_PRICING.get(model)
    if not pricing:
        return None

    cost = 0.0
    if input_tokens:
        cost += (input_tokens / 1000) * pricing["input_tokens"]
    if output_tokens:
        cost += (output_tokens / 1000) * pricing["output_tokens"]
    if image_count:
        cost += image_count * pricing["images"]
    return cost


class UsageTracker:
    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def log_usage(
        self,
        db: Session,
        *,
        api_type: str,
        endpoint: str,
        operation: str,
        success: bool,
        user_id: Optional[str] = None,
        identity_key: Optional[str] = None,
        model: Optional[str] = None,
        input_tokens: Optional[int] = None,
        output_tokens: Optional[int] = None,
        image_count: Optional[int] = None,
        error: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        duration_ms: Optional[int] = None,
    ) -> Optional[UsageEvent]:
        """Write one usage event. Returns None if the write failed."""
        try:
            cost = calculate_cost(api_type, model, input_tokens, output_tokens, image_count)
            event = UsageEvent(
                id=str(uuid.uuid4()),
                user_id=user_id,
                identity_key=identity_key,
                api_type=api_type,
                endpoint=endpoint,
                model=model,
                operation=operation,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                image_count=image_count,
                cost=cost,
                success=success,
                error=error,
                details=details,
                duration_ms=duration_ms,
            )
            db.add(event)
            db.commit()

            self.logger.info(f"log_usage: Success - {api_type}/{operation}, success: {success}, cost: {cost}")
            return event
        except Exception as e:
            db.rollback()
            self.logger.error(f"log_usage: Failure - {api_type}/{operation}, identity: {identity_key}, error: {e}")
            return None

    def get_user_usage_analytics(self, db: Session, user_id: str, days: int = 30) -> dict:
        self.logger.info(f"get_user_usage_analytics: Entry - user: {user_id}, days: {days}")

        start = datetime.utcnow() - timedelta(days=days)
        events = db.query(UsageEvent).filter(
            UsageEvent.user_id == user_id,
            UsageEvent.created_at >= start
        ).order_by(UsageEvent.created_at.desc()).all()

        result = self._summarize(events)
        result["recentUsage"] = [self._event_dict(event) for event in events[:10]]

        self.logger.info(f"get_user_usage_analytics: Success - user: {user_id}, events: {len(events)}")
        return result

    def get_overall_usage_analytics(self, db: Session, days: int = 30) -> dict:
        self.logger.info(f"get_overall_usage_analytics: Entry - days: {days}")

        start = datetime.utcnow() - timedelta(days=days)
        events = db.query(UsageEvent).options(joinedload(UsageEvent.user)).filter(
            UsageEvent.created_at >= start
        ).order_by(UsageEvent.created_at.desc()).all()

        result = self._summarize(events)
        result["uniqueUsers"] = len({event.user_id for event in events if event.user_id})

        user_stats: Dict[str, dict] = {}
        for event in events:
            if not event.user_id or event.user is None:
                continue
            stats = user_stats.setdefault(event.user.email, {
                "userId": event.user_id, "count": 0, "cost": 0.0, "success": 0, "failed": 0,
            })
            stats["count"] += 1
            stats["cost"] += event.cost or 0.0
            stats["success" if event.success else "failed"] += 1

        result["userStats"] = sorted(
            ({"email": email, **stats} for email, stats in user_stats.items()),
            key=lambda s: s["cost"],
            reverse=True,
        )

        self.logger.info(f"get_overall_usage_analytics: Success - events: {len(events)}")
        return result

    def _summarize(self, events) -> dict:
        total_requests = len(events)
        successful = sum(1 for event in events if event.success)

        operation_stats = defaultdict(lambda: {"count": 0, "cost": 0.0, "success": 0, "failed": 0})
        model_stats = defaultdict(lambda: {"count": 0, "cost": 0.0})
        daily = defaultdict(lambda: {"requests": 0, "cost": 0.0, "successful": 0, "failed": 0})

        for event in events:
            cost = event.cost or 0.0

            op = operation_stats[event.operation]
            op["count"] += 1
            op["cost"] += cost
            op["success" if event.success else "failed"] += 1

            if event.model:
                model_stats[event.model]["count"] += 1
                model_stats[event.model]["cost"] += cost

            day = daily[event.created_at.date().isoformat()]
            day["requests"] += 1
            day["cost"] += cost
            day["successful" if event.success else "failed"] += 1

        return {
            "totalCost": sum(event.cost or 0.0 for event in events),
            "totalRequests": total_requests,
            "successfulRequests": successful,
            "failedRequests": total_requests - successful,
            "successRate": (successful / total_requests) * 100 if total_requests else 0,
            "operationStats": dict(operation_stats),
            "modelStats": dict(model_stats),
            "dailyUsage": [{"date": date, **stats} for date, stats in sorted(daily.items())],
        }

    def _event_dict(self, event: UsageEvent) -> dict:
        return {
            "id": event.id,
            "operation": event.operation,
            "model": event.model,
            "success": event.success,
            "cost": event.cost,
            "error": event.error,
            "createdAt": event.created_at.isoformat() if event.created_at else None,
        }
