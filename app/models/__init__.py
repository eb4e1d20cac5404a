from app.models.user import User, AccessStatus
from app.models.usage_counter import UsageCounter
from app.models.usage_event import UsageEvent
from app.models.audit_log import AuditLog

__all__ = ["User", "AccessStatus", "UsageCounter", "UsageEvent", "AuditLog"]
