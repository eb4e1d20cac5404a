from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime


class AuditLog(Base):
    __tablename__ = "audit_logs"
    
    id = Column(String, primary_key=True, index=True)
    actor_id = Column(String, ForeignKey("users.id"), nullable=True, index=True)  # null for CLI actions
    action = Column(String, nullable=False, index=True)  # 'approve', 'reject', 'set_limit', 'make_admin'
    resource_type = Column(String, nullable=False)  # 'user'
    resource_id = Column(String, nullable=True)
    details = Column(Text)  # JSON string for additional data
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    
    # Relationships
    actor = relationship("User")
