from sqlalchemy import Column, String, DateTime, Integer, Enum
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime
import enum


class AccessStatus(str, enum.Enum):
    WAITLISTED = "waitlisted"
    ALLOWLISTED = "allowlisted"
    ADMIN = "admin"


class User(Base):
    __tablename__ = "users"
    
    id = Column(String, primary_key=True, index=True)  # Firebase UID
    email = Column(String, unique=True, index=True, nullable=False)
    name = Column(String, nullable=True)
    access_status = Column(Enum(AccessStatus), nullable=False, default=AccessStatus.WAITLISTED, index=True)
    daily_generation_limit = Column(Integer, nullable=False, default=10)
    approved_at = Column(DateTime, nullable=True)
    joined_waitlist_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    
    # Relationships
    usage_events = relationship("UsageEvent", back_populates="user")
    
    # Legacy flag projection of access_status
    @property
    def is_admin(self) -> bool:
        return self.access_status == AccessStatus.ADMIN
    
    @property
    def is_allowlisted(self) -> bool:
        return self.access_status in (AccessStatus.ALLOWLISTED, AccessStatus.ADMIN)
    
    @property
    def is_waitlisted(self) -> bool:
        return self.access_status == AccessStatus.WAITLISTED
    
    @property
    def identity_key(self) -> str:
        return f"user:{self.id}"
