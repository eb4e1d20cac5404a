from sqlalchemy import Column, String, Integer, Float, Boolean, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import relationship
from app.core.database import Base
from datetime import datetime


class UsageEvent(Base):
    __tablename__ = "usage_events"
    
    id = Column(String, primary_key=True, index=True)
    user_id = Column(String, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    identity_key = Column(String, nullable=True, index=True)
    api_type = Column(String, nullable=False)  # 'gemini'
    endpoint = Column(String, nullable=False)
    model = Column(String, nullable=True)
    operation = Column(String, nullable=False, index=True)  # 'image_generation'
    input_tokens = Column(Integer, nullable=True)
    output_tokens = Column(Integer, nullable=True)
    image_count = Column(Integer, nullable=True)
    cost = Column(Float, nullable=True)
    success = Column(Boolean, nullable=False, default=True)
    error = Column(Text, nullable=True)
    details = Column(JSON, nullable=True)  # style, imageSize, hasGeneratedImage
    duration_ms = Column(Integer, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    
    # Relationships
    user = relationship("User", back_populates="usage_events")
