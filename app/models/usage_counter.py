from sqlalchemy import Column, String, Integer, DateTime, Date, UniqueConstraint
from app.core.database import Base
from datetime import datetime


class UsageCounter(Base):
    """Successful generations for one identity on one UTC calendar day."""
    
    __tablename__ = "usage_counters"
    __table_args__ = (
        UniqueConstraint("identity_key", "usage_date", name="uq_usage_counters_identity_date"),
    )
    
    id = Column(Integer, primary_key=True, autoincrement=True)
    identity_key = Column(String, nullable=False, index=True)  # 'user:<id>' or 'ip:<address>'
    usage_date = Column(Date, nullable=False, index=True)
    count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime, default=datetime.utcnow)
