import uuid

from sqlalchemy import Column, Integer, Numeric, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from extractor.database import Base


class UsageTracking(Base):
    __tablename__ = "usage_tracking"
    __table_args__ = (UniqueConstraint("location_id", "month_year"),)

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    location_id = Column(Text, nullable=False)
    month_year = Column(Text, nullable=False)  # YYYY-MM
    messages_used = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    cost_estimate = Column(Numeric(10, 6), nullable=False, default=0)
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))
