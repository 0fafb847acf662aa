import uuid

from sqlalchemy import Boolean, Column, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID

from extractor.database import Base


class UsageLog(Base):
    __tablename__ = "ai_usage_logs"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    location_id = Column(Text, nullable=False, index=True)
    agency_ghl_id = Column(Text)
    conversation_id = Column(Text)
    model = Column(Text, nullable=False)
    input_tokens = Column(Integer, nullable=False, default=0)
    output_tokens = Column(Integer, nullable=False, default=0)
    total_tokens = Column(Integer, nullable=False, default=0)
    cost_estimate = Column(Numeric(10, 6), default=0)
    platform_cost_estimate = Column(Numeric(10, 6), default=0)
    customer_cost_estimate = Column(Numeric(10, 6), default=0)
    extraction_type = Column(Text, default="data_extraction")
    status = Column(Text, nullable=False, default="pending")  # pending, succeeded, failed
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text)
    response_time_ms = Column(Integer)
    openai_key_used = Column(Text)
    ghl_charge_id = Column(Text)
    meter_id = Column(Text)
    billed_units = Column(Integer)
    created_at = Column(TIMESTAMP(timezone=True), nullable=False)
    finalized_at = Column(TIMESTAMP(timezone=True))
