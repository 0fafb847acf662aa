import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import UUID

from extractor.database import Base


class StopTrigger(Base):
    __tablename__ = "stop_triggers"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    config_id = Column(UUID(as_uuid=True), ForeignKey("ghl_configurations.id"), nullable=False)
    scenario_description = Column(Text, nullable=False)
    handoff_message = Column(Text)
    sort_order = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
