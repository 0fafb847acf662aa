import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from extractor.database import Base


class ExtractionField(Base):
    __tablename__ = "data_extraction_fields"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    config_id = Column(UUID(as_uuid=True), ForeignKey("ghl_configurations.id"), nullable=False)
    field_name = Column(Text, nullable=False)
    description = Column(Text)
    target_ghl_key = Column(Text, nullable=False)  # contact.firstName or a custom field id
    field_kind = Column(Text, nullable=False, default="custom")  # standard, custom
    field_key = Column(Text)
    field_type = Column(Text, nullable=False, default="TEXT")
    picklist_options = Column(JSONB, nullable=False, default=list)
    placeholder = Column(Text)
    is_required = Column(Boolean, nullable=False, default=False)
    overwrite_policy = Column(Text, nullable=False, default="always")  # always, if_empty, never
    sort_order = Column(Integer, nullable=False, default=0)
    original_ghl_field_data = Column(JSONB)
    created_at = Column(TIMESTAMP(timezone=True))

    config = relationship("LocationConfig", back_populates="extraction_fields")
