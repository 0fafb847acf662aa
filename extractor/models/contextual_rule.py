import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Text
from sqlalchemy.dialects.postgresql import UUID

from extractor.database import Base


class ContextualRule(Base):
    __tablename__ = "contextual_rules"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    config_id = Column(UUID(as_uuid=True), ForeignKey("ghl_configurations.id"), nullable=False)
    rule_name = Column(Text)
    rule_description = Column(Text, nullable=False)
    rule_type = Column(Text, nullable=False)  # EMPLOYEE_NAMES, BUSINESS_CONTEXT, PROMPT_RULES
    rule_value = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
