import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import UUID

from extractor.database import Base


class AgencyOpenAIKey(Base):
    __tablename__ = "agency_openai_keys"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    agency_ghl_id = Column(Text, nullable=False, unique=True)
    encrypted_openai_api_key = Column(Text, nullable=False)
    openai_org_id = Column(Text)
    openai_model = Column(Text)
    is_active = Column(Boolean, nullable=False, default=True)
