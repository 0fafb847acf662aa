import uuid

from sqlalchemy import Boolean, Column, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from extractor.database import Base


class LocationConfig(Base):
    """Per-location installation: business context plus the CRM OAuth credential."""

    __tablename__ = "ghl_configurations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    ghl_account_id = Column(Text, nullable=False, unique=True)  # CRM location id
    ghl_company_id = Column(Text)
    agency_ghl_id = Column(Text)
    ghl_user_type = Column(Text, default="location")  # location, agency
    ghl_user_id = Column(Text)

    business_name = Column(Text)
    business_description = Column(Text)
    business_context = Column(Text)
    target_audience = Column(Text)
    services_offered = Column(Text)

    access_token = Column(Text)
    refresh_token = Column(Text)
    token_expires_at = Column(TIMESTAMP(timezone=True))

    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))

    extraction_fields = relationship("ExtractionField", back_populates="config")

    @property
    def is_agency(self) -> bool:
        return self.ghl_user_type == "agency"

    @property
    def is_agency_sub_account(self) -> bool:
        return not self.is_agency and bool(self.agency_ghl_id)
