import uuid

from sqlalchemy import Column, Numeric, Text
from sqlalchemy.dialects.postgresql import UUID

from extractor.database import Base


class ModelPricing(Base):
    __tablename__ = "openai_model_pricing"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    model_id = Column(Text, nullable=False, unique=True)
    input_price_per_million = Column(Numeric(10, 3), nullable=False)
    output_price_per_million = Column(Numeric(10, 3), nullable=False)
