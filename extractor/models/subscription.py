import uuid

from sqlalchemy import Boolean, Column, ForeignKey, Integer, Numeric, Text
from sqlalchemy.dialects.postgresql import TIMESTAMP, UUID
from sqlalchemy.orm import relationship

from extractor.database import Base


class SubscriptionPlan(Base):
    __tablename__ = "subscription_plans"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(Text, nullable=False)
    code = Column(Text, nullable=False, unique=True)
    price_monthly = Column(Numeric(10, 2), nullable=False)
    messages_included = Column(Integer, nullable=False)
    overage_price = Column(Numeric(10, 6), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


class LocationSubscription(Base):
    __tablename__ = "location_subscriptions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    location_id = Column(Text, nullable=False, unique=True)
    plan_id = Column(UUID(as_uuid=True), ForeignKey("subscription_plans.id"), nullable=False)
    start_date = Column(TIMESTAMP(timezone=True))
    end_date = Column(TIMESTAMP(timezone=True))
    is_active = Column(Boolean, nullable=False, default=True)
    payment_status = Column(Text, default="active")

    plan = relationship("SubscriptionPlan")
