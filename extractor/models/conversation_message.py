import uuid

from sqlalchemy import Boolean, Column, Integer, Text
from sqlalchemy.dialects.postgresql import JSONB, TIMESTAMP, UUID

from extractor.database import Base


class ConversationMessage(Base):
    __tablename__ = "ghl_conversations"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    message_id = Column(Text, unique=True)  # provider id, dedup key; null for synthetic rows
    conversation_id = Column(Text, nullable=False, index=True)
    location_id = Column(Text, nullable=False, index=True)
    contact_id = Column(Text)
    direction = Column(Text)  # inbound, outbound
    message_type = Column(Text)  # SMS, WhatsApp, IG, FB, Custom, Live_Chat, Call, Voicemail, Email
    body = Column(Text)
    attachments = Column(JSONB, nullable=False, default=list)
    status = Column(Text)
    date_added = Column(TIMESTAMP(timezone=True), nullable=False)
    webhook_received_at = Column(TIMESTAMP(timezone=True), nullable=False)
    raw_webhook_data = Column(JSONB, nullable=False, default=dict)
    processed = Column(Boolean, nullable=False, default=False)
    processing_error = Column(Text)

    call_duration = Column(Integer)
    call_status = Column(Text)

    email_message_id = Column(Text)
    email_thread_id = Column(Text)
    email_from = Column(Text)
    email_to = Column(JSONB)
    email_cc = Column(JSONB)
    email_bcc = Column(JSONB)
    email_subject = Column(Text)

    user_id = Column(Text)
    conversation_provider_id = Column(Text)

    created_at = Column(TIMESTAMP(timezone=True))
    updated_at = Column(TIMESTAMP(timezone=True))
