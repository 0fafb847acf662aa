from datetime import datetime
from typing import Any, List, Optional, Union
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class ConversationWebhookPayload(BaseModel):
    """Conversation event posted by the CRM (InboundMessage, OutboundMessage, Call, Email)."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Optional[str] = None
    location_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("locationId", "location_id"),
    )
    conversation_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("conversationId", "conversation_id"),
    )
    date_added: Optional[datetime] = Field(
        default=None,
        validation_alias=AliasChoices("dateAdded", "date_added"),
    )
    message_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("messageId", "message_id"))
    contact_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("contactId", "contact_id"))
    direction: Optional[str] = None
    message_type: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("messageType", "message_type"),
    )
    body: Optional[str] = None
    attachments: Optional[List[Any]] = None
    status: Optional[str] = None

    call_duration: Optional[int] = Field(default=None, validation_alias=AliasChoices("callDuration", "call_duration"))
    call_status: Optional[str] = Field(default=None, validation_alias=AliasChoices("callStatus", "call_status"))
    user_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("userId", "user_id"))
    recording_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("recordingUrl", "recording_url"),
    )

    email_message_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("emailMessageId"))
    email_thread_id: Optional[str] = Field(default=None, validation_alias=AliasChoices("emailThreadId"))
    email_from: Optional[str] = Field(default=None, validation_alias=AliasChoices("emailFrom"))
    email_to: Optional[Union[List[str], str]] = Field(default=None, validation_alias=AliasChoices("emailTo"))
    email_cc: Optional[Union[List[str], str]] = Field(default=None, validation_alias=AliasChoices("emailCc"))
    email_bcc: Optional[Union[List[str], str]] = Field(default=None, validation_alias=AliasChoices("emailBcc"))
    email_subject: Optional[str] = Field(default=None, validation_alias=AliasChoices("emailSubject"))

    conversation_provider_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("conversationProviderId"),
    )


class WebhookResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    record_id: Optional[UUID] = Field(default=None, serialization_alias="recordId")
    message_id: Optional[str] = Field(default=None, serialization_alias="messageId")
    conversation_id: Optional[str] = Field(default=None, serialization_alias="conversationId")
    extraction_triggered: bool = Field(default=False, serialization_alias="extractionTriggered")
    duplicate: bool = False
    route: str = "none"
    extraction: Optional[dict] = None
