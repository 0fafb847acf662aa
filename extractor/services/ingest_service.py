"""Webhook ingestion: validate, normalize, deduplicate and route conversation events."""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional
from uuid import UUID

from pydantic import ValidationError
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from extractor.logging_config import get_logger
from extractor.models import ConversationMessage
from extractor.schemas.webhook import ConversationWebhookPayload
from extractor.services.result import ErrorKind, Result

logger = get_logger("ingest")

DEFAULT_EXTRACTION_MESSAGE_TYPES = ("SMS", "WhatsApp", "IG", "FB", "Custom", "Live_Chat")
CALL_MESSAGE_TYPES = ("Call", "Voicemail")
EMAIL_MESSAGE_TYPES = ("Email",)

ROUTE_EXTRACTION = "extraction"
ROUTE_CALL = "call"
ROUTE_EMAIL = "email"
ROUTE_NONE = "none"

DIRECTION_BY_EVENT_TYPE = {
    "InboundMessage": "inbound",
    "OutboundMessage": "outbound",
}


@dataclass
class IngestOutcome:
    record_id: Optional[UUID]
    message_id: Optional[str]
    conversation_id: str
    location_id: str
    contact_id: Optional[str]
    direction: Optional[str]
    message_type: Optional[str]
    duplicate: bool = False
    route: str = ROUTE_NONE

    @property
    def extraction_eligible(self) -> bool:
        return not self.duplicate and self.route == ROUTE_EXTRACTION


def _as_list(value: Any) -> Optional[list]:
    if value is None:
        return None
    if isinstance(value, list):
        return value
    return [value]


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def infer_direction(payload: ConversationWebhookPayload) -> Optional[str]:
    if payload.direction:
        return payload.direction.lower()
    return DIRECTION_BY_EVENT_TYPE.get(payload.type or "")


def parse_payload(raw: dict) -> Result[ConversationWebhookPayload]:
    """Validate a raw webhook body. Missing location, conversation or event time is rejected."""
    if not isinstance(raw, dict):
        return Result.failure("Webhook body must be a JSON object", ErrorKind.VALIDATION)
    try:
        payload = ConversationWebhookPayload.model_validate(raw)
    except ValidationError as exc:
        errors = [{"loc": list(error["loc"]), "msg": error["msg"]} for error in exc.errors()]
        return Result.failure("Invalid webhook payload", ErrorKind.VALIDATION, detail=errors)

    missing = [
        name
        for name, value in (
            ("locationId", payload.location_id),
            ("conversationId", payload.conversation_id),
            ("dateAdded", payload.date_added),
        )
        if not value
    ]
    if missing:
        return Result.failure(
            f"Missing required fields: {', '.join(missing)}",
            ErrorKind.VALIDATION,
            detail={"missing": missing},
        )
    return Result.success(payload)


def map_payload_to_row(payload: ConversationWebhookPayload, raw: dict, received_at: datetime) -> dict:
    """Column values for a new ghl_conversations row."""
    row = {
        "id": uuid.uuid4(),
        "message_id": payload.message_id,
        "conversation_id": payload.conversation_id,
        "location_id": payload.location_id,
        "contact_id": payload.contact_id,
        "direction": infer_direction(payload),
        "message_type": payload.message_type,
        "body": None,
        "attachments": [],
        "status": None,
        "date_added": _as_utc(payload.date_added),
        "webhook_received_at": received_at,
        "raw_webhook_data": raw,
        "processed": False,
        "processing_error": None,
        "conversation_provider_id": payload.conversation_provider_id,
        "created_at": received_at,
        "updated_at": received_at,
    }

    event_type = payload.type
    if event_type == "Call":
        row["message_type"] = payload.message_type or "Call"
        row["call_duration"] = payload.call_duration
        row["call_status"] = payload.call_status
        row["user_id"] = payload.user_id
        if payload.recording_url:
            row["attachments"] = [{"type": "audio", "url": payload.recording_url}]
    elif event_type == "Email":
        row["message_type"] = payload.message_type or "Email"
        row["email_message_id"] = payload.email_message_id
        row["email_thread_id"] = payload.email_thread_id
        row["email_from"] = payload.email_from
        row["email_to"] = _as_list(payload.email_to)
        row["email_cc"] = _as_list(payload.email_cc)
        row["email_bcc"] = _as_list(payload.email_bcc)
        row["email_subject"] = payload.email_subject
        row["body"] = payload.body
        row["attachments"] = payload.attachments or []
    else:
        row["body"] = payload.body
        row["attachments"] = payload.attachments or []
        row["status"] = payload.status

    return row


def decide_route(
    direction: Optional[str],
    message_type: Optional[str],
    extraction_types: Iterable[str] = DEFAULT_EXTRACTION_MESSAGE_TYPES,
) -> str:
    if direction == "inbound" and message_type in set(extraction_types):
        return ROUTE_EXTRACTION
    if message_type in CALL_MESSAGE_TYPES:
        return ROUTE_CALL
    if message_type in EMAIL_MESSAGE_TYPES:
        return ROUTE_EMAIL
    return ROUTE_NONE


def ingest_webhook(
    db: Session,
    raw: dict,
    extraction_types: Iterable[str] = DEFAULT_EXTRACTION_MESSAGE_TYPES,
) -> Result[IngestOutcome]:
    """Persist a webhook event once per provider message id and decide its route.

    A redelivery of a known message id writes nothing and reports duplicate=True.
    """
    parsed = parse_payload(raw)
    if not parsed.ok:
        logger.warning(f"Webhook rejected: {parsed.error}")
        return parsed
    payload = parsed.value

    row = map_payload_to_row(payload, raw, datetime.now(timezone.utc))
    route = decide_route(row["direction"], row["message_type"], extraction_types)

    outcome = IngestOutcome(
        record_id=None,
        message_id=row["message_id"],
        conversation_id=row["conversation_id"],
        location_id=row["location_id"],
        contact_id=row["contact_id"],
        direction=row["direction"],
        message_type=row["message_type"],
        route=route,
    )

    try:
        stmt = (
            insert(ConversationMessage)
            .values(**row)
            .on_conflict_do_nothing(index_elements=["message_id"])
            .returning(ConversationMessage.id)
        )
        record_id = db.execute(stmt).scalar_one_or_none()

        if record_id is None:
            db.rollback()
            existing_id = (
                db.query(ConversationMessage.id).filter(ConversationMessage.message_id == row["message_id"]).scalar()
            )
            outcome.record_id = existing_id
            outcome.duplicate = True
            logger.info(
                "Duplicate webhook delivery ignored",
                extra={"context": {"message_id": row["message_id"], "conversation_id": row["conversation_id"]}},
            )
            return Result.success(outcome)

        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error(f"Failed to store webhook: {exc}")
        return Result.failure(f"Failed to store conversation message: {exc}", ErrorKind.DB_ERROR)

    outcome.record_id = record_id
    logger.info(
        "Conversation message stored",
        extra={
            "context": {
                "record_id": str(record_id),
                "message_id": outcome.message_id,
                "conversation_id": outcome.conversation_id,
                "message_type": outcome.message_type,
                "direction": outcome.direction,
                "route": route,
            }
        },
    )
    return Result.success(outcome)


def mark_processed(db: Session, record_id: UUID, error: Optional[str] = None) -> None:
    """Close out a stored message. The only mutation a stored message ever sees."""
    db.query(ConversationMessage).filter(ConversationMessage.id == record_id).update(
        {
            ConversationMessage.processed: True,
            ConversationMessage.processing_error: error,
            ConversationMessage.updated_at: datetime.now(timezone.utc),
        },
        synchronize_session=False,
    )
    db.commit()
