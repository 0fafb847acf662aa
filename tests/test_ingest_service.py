import uuid
from datetime import datetime, timezone
from unittest.mock import Mock

import pytest
from sqlalchemy.exc import OperationalError

from extractor.schemas.webhook import ConversationWebhookPayload
from extractor.services.ingest_service import (
    ROUTE_CALL,
    ROUTE_EMAIL,
    ROUTE_EXTRACTION,
    ROUTE_NONE,
    decide_route,
    infer_direction,
    ingest_webhook,
    map_payload_to_row,
    mark_processed,
    parse_payload,
)


def inbound_sms(**overrides):
    payload = {
        "type": "InboundMessage",
        "locationId": "loc-1",
        "conversationId": "conv-1",
        "contactId": "contact-1",
        "messageId": "msg-1",
        "direction": "inbound",
        "messageType": "SMS",
        "body": "My name is John Smith, phone 555-123-4567, email john@example.com",
        "dateAdded": "2024-05-01T10:00:00Z",
    }
    payload.update(overrides)
    return payload


class TestParsePayload:
    def test_valid_payload(self):
        result = parse_payload(inbound_sms())
        assert result.ok
        assert result.value.location_id == "loc-1"
        assert result.value.date_added == datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)

    @pytest.mark.parametrize("missing", ["locationId", "conversationId", "dateAdded"])
    def test_missing_required_field_is_rejected(self, missing):
        payload = inbound_sms()
        del payload[missing]
        result = parse_payload(payload)
        assert not result.ok
        assert result.error_code == "validation"
        assert missing in result.detail["missing"]

    def test_non_object_body_is_rejected(self):
        result = parse_payload(["not", "an", "object"])
        assert not result.ok
        assert result.http_status() == 400

    def test_bad_timestamp_is_rejected(self):
        result = parse_payload(inbound_sms(dateAdded="yesterday-ish"))
        assert not result.ok
        assert result.error_code == "validation"


class TestMapping:
    def test_direction_inferred_from_event_type(self):
        payload = ConversationWebhookPayload.model_validate(inbound_sms(direction=None, type="OutboundMessage"))
        assert infer_direction(payload) == "outbound"

    def test_message_row(self):
        raw = inbound_sms(attachments=["https://example.com/a.png"], status="delivered")
        payload = ConversationWebhookPayload.model_validate(raw)
        row = map_payload_to_row(payload, raw, datetime.now(timezone.utc))

        assert row["message_id"] == "msg-1"
        assert row["body"].startswith("My name is John")
        assert row["attachments"] == ["https://example.com/a.png"]
        assert row["status"] == "delivered"
        assert row["processed"] is False
        assert row["raw_webhook_data"] is raw

    def test_call_row_stores_recording_as_audio_attachment(self):
        raw = {
            "type": "Call",
            "locationId": "loc-1",
            "conversationId": "conv-1",
            "dateAdded": "2024-05-01T10:00:00Z",
            "callDuration": 42,
            "callStatus": "completed",
            "userId": "user-9",
            "recordingUrl": "https://example.com/rec.mp3",
        }
        payload = ConversationWebhookPayload.model_validate(raw)
        row = map_payload_to_row(payload, raw, datetime.now(timezone.utc))

        assert row["message_type"] == "Call"
        assert row["call_duration"] == 42
        assert row["user_id"] == "user-9"
        assert row["attachments"] == [{"type": "audio", "url": "https://example.com/rec.mp3"}]
        assert row["body"] is None

    def test_email_row(self):
        raw = {
            "type": "Email",
            "locationId": "loc-1",
            "conversationId": "conv-1",
            "dateAdded": "2024-05-01T10:00:00Z",
            "emailMessageId": "em-1",
            "emailThreadId": "thread-1",
            "emailFrom": "a@example.com",
            "emailTo": "b@example.com",
            "emailSubject": "Quote",
            "body": "Hello",
        }
        payload = ConversationWebhookPayload.model_validate(raw)
        row = map_payload_to_row(payload, raw, datetime.now(timezone.utc))

        assert row["message_type"] == "Email"
        assert row["email_to"] == ["b@example.com"]
        assert row["email_subject"] == "Quote"
        assert row["body"] == "Hello"


class TestDecideRoute:
    @pytest.mark.parametrize("message_type", ["SMS", "WhatsApp", "IG", "FB", "Custom", "Live_Chat"])
    def test_inbound_chat_triggers_extraction(self, message_type):
        assert decide_route("inbound", message_type) == ROUTE_EXTRACTION

    def test_outbound_sms_does_not_trigger(self):
        assert decide_route("outbound", "SMS") == ROUTE_NONE

    def test_calls_and_voicemail_route_to_call_processor(self):
        assert decide_route("inbound", "Call") == ROUTE_CALL
        assert decide_route("inbound", "Voicemail") == ROUTE_CALL

    def test_email_routes_to_email_processor(self):
        assert decide_route("inbound", "Email") == ROUTE_EMAIL

    def test_custom_allow_list(self):
        assert decide_route("inbound", "GMB", extraction_types=["GMB"]) == ROUTE_EXTRACTION


class TestIngestWebhook:
    def test_new_message_is_stored(self, db_session):
        record_id = uuid.uuid4()
        db_session.execute.return_value.scalar_one_or_none.return_value = record_id

        result = ingest_webhook(db_session, inbound_sms())

        assert result.ok
        outcome = result.value
        assert outcome.record_id == record_id
        assert outcome.duplicate is False
        assert outcome.extraction_eligible is True
        db_session.commit.assert_called_once()

    def test_redelivery_is_a_no_op(self, db_session):
        existing_id = uuid.uuid4()
        db_session.execute.return_value.scalar_one_or_none.return_value = None
        db_session.query.return_value.filter.return_value.scalar.return_value = existing_id

        result = ingest_webhook(db_session, inbound_sms())

        assert result.ok
        assert result.value.duplicate is True
        assert result.value.record_id == existing_id
        assert result.value.extraction_eligible is False
        db_session.commit.assert_not_called()

    def test_validation_failure_writes_nothing(self, db_session):
        result = ingest_webhook(db_session, inbound_sms(conversationId=None))

        assert not result.ok
        db_session.execute.assert_not_called()
        db_session.commit.assert_not_called()

    def test_database_error_is_reported(self, db_session):
        db_session.execute.side_effect = OperationalError("INSERT", {}, Exception("connection lost"))

        result = ingest_webhook(db_session, inbound_sms())

        assert not result.ok
        assert result.error_code == "db_error"
        db_session.rollback.assert_called_once()

    def test_outbound_message_is_stored_without_extraction(self, db_session):
        db_session.execute.return_value.scalar_one_or_none.return_value = uuid.uuid4()

        result = ingest_webhook(db_session, inbound_sms(type="OutboundMessage", direction="outbound"))

        assert result.ok
        assert result.value.extraction_eligible is False
        assert result.value.route == ROUTE_NONE


class TestMarkProcessed:
    def test_sets_processed_and_error(self):
        db = Mock()
        record_id = uuid.uuid4()

        mark_processed(db, record_id, "LLM request timed out")

        values = db.query.return_value.filter.return_value.update.call_args[0][0]
        assert list(values.values())[:2] == [True, "LLM request timed out"]
        db.commit.assert_called_once()
