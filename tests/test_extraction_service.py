import base64
import json
from decimal import Decimal
from unittest.mock import Mock

import httpx
import pytest

from conftest import make_catalog, make_field
from extractor.models import AgencyOpenAIKey, ModelPricing
from extractor.services.conversation_service import Transcript
from extractor.services.extraction_service import (
    ExtractionInvoker,
    decode_agency_key,
    estimate_cost,
    normalize_extracted,
    resolve_llm_credentials,
)
from extractor.services.llm import LLMProvider, LLMProviderError, LLMResponse, OpenAIProvider
from extractor.services.prompt_service import RenderedPrompt

USAGE = {"prompt_tokens": 1000, "completion_tokens": 500, "total_tokens": 1500}


class FakeProvider(LLMProvider):
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def generate(self, messages, model=None, temperature=0.1, max_tokens=2000, json_mode=True):
        self.calls.append({"messages": messages, "model": model, "json_mode": json_mode})
        if self.error:
            raise self.error
        return LLMResponse(content=self.content, model=model, usage=USAGE)


def db_without_rows():
    db = Mock()
    db.query.return_value.filter.return_value.first.return_value = None
    return db


def pricing_row(model_id="gpt-4o-mini", input_price="0.150", output_price="0.600"):
    return ModelPricing(
        model_id=model_id,
        input_price_per_million=Decimal(input_price),
        output_price_per_million=Decimal(output_price),
    )


def transcript():
    return Transcript(
        conversation_id="conv-1",
        location_id="loc-1",
        messages=[
            {"role": "user", "content": "Hi, I'm John Smith, 555-123-4567"},
            {"role": "assistant", "content": "Thanks John!"},
        ],
        status="ok",
    )


def prompt(catalog=None):
    catalog = catalog or make_catalog(make_field("contact.firstName"), make_field("contact.phone"))
    return RenderedPrompt(document="Extract the fields.", catalog=catalog, location_id="loc-1", business_name="Smith Auto")


def run(invoker, db, **overrides):
    kwargs = {
        "transcript": transcript(),
        "prompt": prompt(),
        "location_id": "loc-1",
        "conversation_id": "conv-1",
    }
    kwargs.update(overrides)
    return invoker.run(db, **kwargs)


def usage_log(db):
    return db.add.call_args[0][0]


class TestInvoker:
    def test_success_finalizes_log_and_keys_values_by_target(self):
        provider = FakeProvider(
            json.dumps(
                {
                    "contact.firstName": "John",
                    "contact.phone": "555-123-4567",
                    "extraction_confidence": "high",
                    "notes": "clear",
                }
            )
        )
        db = db_without_rows()
        invoker = ExtractionInvoker("sk-platform", provider_factory=lambda credentials: provider)

        result = run(invoker, db)

        assert result.ok
        assert result.value.values == {"contact.firstName": "John", "contact.phone": "555-123-4567"}
        assert result.value.confidence == "high"
        assert result.value.notes == "clear"
        assert result.value.total_tokens == 1500
        assert result.value.is_agency_key is False
        log = usage_log(db)
        assert log.status == "succeeded"
        assert log.total_tokens == 1500
        assert log.openai_key_used == "sk-platfor..."

    def test_system_prompt_precedes_transcript(self):
        provider = FakeProvider("{}")
        invoker = ExtractionInvoker("sk-platform", provider_factory=lambda credentials: provider)

        run(invoker, db_without_rows())

        messages = provider.calls[0]["messages"]
        assert messages[0] == {"role": "system", "content": "Extract the fields."}
        assert [m["role"] for m in messages[1:]] == ["user", "assistant"]
        assert provider.calls[0]["json_mode"] is True

    def test_invalid_json_is_parse_failure(self):
        db = db_without_rows()
        invoker = ExtractionInvoker("sk-platform", provider_factory=lambda credentials: FakeProvider("not json"))

        result = run(invoker, db)

        assert not result.ok
        assert result.error_code == "parse"
        assert result.error.startswith("Failed to parse AI response")
        log = usage_log(db)
        assert log.status == "failed"
        assert log.total_tokens == 1500
        assert result.detail["usage_log_id"] == str(log.id)

    def test_empty_content_is_parse_failure(self):
        db = db_without_rows()
        invoker = ExtractionInvoker("sk-platform", provider_factory=lambda credentials: FakeProvider(""))

        result = run(invoker, db)

        assert result.error_code == "parse"
        assert result.error == "AI returned no content."
        assert usage_log(db).error_message == "AI returned no content."

    def test_non_object_json_is_parse_failure(self):
        invoker = ExtractionInvoker("sk-platform", provider_factory=lambda credentials: FakeProvider("[1, 2]"))

        result = run(invoker, db_without_rows())

        assert result.error_code == "parse"

    def test_provider_error_is_upstream_with_status(self):
        db = db_without_rows()
        provider = FakeProvider(error=LLMProviderError(429, "rate limited"))
        invoker = ExtractionInvoker("sk-platform", provider_factory=lambda credentials: provider)

        result = run(invoker, db)

        assert result.error_code == "upstream"
        assert result.status_code == 429
        assert result.detail["body"] == "rate limited"
        assert usage_log(db).status == "failed"

    def test_gateway_page_instead_of_completion_is_recorded(self):
        db = db_without_rows()
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>gateway</html>"))
        invoker = ExtractionInvoker(
            "sk-platform",
            provider_factory=lambda credentials: OpenAIProvider(credentials.api_key, transport=transport),
        )

        result = run(invoker, db)

        assert not result.ok
        assert result.error_code == "upstream"
        assert result.detail["body"] == "<html>gateway</html>"
        log = usage_log(db)
        assert log.status == "failed"
        assert result.detail["usage_log_id"] == str(log.id)

    def test_timeout_is_timeout_failure(self):
        db = db_without_rows()
        provider = FakeProvider(error=httpx.ReadTimeout("timed out"))
        invoker = ExtractionInvoker("sk-platform", provider_factory=lambda credentials: provider)

        result = run(invoker, db)

        assert result.error_code == "timeout"
        assert usage_log(db).status == "failed"

    def test_unexpected_error_still_finalizes_log(self):
        db = db_without_rows()
        provider = FakeProvider(error=KeyError("choices"))
        invoker = ExtractionInvoker("sk-platform", provider_factory=lambda credentials: provider)

        with pytest.raises(KeyError):
            run(invoker, db)

        assert usage_log(db).status == "failed"

    def test_no_key_configured(self):
        db = db_without_rows()
        invoker = ExtractionInvoker(None, provider_factory=lambda credentials: FakeProvider("{}"))

        result = run(invoker, db)

        assert result.error_code == "config_missing"
        db.add.assert_not_called()


class TestCredentials:
    def test_agency_key_is_decoded_and_flagged(self):
        stored = base64.b64encode(b"sk-agency-secret").decode()
        row = AgencyOpenAIKey(
            agency_ghl_id="agency-1", encrypted_openai_api_key=stored, openai_model="gpt-4o", is_active=True
        )
        db = Mock()
        db.query.return_value.filter.return_value.first.return_value = row

        credentials = resolve_llm_credentials(db, "agency-1", "sk-platform", "gpt-4o-mini")

        assert credentials.api_key == "sk-agency-secret"
        assert credentials.model == "gpt-4o"
        assert credentials.is_agency_key is True
        assert credentials.key_marker == f"{stored[:10]}..."

    def test_platform_key_without_agency(self):
        credentials = resolve_llm_credentials(Mock(), None, "sk-platform", "gpt-4o-mini", "org-1")

        assert credentials.api_key == "sk-platform"
        assert credentials.org_id == "org-1"
        assert credentials.is_agency_key is False

    def test_inactive_agency_key_falls_back_to_platform(self):
        credentials = resolve_llm_credentials(db_without_rows(), "agency-1", "sk-platform", "gpt-4o-mini")
        assert credentials.api_key == "sk-platform"

    def test_decode_agency_key_passes_plain_keys_through(self):
        assert decode_agency_key("sk-plain_key-with-dash") == "sk-plain_key-with-dash"


class TestCost:
    def test_cost_from_pricing_table(self):
        db = Mock()
        db.query.return_value.filter.return_value.first.return_value = pricing_row()

        assert estimate_cost(db, "gpt-4o-mini", 1000, 500) == 0.00045

    def test_unknown_model_falls_back_to_default_pricing(self):
        db = Mock()
        db.query.return_value.filter.return_value.first.side_effect = [None, pricing_row()]

        assert estimate_cost(db, "gpt-unknown", 1_000_000, 0) == 0.15

    def test_no_pricing_is_zero(self):
        assert estimate_cost(db_without_rows(), "gpt-4o-mini", 1000, 500) == 0.0


class TestNormalize:
    def test_prompt_keys_map_to_target_keys(self):
        catalog = make_catalog(make_field("contact.date_of_birth"), make_field("cf-1", kind="custom", field_name="Vehicle Year"))

        values, unmatched = normalize_extracted({"date_of_birth": "1990-01-02", "vehicle_year": "2019", "shoe": "9"}, catalog)

        assert values["contact.date_of_birth"] == "1990-01-02"
        assert values["cf-1"] == "2019"
        assert unmatched == ["shoe"]
