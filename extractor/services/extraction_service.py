import base64
import binascii
import json
import time
from dataclasses import dataclass, field
from typing import Callable, Optional

import httpx
from sqlalchemy.orm import Session

from extractor.logging_config import get_logger
from extractor.models import AgencyOpenAIKey, ModelPricing
from extractor.services.conversation_service import Transcript
from extractor.services.field_catalog import FieldCatalog
from extractor.services.llm import LLMProvider, LLMProviderError, OpenAIProvider
from extractor.services.prompt_service import CONFIDENCE_KEY, NOTES_KEY, RenderedPrompt
from extractor.services.result import ErrorKind, Result
from extractor.services.usage_log_service import usage_attempt

logger = get_logger("extraction")

FALLBACK_PRICING_MODEL = "gpt-4o-mini"


@dataclass
class LLMCredentials:
    api_key: str
    model: str
    org_id: Optional[str] = None
    is_agency_key: bool = False
    stored_key: Optional[str] = None

    @property
    def key_marker(self) -> str:
        return key_marker(self.stored_key or self.api_key)


@dataclass
class ExtractionResult:
    usage_log_id: object
    values: dict
    model: str
    input_tokens: int
    output_tokens: int
    total_tokens: int
    response_time_ms: int
    platform_cost: float
    is_agency_key: bool = False
    confidence: Optional[object] = None
    notes: Optional[str] = None
    unmatched_keys: list = field(default_factory=list)


def key_marker(api_key: str) -> str:
    return f"{api_key[:10]}..."


def decode_agency_key(stored: str) -> str:
    """Agency keys are stored base64 encoded; anything that does not decode is used as-is."""
    try:
        return base64.b64decode(stored, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return stored


def resolve_llm_credentials(
    db: Session,
    agency_ghl_id: Optional[str],
    default_api_key: Optional[str],
    default_model: str,
    default_org_id: Optional[str] = None,
) -> Optional[LLMCredentials]:
    """Agency-supplied key when one is active, else the platform key."""
    if agency_ghl_id:
        row = (
            db.query(AgencyOpenAIKey)
            .filter(AgencyOpenAIKey.agency_ghl_id == agency_ghl_id, AgencyOpenAIKey.is_active.is_(True))
            .first()
        )
        if row and row.encrypted_openai_api_key:
            logger.info("Using agency LLM key", extra={"context": {"agency_ghl_id": agency_ghl_id}})
            return LLMCredentials(
                api_key=decode_agency_key(row.encrypted_openai_api_key),
                model=row.openai_model or default_model,
                org_id=row.openai_org_id,
                is_agency_key=True,
                stored_key=row.encrypted_openai_api_key,
            )
    if not default_api_key:
        return None
    return LLMCredentials(api_key=default_api_key, model=default_model, org_id=default_org_id)


def estimate_cost(db: Session, model: str, input_tokens: int, output_tokens: int) -> float:
    pricing = db.query(ModelPricing).filter(ModelPricing.model_id == model).first()
    if pricing is None and model != FALLBACK_PRICING_MODEL:
        pricing = db.query(ModelPricing).filter(ModelPricing.model_id == FALLBACK_PRICING_MODEL).first()
    if pricing is None:
        logger.warning(f"No pricing for model {model}, cost recorded as 0")
        return 0.0
    cost = (
        input_tokens * float(pricing.input_price_per_million) / 1_000_000
        + output_tokens * float(pricing.output_price_per_million) / 1_000_000
    )
    return round(cost, 6)


def normalize_extracted(data: dict, catalog: FieldCatalog) -> tuple[dict, list]:
    """Key the model's answer by target key. Keys the catalog does not know are returned separately."""
    values = {}
    unmatched = []
    for key, value in data.items():
        entry = catalog.lookup(key)
        if entry is None:
            unmatched.append(key)
            values[key] = value
            continue
        values[entry.target_key] = value
    return values, unmatched


def _default_provider_factory(credentials: LLMCredentials, base_url: str, timeout_seconds: float) -> LLMProvider:
    return OpenAIProvider(
        api_key=credentials.api_key,
        default_model=credentials.model,
        org_id=credentials.org_id,
        base_url=base_url,
        timeout_seconds=timeout_seconds,
    )


class ExtractionInvoker:
    """Runs one LLM extraction attempt and keeps its usage log honest."""

    def __init__(
        self,
        default_api_key: Optional[str],
        default_model: str = "gpt-4o-mini",
        default_org_id: Optional[str] = None,
        base_url: str = "https://api.openai.com/v1/chat/completions",
        temperature: float = 0.1,
        max_tokens: int = 2000,
        timeout_seconds: float = 60.0,
        provider_factory: Optional[Callable[[LLMCredentials], LLMProvider]] = None,
    ):
        self.default_api_key = default_api_key
        self.default_model = default_model
        self.default_org_id = default_org_id
        self.base_url = base_url
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.provider_factory = provider_factory or (
            lambda credentials: _default_provider_factory(credentials, self.base_url, self.timeout_seconds)
        )

    def run(
        self,
        db: Session,
        *,
        transcript: Transcript,
        prompt: RenderedPrompt,
        location_id: str,
        conversation_id: Optional[str],
        agency_ghl_id: Optional[str] = None,
    ) -> Result[ExtractionResult]:
        credentials = resolve_llm_credentials(
            db, agency_ghl_id, self.default_api_key, self.default_model, self.default_org_id
        )
        if credentials is None:
            return Result.failure("No LLM API key configured", ErrorKind.CONFIG_MISSING)

        provider = self.provider_factory(credentials)
        messages = [{"role": "system", "content": prompt.document}] + list(transcript.messages)

        with usage_attempt(
            db,
            location_id=location_id,
            conversation_id=conversation_id,
            model=credentials.model,
            agency_ghl_id=agency_ghl_id,
            openai_key_used=credentials.key_marker,
        ) as attempt:
            started = time.monotonic()
            try:
                response = provider.generate(
                    messages,
                    model=credentials.model,
                    temperature=self.temperature,
                    max_tokens=self.max_tokens,
                    json_mode=True,
                )
            except httpx.TimeoutException as exc:
                attempt.fail(f"LLM request timed out: {exc}", response_time_ms=_elapsed_ms(started))
                return Result.failure("LLM request timed out", ErrorKind.TIMEOUT, detail={"usage_log_id": str(attempt.id)})
            except LLMProviderError as exc:
                attempt.fail(str(exc), response_time_ms=_elapsed_ms(started))
                return Result.failure(
                    "LLM request failed",
                    ErrorKind.UPSTREAM,
                    detail={"usage_log_id": str(attempt.id), "body": exc.body[:1000]},
                    status_code=exc.status_code,
                )
            except httpx.HTTPError as exc:
                attempt.fail(f"LLM transport error: {exc}", response_time_ms=_elapsed_ms(started))
                return Result.failure("LLM request failed", ErrorKind.UPSTREAM, detail={"usage_log_id": str(attempt.id)})

            elapsed_ms = _elapsed_ms(started)
            platform_cost = estimate_cost(db, credentials.model, response.input_tokens, response.output_tokens)
            counters = {
                "model": response.model,
                "input_tokens": response.input_tokens,
                "output_tokens": response.output_tokens,
                "total_tokens": response.total_tokens,
                "response_time_ms": elapsed_ms,
                "platform_cost_estimate": platform_cost,
            }

            if not response.content:
                attempt.fail("AI returned no content.", **counters)
                return Result.failure("AI returned no content.", ErrorKind.PARSE, detail={"usage_log_id": str(attempt.id)})

            try:
                data = json.loads(response.content)
            except json.JSONDecodeError as exc:
                attempt.fail(f"Failed to parse AI response: {exc}", **counters)
                return Result.failure(
                    f"Failed to parse AI response: {exc}",
                    ErrorKind.PARSE,
                    detail={"usage_log_id": str(attempt.id)},
                )
            if not isinstance(data, dict):
                attempt.fail("Failed to parse AI response: expected a JSON object", **counters)
                return Result.failure(
                    "Failed to parse AI response: expected a JSON object",
                    ErrorKind.PARSE,
                    detail={"usage_log_id": str(attempt.id)},
                )

            attempt.succeed(
                model=response.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                total_tokens=response.total_tokens,
                response_time_ms=elapsed_ms,
                cost_estimate=platform_cost,
                platform_cost_estimate=platform_cost,
                customer_cost_estimate=0.0,
            )

        confidence = data.pop(CONFIDENCE_KEY, None)
        notes = data.pop(NOTES_KEY, None)
        values, unmatched = normalize_extracted(data, prompt.catalog)

        logger.info(
            "Extraction completed",
            extra={
                "context": {
                    "usage_log_id": str(attempt.id),
                    "location_id": location_id,
                    "conversation_id": conversation_id,
                    "fields_returned": len(values),
                    "total_tokens": response.total_tokens,
                    "response_time_ms": elapsed_ms,
                }
            },
        )
        return Result.success(
            ExtractionResult(
                usage_log_id=attempt.id,
                values=values,
                model=response.model,
                input_tokens=response.input_tokens,
                output_tokens=response.output_tokens,
                total_tokens=response.total_tokens,
                response_time_ms=elapsed_ms,
                platform_cost=platform_cost,
                is_agency_key=credentials.is_agency_key,
                confidence=confidence,
                notes=notes,
                unmatched_keys=unmatched,
            )
        )


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)
