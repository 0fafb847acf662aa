"""Extraction pipeline: transcript -> prompt -> billing gate -> LLM -> contact merge -> charge.

Each stage records its own status on the outcome. Nothing is rolled back
across stages: a failed contact update leaves the succeeded usage log in
place, and a failed charge leaves the merged contact in place.
"""

from dataclasses import asdict, dataclass, field
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from extractor.logging_config import LoggerAdapter, get_logger
from extractor.models import LocationConfig
from extractor.services.billing_service import BillingAccountant
from extractor.services.contact_merge_service import merge_contact
from extractor.services.conversation_service import assemble_transcript
from extractor.services.extraction_service import ExtractionInvoker
from extractor.services.ghl_client import GHLClient
from extractor.services.ingest_service import mark_processed
from extractor.services.prompt_service import build_prompt
from extractor.services.result import ErrorKind, Result
from extractor.services.token_service import TokenLifecycleManager

logger = get_logger("pipeline")

STAGE_OK = "ok"
STAGE_SKIPPED = "skipped"
STAGE_FAILED = "failed"
STAGE_EMPTY = "empty"


@dataclass
class PipelineOutcome:
    conversation_id: str
    location_id: Optional[str] = None
    contact_id: Optional[str] = None
    status: str = "pending"
    usage_log_id: Optional[str] = None
    extracted: Optional[dict] = None
    updated_fields: list = field(default_factory=list)
    skipped_fields: list = field(default_factory=list)
    charge_id: Optional[str] = None
    stages: dict = field(default_factory=dict)
    error: Optional[str] = None
    error_code: Optional[str] = None
    detail: Optional[object] = None

    def to_dict(self) -> dict:
        return asdict(self)


class ExtractionPipeline:
    def __init__(
        self,
        ghl_client: GHLClient,
        token_manager: TokenLifecycleManager,
        invoker: ExtractionInvoker,
        billing: BillingAccountant,
        history_limit: int = 20,
        refresh_threshold_hours: float = 1.0,
    ):
        self.ghl_client = ghl_client
        self.token_manager = token_manager
        self.invoker = invoker
        self.billing = billing
        self.history_limit = history_limit
        self.refresh_threshold_hours = refresh_threshold_hours

    def run(
        self,
        db: Session,
        conversation_id: str,
        location_id: Optional[str] = None,
        record_id=None,
    ) -> Result[PipelineOutcome]:
        """Run one extraction for a conversation and close out the triggering message."""
        outcome = PipelineOutcome(conversation_id=conversation_id, location_id=location_id)
        log = LoggerAdapter(logger, {"conversation_id": conversation_id, "record_id": str(record_id or "")})
        marked = False

        def close_message(error: Optional[str]) -> None:
            nonlocal marked
            if record_id is not None and not marked:
                mark_processed(db, record_id, error)
                marked = True

        try:
            result = self._run_stages(db, outcome, log, close_message)
        except Exception as exc:
            db.rollback()
            log.exception("Pipeline crashed")
            close_message(f"Pipeline error: {exc}")
            raise

        close_message(None if result.ok else outcome.error)
        if not result.ok:
            result.detail = outcome.to_dict()
            return result
        return Result.success(outcome)

    def _fail(self, outcome: PipelineOutcome, stage: str, failure: Result, log) -> Result:
        outcome.stages[stage] = STAGE_FAILED
        outcome.status = "failed"
        outcome.error = failure.error
        outcome.error_code = failure.error_code
        outcome.detail = failure.detail
        log.warning(
            f"Pipeline stage {stage} failed: {failure.error}",
            context={"error_code": failure.error_code, "upstream_status": failure.status_code},
        )
        return Result.failure(failure.error, failure.error_code, status_code=failure.status_code)

    def _run_stages(self, db: Session, outcome: PipelineOutcome, log, close_message) -> Result:
        transcript = assemble_transcript(db, outcome.conversation_id, outcome.location_id, self.history_limit)
        if transcript.is_empty:
            outcome.stages["assemble"] = STAGE_EMPTY
            outcome.status = "no_messages"
            log.info("No messages to extract from")
            return Result.success(outcome)
        outcome.stages["assemble"] = STAGE_OK
        outcome.location_id = transcript.location_id
        outcome.contact_id = transcript.contact_id
        log.extra.update({"location_id": outcome.location_id, "contact_id": outcome.contact_id})

        config = (
            db.query(LocationConfig)
            .filter(LocationConfig.ghl_account_id == outcome.location_id, LocationConfig.is_active.is_(True))
            .first()
        )
        if config is None:
            return self._fail(
                outcome,
                "config",
                Result.failure(f"No active configuration for location {outcome.location_id}", ErrorKind.CONFIG_MISSING),
                log,
            )
        outcome.stages["config"] = STAGE_OK

        prompt = build_prompt(db, config)
        if not prompt.has_fields:
            outcome.stages["prompt"] = STAGE_SKIPPED
            outcome.status = "no_fields"
            log.info("No extraction fields configured, skipping LLM call")
            return Result.success(outcome)
        outcome.stages["prompt"] = STAGE_OK

        if not outcome.contact_id:
            return self._fail(
                outcome,
                "contact",
                Result.failure("Conversation has no contact id yet", ErrorKind.VALIDATION),
                log,
            )

        decision = self.billing.evaluate(db, config)
        if not decision.ok:
            return self._fail(outcome, "billing", decision, log)
        decision = decision.value
        outcome.stages["billing"] = STAGE_OK

        token = self.token_manager.get_valid_access_token(db, config, self.refresh_threshold_hours)
        if not token.ok:
            return self._fail(outcome, "token", token, log)
        outcome.stages["token"] = STAGE_OK

        extraction = self.invoker.run(
            db,
            transcript=transcript,
            prompt=prompt,
            location_id=outcome.location_id,
            conversation_id=outcome.conversation_id,
            agency_ghl_id=config.agency_ghl_id,
        )
        if not extraction.ok:
            if extraction.detail and "usage_log_id" in extraction.detail:
                outcome.usage_log_id = extraction.detail["usage_log_id"]
            return self._fail(outcome, "extraction", extraction, log)
        extraction = extraction.value
        outcome.stages["extraction"] = STAGE_OK
        outcome.usage_log_id = str(extraction.usage_log_id)
        outcome.extracted = extraction.values

        merge = merge_contact(
            self.ghl_client,
            token.value,
            outcome.contact_id,
            extraction.values,
            prompt.catalog,
        )
        merge_failure = None
        if merge.ok:
            outcome.stages["merge"] = STAGE_OK
            outcome.updated_fields = merge.value.updated_fields
            outcome.skipped_fields = merge.value.skipped_fields
            outcome.status = "completed"
        else:
            merge_failure = self._fail(outcome, "merge", merge, log)

        # the message must be closed before a charge id can exist for it
        close_message(outcome.error)

        if decision.is_overage:
            charge = self.billing.charge(
                db,
                decision,
                extraction.usage_log_id,
                conversation_id=outcome.conversation_id,
                is_agency_key=extraction.is_agency_key,
            )
            if charge.ok:
                outcome.charge_id = charge.value
                outcome.stages["charge"] = STAGE_OK
            else:
                outcome.stages["charge"] = STAGE_FAILED
                log.error(
                    f"Overage charge failed: {charge.error}",
                    context={"usage_log_id": outcome.usage_log_id, "upstream_status": charge.status_code},
                )
        else:
            outcome.stages["charge"] = STAGE_SKIPPED

        customer_cost = self.billing.customer_cost(decision, extraction.is_agency_key) if outcome.charge_id else 0.0
        try:
            self.billing.record_usage(db, outcome.location_id, extraction.total_tokens, customer_cost)
            outcome.stages["usage"] = STAGE_OK
        except SQLAlchemyError as exc:
            db.rollback()
            outcome.stages["usage"] = STAGE_FAILED
            log.error(f"Failed to record monthly usage: {exc}")

        if merge_failure is not None:
            return merge_failure

        log.info(
            "Pipeline completed",
            context={"updated_fields": outcome.updated_fields, "charge_id": outcome.charge_id},
        )
        return Result.success(outcome)
