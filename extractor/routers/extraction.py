from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from extractor.config import settings
from extractor.database import get_db
from extractor.dependencies import get_pipeline, require_admin_token
from extractor.logging_config import get_logger
from extractor.schemas.extraction import (
    ExtractionRunRequest,
    ExtractionRunResponse,
    HistoryResponse,
    TranscriptTurn,
)
from extractor.services.conversation_service import assemble_transcript
from extractor.services.pipeline_service import ExtractionPipeline

logger = get_logger("extraction_router")

router = APIRouter(dependencies=[Depends(require_admin_token)])


@router.get("/conversations/{conversation_id}/history", response_model=HistoryResponse)
def conversation_history(
    conversation_id: str,
    location_id: Optional[str] = None,
    db: Session = Depends(get_db),
):
    transcript = assemble_transcript(db, conversation_id, location_id, limit=settings.audit_history_limit)
    return HistoryResponse(
        success=True,
        status=transcript.status,
        conversation_id=conversation_id,
        location_id=transcript.location_id,
        contact_id=transcript.contact_id,
        message_count=len(transcript.messages),
        messages=[TranscriptTurn(**turn) for turn in transcript.messages],
        transcript=transcript.as_text(),
    )


@router.post("/extractions/run", response_model=ExtractionRunResponse)
def run_extraction(
    request: ExtractionRunRequest,
    db: Session = Depends(get_db),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    """Run the extraction pipeline for a conversation on demand."""
    logger.info(
        "Manual extraction requested",
        extra={"context": {"conversation_id": request.conversation_id, "location_id": request.location_id}},
    )
    result = pipeline.run(db, request.conversation_id, request.location_id)
    if not result.ok:
        return JSONResponse(status_code=result.http_status(), content=result.to_error_body())

    outcome = result.value
    return ExtractionRunResponse(
        success=True,
        status=outcome.status,
        conversation_id=outcome.conversation_id,
        location_id=outcome.location_id,
        contact_id=outcome.contact_id,
        usage_log_id=outcome.usage_log_id,
        extracted=outcome.extracted,
        updated_fields=outcome.updated_fields,
        skipped_fields=outcome.skipped_fields,
        stages=outcome.stages,
        charge_id=outcome.charge_id,
    )
