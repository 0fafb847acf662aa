from typing import Any, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from extractor.config import settings
from extractor.database import SessionLocal, get_db
from extractor.dependencies import get_pipeline
from extractor.logging_config import get_logger
from extractor.schemas.webhook import WebhookResponse
from extractor.services.ingest_service import ingest_webhook
from extractor.services.pipeline_service import ExtractionPipeline

logger = get_logger("webhook")

router = APIRouter()


def _run_pipeline_in_background(
    pipeline: ExtractionPipeline,
    conversation_id: str,
    location_id: Optional[str],
    record_id,
) -> None:
    db = SessionLocal()
    try:
        pipeline.run(db, conversation_id, location_id, record_id=record_id)
    except Exception as exc:
        logger.error(
            f"Background extraction failed: {exc}",
            extra={"context": {"conversation_id": conversation_id, "record_id": str(record_id)}},
        )
    finally:
        db.close()


def _run_pipeline_inline(
    db: Session,
    pipeline: ExtractionPipeline,
    conversation_id: str,
    location_id: Optional[str],
    record_id,
) -> dict:
    try:
        result = pipeline.run(db, conversation_id, location_id, record_id=record_id)
    except Exception as exc:
        logger.error(
            f"Extraction crashed: {exc}",
            extra={"context": {"conversation_id": conversation_id, "record_id": str(record_id)}},
        )
        return {"success": False, "status": "error", "error": str(exc), "error_code": "unknown"}

    if result.ok:
        return {"success": True, "status": result.value.status, "stages": result.value.stages}
    return {
        "success": False,
        "status": "failed",
        "error": result.error,
        "error_code": result.error_code,
        "stages": (result.detail or {}).get("stages", {}),
    }


@router.post("/webhook/conversations", response_model=WebhookResponse, response_model_by_alias=True)
def conversation_webhook(
    background_tasks: BackgroundTasks,
    payload: Any = Body(default=None),
    db: Session = Depends(get_db),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    """Store a CRM conversation event and trigger extraction for inbound chat messages."""
    result = ingest_webhook(db, payload, settings.extraction_message_types)
    if not result.ok:
        return JSONResponse(status_code=result.http_status(), content=result.to_error_body())

    outcome = result.value
    response = WebhookResponse(
        success=True,
        record_id=outcome.record_id,
        message_id=outcome.message_id,
        conversation_id=outcome.conversation_id,
        extraction_triggered=outcome.extraction_eligible,
        duplicate=outcome.duplicate,
        route=outcome.route,
    )

    if not outcome.extraction_eligible:
        return response

    if settings.extraction_mode == "background":
        background_tasks.add_task(
            _run_pipeline_in_background,
            pipeline,
            outcome.conversation_id,
            outcome.location_id,
            outcome.record_id,
        )
        return response

    response.extraction = _run_pipeline_inline(
        db,
        pipeline,
        outcome.conversation_id,
        outcome.location_id,
        outcome.record_id,
    )
    return response
