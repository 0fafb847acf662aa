from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from extractor.database import get_db
from extractor.dependencies import get_pipeline, require_admin_token
from extractor.schemas.extraction import TokenSweepResponse
from extractor.services.pipeline_service import ExtractionPipeline

router = APIRouter(dependencies=[Depends(require_admin_token)])


@router.post("/tokens/refresh", response_model=TokenSweepResponse)
def refresh_tokens(
    threshold_hours: Optional[float] = None,
    db: Session = Depends(get_db),
    pipeline: ExtractionPipeline = Depends(get_pipeline),
):
    """Refresh every credential expiring within the threshold (default: sweep threshold)."""
    report = pipeline.token_manager.sweep(db, threshold_hours)
    return TokenSweepResponse(success=True, **report)
