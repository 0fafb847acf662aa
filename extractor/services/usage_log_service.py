"""Two-phase usage log: a pending row before the LLM call, one terminal write after."""

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator, Optional

from sqlalchemy.orm import Session

from extractor.logging_config import get_logger
from extractor.models import UsageLog
from extractor.services.state_machine import UsageLogState, fail, is_terminal, succeed

logger = get_logger("usage_log")


class UsageAttempt:
    """Handle on one pending usage log row. Finalized exactly once."""

    def __init__(self, db: Session, log: UsageLog):
        self.db = db
        self.log = log
        self.state = UsageLogState(log.status)

    @property
    def id(self):
        return self.log.id

    @property
    def is_finalized(self) -> bool:
        return is_terminal(self.state)

    def succeed(
        self,
        *,
        model: str,
        input_tokens: int,
        output_tokens: int,
        total_tokens: int,
        response_time_ms: int,
        cost_estimate: float = 0.0,
        platform_cost_estimate: float = 0.0,
        customer_cost_estimate: float = 0.0,
    ) -> None:
        self.state = succeed(self.state)
        self._write(
            model=model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            total_tokens=total_tokens,
            response_time_ms=response_time_ms,
            cost_estimate=cost_estimate,
            platform_cost_estimate=platform_cost_estimate,
            customer_cost_estimate=customer_cost_estimate,
            success=True,
            error_message=None,
        )

    def fail(
        self,
        error_message: str,
        *,
        model: Optional[str] = None,
        input_tokens: int = 0,
        output_tokens: int = 0,
        total_tokens: int = 0,
        response_time_ms: Optional[int] = None,
        platform_cost_estimate: float = 0.0,
    ) -> None:
        self.state = fail(self.state)
        values = {
            "input_tokens": input_tokens,
            "output_tokens": output_tokens,
            "total_tokens": total_tokens,
            "response_time_ms": response_time_ms,
            "platform_cost_estimate": platform_cost_estimate,
            "cost_estimate": platform_cost_estimate,
            "success": False,
            "error_message": error_message or "Extraction failed",
        }
        if model:
            values["model"] = model
        self._write(**values)

    def _write(self, **values) -> None:
        for key, value in values.items():
            setattr(self.log, key, value)
        self.log.status = self.state.value
        self.log.finalized_at = datetime.now(timezone.utc)
        self.db.commit()
        logger.info(
            f"Usage log {self.state.value}",
            extra={
                "context": {
                    "usage_log_id": str(self.log.id),
                    "total_tokens": self.log.total_tokens,
                    "error": self.log.error_message,
                }
            },
        )


def start_attempt(
    db: Session,
    *,
    location_id: str,
    conversation_id: Optional[str],
    model: str,
    agency_ghl_id: Optional[str] = None,
    openai_key_used: Optional[str] = None,
) -> UsageAttempt:
    log = UsageLog(
        id=uuid.uuid4(),
        location_id=location_id,
        agency_ghl_id=agency_ghl_id,
        conversation_id=conversation_id,
        model=model,
        input_tokens=0,
        output_tokens=0,
        total_tokens=0,
        cost_estimate=0,
        platform_cost_estimate=0,
        customer_cost_estimate=0,
        extraction_type="data_extraction",
        status=UsageLogState.PENDING.value,
        success=False,
        openai_key_used=openai_key_used,
        created_at=datetime.now(timezone.utc),
    )
    db.add(log)
    db.commit()
    return UsageAttempt(db, log)


@contextmanager
def usage_attempt(db: Session, **kwargs) -> Iterator[UsageAttempt]:
    """Open a pending usage log and guarantee it is finalized on every exit path.

    Exceptions raised inside the block finalize the row as failed and propagate.
    """
    attempt = start_attempt(db, **kwargs)
    try:
        yield attempt
    except Exception as exc:
        if not attempt.is_finalized:
            attempt.fail(str(exc) or exc.__class__.__name__)
        raise
    if not attempt.is_finalized:
        attempt.fail("Extraction attempt ended without a result")
