from extractor.schemas.extraction import (
    ExtractionRunRequest,
    ExtractionRunResponse,
    HistoryResponse,
    TokenSweepResponse,
)
from extractor.schemas.webhook import ConversationWebhookPayload, WebhookResponse

__all__ = [
    "ConversationWebhookPayload",
    "WebhookResponse",
    "HistoryResponse",
    "ExtractionRunRequest",
    "ExtractionRunResponse",
    "TokenSweepResponse",
]
