from typing import List, Optional

from pydantic import BaseModel


class TranscriptTurn(BaseModel):
    role: str
    content: str


class HistoryResponse(BaseModel):
    success: bool
    status: str
    conversation_id: str
    location_id: Optional[str] = None
    contact_id: Optional[str] = None
    message_count: int
    messages: List[TranscriptTurn]
    transcript: str


class ExtractionRunRequest(BaseModel):
    conversation_id: str
    location_id: Optional[str] = None


class ExtractionRunResponse(BaseModel):
    success: bool
    status: str
    conversation_id: str
    location_id: Optional[str] = None
    contact_id: Optional[str] = None
    usage_log_id: Optional[str] = None
    extracted: Optional[dict] = None
    updated_fields: List[str] = []
    skipped_fields: List[dict] = []
    stages: dict = {}
    charge_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


class TokenRefreshResult(BaseModel):
    config_id: str
    location_id: Optional[str] = None
    business_name: Optional[str] = None
    success: bool
    error: Optional[str] = None
    hours_until_expiry: Optional[float] = None


class TokenSweepResponse(BaseModel):
    success: bool
    refreshed: int
    total: int
    results: List[TokenRefreshResult]
