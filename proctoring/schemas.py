from pydantic import BaseModel, ConfigDict, Field # type: ignore
from typing import Any, Dict, Optional, List
from datetime import datetime

from .models import EventType

class CreateSessionRequest(BaseModel):
    candidate_name: Optional[str] = None

class SessionResponse(BaseModel):
    id: str
    candidate_name: Optional[str] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    recording_ref: Optional[str] = None
    integrity_score: Optional[int] = None

class SessionPatchRequest(BaseModel):
    # Only these fields may be changed after creation
    model_config = ConfigDict(extra="forbid")

    recording_ref: Optional[str] = None
    end_time: Optional[datetime] = None
    candidate_name: Optional[str] = None
    integrity_score: Optional[int] = Field(default=None, ge=0, le=100)

class EventIn(BaseModel):
    offset_ms: int = Field(ge=0)
    event_type: EventType
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    client_event_id: Optional[str] = None

class EventBatchRequest(BaseModel):
    events: List[EventIn]

class EventBatchResponse(BaseModel):
    inserted: int

class EventResponse(BaseModel):
    id: Optional[str] = None
    offset_ms: int
    event_type: str
    confidence: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None
    created_at: datetime

class SessionWithEventsResponse(SessionResponse):
    events: List[EventResponse]

class DeductionRow(BaseModel):
    type: str
    count: int
    deduction: int

class IntegrityResponse(BaseModel):
    score: int
    breakdown: List[DeductionRow]

class ReportSession(SessionResponse):
    duration_ms: int

class ReportResponse(BaseModel):
    session: ReportSession
    counts: Dict[str, int]
    integrity: IntegrityResponse
    phone_detected: bool
    multiple_faces: bool
    sample_limit: int
    event_sample: List[EventResponse]
