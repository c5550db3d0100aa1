from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field, field_validator


# Bump when the event type set changes
EVENT_TYPES_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventType(str, Enum):
    FOCUS_LOST = "FOCUS_LOST"
    NO_FACE = "NO_FACE"
    MULTIPLE_FACES = "MULTIPLE_FACES"
    PHONE_DETECTED = "PHONE_DETECTED"
    BOOK_DETECTED = "BOOK_DETECTED"
    EXTRA_DEVICE = "EXTRA_DEVICE"


class Session(BaseModel):
    id: Optional[str] = None
    candidate_name: Optional[str] = None
    start_time: datetime = Field(default_factory=utcnow)
    end_time: Optional[datetime] = None
    recording_ref: Optional[str] = None
    integrity_score: Optional[int] = None


class Event(BaseModel):
    id: Optional[str] = None
    session_id: str
    offset_ms: int = Field(ge=0)
    # Stored events are read back as plain strings so newer types survive older readers
    event_type: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    metadata: Optional[Dict[str, Any]] = None
    client_event_id: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)

    @field_validator("event_type", mode="before")
    @classmethod
    def _plain_event_type(cls, v):
        return v.value if isinstance(v, Enum) else v


class Detection(BaseModel):
    """One raw model output for a processed frame."""
    label: str
    score: float
    # x, y, w, h in pixels
    bbox: Optional[Tuple[float, float, float, float]] = None
    extra: Dict[str, Any] = Field(default_factory=dict)


def sort_by_offset(events: List[Event]) -> List[Event]:
    return sorted(events, key=lambda e: e.offset_ms)
