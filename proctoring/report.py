"""
Report Assembler - session metadata + scoring output + bounded timeline sample
"""

import logging
from datetime import datetime, timezone
from typing import List, Mapping, Optional

from .config import REPORT_SAMPLE_LIMIT
from .errors import SessionNotFoundError
from .models import Event, EventType, Session, sort_by_offset
from .schemas import (
    DeductionRow,
    EventResponse,
    IntegrityResponse,
    ReportResponse,
    ReportSession,
)
from .scoring import ScoringRule, compute_integrity, summarize_events

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    # Mongo hands back naive UTC datetimes
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def estimate_duration_ms(
    start_time: Optional[datetime],
    end_time: Optional[datetime],
    events: List[Event]
) -> int:
    """
    Session duration in milliseconds.

    Uses end - start when both are known, otherwise the last event offset
    (an abandoned session has no clean stop), otherwise 0.
    """
    if start_time and end_time:
        delta = _as_utc(end_time) - _as_utc(start_time)
        return max(0, int(delta.total_seconds() * 1000))
    return max((e.offset_ms for e in events), default=0)


def event_response(event: Event) -> EventResponse:
    return EventResponse(
        id=event.id,
        offset_ms=event.offset_ms,
        event_type=event.event_type,
        confidence=event.confidence,
        metadata=event.metadata,
        created_at=event.created_at,
    )


def assemble_report(
    session: Session,
    events: List[Event],
    rules: Optional[Mapping[str, ScoringRule]] = None,
    sample_limit: int = REPORT_SAMPLE_LIMIT,
) -> ReportResponse:
    ordered = sort_by_offset(events)
    counts = summarize_events(ordered)
    integrity = compute_integrity(counts, rules)

    return ReportResponse(
        session=ReportSession(
            id=session.id,
            candidate_name=session.candidate_name,
            start_time=session.start_time,
            end_time=session.end_time,
            recording_ref=session.recording_ref,
            integrity_score=integrity.score,
            duration_ms=estimate_duration_ms(session.start_time, session.end_time, ordered),
        ),
        counts=counts,
        integrity=IntegrityResponse(
            score=integrity.score,
            breakdown=[
                DeductionRow(type=d.event_type, count=d.count, deduction=d.deduction)
                for d in integrity.breakdown
            ],
        ),
        phone_detected=counts.get(EventType.PHONE_DETECTED.value, 0) > 0,
        multiple_faces=counts.get(EventType.MULTIPLE_FACES.value, 0) > 0,
        sample_limit=sample_limit,
        event_sample=[event_response(e) for e in ordered[:sample_limit]],
    )


async def build_session_report(
    session_id: str,
    sessions,
    events,
    rules: Optional[Mapping[str, ScoringRule]] = None,
    sample_limit: int = REPORT_SAMPLE_LIMIT,
) -> ReportResponse:
    """
    Load a session and its event log, assemble the report and cache the score.

    Args:
        session_id: Session to report on
        sessions: Session store
        events: Event store
        rules: Scoring rule table
        sample_limit: Maximum number of timeline events in the report

    Raises:
        SessionNotFoundError: if the session does not exist
    """
    session = await sessions.get(session_id)
    if session is None:
        raise SessionNotFoundError(session_id)

    log = await events.query(session_id)
    report = assemble_report(session, log, rules, sample_limit)

    await sessions.set_score(session_id, report.integrity.score)
    logger.info(f"Report for {session_id}: score={report.integrity.score} events={len(log)}")
    return report
