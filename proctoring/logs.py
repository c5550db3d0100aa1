"""
Proctoring Logger - logging setup and structured proctoring log lines
"""

import logging
import sys
from typing import Any, Dict, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(__name__)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """
    Configure the root logger with a console handler.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR)

    Returns:
        The root logger
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    root_logger.handlers = []

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
    root_logger.addHandler(handler)
    return root_logger


def log_proctor_event(
    session_id: str,
    event_type: str,
    details: Optional[Dict[str, Any]] = None,
    level: str = "info"
):
    """
    Log a proctoring event as a single `[PROCTOR]` line.

    Args:
        session_id: Proctoring session ID
        event_type: Kind of log entry (session_start, event_fired, flush_failed, ...)
        details: Optional key/value details appended to the line
        level: Log level (debug, info, warning, error)
    """
    message = f"[PROCTOR] session={session_id} event={event_type}"
    if details:
        message += " " + " ".join(f"{k}={v}" for k, v in details.items())

    if level == "debug":
        logger.debug(message)
    elif level == "warning":
        logger.warning(message)
    elif level == "error":
        logger.error(message)
    else:
        logger.info(message)


def log_session_start(session_id: str, candidate_name: Optional[str]):
    """Log session start"""
    log_proctor_event(session_id, "session_start", {"candidate": candidate_name or "-"})


def log_session_end(session_id: str, events_buffered: int):
    """Log session end"""
    log_proctor_event(session_id, "session_end", {"pending_events": events_buffered})


def log_signal_fired(session_id: str, event_type: str, label: str, score: float, persisted_ms: float):
    """Log when the debounce engine emits an event"""
    log_proctor_event(
        session_id,
        "signal_fired",
        {
            "type": event_type,
            "label": label,
            "score": round(score, 3),
            "persisted_ms": int(persisted_ms),
        },
        level="warning",
    )


def log_flush_failed(session_id: str, batch_size: int, reason: str):
    """Log a failed uplink flush (batch is re-buffered)"""
    log_proctor_event(
        session_id,
        "flush_failed",
        {"batch": batch_size, "reason": reason},
        level="warning",
    )
