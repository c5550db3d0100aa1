"""
Debounce/Persistence Engine - turns per-frame detections into discrete events

A signal class fires only after it has been continuously detected above its
confidence threshold for its persistence window, and at most once per cooldown
window. Any frame where the class is absent restarts the window.
"""

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, Iterable, List, Optional

from .models import Detection, EventType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SignalClass:
    """
    Configuration of one monitored signal.

    Attributes:
        name: Class key (phone, book, no_face, ...)
        event_type: Event emitted when the class fires
        labels: Raw detector labels that count as this class
        min_confidence: Detections scoring below this are ignored
        persist_ms: Continuous presence required before firing (0 fires immediately)
        cooldown_ms: Minimum spacing between two fires sharing this class's cooldown key
        cooldown_group: Cooldown key, defaults to the event type so every class
            emitting the same event shares one cooldown
    """
    name: str
    event_type: EventType
    labels: FrozenSet[str]
    min_confidence: float = 0.6
    persist_ms: float = 1000.0
    cooldown_ms: float = 10_000.0
    cooldown_group: Optional[str] = None

    @property
    def cooldown_key(self) -> str:
        return self.cooldown_group or self.event_type.value

    def matches(self, detection: Detection) -> bool:
        return detection.label in self.labels and detection.score >= self.min_confidence


@dataclass
class SignalState:
    first_above_at: Optional[float] = None
    # None means the class has never fired in this session
    last_fired_at: Optional[float] = None


@dataclass
class FiredSignal:
    signal: SignalClass
    at_ms: float
    detection: Detection
    persisted_ms: float

    @property
    def event_type(self) -> EventType:
        return self.signal.event_type

    def metadata(self) -> Dict[str, object]:
        meta: Dict[str, object] = dict(self.detection.extra)
        meta["label"] = self.detection.label
        meta["score"] = self.detection.score
        if self.detection.bbox is not None:
            meta["bbox"] = list(self.detection.bbox)
        meta["persisted_ms"] = self.persisted_ms
        return meta


class DebounceEngine:
    """
    Persistence and cooldown gate shared by every detector.

    The engine holds no clock: each call to `process` carries the wall-clock
    time the frame was captured, so variable inference latency does not skew
    the windows. One engine belongs to exactly one active session.
    """

    def __init__(self, classes: Iterable[SignalClass]):
        self.classes: List[SignalClass] = list(classes)
        names = [c.name for c in self.classes]
        if len(names) != len(set(names)):
            raise ValueError(f"Duplicate signal class names: {names}")
        self._state: Dict[str, SignalState] = {c.name: SignalState() for c in self.classes}
        self._groups: Dict[str, List[str]] = {}
        for c in self.classes:
            self._groups.setdefault(c.cooldown_key, []).append(c.name)

    def state(self, name: str) -> SignalState:
        return self._state[name]

    def reset(self):
        """Discard all per-class timers."""
        for name in self._state:
            self._state[name] = SignalState()

    def _best_per_class(self, detections: Iterable[Detection]) -> Dict[str, Detection]:
        best: Dict[str, Detection] = {}
        for det in detections:
            for signal in self.classes:
                if not signal.matches(det):
                    continue
                prev = best.get(signal.name)
                # strict comparison keeps the first seen on ties
                if prev is None or det.score > prev.score:
                    best[signal.name] = det
        return best

    def process(self, detections: Iterable[Detection], now_ms: float) -> List[FiredSignal]:
        """
        Run one processing tick.

        Args:
            detections: Every raw detection produced for the frame
            now_ms: Capture timestamp of the frame, in milliseconds

        Returns:
            Signals that fired on this tick, in class configuration order
        """
        present = self._best_per_class(detections)
        fired: List[FiredSignal] = []

        for signal in self.classes:
            state = self._state[signal.name]
            det = present.get(signal.name)

            if det is None:
                state.first_above_at = None
                continue

            if state.first_above_at is None:
                state.first_above_at = now_ms

            persisted = now_ms - state.first_above_at
            cooled = state.last_fired_at is None or now_ms - state.last_fired_at >= signal.cooldown_ms
            if persisted >= signal.persist_ms and cooled:
                fired.append(FiredSignal(signal=signal, at_ms=now_ms, detection=det, persisted_ms=persisted))
                for name in self._groups[signal.cooldown_key]:
                    self._state[name].last_fired_at = now_ms
                state.first_above_at = now_ms
                logger.debug(f"Signal {signal.name} fired after {persisted:.0f}ms")

        return fired
