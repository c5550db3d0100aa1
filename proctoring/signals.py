"""
Signal classes monitored during a session, and the mapping from face model
output into the common detection stream.
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from .debounce import SignalClass
from .models import Detection, EventType

NO_FACE = "no_face"
LOOKING_AWAY = "looking_away"
MULTIPLE_FACES = "multiple_faces"

FACE_SOURCE = "face"
FACE_MODEL = "mediapipe-face-mesh"

# Head yaw/pitch deviation (0..1) above which the candidate is looking away
GAZE_THRESHOLD = 0.35


@dataclass
class FaceObservation:
    faces: int
    # Deviation scores of the primary face, 0 = frontal
    yaw: float = 0.0
    pitch: float = 0.0
    bbox: Optional[tuple] = None


def face_detections(obs: FaceObservation) -> List[Detection]:
    """Express a face observation as detections the debounce engine understands."""
    tags = {"source": FACE_SOURCE, "model": FACE_MODEL}
    if obs.faces <= 0:
        return [Detection(label=NO_FACE, score=1.0, extra=tags)]

    away = max(obs.yaw, obs.pitch)
    out = [
        Detection(
            label=LOOKING_AWAY,
            score=min(1.0, max(0.0, away)),
            bbox=obs.bbox,
            extra={**tags, "yaw": round(obs.yaw, 3), "pitch": round(obs.pitch, 3)},
        )
    ]
    if obs.faces >= 2:
        out.append(Detection(label=MULTIPLE_FACES, score=1.0, extra={**tags, "faces": obs.faces}))
    return out


def face_signal_classes() -> List[SignalClass]:
    return [
        SignalClass(
            name=NO_FACE,
            event_type=EventType.NO_FACE,
            labels=frozenset({NO_FACE}),
            min_confidence=0.5,
            persist_ms=10_000,
            cooldown_ms=60_000,
        ),
        SignalClass(
            name=LOOKING_AWAY,
            event_type=EventType.FOCUS_LOST,
            labels=frozenset({LOOKING_AWAY}),
            min_confidence=GAZE_THRESHOLD,
            persist_ms=5_000,
            cooldown_ms=60_000,
        ),
        # face count >= 2 is a boolean stream; only the cooldown applies
        SignalClass(
            name=MULTIPLE_FACES,
            event_type=EventType.MULTIPLE_FACES,
            labels=frozenset({MULTIPLE_FACES}),
            min_confidence=0.5,
            persist_ms=0,
            cooldown_ms=10_000,
        ),
    ]


def object_signal_classes(cooldown_ms: float = 10_000) -> List[SignalClass]:
    """COCO-vocabulary prohibited objects."""
    # one EXTRA_DEVICE cooldown across all four labels
    extra_device = [
        SignalClass(
            name=label,
            event_type=EventType.EXTRA_DEVICE,
            labels=frozenset({label}),
            min_confidence=0.6,
            persist_ms=1000,
            cooldown_ms=cooldown_ms,
        )
        for label in ("laptop", "tv", "keyboard", "mouse")
    ]
    return [
        SignalClass(
            name="phone",
            event_type=EventType.PHONE_DETECTED,
            labels=frozenset({"cell phone", "phone"}),
            min_confidence=0.45,
            persist_ms=500,
            cooldown_ms=cooldown_ms,
        ),
        SignalClass(
            name="book",
            event_type=EventType.BOOK_DETECTED,
            labels=frozenset({"book"}),
            min_confidence=0.6,
            persist_ms=1000,
            cooldown_ms=cooldown_ms,
        ),
    ] + extra_device


def default_signal_classes(overrides: Optional[Dict[str, Dict[str, float]]] = None) -> List[SignalClass]:
    """
    Face and object classes with optional per-class tuning.

    Args:
        overrides: {class name: {"min_confidence"|"persist_ms"|"cooldown_ms": value}}
    """
    classes = face_signal_classes() + object_signal_classes()
    if not overrides:
        return classes

    known = {c.name for c in classes}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown signal classes: {sorted(unknown)}")
    return [replace(c, **overrides[c.name]) if c.name in overrides else c for c in classes]
