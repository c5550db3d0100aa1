"""
Tests for the debounce/persistence engine and signal classes
"""

import pytest

from proctoring.debounce import DebounceEngine, SignalClass
from proctoring.models import Detection, EventType
from proctoring.signals import (
    LOOKING_AWAY,
    MULTIPLE_FACES,
    NO_FACE,
    FaceObservation,
    default_signal_classes,
    face_detections,
    face_signal_classes,
)


def phone_class(persist_ms=1000, cooldown_ms=5000, min_confidence=0.5):
    return SignalClass(
        name="phone",
        event_type=EventType.PHONE_DETECTED,
        labels=frozenset({"cell phone", "phone"}),
        min_confidence=min_confidence,
        persist_ms=persist_ms,
        cooldown_ms=cooldown_ms,
    )


def phone(score=0.9, bbox=None):
    return Detection(label="cell phone", score=score, bbox=bbox)


def run(engine, timeline):
    """Feed (t, detections) pairs and collect (t, fired) for ticks that fired."""
    fired = []
    for t, detections in timeline:
        out = engine.process(detections, t)
        if out:
            fired.append((t, out))
    return fired


class TestPersistence:

    def test_fires_exactly_once_at_persist_duration(self):
        engine = DebounceEngine([phone_class(persist_ms=1000)])
        fired = run(engine, [(t, [phone()]) for t in (0, 250, 500, 750, 1000)])

        assert [t for t, _ in fired] == [1000]
        assert len(fired[0][1]) == 1
        assert fired[0][1][0].event_type == EventType.PHONE_DETECTED

    def test_no_fire_before_persist_duration(self):
        engine = DebounceEngine([phone_class(persist_ms=1000)])
        fired = run(engine, [(t, [phone()]) for t in (0, 500, 999)])
        assert fired == []

    def test_interruption_restarts_timer(self):
        engine = DebounceEngine([phone_class(persist_ms=1000)])
        timeline = [
            (0, [phone()]),
            (500, [phone()]),
            (990, []),             # dropped just before the window closes
            (1000, [phone()]),
            (1500, [phone()]),
            (1999, [phone()]),
            (2000, [phone()]),
        ]
        fired = run(engine, timeline)
        assert [t for t, _ in fired] == [2000]

    def test_low_confidence_counts_as_absent(self):
        engine = DebounceEngine([phone_class(persist_ms=1000, min_confidence=0.5)])
        timeline = [(0, [phone(0.9)]), (600, [phone(0.3)]), (1000, [phone(0.9)]), (1600, [phone(0.9)])]
        assert run(engine, timeline) == []
        assert engine.state("phone").first_above_at == 1000

    def test_zero_persist_fires_on_first_detection(self):
        engine = DebounceEngine([phone_class(persist_ms=0)])
        fired = run(engine, [(42, [phone()])])
        assert [t for t, _ in fired] == [42]
        assert fired[0][1][0].persisted_ms == 0

    def test_window_resets_after_firing(self):
        engine = DebounceEngine([phone_class(persist_ms=1000, cooldown_ms=0)])
        fired = run(engine, [(t, [phone()]) for t in range(0, 3001, 500)])
        assert [t for t, _ in fired] == [1000, 2000, 3000]

    def test_label_outside_vocabulary_never_fires(self):
        engine = DebounceEngine([phone_class(persist_ms=0)])
        fired = run(engine, [(t, [Detection(label="giraffe", score=1.0)]) for t in range(0, 5000, 100)])
        assert fired == []

    def test_all_labels_of_a_class_count(self):
        engine = DebounceEngine([phone_class(persist_ms=1000)])
        timeline = [(0, [phone()]), (500, [Detection(label="phone", score=0.8)]), (1000, [phone()])]
        assert [t for t, _ in run(engine, timeline)] == [1000]


class TestCooldown:

    def test_two_fires_within_cooldown_emit_once(self):
        engine = DebounceEngine([phone_class(persist_ms=0, cooldown_ms=5000)])
        fired = run(engine, [(t, [phone()]) for t in (0, 100, 2000, 4999)])
        assert [t for t, _ in fired] == [0]

    def test_fires_again_after_cooldown(self):
        engine = DebounceEngine([phone_class(persist_ms=0, cooldown_ms=5000)])
        fired = run(engine, [(t, [phone()]) for t in (0, 2500, 5000)])
        assert [t for t, _ in fired] == [0, 5000]

    def test_cooldown_survives_signal_gap(self):
        engine = DebounceEngine([phone_class(persist_ms=0, cooldown_ms=5000)])
        timeline = [(0, [phone()]), (1000, []), (2000, [phone()]), (3000, [phone()])]
        assert [t for t, _ in run(engine, timeline)] == [0]

    def test_classes_cool_down_independently(self):
        book = SignalClass(
            name="book",
            event_type=EventType.BOOK_DETECTED,
            labels=frozenset({"book"}),
            min_confidence=0.5,
            persist_ms=0,
            cooldown_ms=5000,
        )
        engine = DebounceEngine([phone_class(persist_ms=0), book])
        out = engine.process([phone(), Detection(label="book", score=0.7)], 0)
        assert [f.event_type for f in out] == [EventType.PHONE_DETECTED, EventType.BOOK_DETECTED]

        out = engine.process([phone(), Detection(label="book", score=0.7)], 1000)
        assert out == []

    def test_extra_devices_share_one_cooldown(self):
        engine = DebounceEngine(default_signal_classes())
        device = lambda label: [Detection(label=label, score=0.9)]  # noqa: E731
        timeline = [
            (0, device("laptop")),
            (1000, device("laptop")),
            (1100, device("tv")),
            (2100, device("tv")),
            (2200, device("keyboard")),
            (3200, device("keyboard")),
            (11_000, device("mouse")),
            (12_000, device("mouse")),
        ]

        fired = [(t, f.event_type) for t, out in run(engine, timeline) for f in out]

        assert fired == [(1000, EventType.EXTRA_DEVICE), (12_000, EventType.EXTRA_DEVICE)]

    def test_same_event_fires_once_per_tick(self):
        engine = DebounceEngine(default_signal_classes({"laptop": {"persist_ms": 0}, "tv": {"persist_ms": 0}}))
        out = engine.process([Detection(label="laptop", score=0.9), Detection(label="tv", score=0.9)], 0)
        assert [f.signal.name for f in out] == ["laptop"]

    def test_explicit_cooldown_group_splits_event_type(self):
        classes = [
            SignalClass(
                name=label,
                event_type=EventType.EXTRA_DEVICE,
                labels=frozenset({label}),
                persist_ms=0,
                cooldown_group=label,
            )
            for label in ("laptop", "tv")
        ]
        engine = DebounceEngine(classes)

        assert len(engine.process([Detection(label="laptop", score=0.9)], 0)) == 1
        assert len(engine.process([Detection(label="tv", score=0.9)], 100)) == 1

    def test_cooldown_key_defaults_to_event_type(self):
        assert phone_class().cooldown_key == "PHONE_DETECTED"


class TestFiredMetadata:

    def test_best_detection_wins(self):
        engine = DebounceEngine([phone_class(persist_ms=0)])
        out = engine.process([phone(0.6, (1, 1, 5, 5)), phone(0.95, (10, 10, 5, 5)), phone(0.7)], 0)

        meta = out[0].metadata()
        assert meta["score"] == 0.95
        assert meta["bbox"] == [10, 10, 5, 5]
        assert meta["label"] == "cell phone"

    def test_ties_keep_first_seen(self):
        engine = DebounceEngine([phone_class(persist_ms=0)])
        out = engine.process([phone(0.8, (1, 2, 3, 4)), phone(0.8, (9, 9, 9, 9))], 0)
        assert out[0].metadata()["bbox"] == [1, 2, 3, 4]

    def test_persisted_duration_and_tags(self):
        engine = DebounceEngine([phone_class(persist_ms=1000)])
        tagged = Detection(label="cell phone", score=0.9, extra={"source": "object", "model": "yolo"})
        engine.process([tagged], 0)
        out = engine.process([tagged], 1200)

        meta = out[0].metadata()
        assert meta["persisted_ms"] == 1200
        assert meta["source"] == "object"
        assert meta["model"] == "yolo"
        assert "bbox" not in meta


class TestEngineState:

    def test_duplicate_class_names_rejected(self):
        with pytest.raises(ValueError):
            DebounceEngine([phone_class(), phone_class()])

    def test_reset_clears_timers(self):
        engine = DebounceEngine([phone_class(persist_ms=0, cooldown_ms=5000)])
        engine.process([phone()], 0)
        assert engine.state("phone").last_fired_at == 0

        engine.reset()

        assert engine.state("phone").last_fired_at is None
        assert engine.state("phone").first_above_at is None
        assert len(engine.process([phone()], 10)) == 1

    def test_engines_do_not_share_state(self):
        a = DebounceEngine([phone_class(persist_ms=0)])
        b = DebounceEngine([phone_class(persist_ms=0)])
        a.process([phone()], 0)
        assert b.state("phone").last_fired_at is None


class TestFaceSignals:

    def test_no_face(self):
        dets = face_detections(FaceObservation(faces=0))
        assert [d.label for d in dets] == [NO_FACE]

    def test_single_face_reports_gaze_deviation(self):
        dets = face_detections(FaceObservation(faces=1, yaw=0.2, pitch=0.5))
        assert [d.label for d in dets] == [LOOKING_AWAY]
        assert dets[0].score == 0.5

    def test_multiple_faces(self):
        dets = face_detections(FaceObservation(faces=3))
        multi = [d for d in dets if d.label == MULTIPLE_FACES]
        assert len(multi) == 1
        assert multi[0].extra["faces"] == 3

    def test_no_face_fires_after_ten_seconds(self):
        engine = DebounceEngine(face_signal_classes())
        empty = face_detections(FaceObservation(faces=0))
        fired = run(engine, [(t, empty) for t in range(0, 10_001, 1000)])

        assert [t for t, _ in fired] == [10_000]
        assert fired[0][1][0].event_type == EventType.NO_FACE

    def test_looking_away_needs_threshold(self):
        engine = DebounceEngine(face_signal_classes())
        frontal = face_detections(FaceObservation(faces=1, yaw=0.1, pitch=0.1))
        away = face_detections(FaceObservation(faces=1, yaw=0.8, pitch=0.0))

        assert run(engine, [(t, frontal) for t in range(0, 6000, 500)]) == []
        fired = run(engine, [(t, away) for t in range(6000, 11_001, 500)])
        assert [t for t, _ in fired] == [11_000]
        assert fired[0][1][0].event_type == EventType.FOCUS_LOST

    def test_face_reappearing_restarts_no_face_window(self):
        engine = DebounceEngine(face_signal_classes())
        empty = face_detections(FaceObservation(faces=0))
        present = face_detections(FaceObservation(faces=1))
        timeline = [(t, empty) for t in range(0, 9001, 1000)]
        timeline.append((9500, present))
        timeline += [(t, empty) for t in range(10_000, 19_001, 1000)]

        assert run(engine, timeline) == []

    def test_multiple_faces_rate_limited(self):
        engine = DebounceEngine(face_signal_classes())
        crowd = face_detections(FaceObservation(faces=2))
        fired = run(engine, [(t, crowd) for t in range(0, 20_001, 1000)])

        multi = [t for t, out in fired if any(f.event_type == EventType.MULTIPLE_FACES for f in out)]
        assert multi == [0, 10_000, 20_000]


class TestDefaultClasses:

    def test_default_classes_cover_every_event_type(self):
        types = {c.event_type for c in default_signal_classes()}
        assert types == set(EventType)

    def test_overrides_apply(self):
        classes = {c.name: c for c in default_signal_classes({"phone": {"persist_ms": 0}})}
        assert classes["phone"].persist_ms == 0
        assert classes["book"].persist_ms == 1000

    def test_unknown_override_rejected(self):
        with pytest.raises(ValueError):
            default_signal_classes({"unicorn": {"persist_ms": 0}})
