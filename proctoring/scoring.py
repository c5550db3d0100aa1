"""
Integrity Scorer - deterministic score from per-type event counts

Formula:
    score = 100 - sum(min(per_occurrence * count, cap)) over ruled types
    floored at 0.

Types without a rule are tallied but never deducted, so newer event types can
be stored before the rule table knows about them.
"""

import json
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Mapping, Optional

from .models import Event, EventType

logger = logging.getLogger(__name__)

BASE_SCORE = 100


@dataclass(frozen=True)
class ScoringRule:
    per_occurrence: int
    cap: int


@dataclass(frozen=True)
class Deduction:
    event_type: str
    count: int
    deduction: int


@dataclass(frozen=True)
class IntegrityResult:
    score: int
    breakdown: List[Deduction]

    def as_dict(self) -> Dict[str, object]:
        return {
            "score": self.score,
            "breakdown": [
                {"type": d.event_type, "count": d.count, "deduction": d.deduction}
                for d in self.breakdown
            ],
        }


DEFAULT_RULES: Dict[str, ScoringRule] = {
    EventType.FOCUS_LOST.value: ScoringRule(per_occurrence=2, cap=20),
    EventType.NO_FACE.value: ScoringRule(per_occurrence=5, cap=25),
    EventType.MULTIPLE_FACES.value: ScoringRule(per_occurrence=15, cap=30),
    EventType.PHONE_DETECTED.value: ScoringRule(per_occurrence=10, cap=30),
    EventType.BOOK_DETECTED.value: ScoringRule(per_occurrence=5, cap=20),
    EventType.EXTRA_DEVICE.value: ScoringRule(per_occurrence=5, cap=20),
}


def load_rules(raw: Optional[str] = None) -> Dict[str, ScoringRule]:
    """
    Default rule table with an optional JSON override merged on top.

    Args:
        raw: JSON object {"EVENT_TYPE": {"per_occurrence": int, "cap": int}}
    """
    rules = dict(DEFAULT_RULES)
    if not raw:
        return rules

    for event_type, entry in json.loads(raw).items():
        rule = ScoringRule(per_occurrence=int(entry["per_occurrence"]), cap=int(entry["cap"]))
        if rule.per_occurrence < 0 or rule.cap < 0:
            raise ValueError(f"Negative scoring rule for {event_type}")
        rules[event_type] = rule
    logger.info(f"Loaded scoring rules for {len(rules)} event types")
    return rules


def summarize_events(events: Iterable[Event]) -> Dict[str, int]:
    counts: Dict[str, int] = {}
    for e in events:
        counts[e.event_type] = counts.get(e.event_type, 0) + 1
    return counts


def compute_integrity(
    counts: Mapping[str, int],
    rules: Optional[Mapping[str, ScoringRule]] = None
) -> IntegrityResult:
    """
    Compute the integrity score and its deduction breakdown.

    Args:
        counts: Occurrences per event type
        rules: Rule table, defaults to DEFAULT_RULES

    Returns:
        IntegrityResult with breakdown sorted by deduction (desc), then type name
    """
    rules = DEFAULT_RULES if rules is None else rules
    score = BASE_SCORE
    breakdown: List[Deduction] = []

    for event_type in sorted(counts):
        count = counts[event_type]
        rule = rules.get(event_type)
        if rule is None or count <= 0:
            continue
        deduction = min(rule.per_occurrence * count, rule.cap)
        score = max(0, score - deduction)
        breakdown.append(Deduction(event_type=event_type, count=count, deduction=deduction))

    breakdown.sort(key=lambda d: (-d.deduction, d.event_type))
    return IntegrityResult(score=score, breakdown=breakdown)
