"""
Lead priority model for guided intake conversations.

Derives a priority tier, a qualification score and the lead notes from the
fields collected during a guided chat.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Tuple

logger = logging.getLogger(__name__)


class LeadPriority(Enum):
    """Lead priority tiers."""
    P0 = "P0"  # Admissions or callback request - immediate follow-up
    P1 = "P1"  # Insurance verification - same-day follow-up
    P2 = "P2"  # Everything else - standard follow-up


QUALIFICATION_SCORES: Dict[LeadPriority, int] = {
    LeadPriority.P0: 90,
    LeadPriority.P1: 70,
    LeadPriority.P2: 50,
}


@dataclass
class LeadScore:
    """Priority result for one conversation."""
    priority: LeadPriority
    score: int
    signals: List[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "priority": self.priority.value,
            "score": self.score,
            "signals": self.signals,
            "timestamp": self.timestamp.isoformat(),
        }


Rule = Tuple[str, Callable[[Mapping[str, str]], bool], LeadPriority]


class LeadScorer:
    """
    Ordered, first-match-wins priority rules.

    - admissions flow or "call me" preference: P0
    - insurance verification flow or insurance payment: P1
    - anything else: P2
    """

    RULES: List[Rule] = [
        ("admissions_flow", lambda d: d.get("flowChoice") == "admissions", LeadPriority.P0),
        ("callback_requested", lambda d: d.get("contactPreference") == "call", LeadPriority.P0),
        ("insurance_verification_flow", lambda d: d.get("flowChoice") == "verify_insurance", LeadPriority.P1),
        ("insurance_payment", lambda d: d.get("paymentType") == "insurance", LeadPriority.P1),
    ]
    DEFAULT_PRIORITY = LeadPriority.P2

    def score(self, collected: Mapping[str, str]) -> LeadScore:
        for name, matches, priority in self.RULES:
            if matches(collected):
                logger.debug(f"Priority rule matched: {name} -> {priority.value}")
                return LeadScore(priority=priority, score=QUALIFICATION_SCORES[priority], signals=[name])
        return LeadScore(
            priority=self.DEFAULT_PRIORITY,
            score=QUALIFICATION_SCORES[self.DEFAULT_PRIORITY],
        )


# (field, label) in the order they appear in the notes
NOTE_FIELDS: List[Tuple[str, str]] = [
    ("flowChoice", "Flow"),
    ("treatmentType", "Treatment"),
    ("seekingFor", "For"),
    ("paymentType", "Payment"),
    ("dateOfBirth", "DOB"),
    ("contactPreference", "Contact preference"),
    ("questionTopic", "Question topic"),
    ("questionText", "Question"),
    ("additionalInfo", "Additional info"),
]


def build_notes(collected: Mapping[str, str]) -> str:
    """Labeled fragments for every present field, joined by '. ' and ending in '.'."""
    fragments = [
        f"{label}: {collected[key]}"
        for key, label in NOTE_FIELDS
        if collected.get(key)
    ]
    return ". ".join(fragments) + "."
