"""Keyword-based frustration detector.

A deliberately cheap gate: case-insensitive substring matching against a
fixed vocabulary of frustration and escalation phrases.  It only raises an
advisory flag; the agent keeps running either way.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

Severity = Literal["low", "medium", "high"]

NEGATIVE_SIGNALS: tuple[str, ...] = (
    "frustrated",
    "angry",
    "terrible",
    "horrible",
    "awful",
    "worst",
    "disappointed",
    "upset",
    "furious",
    "manager",
    "supervisor",
    "unacceptable",
    "ridiculous",
    "pathetic",
    "useless",
    "waste",
    "complaint",
    "sue",
    "lawyer",
    "refund now",
    "cancel everything",
)


@dataclass(frozen=True)
class SentimentResult:
    is_negative: bool
    matched_signals: frozenset[str]
    severity: Severity


def detect_sentiment(text: str) -> SentimentResult:
    lowered = text.lower()
    matched = frozenset(signal for signal in NEGATIVE_SIGNALS if signal in lowered)

    if len(matched) >= 2:
        severity: Severity = "high"
    elif matched:
        severity = "medium"
    else:
        severity = "low"

    return SentimentResult(is_negative=bool(matched), matched_signals=matched, severity=severity)
