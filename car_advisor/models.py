"""
Core value types shared by the scoring engine, the state machine and the
streaming service.

All values are immutable; transitions produce new instances via
dataclasses.replace().
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, FrozenSet, Optional, Tuple

if TYPE_CHECKING:
    from car_advisor.scoring import Recommendation


# Number of options per question
DAILY_DISTANCE_OPTIONS = 3
USAGE_OPTIONS = 3
FEATURE_OPTIONS = 6
STYLE_OPTIONS = 4

# stylePreference index meaning "any style"
ANY_STYLE = 3


class Style(str, Enum):
    SEDAN = "Sedan"
    SUV = "SUV"
    WAGON = "Wagon"


# Index of the style question answer -> required style (None = any)
STYLE_PREFERENCES: Tuple[Optional[Style], ...] = (Style.SEDAN, Style.SUV, Style.WAGON, None)


class Phase(str, Enum):
    INIT = "init"
    Q1_ASKED = "q1_asked"
    Q2_ASKED = "q2_asked"
    Q3_COLLECTING = "q3_collecting"
    STYLE_ASKED = "style_asked"
    RECOMMENDED = "recommended"
    CHATTING = "chatting"
    EXHAUSTED = "exhausted"


class Outcome(str, Enum):
    """Result of applying one event to a session."""

    APPLIED = "applied"
    IGNORED = "ignored"
    QUOTA_EXCEEDED = "quota_exceeded"


class FollowUpStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


def _check_option(name: str, value: Optional[int], options: int) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value < options:
        raise ValueError(f"{name} must be an integer in 0..{options - 1}, got {value!r}")


@dataclass(frozen=True)
class Answers:
    """
    Questionnaire answers of one session.

    Scalar answers are set at most once (first answer wins); features is a set
    toggled symmetrically.
    """

    daily_distance: Optional[int] = None
    usage: Optional[int] = None
    features: FrozenSet[int] = frozenset()
    style_preference: Optional[int] = None

    def __post_init__(self) -> None:
        _check_option("daily_distance", self.daily_distance, DAILY_DISTANCE_OPTIONS)
        _check_option("usage", self.usage, USAGE_OPTIONS)
        _check_option("style_preference", self.style_preference, STYLE_OPTIONS)
        if not isinstance(self.features, frozenset):
            object.__setattr__(self, "features", frozenset(self.features))
        for feature in self.features:
            _check_option("feature", feature, FEATURE_OPTIONS)

    def missing_fields(self) -> Tuple[str, ...]:
        """Names of required scalar answers that are still unset."""
        missing = []
        if self.daily_distance is None:
            missing.append("daily_distance")
        if self.usage is None:
            missing.append("usage")
        if self.style_preference is None:
            missing.append("style_preference")
        return tuple(missing)

    @property
    def is_complete(self) -> bool:
        return not self.missing_fields()

    @property
    def required_style(self) -> Optional[Style]:
        if self.style_preference is None:
            return None
        return STYLE_PREFERENCES[self.style_preference]

    def toggle_feature(self, feature: int) -> "Answers":
        _check_option("feature", feature, FEATURE_OPTIONS)
        return Answers(
            daily_distance=self.daily_distance,
            usage=self.usage,
            features=self.features ^ {feature},
            style_preference=self.style_preference,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daily_distance": self.daily_distance,
            "usage": self.usage,
            "features": sorted(self.features),
            "style_preference": self.style_preference,
        }


@dataclass(frozen=True)
class ChatTurn:
    question: str
    answer: str
    status: FollowUpStatus


@dataclass(frozen=True)
class Session:
    id: str
    answers: Answers = field(default_factory=Answers)
    recommendation: Optional["Recommendation"] = None
    follow_up_count: int = 0
    phase: Phase = Phase.INIT
    pending_question: Optional[str] = None
    transcript: Tuple[ChatTurn, ...] = ()

    @property
    def recommended_product(self) -> Optional[str]:
        if self.recommendation is None or not self.recommendation.is_match:
            return None
        return self.recommendation.best.product_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "phase": self.phase.value,
            "answers": self.answers.to_dict(),
            "recommendation": self.recommendation.to_dict() if self.recommendation else None,
            "follow_up_count": self.follow_up_count,
            "follow_up_pending": self.pending_question is not None,
            "transcript": [
                {"question": t.question, "answer": t.answer, "status": t.status.value}
                for t in self.transcript
            ],
        }


class TokenKind(str, Enum):
    TEXT = "text"
    DONE = "done"
    ERROR = "error"


@dataclass(frozen=True)
class StreamToken:
    """One fragment of a streamed answer, or its completion/error marker."""

    kind: TokenKind
    value: str = ""

    @classmethod
    def text(cls, fragment: str) -> "StreamToken":
        return cls(TokenKind.TEXT, fragment)

    @classmethod
    def done(cls) -> "StreamToken":
        return cls(TokenKind.DONE)

    @classmethod
    def error(cls, reason: str) -> "StreamToken":
        return cls(TokenKind.ERROR, reason)

    @property
    def is_terminal(self) -> bool:
        return self.kind is not TokenKind.TEXT

    def to_payload(self) -> Dict[str, Any]:
        if self.kind is TokenKind.TEXT:
            return {"text": self.value}
        if self.kind is TokenKind.DONE:
            return {"done": True}
        return {"error": self.value}

    def to_sse(self) -> str:
        """Server-sent event frame: 'data: <json>' followed by a blank line."""
        return f"data: {json.dumps(self.to_payload(), ensure_ascii=False)}\n\n"
