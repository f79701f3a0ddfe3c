"""
Typed session events and the chat callback wire codec.

Chat callbacks arrive as "{QuestionTag}_{value}" strings ("Q1_0", "Q3_2",
"Q3_done", "Q4_3"). They are decoded here, once, into event objects; the
state machine never sees raw strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from car_advisor.models import (
    DAILY_DISTANCE_OPTIONS,
    FEATURE_OPTIONS,
    STYLE_OPTIONS,
    USAGE_OPTIONS,
    FollowUpStatus,
)


@dataclass(frozen=True)
class Start:
    """First question presented to the user."""


@dataclass(frozen=True)
class AnswerDailyDistance:
    value: int


@dataclass(frozen=True)
class AnswerUsage:
    value: int


@dataclass(frozen=True)
class ToggleFeature:
    feature: int


@dataclass(frozen=True)
class FinishFeatures:
    pass


@dataclass(frozen=True)
class AnswerStyle:
    value: int


@dataclass(frozen=True)
class AskFollowUp:
    text: str


@dataclass(frozen=True)
class FinishFollowUp:
    """A streamed follow-up exchange ended (completed, failed or cancelled)."""

    status: FollowUpStatus
    answer: str = ""


@dataclass(frozen=True)
class Restart:
    pass


Event = Union[
    Start,
    AnswerDailyDistance,
    AnswerUsage,
    ToggleFeature,
    FinishFeatures,
    AnswerStyle,
    AskFollowUp,
    FinishFollowUp,
    Restart,
]


class CallbackDecodeError(ValueError):
    """Callback string is not part of the questionnaire protocol."""


FEATURES_DONE = "done"

# tag -> (event type, number of options)
_SCALAR_TAGS = {
    "Q1": (AnswerDailyDistance, DAILY_DISTANCE_OPTIONS),
    "Q2": (AnswerUsage, USAGE_OPTIONS),
    "Q3": (ToggleFeature, FEATURE_OPTIONS),
    "Q4": (AnswerStyle, STYLE_OPTIONS),
}


def decode_callback(data: str) -> Event:
    """
    Decode a callback string into an event.

    Raises:
        CallbackDecodeError: unknown tag, non-integer or out-of-range value
    """
    if not isinstance(data, str) or "_" not in data:
        raise CallbackDecodeError(f"malformed callback: {data!r}")

    tag, _, raw_value = data.strip().partition("_")
    if tag not in _SCALAR_TAGS:
        raise CallbackDecodeError(f"unknown question tag: {tag!r}")

    if tag == "Q3" and raw_value == FEATURES_DONE:
        return FinishFeatures()

    event_type, options = _SCALAR_TAGS[tag]
    if not (raw_value.isascii() and raw_value.isdigit()):
        raise CallbackDecodeError(f"non-numeric value in callback: {data!r}")
    value = int(raw_value)
    if value >= options:
        raise CallbackDecodeError(f"value out of range in callback: {data!r}")
    return event_type(value)


def encode_callback(event: Event) -> str:
    """Inverse of decode_callback for questionnaire events."""
    if isinstance(event, AnswerDailyDistance):
        return f"Q1_{event.value}"
    if isinstance(event, AnswerUsage):
        return f"Q2_{event.value}"
    if isinstance(event, ToggleFeature):
        return f"Q3_{event.feature}"
    if isinstance(event, FinishFeatures):
        return f"Q3_{FEATURES_DONE}"
    if isinstance(event, AnswerStyle):
        return f"Q4_{event.value}"
    raise ValueError(f"{type(event).__name__} has no callback encoding")


def event_name(event: Event) -> str:
    return type(event).__name__
