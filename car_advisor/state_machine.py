"""
State Machine - questionnaire and follow-up chat phases of a session.

Phases:
    init -> q1_asked -> q2_asked -> q3_collecting -> style_asked
         -> recommended -> chatting -> exhausted

Every transition is a pure function (Session, Event) -> TransitionResult.
Events that do not fit the current phase, or re-answer an already answered
question, are ignored with a reason; they never raise.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterator, Optional

from car_advisor.catalog import Catalog
from car_advisor.events import (
    AnswerDailyDistance,
    AnswerStyle,
    AnswerUsage,
    AskFollowUp,
    Event,
    FinishFeatures,
    FinishFollowUp,
    Restart,
    Start,
    ToggleFeature,
    event_name,
)
from car_advisor.logger import logger
from car_advisor.models import (
    ChatTurn,
    FollowUpStatus,
    Outcome,
    Phase,
    Session,
)
from car_advisor.scoring import recommend

DEFAULT_MAX_QUESTIONS = 5

# Ignore reasons
ALREADY_ANSWERED = "already_answered"
WRONG_PHASE = "wrong_phase"
NO_RECOMMENDATION = "no_recommendation"
FOLLOW_UP_IN_PROGRESS = "follow_up_in_progress"
NO_PENDING_FOLLOW_UP = "no_pending_follow_up"
EMPTY_QUESTION = "empty_question"


@dataclass(frozen=True)
class TransitionResult:
    """
    Result of applying one event.

    Supports tuple unpacking:
        session, outcome = machine.apply(session, event)
    """

    session: Session
    outcome: Outcome
    reason: str = ""

    def __iter__(self) -> Iterator[Any]:
        yield self.session
        yield self.outcome

    @property
    def applied(self) -> bool:
        return self.outcome is Outcome.APPLIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcome": self.outcome.value,
            "reason": self.reason or None,
            "session": self.session.to_dict(),
        }


class AdvisorStateMachine:
    """
    Transition rules for one session.

    Attributes:
        catalog: Catalog scored when the style question is answered
        emphasis: k1 multiplier for the delivery mode driving this machine
        max_questions: Follow-up quota per recommendation
    """

    def __init__(
        self,
        catalog: Catalog,
        emphasis: float = 1,
        max_questions: int = DEFAULT_MAX_QUESTIONS,
    ):
        self.catalog = catalog
        self.emphasis = emphasis
        self.max_questions = max_questions
        self._handlers: Dict[type, Callable[[Session, Any], TransitionResult]] = {
            Start: self._on_start,
            AnswerDailyDistance: self._on_daily_distance,
            AnswerUsage: self._on_usage,
            ToggleFeature: self._on_toggle_feature,
            FinishFeatures: self._on_finish_features,
            AnswerStyle: self._on_style,
            AskFollowUp: self._on_ask_follow_up,
            FinishFollowUp: self._on_finish_follow_up,
            Restart: self._on_restart,
        }

    def apply(self, session: Session, event: Event) -> TransitionResult:
        handler = self._handlers.get(type(event))
        if handler is None:
            raise TypeError(f"unsupported event: {event!r}")

        result = handler(session, event)
        if result.outcome is Outcome.IGNORED:
            logger.debug(
                "Event ignored",
                event=event_name(event),
                phase=session.phase.value,
                reason=result.reason,
            )
        elif result.session.phase is not session.phase:
            logger.event(
                "state_transition",
                event=event_name(event),
                from_phase=session.phase.value,
                to_phase=result.session.phase.value,
            )
        return result

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _applied(session: Session) -> TransitionResult:
        return TransitionResult(session=session, outcome=Outcome.APPLIED)

    @staticmethod
    def _ignored(session: Session, reason: str) -> TransitionResult:
        return TransitionResult(session=session, outcome=Outcome.IGNORED, reason=reason)

    @staticmethod
    def _with_answers(session: Session, phase: Phase, **changes: Any) -> Session:
        return replace(session, answers=replace(session.answers, **changes), phase=phase)

    # =========================================================================
    # QUESTIONNAIRE
    # =========================================================================

    def _on_start(self, session: Session, event: Start) -> TransitionResult:
        if session.phase is Phase.Q1_ASKED:
            return self._applied(session)
        if session.phase is not Phase.INIT:
            return self._ignored(session, WRONG_PHASE)
        return self._applied(replace(session, phase=Phase.Q1_ASKED))

    def _on_daily_distance(self, session: Session, event: AnswerDailyDistance) -> TransitionResult:
        if session.answers.daily_distance is not None:
            return self._ignored(session, ALREADY_ANSWERED)
        if session.phase not in (Phase.INIT, Phase.Q1_ASKED):
            return self._ignored(session, WRONG_PHASE)
        return self._applied(
            self._with_answers(session, Phase.Q2_ASKED, daily_distance=event.value)
        )

    def _on_usage(self, session: Session, event: AnswerUsage) -> TransitionResult:
        if session.answers.usage is not None:
            return self._ignored(session, ALREADY_ANSWERED)
        if session.phase is not Phase.Q2_ASKED:
            return self._ignored(session, WRONG_PHASE)
        return self._applied(
            self._with_answers(session, Phase.Q3_COLLECTING, usage=event.value)
        )

    def _on_toggle_feature(self, session: Session, event: ToggleFeature) -> TransitionResult:
        if session.phase is not Phase.Q3_COLLECTING:
            return self._ignored(session, WRONG_PHASE)
        return self._applied(
            replace(session, answers=session.answers.toggle_feature(event.feature))
        )

    def _on_finish_features(self, session: Session, event: FinishFeatures) -> TransitionResult:
        if session.phase is not Phase.Q3_COLLECTING:
            return self._ignored(session, WRONG_PHASE)
        return self._applied(replace(session, phase=Phase.STYLE_ASKED))

    def _on_style(self, session: Session, event: AnswerStyle) -> TransitionResult:
        if session.answers.style_preference is not None:
            return self._ignored(session, ALREADY_ANSWERED)
        if session.phase is not Phase.STYLE_ASKED:
            return self._ignored(session, WRONG_PHASE)

        answers = replace(session.answers, style_preference=event.value)
        recommendation = recommend(answers, self.catalog, emphasis=self.emphasis)

        # No match leaves nothing to chat about: the session rests in
        # RECOMMENDED until restarted.
        phase = Phase.CHATTING if recommendation.is_match else Phase.RECOMMENDED
        logger.event(
            "recommendation_produced",
            best=recommendation.best.product_id if recommendation.best else None,
            candidates=len(recommendation.ranked),
            no_match=not recommendation.is_match,
        )
        return self._applied(
            replace(
                session,
                answers=answers,
                recommendation=recommendation,
                phase=phase,
                follow_up_count=0,
                pending_question=None,
            )
        )

    # =========================================================================
    # FOLLOW-UP CHAT
    # =========================================================================

    def _on_ask_follow_up(self, session: Session, event: AskFollowUp) -> TransitionResult:
        if session.phase is Phase.EXHAUSTED:
            return TransitionResult(session, Outcome.QUOTA_EXCEEDED)
        if session.phase is Phase.RECOMMENDED:
            return self._ignored(session, NO_RECOMMENDATION)
        if session.phase is not Phase.CHATTING:
            return self._ignored(session, WRONG_PHASE)
        if not event.text.strip():
            return self._ignored(session, EMPTY_QUESTION)
        if session.pending_question is not None:
            return self._ignored(session, FOLLOW_UP_IN_PROGRESS)

        if session.follow_up_count >= self.max_questions:
            logger.info(
                "Follow-up question limit reached",
                count=session.follow_up_count,
                limit=self.max_questions,
            )
            return TransitionResult(
                replace(session, phase=Phase.EXHAUSTED),
                Outcome.QUOTA_EXCEEDED,
            )

        return self._applied(replace(session, pending_question=event.text.strip()))

    def _on_finish_follow_up(self, session: Session, event: FinishFollowUp) -> TransitionResult:
        if session.pending_question is None or session.phase is not Phase.CHATTING:
            return self._ignored(session, NO_PENDING_FOLLOW_UP)

        turn = ChatTurn(
            question=session.pending_question,
            answer=event.answer,
            status=event.status,
        )
        # Nothing was delivered on a cancelled exchange, so it costs no quota
        count = session.follow_up_count
        if event.status is not FollowUpStatus.CANCELLED:
            count += 1
        return self._applied(
            replace(
                session,
                pending_question=None,
                follow_up_count=count,
                transcript=session.transcript + (turn,),
            )
        )

    # =========================================================================
    # RESTART
    # =========================================================================

    def _on_restart(self, session: Session, event: Restart) -> TransitionResult:
        return self._applied(Session(id=session.id))

    def remaining_questions(self, session: Session) -> Optional[int]:
        """Follow-ups left, or None before a recommendation exists."""
        if session.phase not in (Phase.CHATTING, Phase.EXHAUSTED):
            return None
        return max(0, self.max_questions - session.follow_up_count)
