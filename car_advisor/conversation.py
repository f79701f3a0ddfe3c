"""
AdvisorService - drives sessions through the questionnaire and follow-up chat.

Flow for every inbound event:
1. Session Store lookup under the session lock.
2. State machine applies the event (scoring runs once on the style answer).
3. The new session is stored; the outcome goes back to the channel.

Follow-up questions are split in steps so no lock is held while the
backend streams: check (lock), accept on first read (lock), stream (no lock),
finish (lock).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, List, Optional

from car_advisor.events import (
    AskFollowUp,
    CallbackDecodeError,
    Event,
    FinishFollowUp,
    Restart,
    Start,
    decode_callback,
)
from car_advisor.logger import logger
from car_advisor.models import FollowUpStatus, Outcome, Session, StreamToken, TokenKind
from car_advisor.session_store import SessionStore
from car_advisor.state_machine import AdvisorStateMachine, TransitionResult
from car_advisor.streaming import StreamingAnswerService

MALFORMED_CALLBACK = "malformed_callback"
NOT_ACCEPTED_MESSAGE = "Your question could not be taken on, please ask again"

DisconnectCheck = Callable[[], Awaitable[bool]]


@dataclass
class FollowUpReply:
    """Outcome of a follow-up request; tokens is set only when accepted."""

    result: TransitionResult
    tokens: Optional[AsyncIterator[StreamToken]] = None

    @property
    def outcome(self) -> Outcome:
        return self.result.outcome


class AdvisorService:
    def __init__(
        self,
        store: SessionStore,
        state_machine: AdvisorStateMachine,
        answer_service: StreamingAnswerService,
        spec_sheet: str,
    ):
        self.store = store
        self.state_machine = state_machine
        self.answer_service = answer_service
        self.spec_sheet = spec_sheet

    @property
    def max_questions(self) -> int:
        return self.state_machine.max_questions

    def handle(self, session_id: str, event: Event) -> TransitionResult:
        """Apply one event to the session (created on first interaction)."""
        logger.set_session(session_id)
        try:
            return self.store.mutate(
                session_id,
                lambda session: self._apply(session, event),
            )
        finally:
            logger.clear_session()

    def _apply(self, session: Session, event: Event):
        result = self.state_machine.apply(session, event)
        return result.session, result

    def start(self, session_id: str) -> TransitionResult:
        """Discard any previous answers and present the first question."""
        self.handle(session_id, Restart())
        return self.handle(session_id, Start())

    def handle_callback(self, session_id: str, data: str) -> TransitionResult:
        """Decode a chat callback string; malformed input is ignored."""
        try:
            event = decode_callback(data)
        except CallbackDecodeError as exc:
            logger.warning("Malformed callback ignored", session_id=session_id, error=str(exc))
            session = self.store.get_or_create(session_id)
            return TransitionResult(session, Outcome.IGNORED, MALFORMED_CALLBACK)
        return self.handle(session_id, event)

    def get(self, session_id: str) -> Optional[Session]:
        return self.store.get(session_id)

    def remove(self, session_id: str) -> bool:
        return self.store.remove(session_id)

    def ask(
        self,
        session_id: str,
        question: str,
        is_disconnected: Optional[DisconnectCheck] = None,
    ) -> FollowUpReply:
        """
        Check a follow-up question and return its token stream.

        Quota is checked before any backend call. The question is taken on
        only when the stream is first iterated, so a reply that is dropped
        unread leaves the session untouched. The exchange counts against the
        quota once it completes or fails; a disconnect cancels it for free.
        """
        logger.set_session(session_id)
        try:
            result = self.store.mutate(
                session_id,
                lambda session: self._check_follow_up(session, AskFollowUp(question)),
            )
        finally:
            logger.clear_session()

        if result.outcome is not Outcome.APPLIED:
            if result.outcome is Outcome.QUOTA_EXCEEDED:
                logger.event("follow_up_quota_exceeded", session_id=session_id)
            return FollowUpReply(result=result)

        tokens = self._relay(session_id, question, is_disconnected)
        return FollowUpReply(result=result, tokens=tokens)

    def _check_follow_up(self, session: Session, event: AskFollowUp):
        # Only refusals are stored; an accepted question is claimed by _relay
        result = self.state_machine.apply(session, event)
        if result.outcome is Outcome.APPLIED:
            return session, result
        return result.session, result

    def _accept(self, session_id: str, question: str) -> Optional[Session]:
        try:
            result = self.store.mutate(
                session_id,
                lambda session: self._apply(session, AskFollowUp(question)),
                create_missing=False,
            )
        except KeyError:
            logger.info("Follow-up dropped for a removed session", session_id=session_id)
            return None
        if result.outcome is not Outcome.APPLIED:
            logger.info(
                "Follow-up no longer accepted",
                session_id=session_id,
                outcome=result.outcome.value,
                reason=result.reason,
            )
            return None

        session = result.session
        logger.event(
            "follow_up_accepted",
            session_id=session_id,
            product=session.recommended_product,
            count=session.follow_up_count + 1,
        )
        return session

    async def _relay(
        self,
        session_id: str,
        question: str,
        is_disconnected: Optional[DisconnectCheck],
    ) -> AsyncIterator[StreamToken]:
        session = self._accept(session_id, question)
        if session is None:
            yield StreamToken.error(NOT_ACCEPTED_MESSAGE)
            return

        status = FollowUpStatus.CANCELLED
        parts: List[str] = []
        tokens = self.answer_service.ask(
            session.recommended_product,
            session.pending_question,
            self.spec_sheet,
        )
        try:
            async for token in tokens:
                if is_disconnected is not None and await is_disconnected():
                    logger.info("Client disconnected mid-stream", session_id=session_id)
                    return
                if token.kind is TokenKind.TEXT:
                    parts.append(token.value)
                elif token.kind is TokenKind.DONE:
                    status = FollowUpStatus.COMPLETED
                else:
                    status = FollowUpStatus.FAILED
                yield token
        finally:
            # Closing the backend may itself be cancelled; the pending
            # question is released either way
            try:
                await tokens.aclose()
            finally:
                self._finish(session_id, status, "".join(parts))

    def _finish(self, session_id: str, status: FollowUpStatus, answer: str) -> None:
        try:
            result = self.store.mutate(
                session_id,
                lambda session: self._apply(session, FinishFollowUp(status=status, answer=answer)),
                create_missing=False,
            )
        except KeyError:
            logger.info("Follow-up finished for a removed session", session_id=session_id)
            return
        logger.event(
            "follow_up_finished",
            session_id=session_id,
            status=status.value,
            count=result.session.follow_up_count,
            outcome=result.outcome.value,
        )
