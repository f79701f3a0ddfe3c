"""
Tests for the session state machine.
"""

from unittest.mock import ANY, patch

import pytest

from car_advisor.events import (
    AnswerDailyDistance,
    AnswerStyle,
    AnswerUsage,
    AskFollowUp,
    FinishFeatures,
    FinishFollowUp,
    Restart,
    Start,
    ToggleFeature,
)
from car_advisor.logger import logger
from car_advisor.models import FollowUpStatus, Outcome, Phase, Session
from car_advisor.state_machine import (
    ALREADY_ANSWERED,
    EMPTY_QUESTION,
    FOLLOW_UP_IN_PROGRESS,
    NO_PENDING_FOLLOW_UP,
    NO_RECOMMENDATION,
    WRONG_PHASE,
    AdvisorStateMachine,
)


@pytest.fixture
def machine(catalog):
    return AdvisorStateMachine(catalog, emphasis=1, max_questions=2)


def run(machine, session, *events):
    for event in events:
        session = machine.apply(session, event).session
    return session


def questionnaire(style=3):
    return (
        Start(),
        AnswerDailyDistance(2),
        AnswerUsage(0),
        ToggleFeature(0),
        FinishFeatures(),
        AnswerStyle(style),
    )


class TestQuestionnaire:

    def test_start(self, machine):
        session, outcome = machine.apply(Session(id="s"), Start())
        assert outcome is Outcome.APPLIED
        assert session.phase is Phase.Q1_ASKED

    def test_happy_path_phases(self, machine):
        session = Session(id="s")
        phases = []
        for event in questionnaire():
            session = machine.apply(session, event).session
            phases.append(session.phase)
        assert phases == [
            Phase.Q1_ASKED,
            Phase.Q2_ASKED,
            Phase.Q3_COLLECTING,
            Phase.Q3_COLLECTING,
            Phase.STYLE_ASKED,
            Phase.CHATTING,
        ]
        assert session.answers.features == {0}
        assert session.recommended_product == "B"
        assert session.follow_up_count == 0

    def test_answer_from_init_is_accepted(self, machine):
        session = machine.apply(Session(id="s"), AnswerDailyDistance(1)).session
        assert session.phase is Phase.Q2_ASKED

    def test_first_writer_wins(self, machine):
        session = run(machine, Session(id="s"), Start(), AnswerDailyDistance(0))
        result = machine.apply(session, AnswerDailyDistance(2))
        assert result.outcome is Outcome.IGNORED
        assert result.reason == ALREADY_ANSWERED
        assert result.session.answers.daily_distance == 0

    def test_out_of_order_ignored(self, machine):
        session = run(machine, Session(id="s"), Start())
        result = machine.apply(session, AnswerUsage(1))
        assert result.outcome is Outcome.IGNORED
        assert result.reason == WRONG_PHASE
        assert result.session == session

    def test_toggle_twice_is_identity(self, machine):
        session = run(machine, Session(id="s"), Start(), AnswerDailyDistance(0), AnswerUsage(0))
        toggled = run(machine, session, ToggleFeature(3), ToggleFeature(3))
        assert toggled.answers.features == session.answers.features

    def test_toggle_outside_q3_ignored(self, machine):
        session = run(machine, Session(id="s"), Start())
        assert machine.apply(session, ToggleFeature(1)).outcome is Outcome.IGNORED

    def test_style_answer_only_once(self, machine):
        session = run(machine, Session(id="s"), *questionnaire())
        result = machine.apply(session, AnswerStyle(1))
        assert result.reason == ALREADY_ANSWERED
        assert result.session.recommended_product == "B"

    def test_style_filter_applied(self, machine):
        session = run(machine, Session(id="s"), *questionnaire(style=1))
        assert session.recommended_product == "A"

    def test_no_match_rests_in_recommended(self, machine):
        session = run(machine, Session(id="s"), *questionnaire(style=2))
        assert session.phase is Phase.RECOMMENDED
        assert session.recommended_product is None
        assert not session.recommendation.is_match

        result = machine.apply(session, AskFollowUp("range?"))
        assert result.outcome is Outcome.IGNORED
        assert result.reason == NO_RECOMMENDATION

    def test_start_mid_questionnaire_ignored(self, machine):
        session = run(machine, Session(id="s"), Start(), AnswerDailyDistance(0))
        assert machine.apply(session, Start()).reason == WRONG_PHASE


class TestFollowUp:

    @pytest.fixture
    def chatting(self, machine):
        return run(machine, Session(id="s"), *questionnaire())

    def test_ask_sets_pending(self, machine, chatting):
        result = machine.apply(chatting, AskFollowUp("  What colours?  "))
        assert result.applied
        assert result.session.pending_question == "What colours?"
        assert result.session.follow_up_count == 0

    def test_one_in_flight(self, machine, chatting):
        session = run(machine, chatting, AskFollowUp("one"))
        result = machine.apply(session, AskFollowUp("two"))
        assert result.reason == FOLLOW_UP_IN_PROGRESS
        assert result.session.pending_question == "one"

    def test_empty_question_ignored(self, machine, chatting):
        assert machine.apply(chatting, AskFollowUp("   ")).reason == EMPTY_QUESTION

    def test_completed_counts(self, machine, chatting):
        session = run(
            machine, chatting,
            AskFollowUp("one"),
            FinishFollowUp(FollowUpStatus.COMPLETED, "answer"),
        )
        assert session.follow_up_count == 1
        assert session.pending_question is None
        assert session.transcript[0].question == "one"
        assert session.transcript[0].answer == "answer"

    def test_failed_counts(self, machine, chatting):
        session = run(machine, chatting, AskFollowUp("one"), FinishFollowUp(FollowUpStatus.FAILED))
        assert session.follow_up_count == 1
        assert session.phase is Phase.CHATTING

    def test_cancelled_is_free(self, machine, chatting):
        session = run(machine, chatting, AskFollowUp("one"), FinishFollowUp(FollowUpStatus.CANCELLED))
        assert session.follow_up_count == 0
        assert session.transcript[0].status is FollowUpStatus.CANCELLED

    def test_finish_without_pending_ignored(self, machine, chatting):
        result = machine.apply(chatting, FinishFollowUp(FollowUpStatus.COMPLETED))
        assert result.reason == NO_PENDING_FOLLOW_UP

    def test_quota(self, machine, chatting):
        session = chatting
        for i in range(2):
            session = run(
                machine, session,
                AskFollowUp(f"q{i}"),
                FinishFollowUp(FollowUpStatus.COMPLETED, "a"),
            )
        assert session.follow_up_count == 2

        result = machine.apply(session, AskFollowUp("q3"))
        assert result.outcome is Outcome.QUOTA_EXCEEDED
        assert result.session.phase is Phase.EXHAUSTED
        assert result.session.follow_up_count == 2
        assert result.session.pending_question is None

        again = machine.apply(result.session, AskFollowUp("q4"))
        assert again.outcome is Outcome.QUOTA_EXCEEDED
        assert again.session.phase is Phase.EXHAUSTED

    def test_zero_quota_exhausts_immediately(self, catalog):
        machine = AdvisorStateMachine(catalog, max_questions=0)
        session = run(machine, Session(id="s"), *questionnaire())
        assert machine.apply(session, AskFollowUp("q")).outcome is Outcome.QUOTA_EXCEEDED

    def test_remaining_questions(self, machine, chatting):
        assert machine.remaining_questions(Session(id="x")) is None
        assert machine.remaining_questions(chatting) == 2
        session = run(machine, chatting, AskFollowUp("q"), FinishFollowUp(FollowUpStatus.COMPLETED))
        assert machine.remaining_questions(session) == 1


class TestRestart:

    @pytest.mark.parametrize("prefix", [0, 2, 6])
    def test_restart_from_any_phase(self, machine, prefix):
        session = run(machine, Session(id="s"), *questionnaire()[:prefix])
        result = machine.apply(session, Restart())
        assert result.applied
        assert result.session == Session(id="s")

    def test_restart_after_exhausted(self, catalog):
        machine = AdvisorStateMachine(catalog, max_questions=0)
        session = run(machine, Session(id="s"), *questionnaire(), AskFollowUp("q"))
        assert session.phase is Phase.EXHAUSTED
        session = run(machine, session, Restart(), *questionnaire())
        assert session.phase is Phase.CHATTING
        assert session.follow_up_count == 0


class TestTransitionResult:

    def test_unpacking_and_dict(self, machine):
        session, outcome = machine.apply(Session(id="s"), Start())
        result = machine.apply(session, Start())
        payload = result.to_dict()
        assert payload["outcome"] == "applied"
        assert payload["session"]["phase"] == "q1_asked"
        assert payload["reason"] is None

    def test_unknown_event_type(self, machine):
        with pytest.raises(TypeError):
            machine.apply(Session(id="s"), object())


class TestTransitionLogging:

    def test_phase_change_logged_as_event(self, machine):
        with patch.object(logger, "_log") as log_call:
            machine.apply(Session(id="s"), Start())

        log_call.assert_called_once_with(
            "EVENT",
            "state_transition",
            ANY,
            event="Start",
            from_phase="init",
            to_phase="q1_asked",
        )

    def test_ignored_event_logged_at_debug(self, machine):
        with patch.object(logger, "_log") as log_call:
            machine.apply(Session(id="s"), FinishFeatures())

        level, message, _ = log_call.call_args.args
        assert (level, message) == ("DEBUG", "Event ignored")
        assert log_call.call_args.kwargs["event"] == "FinishFeatures"
        assert log_call.call_args.kwargs["reason"] == WRONG_PHASE

    def test_full_questionnaire_through_real_logger(self, machine):
        session = run(machine, Session(id="s"), *questionnaire())
        assert session.phase is Phase.CHATTING
