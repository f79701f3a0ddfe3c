"""
Chat-platform adapter.

Turns session outcomes into channel-neutral replies (Markdown text plus an
inline keyboard of callback buttons) using the "{QuestionTag}_{value}"
callback protocol. The delivery process (bot runtime, webhook relay) sends
the reply and forwards button presses back as callback strings.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from car_advisor.conversation import AdvisorService, FollowUpReply
from car_advisor.events import (
    AnswerDailyDistance,
    AnswerStyle,
    AnswerUsage,
    FinishFeatures,
    ToggleFeature,
    encode_callback,
)
from car_advisor.models import Outcome, Phase, Session
from car_advisor.scoring import NO_MATCH_MESSAGE
from car_advisor.state_machine import TransitionResult

DAILY_DISTANCE_LABELS = ["🚙 Less than 20 miles", "🛣️ 20-50 miles", "🏞️ More than 50 miles"]
USAGE_LABELS = ["🏙️ City commuting", "👨‍👩‍👧 Family trips", "⛰️ Outdoor adventures"]
FEATURE_LABELS = ["🌿 Sustainability", "💎 Luxury", "🛡️ Safety", "📏 Space", "📱 Tech", "☔ All Weather"]
FEATURE_NAMES = ["Sustainability", "Luxury", "Safety", "Space", "Tech", "Weather"]
STYLE_LABELS = ["🚗 Sedan", "🚙 SUV/Crossover", "🛒 Wagon", "🔄 Flexible"]

Q1_TEXT = "🚗 *How much do you drive daily?* 🌟"
Q2_TEXT = "🌆 *What's your primary usage?* ✨"
Q3_TEXT = "🔧 *What features matter to you?* (Pick all that apply) 🎨"
Q4_TEXT = "🚘 *What style do you prefer?* 🎉"
DONE_LABEL = "✅ Done"


def _button(text: str, callback_data: str) -> Dict[str, str]:
    return {"text": text, "callback_data": callback_data}


@dataclass
class ChannelReply:
    """
    What the delivery channel should show.

    Attributes:
        text: Message text (Markdown); None when the shown message stays as is
        keyboard: Inline keyboard rows
        notice: Short toast acknowledging a button press
        outcome: State machine outcome that produced the reply
    """

    text: Optional[str]
    keyboard: List[List[Dict[str, str]]] = field(default_factory=list)
    notice: Optional[str] = None
    outcome: Outcome = Outcome.APPLIED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "keyboard": self.keyboard,
            "notice": self.notice,
            "outcome": self.outcome.value,
        }


def single_choice_keyboard(labels: List[str], event_type) -> List[List[Dict[str, str]]]:
    return [[_button(label, encode_callback(event_type(i)))] for i, label in enumerate(labels)]


def features_keyboard(selected) -> List[List[Dict[str, str]]]:
    """Two buttons per row, selected features marked with ✅, Done last."""
    buttons = [
        _button(
            f"{label} ✅" if i in selected else label,
            encode_callback(ToggleFeature(i)),
        )
        for i, label in enumerate(FEATURE_LABELS)
    ]
    rows = [buttons[i:i + 2] for i in range(0, len(buttons), 2)]
    rows.append([_button(DONE_LABEL, encode_callback(FinishFeatures()))])
    return rows


def recommendation_text(session: Session) -> str:
    product = session.recommended_product
    if product is None:
        return f"😕 *{NO_MATCH_MESSAGE}.* Start again with /start to try different answers."
    return (
        f"🎉 *Your recommended Volvo is: {product}!* 🎊\n"
        'Ask me anything about it! (e.g., "What colors are available?")'
    )


def quota_exceeded_text(max_questions: int) -> str:
    return (
        f"🚫 *Sorry, you've reached the limit of {max_questions} questions about this Volvo.* "
        "Start again with /start if you'd like a new recommendation!"
    )


class ChatChannel:
    def __init__(self, advisor: AdvisorService):
        self.advisor = advisor

    def render(self, session: Session) -> ChannelReply:
        """Reply showing the question (or result) for the session's phase."""
        phase = session.phase
        if phase in (Phase.INIT, Phase.Q1_ASKED):
            return ChannelReply(Q1_TEXT, single_choice_keyboard(DAILY_DISTANCE_LABELS, AnswerDailyDistance))
        if phase is Phase.Q2_ASKED:
            return ChannelReply(Q2_TEXT, single_choice_keyboard(USAGE_LABELS, AnswerUsage))
        if phase is Phase.Q3_COLLECTING:
            return ChannelReply(Q3_TEXT, features_keyboard(session.answers.features))
        if phase is Phase.STYLE_ASKED:
            return ChannelReply(Q4_TEXT, single_choice_keyboard(STYLE_LABELS, AnswerStyle))
        if phase is Phase.EXHAUSTED:
            return ChannelReply(quota_exceeded_text(self.advisor.max_questions))
        return ChannelReply(recommendation_text(session))

    def start(self, chat_id: str) -> ChannelReply:
        result = self.advisor.start(chat_id)
        return self.render(result.session)

    def callback(self, chat_id: str, data: str) -> ChannelReply:
        before = self.advisor.get(chat_id)
        result = self.advisor.handle_callback(chat_id, data)
        if result.outcome is Outcome.IGNORED:
            notice = "Already selected! 😊" if result.reason == "already_answered" else None
            return ChannelReply(text=None, notice=notice, outcome=result.outcome)

        reply = self.render(result.session)
        reply.notice = self._toggle_notice(before, result)
        return reply

    @staticmethod
    def _toggle_notice(before: Optional[Session], result: TransitionResult) -> Optional[str]:
        if before is None or before.phase is not Phase.Q3_COLLECTING:
            return None
        added = result.session.answers.features - before.answers.features
        removed = before.answers.features - result.session.answers.features
        if added:
            return f"{FEATURE_NAMES[next(iter(added))]} added! ✅"
        if removed:
            return f"{FEATURE_NAMES[next(iter(removed))]} removed"
        return None

    def message(self, chat_id: str, text: str, is_disconnected=None) -> FollowUpReply:
        """Route a free-text message to the follow-up chat."""
        return self.advisor.ask(chat_id, text, is_disconnected=is_disconnected)

    def refusal(self, reply: FollowUpReply) -> ChannelReply:
        """Reply for a follow-up that was not accepted."""
        if reply.outcome is Outcome.QUOTA_EXCEEDED:
            return ChannelReply(quota_exceeded_text(self.advisor.max_questions), outcome=reply.outcome)
        session = reply.result.session
        if session.phase is Phase.RECOMMENDED:
            return ChannelReply(recommendation_text(session), outcome=reply.outcome)
        if session.phase is Phase.CHATTING:
            return ChannelReply("⏳ *Still answering your previous question...*", outcome=reply.outcome)
        return ChannelReply(
            "Please finish the questionnaire first. Send /start to begin.",
            outcome=reply.outcome,
        )
