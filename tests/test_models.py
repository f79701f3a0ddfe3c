"""
Tests for core value types.
"""

import json

import pytest

from car_advisor.models import Answers, Style, StreamToken, TokenKind


class TestAnswers:

    def test_defaults_incomplete(self):
        answers = Answers()
        assert not answers.is_complete
        assert answers.missing_fields() == ("daily_distance", "usage", "style_preference")

    def test_features_optional(self):
        answers = Answers(daily_distance=0, usage=0, style_preference=3)
        assert answers.is_complete
        assert answers.features == frozenset()

    @pytest.mark.parametrize("kwargs", [
        {"daily_distance": 3},
        {"usage": -1},
        {"style_preference": 4},
        {"features": {6}},
        {"daily_distance": True},
        {"usage": "1"},
    ])
    def test_out_of_range_rejected(self, kwargs):
        with pytest.raises(ValueError):
            Answers(**kwargs)

    def test_toggle_twice_restores(self):
        answers = Answers(features=frozenset({1}))
        assert answers.toggle_feature(4).features == {1, 4}
        assert answers.toggle_feature(4).toggle_feature(4) == answers

    def test_required_style(self):
        assert Answers(style_preference=1).required_style is Style.SUV
        assert Answers(style_preference=3).required_style is None

    def test_to_dict_sorts_features(self):
        assert Answers(features=frozenset({5, 0})).to_dict()["features"] == [0, 5]


class TestStreamToken:

    def test_payloads(self):
        assert StreamToken.text("Hi").to_payload() == {"text": "Hi"}
        assert StreamToken.done().to_payload() == {"done": True}
        assert StreamToken.error("boom").to_payload() == {"error": "boom"}

    def test_terminal(self):
        assert not StreamToken.text("x").is_terminal
        assert StreamToken.done().is_terminal
        assert StreamToken(TokenKind.ERROR, "x").is_terminal

    def test_sse_frame(self):
        frame = StreamToken.text("Grå").to_sse()
        assert frame.startswith("data: ")
        assert frame.endswith("\n\n")
        assert json.loads(frame[len("data: "):]) == {"text": "Grå"}
