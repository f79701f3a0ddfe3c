"""
Tests for the settings loader.
"""

from pathlib import Path

import pytest

from car_advisor.settings import (
    DEFAULTS,
    DotDict,
    _deep_merge,
    load_settings,
    validate_settings,
)


class TestDotDict:
    """DotDict attribute access"""

    def test_dot_access(self):
        d = DotDict({"a": 1, "b": {"c": 2}})
        assert d.a == 1
        assert d.b.c == 2

    def test_missing_key_raises(self):
        d = DotDict({"a": 1})
        with pytest.raises(AttributeError):
            _ = d.nonexistent

    def test_get_nested(self):
        d = DotDict({"scoring": {"emphasis": {"chat": 2}}})
        assert d.get_nested("scoring.emphasis.chat") == 2
        assert d.get_nested("scoring.emphasis.fax", "default") == "default"

    def test_set_attr(self):
        d = DotDict({})
        d.foo = "bar"
        assert d["foo"] == "bar"


class TestLoadSettings:

    def test_load_defaults_when_no_file(self):
        settings = load_settings(Path("/nonexistent/path.yaml"))
        assert settings.llm.model == "phi4"
        assert settings.scoring.emphasis.web == 1
        assert settings.scoring.emphasis.chat == 2
        assert settings.chat.max_questions == 5

    def test_load_from_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("llm:\n  model: \"llama3\"\n  timeout: 120\n", encoding="utf-8")

        settings = load_settings(path)

        assert settings.llm.model == "llama3"
        assert settings.llm.timeout == 120
        assert settings.llm.base_url == DEFAULTS["llm"]["base_url"]

    def test_deep_merge_keeps_sibling_keys(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("scoring:\n  emphasis:\n    chat: 3\n", encoding="utf-8")

        settings = load_settings(path)

        assert settings.scoring.emphasis.chat == 3
        assert settings.scoring.emphasis.web == 1
        assert settings.scoring.top_n == 3

    def test_empty_yaml_gives_defaults(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("", encoding="utf-8")
        assert load_settings(path) == DotDict(_deep_merge({}, DEFAULTS))

    def test_packaged_settings_are_valid(self):
        assert validate_settings(load_settings()) == []


class TestValidateSettings:

    def _settings(self, **overrides):
        return DotDict(_deep_merge(DEFAULTS, overrides))

    def test_defaults_valid(self):
        assert validate_settings(self._settings()) == []

    def test_negative_quota_rejected(self):
        errors = validate_settings(self._settings(chat={"max_questions": -1}))
        assert any("chat.max_questions" in e for e in errors)

    def test_zero_quota_allowed(self):
        assert validate_settings(self._settings(chat={"max_questions": 0})) == []

    def test_emphasis_must_be_positive(self):
        errors = validate_settings(self._settings(scoring={"emphasis": {"web": 0}}))
        assert any("scoring.emphasis.web" in e for e in errors)

    def test_top_n_at_least_one(self):
        errors = validate_settings(self._settings(scoring={"top_n": 0}))
        assert any("scoring.top_n" in e for e in errors)

    def test_missing_model(self):
        errors = validate_settings(self._settings(llm={"model": ""}))
        assert "llm.model is not set" in errors

    def test_inactivity_timeout_positive(self):
        errors = validate_settings(self._settings(llm={"inactivity_timeout": 0}))
        assert any("inactivity_timeout" in e for e in errors)
