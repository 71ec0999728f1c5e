"""Tests for the instruction composer."""

import pytest

from tmigen.extractor import extract
from tmigen.models import LengthClass, PromptConfiguration
from tmigen.prompt import (
    DEFAULT_DIRECTIVE,
    PRESETS,
    compose,
    get_preset,
    language_directive,
    substitute_macros,
)


class TestCompose:
    def test_sections_in_order(self):
        config = PromptConfiguration(count=4, length=LengthClass.SHORT, language="Korean")
        result = compose("Tell me about the weather.", config)

        directive_at = result.index("Tell me about the weather.")
        language_at = result.index("Write all facts in Korean.")
        format_at = result.index("CRITICAL FORMAT")
        requirements_at = result.index("Requirements:")
        assert directive_at < language_at < format_at < requirements_at

    def test_requirements_restate_count_and_length(self):
        config = PromptConfiguration(count=7, length=LengthClass.LONG)
        result = compose("Facts please.", config)

        assert "Generate exactly 7 TMI facts" in result
        assert "7+ sentences per fact (comprehensive detail)" in result
        assert "NO other text outside the tags" in result
        assert "MUST start with <tmi> and end with </tmi>" in result

    def test_default_language_has_no_directive(self):
        result = compose("Facts.", PromptConfiguration(language="english"))
        assert "Write all facts in" not in result

    def test_empty_directive_uses_default(self):
        result = compose("   ", PromptConfiguration())
        assert result.startswith(DEFAULT_DIRECTIVE)

    def test_deterministic(self):
        config = PromptConfiguration(count=2)
        assert compose("Same.", config) == compose("Same.", config)

    def test_format_example_round_trips_through_extractor(self):
        """The sample block in the instruction is itself parseable."""
        result = compose("Facts.", PromptConfiguration())
        assert extract(result, 3) == ["Fact 1 here", "Fact 2 here", "Fact 3 here"]


class TestLanguageDirective:
    @pytest.mark.parametrize("language", [None, "", "English", " ENGLISH "])
    def test_default_languages(self, language):
        assert language_directive(language) == ""

    def test_other_language(self):
        assert language_directive(" Japanese ") == "Write all facts in Japanese."


class TestMacros:
    def test_known_macros_replaced(self):
        text = "Facts about {{char}} and {{ user }}."
        assert substitute_macros(text, {"char": "Mira", "user": "Alex"}) == (
            "Facts about Mira and Alex."
        )

    def test_unknown_macros_kept(self):
        assert substitute_macros("Hi {{time}}", {"char": "Mira"}) == "Hi {{time}}"

    def test_case_insensitive_names(self):
        assert substitute_macros("{{Char}}", {"char": "Mira"}) == "Mira"


class TestPresets:
    def test_builtin_presets(self):
        assert set(PRESETS) == {"default", "world", "emotion"}
        assert get_preset("default") == DEFAULT_DIRECTIVE

    def test_unknown_preset(self):
        with pytest.raises(KeyError, match="Unknown preset"):
            get_preset("missing")
