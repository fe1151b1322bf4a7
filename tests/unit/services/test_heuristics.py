"""
Unit tests for the language hint and re-run heuristics.

The garbled check is approximate; these tests pin its documented thresholds,
not its accuracy on real transcripts.
"""

import pytest

from callscribe.services.transcription_provider import heuristics
from callscribe.services.transcription_provider.heuristics import (
    INBOUND_STEERING_PROMPT,
    RERUN_REASON_GARBLED,
    RERUN_REASON_SPANISH_INDICATORS,
    RERUN_STEERING_PROMPT,
    LanguageHint,
    choose_language_hint,
    contains_spanish_indicators,
    is_likely_garbled,
    should_rerun,
)


@pytest.mark.unit
class TestChooseLanguageHint:
    def test_explicit_language_is_used_verbatim(self):
        hint = choose_language_hint("inbound", language="es", prompt="dental office")

        assert hint.language == "es"
        assert hint.prompt == "dental office"
        assert not hint.auto_detect

    def test_inbound_without_language_gets_steering_prompt(self):
        hint = choose_language_hint("inbound")

        assert hint.language is None
        assert hint.prompt == INBOUND_STEERING_PROMPT
        assert hint.auto_detect

    def test_caller_prompt_precedes_steering_prompt(self):
        hint = choose_language_hint("INBOUND", prompt="Names: Maria, Jose.")

        assert hint.prompt == f"Names: Maria, Jose. {INBOUND_STEERING_PROMPT}"

    def test_outbound_keeps_only_caller_prompt(self):
        assert choose_language_hint("outbound").prompt is None
        assert choose_language_hint("outbound", prompt="Sola Dental").prompt == "Sola Dental"

    def test_rerun_prompt_includes_caller_prompt(self):
        assert heuristics.rerun_prompt() == RERUN_STEERING_PROMPT
        assert heuristics.rerun_prompt("Sola Dental") == f"Sola Dental {RERUN_STEERING_PROMPT}"


@pytest.mark.unit
class TestGarbledHeuristic:
    def test_normal_sentence_is_not_garbled(self):
        assert not is_likely_garbled("Hello, I would like to schedule an appointment please.")

    def test_empty_text_is_not_garbled(self):
        assert not is_likely_garbled("")
        assert not is_likely_garbled(None)

    def test_many_long_tokens_are_garbled(self):
        token = "x" * (heuristics.LONG_TOKEN_LENGTH + 1)
        text = " ".join([token] * (heuristics.MAX_LONG_TOKENS + 1))

        assert is_likely_garbled(text)

    def test_long_tokens_at_threshold_are_not_garbled(self):
        token = "X" * (heuristics.LONG_TOKEN_LENGTH + 1)
        text = " ".join([token] * heuristics.MAX_LONG_TOKENS)

        assert not is_likely_garbled(text)

    def test_many_lowercase_runs_are_garbled(self):
        run = "a" * heuristics.LOWERCASE_RUN_LENGTH
        text = " ".join([run] * (heuristics.MAX_LOWERCASE_RUNS + 1))

        assert is_likely_garbled(text)


@pytest.mark.unit
class TestShouldRerun:
    def test_spanish_indicators_detected(self):
        assert contains_spanish_indicators("ok GRACIAS and por favor")
        assert not contains_spanish_indicators("thank you very much")

    def test_inbound_english_with_indicators_reruns(self):
        hint = choose_language_hint("inbound")

        reason = should_rerun("inbound", hint, "hello gracias por favor", "en")

        assert reason == RERUN_REASON_SPANISH_INDICATORS

    def test_inbound_garbled_reruns_regardless_of_language(self):
        hint = choose_language_hint("inbound")
        text = " ".join(["y" * 30] * 6)

        assert should_rerun("inbound", hint, text, "es") == RERUN_REASON_GARBLED

    def test_outbound_never_reruns(self):
        hint = choose_language_hint("outbound")

        assert should_rerun("outbound", hint, "hola gracias", "en") is None

    def test_explicit_language_never_reruns(self):
        hint = LanguageHint(language="en")

        assert should_rerun("inbound", hint, "hola gracias", "en") is None

    def test_clean_english_does_not_rerun(self):
        hint = choose_language_hint("inbound")

        assert should_rerun("inbound", hint, "I need to reschedule", "english") is None
