"""
Language and quality heuristics for transcription.

Inbound calls usually open with an automated greeting in English that can
drag a provider's language detection the wrong way. Before transcription we
pick a locale hint or steering prompt; afterwards we decide whether the text
looks wrong enough to run the provider one more time.

These checks are approximate. Thresholds are tunable constants and both false
positives and false negatives are expected.
"""

import re
from dataclasses import dataclass

from callscribe.server.sql_models import CallDirection
from callscribe.utils import normalize_language_code

INBOUND_STEERING_PROMPT = (
    "This is an inbound phone call. Ignore the first 15 seconds which contain an "
    "automated English greeting. Detect the primary language spoken in the actual "
    "conversation that follows. The conversation is likely in Spanish."
)

RERUN_STEERING_PROMPT = (
    "This is a phone call in Spanish. Ignore any automated English greeting at the "
    "start. Transcribe the Spanish conversation accurately."
)

SPANISH_INDICATORS = (
    "hola",
    "gracias",
    "por favor",
    "buenos días",
    "buenas tardes",
    "señor",
    "señora",
    "llamada",
    "llamar",
)

# Garbled text thresholds
LONG_TOKEN_LENGTH = 15
MAX_LONG_TOKENS = 5
LOWERCASE_RUN_LENGTH = 20
MAX_LOWERCASE_RUNS = 3

_LOWERCASE_RUN = re.compile(r"[a-záéíóúñü]{%d,}" % LOWERCASE_RUN_LENGTH)

RERUN_REASON_GARBLED = "garbled"
RERUN_REASON_SPANISH_INDICATORS = "spanish_indicators"


@dataclass
class LanguageHint:
    """What to pass the provider: an explicit language, a steering prompt, or neither."""

    language: str | None = None
    prompt: str | None = None

    @property
    def auto_detect(self) -> bool:
        return self.language is None


def _join_prompts(*prompts: str | None) -> str | None:
    joined = " ".join(p.strip() for p in prompts if p and p.strip())
    return joined or None


def is_inbound(direction: str | None) -> bool:
    return (direction or "").strip().lower() == CallDirection.INBOUND.value


def choose_language_hint(
    direction: str | None, language: str | None = None, prompt: str | None = None
) -> LanguageHint:
    """
    Choose the locale hint for a call before transcription.

    An explicit language is used verbatim. Inbound calls without one get a
    steering prompt (appended to any caller prompt) and auto-detect. Outbound
    calls keep only the caller's prompt.

    Args:
        direction: Call direction (inbound / outbound)
        language: Language requested by the caller
        prompt: Free-text prompt supplied by the caller

    Returns:
        LanguageHint
    """
    if language:
        return LanguageHint(language=language, prompt=prompt or None)

    if is_inbound(direction):
        return LanguageHint(language=None, prompt=_join_prompts(prompt, INBOUND_STEERING_PROMPT))

    return LanguageHint(language=None, prompt=prompt or None)


def rerun_prompt(prompt: str | None = None) -> str:
    """Stronger steering prompt for the single quality re-run."""
    return _join_prompts(prompt, RERUN_STEERING_PROMPT)


def is_likely_garbled(text: str | None) -> bool:
    """
    Check whether transcript text looks like the provider decoded the wrong language.

    Text is flagged when more than MAX_LONG_TOKENS tokens exceed LONG_TOKEN_LENGTH
    characters, or when more than MAX_LOWERCASE_RUNS runs of at least
    LOWERCASE_RUN_LENGTH lowercase letters appear.
    """
    if not text:
        return False

    long_tokens = sum(1 for token in text.split() if len(token) > LONG_TOKEN_LENGTH)
    if long_tokens > MAX_LONG_TOKENS:
        return True

    lowercase_runs = len(_LOWERCASE_RUN.findall(text))
    return lowercase_runs > MAX_LOWERCASE_RUNS


def contains_spanish_indicators(text: str | None) -> bool:
    """Check for common Spanish words and phrases in text."""
    lowered = (text or "").lower()
    return any(indicator in lowered for indicator in SPANISH_INDICATORS)


def should_rerun(
    direction: str | None, hint: LanguageHint, text: str | None, detected_language: str | None
) -> str | None:
    """
    Decide whether an inbound, auto-detected transcription deserves one re-run.

    Args:
        direction: Call direction
        hint: Hint used for the first pass
        text: First-pass transcript text
        detected_language: Language reported by the first pass

    Returns:
        The re-run reason, or None to keep the first result
    """
    if not is_inbound(direction) or not hint.auto_detect:
        return None

    if is_likely_garbled(text):
        return RERUN_REASON_GARBLED

    if normalize_language_code(detected_language) == "en" and contains_spanish_indicators(text):
        return RERUN_REASON_SPANISH_INDICATORS

    return None
