from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.services.manager import Manager
from callscribe.utils import is_spanish_language, normalize_language_code

CANONICAL_LANGUAGE = "en"


@dataclass
class TranslationOutcome:
    """Text and language bookkeeping after the translation step."""

    text: str
    language: str | None
    was_translated: bool = False
    original_language: str | None = None


# -------------------------------------------------------------- #
# Translation Manager Service
# -------------------------------------------------------------- #


class TranslationManagerService(Manager):
    """Translates Spanish transcripts into the canonical working language."""

    def __init__(self, context: "Context", target_language: str = CANONICAL_LANGUAGE):
        super().__init__(context)
        self.target_language = target_language

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        await self.services.logging_service.info("TranslationManagerService initialized")
        return True

    async def on_close(self):
        await self.services.logging_service.info("TranslationManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Translation Methods
    # -------------------------------------------------------------- #

    async def maybe_translate(self, text: str, language: str | None) -> TranslationOutcome:
        """
        Translate text when its language is a Spanish variant.

        A translation failure never propagates: the untranslated text is kept
        and ``was_translated`` stays False.

        Args:
            text: Transcript text
            language: Detected or declared language ("es", "spa", "spanish", ...)

        Returns:
            TranslationOutcome
        """
        if not is_spanish_language(language) or not text:
            return TranslationOutcome(text=text, language=language)

        original_language = normalize_language_code(language)

        try:
            translated = await self.server.language_model_client.translate(
                text, original_language, self.target_language
            )
        except Exception as e:
            await self.services.logging_service.warning(
                f"Translation from {original_language} failed, keeping original text: {e}"
            )
            return TranslationOutcome(
                text=text, language=language, original_language=original_language
            )

        await self.services.logging_service.info(
            f"Translated transcript {original_language} -> {self.target_language} "
            f"({len(text)} -> {len(translated)} chars)"
        )
        return TranslationOutcome(
            text=translated,
            language=self.target_language,
            was_translated=True,
            original_language=original_language,
        )
