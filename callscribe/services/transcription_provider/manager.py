import math
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from callscribe.context import Context

from callscribe.errors import ProviderError, ProviderErrorCode
from callscribe.server.services import (
    SpeechToTextHandler,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)
from callscribe.services.manager import Manager

DEFAULT_CONFIDENCE_SCORE = 0.5

# -------------------------------------------------------------- #
# Segment Helpers
# -------------------------------------------------------------- #


def calculate_confidence_score(segments: list[TranscriptionSegment] | None) -> float:
    """
    Derive a single 0-1 confidence from provider segments.

    Each segment scores ``(1 - no_speech_prob) * exp(avg_logprob / 2)``; the
    scores are averaged and clamped. No segments gives a neutral default.
    """
    if not segments:
        return DEFAULT_CONFIDENCE_SCORE

    scores = [
        (1.0 - segment.no_speech_prob) * math.exp(segment.avg_logprob / 2.0)
        for segment in segments
    ]
    average = sum(scores) / len(scores)
    return max(0.0, min(1.0, average))


def format_segments_to_timestamps(
    segments: list[TranscriptionSegment] | None,
) -> list[dict[str, Any]]:
    """Convert provider segments into the stored timestamp list."""
    return [
        {
            "id": f"segment-{index}",
            "start": segment.start,
            "end": segment.end,
            "text": segment.text.strip(),
            "confidence": max(0.0, min(1.0, 1.0 - segment.no_speech_prob)),
            "index": index,
        }
        for index, segment in enumerate(segments or [])
    ]


# -------------------------------------------------------------- #
# Transcription Provider Manager Service
# -------------------------------------------------------------- #


class TranscriptionProviderManagerService(Manager):
    """
    Uniform interface over the primary and secondary speech-to-text providers.

    The primary provider is always tried first. A retryable primary failure is
    retried once on the secondary provider with identical options when fallback
    is enabled; if that also fails, the primary error is raised.
    """

    def __init__(self, context: "Context", fallback_enabled: bool = True):
        super().__init__(context)
        self.fallback_enabled = fallback_enabled

    # -------------------------------------------------------------- #
    # Manager Methods
    # -------------------------------------------------------------- #

    async def on_start(self, services):
        await super().on_start(services)
        secondary = self.secondary.name if self.secondary else "none"
        await self.services.logging_service.info(
            f"TranscriptionProviderManagerService initialized "
            f"(primary={self.primary.name}, secondary={secondary}, "
            f"fallback={'on' if self.fallback_enabled else 'off'})"
        )
        return True

    async def on_close(self):
        await self.services.logging_service.info("TranscriptionProviderManagerService closed")
        return True

    # -------------------------------------------------------------- #
    # Properties
    # -------------------------------------------------------------- #

    @property
    def primary(self) -> SpeechToTextHandler:
        return self.server.primary_provider

    @property
    def secondary(self) -> SpeechToTextHandler | None:
        return self.server.secondary_provider

    # -------------------------------------------------------------- #
    # Transcription Methods
    # -------------------------------------------------------------- #

    def validate_configuration(self) -> None:
        """
        Check that the primary provider can be called.

        Raises:
            ProviderError: Non-retryable API_ERROR when the primary has no API key
        """
        if not self.primary.is_configured():
            raise ProviderError(
                ProviderErrorCode.API_ERROR,
                f"{self.primary.name} API key not configured",
                retryable=False,
                provider=self.primary.name,
            )

    async def _call_provider(
        self,
        provider: SpeechToTextHandler,
        audio_url: str,
        filename: str,
        options: TranscriptionOptions,
    ) -> TranscriptionResult:
        try:
            result = await provider.transcribe(audio_url, filename, options)
        except ProviderError as e:
            if e.provider is None:
                e.provider = provider.name
            raise
        except Exception as e:
            raise ProviderError(
                ProviderErrorCode.UNKNOWN_ERROR,
                f"{type(e).__name__}: {e}",
                retryable=True,
                provider=provider.name,
            ) from e

        if result.provider is None:
            result.provider = provider.name
        result.confidence = calculate_confidence_score(result.segments)
        return result

    async def transcribe(
        self, audio_url: str, filename: str, options: TranscriptionOptions
    ) -> TranscriptionResult:
        """
        Transcribe audio with the primary provider, falling back when allowed.

        Args:
            audio_url: Time-boxed retrieval URL for the audio
            filename: Original filename
            options: Options forwarded unchanged to whichever provider runs

        Returns:
            TranscriptionResult with its confidence filled in

        Raises:
            ProviderError: The primary provider's error when no provider succeeded
        """
        try:
            return await self._call_provider(self.primary, audio_url, filename, options)
        except ProviderError as primary_error:
            secondary = self.secondary
            if not (self.fallback_enabled and primary_error.retryable and secondary is not None):
                await self.services.logging_service.error(
                    f"Transcription failed on {self.primary.name} for {filename}: "
                    f"{primary_error.code.value} {primary_error.message}"
                )
                raise

            await self.services.logging_service.warning(
                f"{self.primary.name} failed for {filename} "
                f"({primary_error.code.value}: {primary_error.message}), "
                f"falling back to {secondary.name}"
            )

            try:
                return await self._call_provider(secondary, audio_url, filename, options)
            except ProviderError as fallback_error:
                await self.services.logging_service.error(
                    f"Fallback to {secondary.name} also failed for {filename}: "
                    f"{fallback_error.code.value} {fallback_error.message}"
                )
                raise primary_error from None
