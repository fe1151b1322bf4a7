"""
Mock speech-to-text client for testing.

This module provides a scripted provider implementation for testing the
pipeline without calling a real transcription API.
"""

import asyncio
import logging
from dataclasses import dataclass

from callscribe.server.common.deepgram import DEEPGRAM_SUPPORTED_FORMATS
from callscribe.server.services import (
    SpeechToTextHandler,
    TranscriptionOptions,
    TranscriptionResult,
)

logger = logging.getLogger(__name__)


@dataclass
class RecordedTranscription:
    """A single call made against the mock provider."""

    audio_url: str
    filename: str
    options: TranscriptionOptions


class MockSpeechToTextClient(SpeechToTextHandler):
    """Scripted speech-to-text provider for testing."""

    def __init__(self, name: str = "test_speech_to_text", api_key: str | None = "test-key"):
        """
        Initialize mock provider.

        Args:
            name: Name of the client (also reported as the result's provider)
            api_key: Fake API key; None makes the provider unconfigured
        """
        super().__init__(
            name,
            "mock://localhost",
            api_key,
            "mock-model",
            2 * 1024 * 1024 * 1024,
            DEEPGRAM_SUPPORTED_FORMATS,
        )
        self.calls: list[RecordedTranscription] = []
        self._responses: list[TranscriptionResult | Exception] = []
        self.default_result = TranscriptionResult(text="Mock transcription", language="en")
        self.delay: float = 0.0

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Establish connection to mock provider."""
        self._connected = True
        logger.info(f"[{self.name}] Connected to mock speech-to-text provider")

    async def disconnect(self) -> None:
        """Close connection to mock provider."""
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from mock speech-to-text provider")

    async def health_check(self) -> bool:
        """Check if the mock provider is healthy."""
        return self._connected

    # -------------------------------------------------------------- #
    # Transcription
    # -------------------------------------------------------------- #

    async def transcribe(
        self, audio_url: str, filename: str, options: TranscriptionOptions
    ) -> TranscriptionResult:
        """
        Return the next scripted response (or the default result).

        Scripted exceptions are raised instead of returned.
        """
        if not self._connected:
            raise RuntimeError("Not connected to mock speech-to-text provider")

        self.calls.append(RecordedTranscription(audio_url, filename, options))

        if self.delay:
            await asyncio.sleep(self.delay)

        response = self._responses.pop(0) if self._responses else self.default_result
        if isinstance(response, Exception):
            raise response

        return TranscriptionResult(
            text=response.text,
            language=response.language,
            duration=response.duration,
            segments=list(response.segments),
            provider=self.name,
        )

    # -------------------------------------------------------------- #
    # Test Helper Methods
    # -------------------------------------------------------------- #

    def queue_response(self, response: TranscriptionResult | Exception) -> None:
        """Script the next response (a result to return or an exception to raise)."""
        self._responses.append(response)

    def reset(self) -> None:
        """Reset the mock provider state."""
        self.calls = []
        self._responses = []
        self.delay = 0.0
