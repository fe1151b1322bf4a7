"""Deepgram speech-to-text client implementation."""

import asyncio
import json
import logging
import math
from typing import Any

import aiohttp

from callscribe.errors import ProviderError, ProviderErrorCode, provider_error_from_status
from callscribe.server.services import (
    SpeechToTextHandler,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #

DEEPGRAM_MAX_FILE_SIZE = 2 * 1024 * 1024 * 1024  # 2GB
DEEPGRAM_SUPPORTED_FORMATS = frozenset(
    {"mp3", "mp4", "m4a", "wav", "webm", "mpga", "mpeg", "flac", "aac", "ogg", "opus", "mov"}
)

SEGMENT_DURATION_SECONDS = 30
MAX_PROMPT_KEYWORDS = 10


def extract_keywords(prompt: str | None) -> list[str]:
    """Derive Deepgram keywords from a free-text prompt (words longer than 2 chars, max 10)."""
    if not prompt:
        return []
    return [word for word in prompt.split() if len(word) > 2][:MAX_PROMPT_KEYWORDS]


def group_words_into_segments(
    words: list[dict[str, Any]], segment_duration: float = SEGMENT_DURATION_SECONDS
) -> list[TranscriptionSegment]:
    """
    Group Deepgram word timings into Whisper-style segments.

    A new segment starts whenever a word begins ``segment_duration`` seconds or
    more after the start of the current segment.

    Args:
        words: Deepgram word entries ({word, punctuated_word, start, end, confidence})
        segment_duration: Target segment length in seconds

    Returns:
        List of TranscriptionSegment
    """
    segments: list[TranscriptionSegment] = []
    current: list[dict[str, Any]] = []
    current_start = 0.0

    def _flush() -> None:
        confidences = [float(w.get("confidence") or 0.0) for w in current]
        avg_confidence = sum(confidences) / len(confidences)
        segments.append(
            TranscriptionSegment(
                id=len(segments),
                start=current_start,
                end=float(current[-1].get("end") or current_start),
                text=" ".join(w.get("punctuated_word") or w.get("word") or "" for w in current),
                avg_logprob=math.log(max(avg_confidence, 1e-6)),
                no_speech_prob=1.0 - avg_confidence,
            )
        )

    for word in words:
        word_start = float(word.get("start") or 0.0)
        if not current or word_start - current_start >= segment_duration:
            if current:
                _flush()
            current = []
            current_start = word_start
        current.append(word)

    if current:
        _flush()

    return segments


# -------------------------------------------------------------- #
# Deepgram Client
# -------------------------------------------------------------- #


class DeepgramClient(SpeechToTextHandler):
    """Client for the Deepgram pre-recorded audio API."""

    def __init__(
        self,
        name: str = "deepgram",
        api_key: str | None = None,
        endpoint: str = "https://api.deepgram.com",
        model: str = "nova-2",
        request_timeout: float = 600.0,
    ):
        """
        Initialize Deepgram client.

        Args:
            name: Name of the client
            api_key: Deepgram API key
            endpoint: Deepgram API base URL
            model: Deepgram model name
            request_timeout: Total timeout of a transcription request in seconds
        """
        super().__init__(
            name,
            endpoint,
            api_key,
            model,
            DEEPGRAM_MAX_FILE_SIZE,
            DEEPGRAM_SUPPORTED_FORMATS,
        )
        self.request_timeout = request_timeout
        self.session: aiohttp.ClientSession | None = None

    # -------------------------------------------------------------- #
    # Server Management
    # -------------------------------------------------------------- #

    async def connect(self) -> None:
        """Create the HTTP session."""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.request_timeout)
        )
        self._connected = True
        logger.info(f"[{self.name}] Ready to call Deepgram at {self.endpoint}")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from Deepgram")

    async def health_check(self) -> bool:
        """Check that the client is configured and its session is open."""
        return self.session is not None and not self.session.closed and self.is_configured()

    # -------------------------------------------------------------- #
    # Transcription
    # -------------------------------------------------------------- #

    def _build_query(self, options: TranscriptionOptions) -> list[tuple[str, str]]:
        query = [
            ("model", self.model),
            ("punctuate", "true"),
            ("paragraphs", "true"),
            ("smart_format", "true"),
        ]
        if options.language:
            query.append(("language", options.language))
        else:
            query.append(("detect_language", "true"))

        for keyword in extract_keywords(options.prompt):
            query.append(("keywords", keyword))
        return query

    async def transcribe(
        self, audio_url: str, filename: str, options: TranscriptionOptions
    ) -> TranscriptionResult:
        """
        Transcribe audio reachable at a URL.

        Args:
            audio_url: Time-boxed retrieval URL for the audio
            filename: Original filename, used for format checks
            options: Language / prompt options (prompt is turned into keywords)

        Returns:
            TranscriptionResult with 30-second segments
        """
        if not self.session:
            raise RuntimeError("Not connected to Deepgram")
        if not self.is_configured():
            raise ProviderError(
                ProviderErrorCode.API_ERROR, "Deepgram API key not configured", provider=self.name
            )
        if not self.supports_format(filename):
            raise ProviderError(
                ProviderErrorCode.UNSUPPORTED_FORMAT,
                f"Unsupported audio format: {filename}",
                provider=self.name,
            )

        headers = {"Authorization": f"Token {self.api_key}", "Content-Type": "application/json"}

        try:
            async with self.session.post(
                f"{self.endpoint}/v1/listen",
                params=self._build_query(options),
                json={"url": audio_url},
                headers=headers,
            ) as response:
                body = await response.text()
                if response.status != 200:
                    raise provider_error_from_status(response.status, body, self.name)
                payload = json.loads(body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[{self.name}] Network error: {e}")
            raise ProviderError(
                ProviderErrorCode.NETWORK_ERROR,
                f"Network error contacting Deepgram: {e}",
                retryable=True,
                provider=self.name,
            ) from e

        return self._parse_response(payload, options)

    def _parse_response(
        self, payload: dict[str, Any], options: TranscriptionOptions
    ) -> TranscriptionResult:
        try:
            channel = payload["results"]["channels"][0]
            alternative = channel["alternatives"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(
                ProviderErrorCode.API_ERROR,
                "No transcript returned from Deepgram",
                provider=self.name,
            ) from e

        text = alternative.get("transcript")
        if text is None:
            raise ProviderError(
                ProviderErrorCode.API_ERROR,
                "No transcript returned from Deepgram",
                provider=self.name,
            )

        metadata = payload.get("metadata") or {}
        language = (
            channel.get("detected_language")
            or metadata.get("language")
            or options.language
            or "en"
        )

        return TranscriptionResult(
            text=text,
            language=language,
            duration=metadata.get("duration"),
            segments=group_words_into_segments(alternative.get("words") or []),
            provider=self.name,
        )


def construct_deepgram_client(
    api_key: str | None, model: str = "nova-2", endpoint: str = "https://api.deepgram.com"
) -> DeepgramClient:
    """
    Construct and return a Deepgram client.

    Args:
        api_key: Deepgram API key
        model: Deepgram model name
        endpoint: Deepgram API base URL

    Returns:
        Configured DeepgramClient instance
    """
    return DeepgramClient(name="deepgram", api_key=api_key, endpoint=endpoint, model=model)
