"""OpenAI clients: Whisper transcription, chat translation and embeddings."""

import asyncio
import json
import logging
from typing import Any

import aiohttp

from callscribe.errors import (
    EmbeddingFailure,
    ProviderError,
    ProviderErrorCode,
    TranslationFailure,
    provider_error_from_status,
)
from callscribe.server.services import (
    LanguageModelHandler,
    SpeechToTextHandler,
    TranscriptionOptions,
    TranscriptionResult,
    TranscriptionSegment,
)

logger = logging.getLogger(__name__)

# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #

OPENAI_API_BASE = "https://api.openai.com/v1"

WHISPER_MODEL = "whisper-1"
WHISPER_MAX_FILE_SIZE = 25 * 1024 * 1024  # 25MB
WHISPER_SUPPORTED_FORMATS = frozenset(
    {"mp3", "mp4", "m4a", "wav", "webm", "mpga", "mpeg", "flac", "aac"}
)

TRANSLATION_MODEL = "gpt-4o-mini"
EMBEDDING_MODEL = "text-embedding-3-small"
EMBEDDING_DIMENSIONS = 1536

TRANSLATION_SYSTEM_PROMPT = (
    "You are a professional translator for customer phone calls. Translate the "
    "transcript you are given from {source} to {target}. Preserve speaker turns, "
    "names, numbers and line breaks. Reply with the translation only."
)


def _network_error(provider: str, e: Exception) -> ProviderError:
    return ProviderError(
        ProviderErrorCode.NETWORK_ERROR,
        f"Network error contacting {provider}: {e}",
        retryable=True,
        provider=provider,
    )


# -------------------------------------------------------------- #
# Whisper Client
# -------------------------------------------------------------- #


class OpenAIWhisperClient(SpeechToTextHandler):
    """Client for the OpenAI audio transcription endpoint."""

    def __init__(
        self,
        name: str = "openai",
        api_key: str | None = None,
        endpoint: str = OPENAI_API_BASE,
        model: str = WHISPER_MODEL,
        request_timeout: float = 600.0,
    ):
        """
        Initialize Whisper client.

        Args:
            name: Name of the client
            api_key: OpenAI API key
            endpoint: OpenAI API base URL (including /v1)
            model: Transcription model name
            request_timeout: Total timeout of a single request in seconds
        """
        super().__init__(
            name, endpoint, api_key, model, WHISPER_MAX_FILE_SIZE, WHISPER_SUPPORTED_FORMATS
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
        logger.info(f"[{self.name}] Ready to call OpenAI Whisper at {self.endpoint}")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from OpenAI Whisper")

    async def health_check(self) -> bool:
        """Check that the client is configured and its session is open."""
        return self.session is not None and not self.session.closed and self.is_configured()

    # -------------------------------------------------------------- #
    # Transcription
    # -------------------------------------------------------------- #

    async def _download_audio(self, audio_url: str) -> bytes:
        """Fetch the audio bytes, enforcing the provider's size limit."""
        async with self.session.get(audio_url) as response:
            if response.status == 404:
                raise ProviderError(
                    ProviderErrorCode.FILE_NOT_FOUND,
                    "Audio file not found in storage",
                    provider=self.name,
                )
            if response.status != 200:
                raise ProviderError(
                    ProviderErrorCode.NETWORK_ERROR,
                    f"Failed to download audio ({response.status})",
                    retryable=response.status >= 500,
                    provider=self.name,
                )
            if response.content_length and response.content_length > self.max_file_size_bytes:
                raise ProviderError(
                    ProviderErrorCode.FILE_TOO_LARGE,
                    f"Audio file exceeds {self.max_file_size_bytes // (1024 * 1024)}MB limit",
                    provider=self.name,
                )
            data = await response.read()

        if len(data) > self.max_file_size_bytes:
            raise ProviderError(
                ProviderErrorCode.FILE_TOO_LARGE,
                f"Audio file exceeds {self.max_file_size_bytes // (1024 * 1024)}MB limit",
                provider=self.name,
            )
        return data

    async def transcribe(
        self, audio_url: str, filename: str, options: TranscriptionOptions
    ) -> TranscriptionResult:
        """
        Download the audio and upload it to the transcription endpoint.

        Args:
            audio_url: Time-boxed retrieval URL for the audio
            filename: Original filename, used for format checks and the upload name
            options: Language / prompt / format options

        Returns:
            TranscriptionResult built from the verbose_json response
        """
        if not self.session:
            raise RuntimeError("Not connected to OpenAI Whisper")
        if not self.is_configured():
            raise ProviderError(
                ProviderErrorCode.API_ERROR, "OpenAI API key not configured", provider=self.name
            )
        if not self.supports_format(filename):
            raise ProviderError(
                ProviderErrorCode.UNSUPPORTED_FORMAT,
                f"Unsupported audio format: {filename}",
                provider=self.name,
            )

        try:
            audio = await self._download_audio(audio_url)

            data = aiohttp.FormData()
            data.add_field("file", audio, filename=filename)
            data.add_field("model", self.model)
            data.add_field("response_format", options.response_format)
            data.add_field("timestamp_granularities[]", options.granularity)
            if options.language:
                data.add_field("language", options.language)
            if options.prompt:
                data.add_field("prompt", options.prompt)

            async with self.session.post(
                f"{self.endpoint}/audio/transcriptions",
                data=data,
                headers={"Authorization": f"Bearer {self.api_key}"},
            ) as response:
                body = await response.text()
                if response.status != 200:
                    raise provider_error_from_status(response.status, body, self.name)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.error(f"[{self.name}] Network error: {e}")
            raise _network_error(self.name, e) from e

        if options.response_format == "text":
            return TranscriptionResult(text=body, language=options.language, provider=self.name)

        return self._parse_response(json.loads(body), options)

    def _parse_response(
        self, payload: dict[str, Any], options: TranscriptionOptions
    ) -> TranscriptionResult:
        segments = [
            TranscriptionSegment(
                id=int(segment.get("id", index)),
                start=float(segment.get("start", 0.0)),
                end=float(segment.get("end", 0.0)),
                text=segment.get("text", ""),
                avg_logprob=float(segment.get("avg_logprob", 0.0)),
                no_speech_prob=float(segment.get("no_speech_prob", 0.0)),
            )
            for index, segment in enumerate(payload.get("segments") or [])
        ]
        return TranscriptionResult(
            text=payload.get("text", ""),
            language=payload.get("language") or options.language,
            duration=payload.get("duration"),
            segments=segments,
            provider=self.name,
        )


# -------------------------------------------------------------- #
# Language Model Client
# -------------------------------------------------------------- #


class OpenAILanguageModelClient(LanguageModelHandler):
    """Client for OpenAI chat completions (translation) and embeddings."""

    def __init__(
        self,
        name: str = "openai_language_model",
        api_key: str | None = None,
        endpoint: str = OPENAI_API_BASE,
        translation_model: str = TRANSLATION_MODEL,
        embedding_model: str = EMBEDDING_MODEL,
        embedding_dimensions: int = EMBEDDING_DIMENSIONS,
        request_timeout: float = 120.0,
    ):
        super().__init__(name, endpoint, api_key, embedding_model, embedding_dimensions)
        self.translation_model = translation_model
        self.request_timeout = request_timeout
        self.session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        """Create the HTTP session."""
        self.session = aiohttp.ClientSession(
            timeout=aiohttp.ClientTimeout(total=self.request_timeout)
        )
        self._connected = True
        logger.info(f"[{self.name}] Ready to call OpenAI at {self.endpoint}")

    async def disconnect(self) -> None:
        """Close the HTTP session."""
        if self.session:
            await self.session.close()
            self.session = None
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from OpenAI")

    async def health_check(self) -> bool:
        """Check that the client is configured and its session is open."""
        return self.session is not None and not self.session.closed and self.is_configured()

    async def _post_json(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        if not self.session:
            raise RuntimeError("Not connected to OpenAI")

        try:
            async with self.session.post(
                f"{self.endpoint}{path}",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
            ) as response:
                body = await response.text()
                if response.status != 200:
                    raise provider_error_from_status(response.status, body, self.name)
                return json.loads(body)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise _network_error(self.name, e) from e

    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        """
        Translate a transcript with a chat completion.

        Raises:
            TranslationFailure: On any failure, wrapping the underlying cause
        """
        if not self.is_configured():
            raise TranslationFailure("OpenAI API key not configured")

        try:
            payload = await self._post_json(
                "/chat/completions",
                {
                    "model": self.translation_model,
                    "temperature": 0,
                    "messages": [
                        {
                            "role": "system",
                            "content": TRANSLATION_SYSTEM_PROMPT.format(
                                source=source_language, target=target_language
                            ),
                        },
                        {"role": "user", "content": text},
                    ],
                },
            )
            translated = payload["choices"][0]["message"]["content"]
        except ProviderError as e:
            raise TranslationFailure(e.message, retryable=e.retryable) from e
        except (KeyError, IndexError, TypeError) as e:
            raise TranslationFailure("Malformed translation response") from e

        if not translated or not translated.strip():
            raise TranslationFailure("Empty translation returned")
        return translated.strip()

    async def embed(self, text: str) -> tuple[list[float], int]:
        """
        Generate an embedding vector.

        Raises:
            EmbeddingFailure: On any failure, wrapping the underlying cause
        """
        if not self.is_configured():
            raise EmbeddingFailure("API key not configured")

        try:
            payload = await self._post_json(
                "/embeddings",
                {
                    "model": self.embedding_model,
                    "input": text,
                    "dimensions": self.embedding_dimensions,
                },
            )
            vector = payload["data"][0]["embedding"]
        except ProviderError as e:
            raise EmbeddingFailure(e.message, retryable=e.retryable) from e
        except (KeyError, IndexError, TypeError) as e:
            raise EmbeddingFailure("Malformed embedding response") from e

        token_count = int((payload.get("usage") or {}).get("total_tokens") or 0)
        return vector, token_count


# -------------------------------------------------------------- #
# Constructors
# -------------------------------------------------------------- #


def construct_whisper_client(
    api_key: str | None, endpoint: str = OPENAI_API_BASE
) -> OpenAIWhisperClient:
    """
    Construct and return an OpenAI Whisper client.

    Args:
        api_key: OpenAI API key
        endpoint: OpenAI API base URL

    Returns:
        Configured OpenAIWhisperClient instance
    """
    return OpenAIWhisperClient(name="openai", api_key=api_key, endpoint=endpoint)


def construct_language_model_client(
    api_key: str | None, endpoint: str = OPENAI_API_BASE
) -> OpenAILanguageModelClient:
    """Construct and return an OpenAI language model client."""
    return OpenAILanguageModelClient(api_key=api_key, endpoint=endpoint)
