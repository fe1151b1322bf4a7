from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

# -------------------------------------------------------------- #
# Base Server Handler
# -------------------------------------------------------------- #


class BaseServerHandler(ABC):
    """Abstract base class for all server handlers."""

    def __init__(self, name: str):
        self.name = name
        self._connected = False

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        """Actions to perform on server startup."""
        pass

    async def on_close(self) -> None:
        """Actions to perform on server close."""
        pass

    # -------------------------------------------------------------- #
    # Abstract Methods
    # -------------------------------------------------------------- #

    @abstractmethod
    async def connect(self) -> None:
        """Establish connection to the server."""
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the server."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the server is healthy and responding."""
        pass

    @property
    def is_connected(self) -> bool:
        """Check if currently connected to the server."""
        return self._connected


# -------------------------------------------------------------- #
# Shared Structures
# -------------------------------------------------------------- #


@dataclass
class TranscriptionOptions:
    """Options forwarded unchanged to whichever provider handles a request."""

    language: str | None = None
    prompt: str | None = None
    response_format: str = "verbose_json"
    granularity: str = "segment"


@dataclass
class TranscriptionSegment:
    """A provider segment normalized to Whisper's verbose_json shape."""

    id: int
    start: float
    end: float
    text: str
    avg_logprob: float = 0.0
    no_speech_prob: float = 0.0


@dataclass
class TranscriptionResult:
    text: str
    language: str | None = None
    duration: float | None = None
    segments: list[TranscriptionSegment] = field(default_factory=list)
    provider: str | None = None
    confidence: float | None = None


# -------------------------------------------------------------- #
# Base Service Structures
# -------------------------------------------------------------- #


# Base SQL Database Handler


class SQLDatabase(BaseServerHandler):
    """SQL Database server handler."""

    def __init__(self, name: str, connection_string: str):
        super().__init__(name)
        self.connection_string = connection_string
        self.connection = None

    # -------------------------------------------------------------- #
    # Handler Methods
    # -------------------------------------------------------------- #

    async def on_startup(self) -> None:
        await self.create_tables()

    # ------------------------------------------------------ #
    # Utils
    # ------------------------------------------------------ #

    @abstractmethod
    async def create_tables(self) -> None:
        """Create database tables from models."""
        pass

    @abstractmethod
    def compile_query_object(self, stmt) -> str:
        """
        Compile a SQLAlchemy statement object into a SQL query string.

        Args:
            stmt: SQLAlchemy statement object

        Returns:
            Compiled SQL query string
        """
        pass

    @abstractmethod
    async def execute(self, stmt) -> list[dict[str, Any]]:
        """
        Execute a SQLAlchemy statement and return results.

        Args:
            stmt: SQLAlchemy statement object (select, insert, update, delete)

        Returns:
            List of result rows as dictionaries (empty list for non-SELECT queries)
        """
        pass


# Object Storage Handler


class ObjectStorageHandler(BaseServerHandler):
    """Object storage holding call audio, able to mint time-boxed retrieval URLs."""

    def __init__(self, name: str, endpoint: str, bucket: str):
        super().__init__(name)
        self.endpoint = endpoint
        self.bucket = bucket

    @abstractmethod
    async def create_signed_url(self, path: str, expires_in: int) -> str:
        """
        Mint a retrieval URL for an object.

        Args:
            path: Object path inside the bucket
            expires_in: URL lifetime in seconds

        Returns:
            Signed URL

        Raises:
            NotFound: If the object does not exist
            StorageUnavailable: If the URL could not be minted
        """
        pass


# Speech-to-Text Handler


class SpeechToTextHandler(BaseServerHandler):
    """Speech-to-text provider handler."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        api_key: str | None,
        model: str,
        max_file_size_bytes: int,
        supported_formats: frozenset[str],
    ):
        super().__init__(name)
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.max_file_size_bytes = max_file_size_bytes
        self.supported_formats = supported_formats

    def is_configured(self) -> bool:
        """Check that the provider has the credentials it needs."""
        return bool(self.api_key)

    def supports_format(self, filename: str) -> bool:
        """Check the file extension against the provider's supported formats."""
        extension = os.path.splitext(filename or "")[1].lower().lstrip(".")
        return extension in self.supported_formats

    @abstractmethod
    async def transcribe(
        self, audio_url: str, filename: str, options: TranscriptionOptions
    ) -> TranscriptionResult:
        """
        Transcribe an audio object reachable at a URL.

        Args:
            audio_url: Time-boxed retrieval URL for the audio
            filename: Original filename, used for format checks
            options: Language / prompt / format options

        Returns:
            TranscriptionResult with Whisper-shaped segments

        Raises:
            ProviderError: On any provider or transport failure
        """
        pass


# Language Model Handler


class LanguageModelHandler(BaseServerHandler):
    """Language model used for translation and embedding generation."""

    def __init__(
        self,
        name: str,
        endpoint: str,
        api_key: str | None,
        embedding_model: str,
        embedding_dimensions: int,
    ):
        super().__init__(name)
        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.embedding_model = embedding_model
        self.embedding_dimensions = embedding_dimensions

    def is_configured(self) -> bool:
        """Check that the client has the credentials it needs."""
        return bool(self.api_key)

    @abstractmethod
    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        """Translate text, returning the translated text."""
        pass

    @abstractmethod
    async def embed(self, text: str) -> tuple[list[float], int]:
        """
        Generate an embedding for text.

        Returns:
            Tuple of (vector, token_count)
        """
        pass
