"""
Mock language model client for testing.

Translations are looked up from a dictionary (falling back to a tagged echo)
and embeddings are deterministic vectors derived from the text hash.
"""

import hashlib
import logging

from callscribe.errors import EmbeddingFailure, TranslationFailure
from callscribe.server.services import LanguageModelHandler

logger = logging.getLogger(__name__)


class MockLanguageModelClient(LanguageModelHandler):
    """Mock language model client for testing."""

    def __init__(
        self,
        name: str = "test_language_model",
        api_key: str | None = "test-key",
        embedding_dimensions: int = 8,
    ):
        super().__init__(
            name, "mock://localhost", api_key, "mock-embedding-model", embedding_dimensions
        )
        self.translations: dict[str, str] = {}
        self.translate_calls: list[tuple[str, str, str]] = []
        self.embed_calls: list[str] = []
        self.fail_translation: bool = False
        self.embed_failures_remaining: int = 0

    async def connect(self) -> None:
        """Establish connection to mock language model."""
        self._connected = True
        logger.info(f"[{self.name}] Connected to mock language model")

    async def disconnect(self) -> None:
        """Close connection to mock language model."""
        self._connected = False
        logger.info(f"[{self.name}] Disconnected from mock language model")

    async def health_check(self) -> bool:
        """Check if the mock language model is healthy."""
        return self._connected

    async def translate(self, text: str, source_language: str, target_language: str) -> str:
        """Return the scripted translation for text."""
        self.translate_calls.append((text, source_language, target_language))
        if self.fail_translation:
            raise TranslationFailure("Mock translation failure")
        return self.translations.get(text, f"[{target_language}] {text}")

    async def embed(self, text: str) -> tuple[list[float], int]:
        """Return a deterministic vector for text."""
        self.embed_calls.append(text)
        if not self.is_configured():
            raise EmbeddingFailure("API key not configured")
        if self.embed_failures_remaining > 0:
            self.embed_failures_remaining -= 1
            raise EmbeddingFailure("Mock embedding failure", retryable=True)

        digest = hashlib.sha256(text.encode("utf-8")).digest()
        vector = [digest[i] / 255.0 for i in range(self.embedding_dimensions)]
        return vector, len(text.split())
