"""
Shared loaders for the HTTP-backed collaborators.

Both the development and production constructors call out to the same
external providers; only their SQL stores differ.
"""

import logging
import os

from callscribe.server.common.deepgram import construct_deepgram_client
from callscribe.server.common.object_storage import StorageAPIClient, construct_storage_client
from callscribe.server.common.openai_client import (
    OPENAI_API_BASE,
    OpenAILanguageModelClient,
    construct_language_model_client,
    construct_whisper_client,
)
from callscribe.server.services import SpeechToTextHandler
from callscribe.utils import parse_bool_env

logger = logging.getLogger(__name__)

SUPPORTED_PROVIDERS = ("deepgram", "openai")


def load_speech_to_text_providers() -> tuple[SpeechToTextHandler, SpeechToTextHandler | None]:
    """
    Load the primary and secondary speech-to-text providers.

    TRANSCRIPTION_PROVIDER selects the primary (default: deepgram). The other
    provider becomes the secondary unless FALLBACK_TO_OPENAI is false.

    Returns:
        Tuple of (primary, secondary or None)
    """
    primary_name = os.getenv("TRANSCRIPTION_PROVIDER", "deepgram").strip().lower()
    if primary_name not in SUPPORTED_PROVIDERS:
        raise ValueError(f"Unsupported TRANSCRIPTION_PROVIDER: {primary_name}")

    deepgram = construct_deepgram_client(
        api_key=os.getenv("DEEPGRAM_API_KEY"),
        model=os.getenv("DEEPGRAM_MODEL", "nova-2"),
    )
    whisper = construct_whisper_client(
        api_key=os.getenv("OPENAI_API_KEY"),
        endpoint=os.getenv("OPENAI_BASE_URL", OPENAI_API_BASE),
    )

    primary, secondary = (deepgram, whisper) if primary_name == "deepgram" else (whisper, deepgram)

    if not parse_bool_env(os.getenv("FALLBACK_TO_OPENAI"), default=True):
        logger.info(f"Provider fallback disabled; using '{primary.name}' only")
        secondary = None

    return primary, secondary


def load_storage_client() -> StorageAPIClient:
    """Load and return the object storage client."""
    endpoint = os.getenv("STORAGE_URL")
    if not endpoint:
        raise ValueError("Missing required STORAGE_URL environment variable.")

    return construct_storage_client(
        endpoint=endpoint,
        bucket=os.getenv("STORAGE_BUCKET", "audio-files"),
        service_key=os.getenv("STORAGE_SERVICE_KEY"),
    )


def load_language_model_client() -> OpenAILanguageModelClient:
    """Load and return the language model client used for translation and embeddings."""
    return construct_language_model_client(
        api_key=os.getenv("OPENAI_API_KEY"),
        endpoint=os.getenv("OPENAI_BASE_URL", OPENAI_API_BASE),
    )
