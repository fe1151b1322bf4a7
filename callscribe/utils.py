import hashlib
import re
import uuid
from datetime import datetime
from zoneinfo import ZoneInfo


# -------------------------------------------------------------- #
# Constants
# -------------------------------------------------------------- #


JOB_UUID_LENGTH = 16  # fixed length for job / row ids

SPANISH_LANGUAGE_CODES = {"es", "spa", "spanish"}


# -------------------------------------------------------------- #
# Generators
# -------------------------------------------------------------- #


def generate_variable_char_uuid(length: int) -> str:
    """Generate a unique identifier of specified length."""
    if length <= 0 or length > 32:
        raise ValueError("Length must be between 1 and 32")
    return uuid.uuid4().hex[:length]


def generate_16_char_uuid() -> str:
    """Generate a unique 16-character identifier."""
    return generate_variable_char_uuid(JOB_UUID_LENGTH)


# -------------------------------------------------------------- #
# Util Functions
# -------------------------------------------------------------- #


def get_current_timestamp_est() -> datetime:
    """Get the current EST timestamp."""
    return datetime.now(ZoneInfo("America/New_York"))


def to_naive(timestamp: datetime | None) -> datetime | None:
    """Strip tzinfo so a timestamp can be stored in a plain DateTime column."""
    if timestamp is None:
        return None
    return timestamp.replace(tzinfo=None)


def to_est(timestamp: datetime | None) -> datetime | None:
    """Attach the EST zone to a timestamp read back from a plain DateTime column."""
    if timestamp is None or timestamp.tzinfo is not None:
        return timestamp
    return timestamp.replace(tzinfo=ZoneInfo("America/New_York"))


def normalize_text(text: str) -> str:
    """Collapse runs of whitespace and strip the ends."""
    return re.sub(r"\s+", " ", text or "").strip()


def calculate_text_sha256(text: str) -> str:
    """Calculate the SHA256 hash of a text string."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def is_spanish_language(language: str | None) -> bool:
    """Check whether a language code or name refers to Spanish."""
    if not language:
        return False
    return language.strip().lower() in SPANISH_LANGUAGE_CODES


def parse_bool_env(value: str | None, default: bool) -> bool:
    """Parse a boolean flag read from the environment."""
    if value is None or value == "":
        return default
    return value.strip().lower() not in ("0", "false", "no", "off")


def extract_storage_filename(audio_path: str | None, filename: str | None) -> str:
    """
    Get the object name of a call's audio inside its owner's folder.

    Args:
        audio_path: Stored path of the audio object (may contain folders)
        filename: Original upload filename

    Returns:
        The last path component of audio_path, or filename when no path is stored
    """
    if audio_path:
        return audio_path.rstrip("/").split("/")[-1]
    return filename or ""


LANGUAGE_NAME_TO_CODE = {
    "english": "en",
    "eng": "en",
    "spanish": "es",
    "spa": "es",
    "castilian": "es",
    "french": "fr",
    "portuguese": "pt",
}


def normalize_language_code(language: str | None) -> str | None:
    """Map provider language names ("spanish", "spa") onto ISO-639-1 codes."""
    if not language:
        return None
    value = language.strip().lower()
    return LANGUAGE_NAME_TO_CODE.get(value, value)
